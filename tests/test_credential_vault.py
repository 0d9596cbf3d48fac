"""
End-to-end scenarios through the CredentialVault facade.
"""
import orjson
import pytest

from navigator_credentials import CredentialVault, NoCredentialAvailable
from navigator_credentials.storages import MemoryCredentialStorage

from .conftest import TEST_KEY


class TestVaultConstruction:
    """Tests for building a vault."""

    def test_defaults_from_env(self, monkeypatch, master_key_b64):
        monkeypatch.setenv("CREDENTIALS_MASTER_KEY", master_key_b64)
        vault = CredentialVault()
        assert vault.config.master_key == TEST_KEY
        assert isinstance(vault.storage, MemoryCredentialStorage)

    @pytest.mark.asyncio
    async def test_vaults_sharing_key_read_each_other(self, storage, config):
        writer = CredentialVault(storage=storage, config=config)
        reader = CredentialVault(storage=storage, config=config)
        credential = await writer.upsert_credential(
            organization_id="org-1", provider="openai", secret="sk-shared-1",
        )
        assert reader.get_decrypted_secret(credential) == "sk-shared-1"

    @pytest.mark.asyncio
    async def test_ephemeral_key_loses_data_on_restart(self, storage, monkeypatch):
        monkeypatch.delenv("CREDENTIALS_MASTER_KEY", raising=False)
        before = CredentialVault(storage=storage)
        credential = await before.upsert_credential(
            organization_id=None, provider="groq", secret="gsk-ephemeral",
        )
        after = CredentialVault(storage=storage)
        assert after.config.ephemeral_key is True
        assert after.get_decrypted_secret(credential) is None
        assert after.to_safe_view(credential)["key_preview"] is None


class TestScenarios:
    """Request-handling flows."""

    @pytest.mark.asyncio
    async def test_chat_request_flow(self, vault):
        await vault.upsert_credential(
            organization_id=None, provider="groq", secret="sk-plat-123",
            label="Platform Groq", rate_limit={"tokens_per_day": 1000},
        )
        credential = await vault.require_credential("groq", "org-42")
        assert vault.is_rate_limited(credential, 200) is False
        assert vault.get_decrypted_secret(credential) == "sk-plat-123"

        await vault.record_usage("groq", "org-42", tokens=950, cost_cents=4)

        credential = await vault.require_credential("groq", "org-42")
        assert vault.is_rate_limited(credential, 50) is False
        assert vault.is_rate_limited(credential, 51) is True

    @pytest.mark.asyncio
    async def test_tenant_brings_own_key(self, vault):
        platform = await vault.upsert_credential(
            organization_id=None, provider="openai", secret="sk-platform-key",
        )
        assert (await vault.resolve_credential("openai", "org-7")).id == platform.id

        own = await vault.upsert_credential(
            organization_id="org-7", provider="openai", secret="sk-tenant-key",
            acting_user_id="owner-7",
        )
        assert (await vault.resolve_credential("openai", "org-7")).id == own.id

        await vault.deactivate_credential(own.id, "owner-7")
        assert (await vault.resolve_credential("openai", "org-7")).id == platform.id

    @pytest.mark.asyncio
    async def test_not_configured(self, vault):
        with pytest.raises(NoCredentialAvailable) as exc:
            await vault.require_credential("anthropic", "org-1")
        assert exc.value.reason_code == "no_credential_available"
        assert "anthropic" in str(exc.value)

    @pytest.mark.asyncio
    async def test_safe_json(self, vault):
        credential = await vault.upsert_credential(
            organization_id="org-1", provider="gemini", secret="AIza-secret-5678",
        )
        payload = orjson.loads(vault.to_safe_json(credential))
        assert payload["key_preview"] == "***5678"
        assert payload["organization_id"] == "org-1"
        assert payload["usage"]["total_tokens"] == 0
        assert "AIza-secret-5678" not in orjson.dumps(payload).decode()

    @pytest.mark.asyncio
    async def test_close_releases_memory(self, vault):
        await vault.upsert_credential(organization_id=None, provider="groq", secret="gsk-1")
        await vault.close()
        assert await vault.list_credentials() == []
