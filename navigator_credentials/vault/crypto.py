"""
Vault Crypto Core — symmetric encryption of provider API keys.

Envelope format: ``hex(iv) ":" hex(ciphertext)`` where the ciphertext is
AES-256-CBC over the PKCS7-padded UTF-8 secret and the IV is 16 random
bytes drawn per call.

Security Note:
    Never log plaintext or ciphertext values.
"""
import os
import re
import logging
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

logger = logging.getLogger("navigator.credentials")

IV_SIZE = 16  # AES block size
KEY_LENGTH = 32  # AES-256
SEPARATOR = ":"

_ENVELOPE = re.compile(r"^[0-9a-f]{32}:(?:[0-9a-f]{32})+$")


class CipherStore:
    """Encrypts and decrypts secret strings with a process-wide key.

    The key is injected at construction; build one per ``VaultConfig``.
    """

    def __init__(self, master_key: bytes):
        if len(master_key) != KEY_LENGTH:
            raise ValueError(
                f"master key must be {KEY_LENGTH} bytes, got {len(master_key)}"
            )
        self._key = master_key

    @staticmethod
    def is_encrypted(value: Optional[str]) -> bool:
        """Check if ``value`` already has the envelope format."""
        return bool(value) and _ENVELOPE.match(value) is not None

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a secret into an envelope.

        Empty input returns None; an existing envelope is returned as-is
        so repeated saves never double-encrypt.
        """
        if not plaintext:
            return None
        if self.is_encrypted(plaintext):
            return plaintext
        iv = os.urandom(IV_SIZE)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ct = encryptor.update(padded) + encryptor.finalize()
        return iv.hex() + SEPARATOR + ct.hex()

    def decrypt(self, envelope: Optional[str]) -> Optional[str]:
        """Decrypt an envelope.

        Returns None when the envelope is empty, malformed, was produced
        with another key or is corrupted; the failure is logged.
        """
        if not envelope:
            return None
        try:
            iv_hex, ct_hex = envelope.split(SEPARATOR, 1)
            iv = bytes.fromhex(iv_hex)
            ct = bytes.fromhex(ct_hex)
            if len(iv) != IV_SIZE:
                raise ValueError(f"invalid IV length {len(iv)}")
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ct) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError) as err:
            logger.warning("Credential decryption failed: %s", type(err).__name__)
            return None
