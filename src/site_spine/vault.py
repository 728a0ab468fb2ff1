"""
Credential vault - symmetric encryption of provider secrets at rest.

Ciphertext format:
    "<iv hex>:<ciphertext hex>"   randomized IV (default)
    "<ciphertext hex>"            legacy fixed zero IV

The legacy format gives identical ciphertext for identical plaintext. It is
still decrypted so that records written by older deployments keep working,
and it can be produced again with ``legacy_zero_iv=True`` for parity. New
writes use a random IV per value.

Encryption happens only at the persistence edge through ``seal_credential``
and ``open_credential``; nothing encrypts implicitly on save.
"""

from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import replace

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from site_spine.models import SECRET_FIELDS, Credential

logger = structlog.get_logger()

_BLOCK_BITS = 128
_IV_BYTES = 16
_ZERO_IV = bytes(_IV_BYTES)


def derive_key(secret: str) -> bytes:
    """Derive a 32-byte AES-256 key from the configured secret."""
    digest = hashlib.sha256(str(secret).encode("utf-8")).digest()
    return base64.b64encode(digest)[:32]


class CredentialVault:
    """AES-256-CBC encrypt/decrypt for credential secret fields."""

    def __init__(self, secret: str, legacy_zero_iv: bool = False):
        self._key = derive_key(secret)
        self.legacy_zero_iv = legacy_zero_iv

    def encrypt(self, plaintext: str) -> str:
        iv = _ZERO_IV if self.legacy_zero_iv else os.urandom(_IV_BYTES)

        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        if self.legacy_zero_iv:
            return ciphertext.hex()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, ciphertext: str | None) -> str:
        """
        Decrypt a value produced by ``encrypt``.

        Returns an empty string for absent or malformed input instead of
        raising; callers treat an empty secret as a missing credential.
        """
        if not ciphertext:
            return ""

        try:
            if ":" in ciphertext:
                iv_hex, body_hex = ciphertext.split(":", 1)
                iv = bytes.fromhex(iv_hex)
            else:
                iv, body_hex = _ZERO_IV, ciphertext
            body = bytes.fromhex(body_hex)

            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()

            unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except ValueError as e:
            # Covers bad hex, wrong IV length, bad block size, bad padding and bad utf-8
            logger.warning("decryption_failed", error=str(e))
            return ""


def seal_credential(credential: Credential, vault: CredentialVault) -> Credential:
    """Return a copy with every non-empty secret field encrypted."""
    changes = {
        name: vault.encrypt(value)
        for name in SECRET_FIELDS
        if (value := getattr(credential, name))
    }
    return replace(credential, **changes)


def open_credential(credential: Credential, vault: CredentialVault) -> Credential:
    """Return a copy with every secret field decrypted. Only call inside job handling."""
    changes = {name: vault.decrypt(getattr(credential, name)) for name in SECRET_FIELDS}
    return replace(credential, **changes)
