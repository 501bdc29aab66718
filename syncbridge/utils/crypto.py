"""
Credential vault: AES-256-GCM encryption for integration secrets at rest.

API keys, API secrets and webhook signing secrets are stored as
``(ciphertext, iv)`` pairs:

  ciphertext  "<hex ciphertext>:<hex 16-byte GCM tag>"
  iv          hex of a fresh random 96-bit nonce drawn per encrypt() call

The tag travels with the ciphertext so one stored column round-trips with
its IV column.  Any tag mismatch or malformed value raises DecryptionError;
a corrupt secret is never returned as an empty string.

Key material:
  A VaultKey is derived once from a master secret with scrypt and held in
  memory by whoever built it (the app factory caches one per app in
  ``app.extensions``).  Tests construct ``VaultKey(raw_bytes)`` directly.
  Key bytes are never persisted and never logged.

Usage:
    from syncbridge.utils.crypto import CredentialVault, VaultKey

    vault = CredentialVault(VaultKey.derive(os.environ["ENCRYPTION_KEY"]))
    ciphertext, iv = vault.encrypt("sk_live_...")
    plaintext = vault.decrypt(ciphertext, iv)
"""

from __future__ import annotations

import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from syncbridge.core.exceptions import DecryptionError

KEY_BYTES = 32                 # AES-256
IV_BYTES = 12                  # 96-bit GCM nonce
TAG_BYTES = 16
TAG_SEPARATOR = ":"

# scrypt cost parameters (interactive-login strength, ~50 ms)
_SCRYPT_N = 2 ** 14
_SCRYPT_R = 8
_SCRYPT_P = 1

DEFAULT_SALT = "syncbridge-credential-vault"


class VaultKey:
    """Opaque handle around 32 bytes of AES key material."""

    __slots__ = ("_key",)

    def __init__(self, key: bytes) -> None:
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
            raise ValueError(f"VaultKey requires exactly {KEY_BYTES} bytes of key material")
        self._key = bytes(key)

    @classmethod
    def derive(cls, master_secret: str, salt: str = DEFAULT_SALT) -> "VaultKey":
        """Run scrypt over the master secret.  Expensive; call once per process."""
        if not master_secret:
            raise ValueError("master secret must not be empty")
        kdf = Scrypt(
            salt=salt.encode("utf-8"),
            length=KEY_BYTES,
            n=_SCRYPT_N,
            r=_SCRYPT_R,
            p=_SCRYPT_P,
        )
        return cls(kdf.derive(master_secret.encode("utf-8")))

    def cipher(self) -> AESGCM:
        """AES-256-GCM primitive keyed with this material."""
        return AESGCM(self._key)

    def __repr__(self) -> str:
        return "VaultKey(<redacted>)"


class CredentialVault:
    """Symmetric authenticated encryption of secret fields."""

    def __init__(self, key: VaultKey) -> None:
        self._aead = key.cipher()

    def encrypt(self, plaintext: str) -> tuple[str, str]:
        """Encrypt *plaintext*; returns ``(ciphertext_with_tag, iv)`` as hex strings."""
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        body, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{body.hex()}{TAG_SEPARATOR}{tag.hex()}", iv.hex()

    def decrypt(self, ciphertext: str, iv: str) -> str:
        """Open a value produced by encrypt().

        Raises:
            DecryptionError: tag does not verify, or either input is malformed.
        """
        if not ciphertext or not iv or ciphertext.count(TAG_SEPARATOR) != 1:
            raise DecryptionError("Encrypted value is malformed")
        body_hex, tag_hex = ciphertext.split(TAG_SEPARATOR)
        try:
            body = bytes.fromhex(body_hex)
            tag = bytes.fromhex(tag_hex)
            nonce = bytes.fromhex(iv)
        except (ValueError, binascii.Error) as exc:
            raise DecryptionError("Encrypted value is not valid hex") from exc
        if len(tag) != TAG_BYTES or len(nonce) != IV_BYTES:
            raise DecryptionError("Encrypted value has an invalid tag or IV length")
        try:
            plaintext = self._aead.decrypt(nonce, body + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Authentication tag did not verify") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted value is not UTF-8") from exc
