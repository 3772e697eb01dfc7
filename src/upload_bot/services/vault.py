"""Symmetric encryption for access keys and master keys."""

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from upload_bot.domain.errors import IntegrityError

_IV_LENGTH = 16
_TAG_LENGTH = 16
_KEY_HEX_LENGTH = 64
_ACCESS_KEY_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_MASTER_KEY_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
)


@dataclass
class CredentialVault:
    """AES-256-GCM vault producing ``iv:tag:ciphertext`` hex payloads.

    The vault holds no state besides its key. Ciphertexts carry a fresh
    128-bit IV, so encrypting the same value twice yields different payloads.
    """

    key_hex: str = field(repr=False)
    _cipher: AESGCM = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if len(self.key_hex) != _KEY_HEX_LENGTH:
            raise ValueError("Encryption key must be 32 bytes (64 hex characters)")
        try:
            key = bytes.fromhex(self.key_hex)
        except ValueError as exc:
            raise ValueError("Encryption key must be hex encoded") from exc
        self._cipher = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt text and return ``iv:tag:ciphertext`` in hex."""
        iv = secrets.token_bytes(_IV_LENGTH)
        sealed = self._cipher.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-_TAG_LENGTH], sealed[-_TAG_LENGTH:]
        return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, payload: str) -> str:
        """Decrypt an ``iv:tag:ciphertext`` payload."""
        parts = payload.split(":")
        if len(parts) != 3 or not all(parts):
            raise IntegrityError("Invalid encrypted data format")
        iv_hex, tag_hex, ciphertext_hex = parts
        try:
            iv = bytes.fromhex(iv_hex)
            tag = bytes.fromhex(tag_hex)
            ciphertext = bytes.fromhex(ciphertext_hex)
        except ValueError as exc:
            raise IntegrityError("Invalid encrypted data format") from exc
        if len(iv) != _IV_LENGTH or len(tag) != _TAG_LENGTH:
            raise IntegrityError("Invalid encrypted data format")
        try:
            plaintext = self._cipher.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise IntegrityError("Encrypted data failed authentication") from exc
        return plaintext.decode("utf-8")


def generate_access_key() -> str:
    """Return a random access key in ``ABC:DEF:GHI`` form."""
    chars = [secrets.choice(_ACCESS_KEY_ALPHABET) for _ in range(9)]
    return ":".join("".join(chars[i : i + 3]) for i in range(0, 9, 3))


def generate_master_key() -> str:
    """Return a random 12-character alphanumeric master key."""
    return "".join(secrets.choice(_MASTER_KEY_ALPHABET) for _ in range(12))


def generate_encryption_key() -> str:
    """Return a new 256-bit key as 64 hex characters."""
    return secrets.token_hex(32)


def secure_compare(a: str, b: str) -> bool:
    """Compare two secrets in constant time."""
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def sha1_hex(data: bytes) -> str:
    """Return the SHA-1 digest used for storage integrity checks."""
    return hashlib.sha1(data).hexdigest()  # noqa: S324
