from __future__ import annotations

import base64
import os
import secrets
import zlib
from typing import List, Optional, Protocol, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from warden.core.errors import ConfigError, IntegrityError


class Compressor(Protocol):
    name: str

    def compress(self, data: bytes) -> bytes: ...

    def decompress(self, data: bytes) -> bytes: ...


class Cipher(Protocol):
    name: str

    def encrypt(self, data: bytes) -> bytes: ...

    def decrypt(self, data: bytes) -> bytes: ...


class IdentityCompressor:
    name = "identity"

    def compress(self, data: bytes) -> bytes:
        return data

    def decompress(self, data: bytes) -> bytes:
        return data


class ZlibCompressor:
    name = "zlib"

    def __init__(self, level: int = 6):
        self.level = int(level)

    def compress(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def decompress(self, data: bytes) -> bytes:
        return zlib.decompress(data)


class NullCipher:
    name = "none"

    def encrypt(self, data: bytes) -> bytes:
        return data

    def decrypt(self, data: bytes) -> bytes:
        return data


class AesGcmCipher:
    """AES-256-GCM; output is nonce (12 bytes) followed by ciphertext+tag."""

    name = "aes-256-gcm"
    aad = b"warden.backup.v1"

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ConfigError("Backup encryption key must be 32 bytes (AES-256).", key_length=len(key))
        self._aes = AESGCM(key)

    def encrypt(self, data: bytes) -> bytes:
        nonce = secrets.token_bytes(12)
        return nonce + self._aes.encrypt(nonce, data, self.aad)

    def decrypt(self, data: bytes) -> bytes:
        if len(data) < 13:
            raise ValueError("Ciphertext too short.")
        return self._aes.decrypt(data[:12], data[12:], self.aad)


def load_or_create_key(path: str) -> bytes:
    """Read a 32-byte key file, creating it (mode 0600 where supported) when missing."""
    if os.path.exists(path):
        with open(path, "rb") as f:
            key = f.read()
        if len(key) != 32:
            raise ConfigError("Backup encryption key must be 32 bytes (AES-256).", path=path)
        return key
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    key = secrets.token_bytes(32)
    with open(path, "wb") as f:
        f.write(key)
    if os.name != "nt":
        os.chmod(path, 0o600)
    return key


def is_noop(t: object) -> bool:
    return getattr(t, "name", None) in {IdentityCompressor.name, NullCipher.name}


def encode_payload(text: str, *, compressor: Optional[Compressor] = None, cipher: Optional[Cipher] = None) -> Tuple[str, List[str]]:
    """
    Compress then encrypt. Returns (payload, transforms).

    With no active transform the payload is the text itself; otherwise the
    transformed bytes are base64 encoded.
    """
    data = text.encode("utf-8")
    applied: List[str] = []
    if compressor is not None and not is_noop(compressor):
        data = compressor.compress(data)
        applied.append(compressor.name)
    if cipher is not None and not is_noop(cipher):
        data = cipher.encrypt(data)
        applied.append(cipher.name)
    if not applied:
        return text, applied
    return base64.b64encode(data).decode("ascii"), applied


def decode_payload(payload: str, transforms: List[str], *, compressor: Optional[Compressor] = None, cipher: Optional[Cipher] = None) -> str:
    """Reverse `encode_payload`. Any decode failure is an IntegrityError."""
    if not transforms:
        return payload
    by_name = {t.name: t for t in (compressor, cipher) if t is not None}
    try:
        data = base64.b64decode(payload.encode("ascii"), validate=True)
        for name in reversed(transforms):
            t = by_name.get(name)
            if t is None:
                raise IntegrityError("Backup uses a transform that is not configured.", transform=name)
            data = t.decrypt(data) if hasattr(t, "decrypt") else t.decompress(data)
        return data.decode("utf-8")
    except IntegrityError:
        raise
    except (InvalidTag, zlib.error, ValueError) as e:
        raise IntegrityError("Backup payload could not be decoded.", error=type(e).__name__) from e
