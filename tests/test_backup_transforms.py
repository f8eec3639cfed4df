from __future__ import annotations

import base64
import os
import secrets

import pytest

from warden.core.backup.hasher import canonical_json, checksum_matches, sha256_text
from warden.core.backup.transforms import (
    AesGcmCipher,
    IdentityCompressor,
    NullCipher,
    ZlibCompressor,
    decode_payload,
    encode_payload,
    load_or_create_key,
)
from warden.core.errors import ConfigError, IntegrityError


def test_canonical_json_is_key_order_independent():
    assert canonical_json({"b": 1, "a": [1, {"d": 2, "c": 3}]}) == canonical_json({"a": [1, {"c": 3, "d": 2}], "b": 1})
    assert canonical_json({"a": 1}) == '{"a":1}'


def test_checksum_is_sha256_hex():
    assert sha256_text("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert checksum_matches("abc", sha256_text("abc").upper())
    assert not checksum_matches("abd", sha256_text("abc"))


def test_noop_transforms_leave_text_alone():
    payload, applied = encode_payload('{"a":1}', compressor=IdentityCompressor(), cipher=NullCipher())
    assert (payload, applied) == ('{"a":1}', [])
    assert decode_payload(payload, applied) == '{"a":1}'


def test_compress_then_encrypt_order():
    key = secrets.token_bytes(32)
    text = canonical_json({"users": [{"id": i} for i in range(50)]})
    payload, applied = encode_payload(text, compressor=ZlibCompressor(), cipher=AesGcmCipher(key))
    assert applied == ["zlib", "aes-256-gcm"]
    base64.b64decode(payload, validate=True)
    assert decode_payload(payload, applied, compressor=ZlibCompressor(), cipher=AesGcmCipher(key)) == text


def test_missing_transform_is_integrity_error():
    payload, applied = encode_payload("x" * 100, compressor=ZlibCompressor())
    with pytest.raises(IntegrityError):
        decode_payload(payload, applied)


def test_bad_base64_is_integrity_error():
    with pytest.raises(IntegrityError):
        decode_payload("***", ["zlib"], compressor=ZlibCompressor())


def test_cipher_key_length_enforced():
    with pytest.raises(ConfigError):
        AesGcmCipher(b"short")


def test_key_file_created_once(tmp_path):
    path = str(tmp_path / "keys" / "backup.key")
    key = load_or_create_key(path)
    assert len(key) == 32
    assert load_or_create_key(path) == key
    if os.name != "nt":
        assert os.stat(path).st_mode & 0o777 == 0o600

    bad = tmp_path / "bad.key"
    bad.write_bytes(b"123")
    with pytest.raises(ConfigError):
        load_or_create_key(str(bad))
