from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def sha256_text(s: str) -> str:
    return sha256_bytes(s.encode("utf-8"))


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def checksum_matches(payload: str, checksum: str) -> bool:
    return hmac.compare_digest(sha256_text(payload), str(checksum or "").lower())
