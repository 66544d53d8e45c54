import hashlib
import hmac
import json
from typing import Any

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"


def canonical_json(payload: Any) -> str:
    """Compact JSON, the exact bytes that get signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def sign(secret: str, body: str | bytes) -> str:
    """Hex HMAC-SHA256 of ``body`` keyed with ``secret``."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify(secret: str, body: str | bytes, signature: str) -> bool:
    # Headers arrive latin-1 decoded; compare_digest only accepts ASCII str
    expected = sign(secret, body).encode("ascii")
    provided = signature.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected, provided)
