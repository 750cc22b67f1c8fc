"""
Content addressing for synthesis requests.

A fingerprint identifies one (text, voice, model, format, speed) request.
It is the only deduplication key used by the server and the key under which
clients cache downloaded chunks. Identity only, never a security token.
"""
import hashlib
import json


FINGERPRINT_LENGTH = 64


def fingerprint(text: str, voice: str, model: str, format: str, speed: float = 1.0) -> str:
    """
    Return the SHA-256 hex digest of a synthesis request.

    The fields are JSON-encoded as an ordered array so separators inside the
    text cannot shift field boundaries. Speed is coerced to float so that
    ``1`` and ``1.0`` address the same request.
    """
    payload = json.dumps(
        [text, voice, model, format, float(speed)],
        ensure_ascii=False,
        separators=(',', ':'),
    )
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def is_fingerprint(value: str) -> bool:
    """Check that a value looks like a fingerprint (64 lowercase hex chars)."""
    if len(value) != FINGERPRINT_LENGTH:
        return False
    return all(c in '0123456789abcdef' for c in value)
