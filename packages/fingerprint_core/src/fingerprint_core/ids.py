from __future__ import annotations

import hashlib
import uuid


def stable_id(*parts: str, prefix: str) -> str:
    """
    Deterministic ID helper for comparisons and generated suites.
    Use: stable_id(hash_a, hash_b, prefix="cmp")
    """
    joined = "\n".join(parts)
    digest = hashlib.sha256(joined.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}_{digest}"


def session_id(prefix: str = "debug") -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"
