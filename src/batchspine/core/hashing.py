"""
Deterministic hashing utilities for job instance identity.

Manifesto:
    "The same logical run request" has to mean the same thing in every
    process and across restarts, so the identity of a job instance is a
    stable hash of its job name and canonically serialized parameters:
    - **Deterministic:** Same inputs always produce same hash
    - **Order-independent for mappings:** keys are sorted before hashing
    - **Type-aware:** ``"1"`` (STRING) and ``1`` (LONG) hash differently

Examples:
    >>> compute_hash("orderProcessJob", "run.id=LONG:1")
    '...'  # 32-char hex string
    >>> canonical_json({"b": 1, "a": 2})
    '{"a":2,"b":1}'

Tags:
    hashing, idempotency, job-instance
"""

import hashlib
import json
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Concatenates string representations of all values with '|' and
    computes SHA-256.  Order-dependent: ``(a, b) != (b, a)``.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def canonical_json(data: Any) -> str:
    """Serialize ``data`` with sorted keys and no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
