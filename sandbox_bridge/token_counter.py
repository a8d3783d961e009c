"""Token counting utilities."""

from __future__ import annotations

import json
from typing import Any


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token."""
    return max(1, len(text) // 4)


def estimate_payload_tokens(payload: Any) -> int:
    """Estimate the tokens a payload costs once serialized for the caller."""
    return estimate_tokens(json.dumps(payload, default=str))
