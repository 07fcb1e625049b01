from __future__ import annotations

import json
from typing import Any, Protocol


class TokenEstimator(Protocol):
    def estimate(self, text: str) -> int: ...


class CharTokenEstimator:
    """Rough estimate: one token per ``chars_per_token`` characters."""

    def __init__(self, chars_per_token: int = 4):
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return (len(text) + self.chars_per_token - 1) // self.chars_per_token


def estimate_value(estimator: TokenEstimator, value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, str):
        return estimator.estimate(value)
    return estimator.estimate(json.dumps(value, ensure_ascii=False, default=str))
