"""
StudyAid Backend — Parameter Normalizer
=========================================

What:  Turns caller-supplied generation parameters into NormalizedParams.
Why:   Providers reject out-of-range values with opaque errors. Clamping here
       means a request is never rejected for its parameters.
How:   Missing or non-finite values take defaults; everything else is clamped
       into [min, max]. Pure and total: normalize(normalize(p)) == normalize(p).
"""

import math
from typing import Optional, Union

from studyaid.pipeline.types import GenerationParameters, NormalizedParams

TEMPERATURE_RANGE = (0.0, 2.0)
TOP_P_RANGE = (0.0, 1.0)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _finite(value) -> Optional[float]:
    """None for missing, NaN or infinite values; the float otherwise."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


class ParameterNormalizer:
    """
    Clamps generation parameters into provider-safe bounds.

    Defaults mirror the token limits every configured provider accepts:
    10..8000 tokens (2000 default), temperature 0.7, top_p 0.8.
    """

    def __init__(
        self,
        min_tokens: int = 10,
        max_tokens: int = 8000,
        default_max_tokens: int = 2000,
        default_temperature: float = 0.7,
        default_top_p: float = 0.8,
    ):
        if min_tokens > max_tokens:
            raise ValueError(f"min_tokens ({min_tokens}) exceeds max_tokens ({max_tokens})")
        self.min_tokens = min_tokens
        self.max_tokens = max_tokens
        # Defaults are clamped too so a misconfigured default can't leak out
        self.default_max_tokens = int(_clamp(default_max_tokens, min_tokens, max_tokens))
        self.default_temperature = _clamp(default_temperature, *TEMPERATURE_RANGE)
        self.default_top_p = _clamp(default_top_p, *TOP_P_RANGE)

    def normalize(
        self, params: Union[GenerationParameters, NormalizedParams, dict, None]
    ) -> NormalizedParams:
        if params is None:
            params = {}
        elif not isinstance(params, dict):
            params = params.model_dump()

        max_tokens = _finite(params.get("max_tokens"))
        temperature = _finite(params.get("temperature"))
        top_p = _finite(params.get("top_p"))

        if max_tokens is None:
            tokens = self.default_max_tokens
        else:
            tokens = int(_clamp(math.floor(max_tokens), self.min_tokens, self.max_tokens))

        return NormalizedParams(
            max_tokens=tokens,
            temperature=(
                self.default_temperature
                if temperature is None
                else _clamp(temperature, *TEMPERATURE_RANGE)
            ),
            top_p=self.default_top_p if top_p is None else _clamp(top_p, *TOP_P_RANGE),
        )
