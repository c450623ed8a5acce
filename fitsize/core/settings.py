from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .sizing import KB


MAX_ENCODE_CALLS = 99  # 12 rounds x 7 probes + 10 fallback attempts + 5 nudges

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def parse_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    s = str(value).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise ValueError(f"Invalid boolean: {value!r}")


@dataclass(frozen=True)
class SearchSettings:
    allow_upscale: bool = False
    preserve_aspect: bool = True
    max_encode_calls: int | None = MAX_ENCODE_CALLS
    size_unit: int = KB

    def __post_init__(self) -> None:
        if self.max_encode_calls is not None and self.max_encode_calls < 1:
            raise ValueError("max_encode_calls must be positive")
        if self.size_unit < 1:
            raise ValueError("size_unit must be positive")

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "SearchSettings":
        """Build settings from a Flask config (or any mapping of FITSIZE_* keys)."""

        max_calls = config.get("FITSIZE_MAX_ENCODE_CALLS", MAX_ENCODE_CALLS)
        if max_calls is not None and str(max_calls).strip().lower() in ("", "none", "0"):
            max_calls = None
        return cls(
            allow_upscale=parse_bool(config.get("FITSIZE_ALLOW_UPSCALE"), False),
            preserve_aspect=parse_bool(config.get("FITSIZE_PRESERVE_ASPECT"), True),
            max_encode_calls=None if max_calls is None else int(max_calls),
            size_unit=int(config.get("FITSIZE_SIZE_UNIT", KB)),
        )
