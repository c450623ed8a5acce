from __future__ import annotations

import math


KB = 1024


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def estimate_size(data: bytes | bytearray | memoryview | int, unit: int = KB) -> int:
    """Size of an encoded buffer in `unit`-sized blocks (kilobytes by default).

    Rounded half-up, so a 1535-byte buffer is 1 KB and a 1536-byte one is 2 KB.
    An int is taken as an already measured length.
    """

    length = data if isinstance(data, int) else len(data)
    return round_half_up(length / float(unit))


def scale_dimensions(
    width: int,
    height: int,
    factor: float,
    *,
    aspect: float | None = None,
    max_size: tuple[int, int] | None = None,
) -> tuple[int, int]:
    """Scale (width, height) by `factor`, rounding half-up, never below 1px.

    With `aspect` (height / width) the height is derived from the new width so
    repeated scaling does not drift. `max_size` caps each axis.
    """

    new_w = max(1, round_half_up(width * factor))
    if max_size is not None:
        new_w = min(new_w, max_size[0])

    if aspect is None:
        new_h = round_half_up(height * factor)
    else:
        new_h = round_half_up(new_w * aspect)
    new_h = max(1, new_h)
    if max_size is not None:
        new_h = min(new_h, max_size[1])

    return new_w, new_h
