from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .sizing import KB, estimate_size


log = logging.getLogger(__name__)

QUALITY_MIN = 0.0
QUALITY_MAX = 1.0
QUALITY_EPSILON = 0.01  # ~7 probes per search


class Encoder(Protocol):
    def encode(self, surface: Any, width: int, height: int, quality: float, codec: str) -> bytes: ...


@dataclass(frozen=True)
class Candidate:
    data: bytes
    size: int
    width: int
    height: int
    quality: float


@dataclass
class EncodeBudget:
    """Counts encoder calls for one session.

    `reserve` calls are held back for the forced-minimal fallback. The search
    widens it to cover every fallback attempt until a candidate fits, and the
    last reserved call is the final encode that must happen no matter what.
    """

    limit: int | None = None
    reserve: int = 1
    used: int = 0

    def available(self) -> bool:
        return self.limit is None or self.used < self.limit - self.reserve


def probe(
    encoder: Encoder,
    surface: Any,
    width: int,
    height: int,
    quality: float,
    codec: str,
    *,
    budget: EncodeBudget | None = None,
    unit: int = KB,
) -> Candidate:
    data = encoder.encode(surface, width, height, quality, codec)
    if budget is not None:
        budget.used += 1
    return Candidate(data=data, size=estimate_size(data, unit), width=width, height=height, quality=quality)


def search_quality(
    encoder: Encoder,
    surface: Any,
    width: int,
    height: int,
    codec: str,
    target_size: int,
    *,
    budget: EncodeBudget | None = None,
    unit: int = KB,
) -> Candidate | None:
    """Binary search the largest quality whose encode fits `target_size`.

    Assumes encoded size grows with quality. Returns the largest feasible
    candidate seen (ties keep the earlier, lower-quality one), or None when even
    the lowest quality reached is over the target at these dimensions.
    """

    low, high = QUALITY_MIN, QUALITY_MAX
    best: Candidate | None = None

    while high - low > QUALITY_EPSILON:
        if budget is not None and not budget.available():
            break
        mid = (low + high) / 2
        cand = probe(encoder, surface, width, height, mid, codec, budget=budget, unit=unit)
        if cand.size <= target_size:
            if best is None or cand.size > best.size:
                best = cand
            low = mid
        else:
            high = mid

    if best is None and (budget is None or budget.available()):
        cand = probe(encoder, surface, width, height, low, codec, budget=budget, unit=unit)
        if cand.size <= target_size:
            best = cand

    if best is None:
        log.debug("quality search %sx%s: infeasible (target=%s)", width, height, target_size)
    else:
        log.debug("quality search %sx%s: q=%.4f size=%s", width, height, best.quality, best.size)
    return best
