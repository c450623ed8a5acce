from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Protocol, Union

from .codecs import DEFAULT_CODEC, PillowCodec
from .errors import ImageResizeError, SearchCancelled
from .quality_search import QUALITY_MIN, Candidate, EncodeBudget, Encoder, probe, search_quality
from .settings import SearchSettings
from .sizing import round_half_up, scale_dimensions


log = logging.getLogger(__name__)

MAX_ROUNDS = 12
CONVERGED_GAP = 2
MEDIUM_GAP = 5
WIDE_GAP = 20
GROW_SMALL = 1.02
GROW_MEDIUM = 1.05
GROW_WIDE = 1.10
SHRINK = 0.90

FALLBACK_ATTEMPTS = 10
FALLBACK_SHRINK = 0.80

NUDGE_ATTEMPTS = 5
NUDGE_MIN_GAP = 5
NUDGE_FACTOR = 1.02


class CodecBackend(Encoder, Protocol):
    def open_surface(self, data: bytes, codec: str) -> Any: ...


@dataclass(frozen=True)
class SearchRequest:
    surface: Any
    target_size: int
    width: int
    height: int
    codec: str = DEFAULT_CODEC

    def __post_init__(self) -> None:
        problem = request_problem(self.target_size, self.width, self.height)
        if problem:
            raise ValueError(problem)


@dataclass(frozen=True)
class SearchResult:
    data: bytes
    size: int
    width: int
    height: int
    quality: float
    codec: str
    target_size: int
    best_effort: bool = False
    fallback_used: bool = False
    rounds: int = 0
    encode_calls: int = 0


@dataclass(frozen=True)
class ProgressEvent:
    percent: int


@dataclass(frozen=True)
class ResultEvent:
    result: SearchResult
    percent: int = 100


@dataclass(frozen=True)
class ErrorEvent:
    error_type: str
    human_message: str
    details: str | None = None


Event = Union[ProgressEvent, ResultEvent, ErrorEvent]


def request_problem(target_size: Any, width: Any, height: Any) -> str | None:
    if not isinstance(target_size, int) or isinstance(target_size, bool) or target_size <= 0:
        return "target_size must be a positive integer"
    for name, value in (("width", width), ("height", height)):
        if value is None:
            continue
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            return f"{name} must be a positive integer"
    return None


@dataclass
class _SearchState:
    width: int
    height: int
    rounds: int = 0
    best: Optional[Candidate] = None

    def offer(self, cand: Candidate) -> bool:
        # Strictly larger only: the recorded best never regresses.
        if self.best is None or cand.size > self.best.size:
            self.best = cand
            return True
        return False


class _Search:
    def __init__(
        self,
        request: SearchRequest,
        encoder: Encoder,
        settings: SearchSettings,
        cancel: threading.Event | None,
    ) -> None:
        self.request = request
        self.encoder = encoder
        self.settings = settings
        self.cancel = cancel
        # Until something fits, hold back enough encodes for every fallback attempt.
        self.budget = EncodeBudget(limit=settings.max_encode_calls, reserve=_fallback_reserve(settings.max_encode_calls))
        self.state = _SearchState(width=request.width, height=request.height)
        self.aspect = request.height / float(request.width) if settings.preserve_aspect else None
        self.max_size = None if settings.allow_upscale else _growth_cap(request)

    def _check_cancel(self) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise SearchCancelled("cancelled")

    def _scale(self, factor: float) -> bool:
        """Rescale the working dimensions; False when they did not change."""

        s = self.state
        new_w, new_h = scale_dimensions(s.width, s.height, factor, aspect=self.aspect, max_size=self.max_size)
        changed = (new_w, new_h) != (s.width, s.height)
        s.width, s.height = new_w, new_h
        return changed

    def _quality_search(self) -> Candidate | None:
        r = self.request
        return search_quality(
            self.encoder,
            r.surface,
            self.state.width,
            self.state.height,
            r.codec,
            r.target_size,
            budget=self.budget,
            unit=self.settings.size_unit,
        )

    def _refine(self) -> Iterator[ProgressEvent]:
        """Outer loop: grow while there is headroom, shrink while nothing fits."""

        s = self.state
        target = self.request.target_size
        for i in range(MAX_ROUNDS):
            self._check_cancel()
            if not self.budget.available():
                log.debug("encode budget exhausted after %s rounds", s.rounds)
                break

            cand = self._quality_search()
            s.rounds = i + 1
            stop = False
            if cand is not None:
                s.offer(cand)
                self.budget.reserve = 1
                gap = target - cand.size
                if gap <= CONVERGED_GAP:
                    stop = True
                else:
                    if gap >= WIDE_GAP:
                        factor = GROW_WIDE
                    elif gap >= MEDIUM_GAP:
                        factor = GROW_MEDIUM
                    else:
                        factor = GROW_SMALL
                    if not self._scale(factor):
                        log.debug("growth capped at %sx%s", s.width, s.height)
                        stop = True
            elif not self._scale(SHRINK):
                stop = True

            log.debug("round %s: size=%s next=%sx%s", s.rounds, None if cand is None else cand.size, s.width, s.height)

            # 100% is reserved for the terminal event.
            if i + 1 < MAX_ROUNDS:
                yield ProgressEvent(percent=round_half_up(100 * (i + 1) / MAX_ROUNDS))
            if stop:
                break

    def _forced_minimal(self) -> tuple[Candidate, bool]:
        """Shrink at minimum quality until something fits.

        Returns (candidate, feasible). When every attempt is over target, the
        last encode is returned anyway and the caller flags it best-effort.
        """

        s = self.state
        r = self.request
        for attempt in range(FALLBACK_ATTEMPTS):
            self._check_cancel()
            if not self.budget.available():
                break
            cand = probe(
                self.encoder, r.surface, s.width, s.height, QUALITY_MIN, r.codec,
                budget=self.budget, unit=self.settings.size_unit,
            )
            if cand.size <= r.target_size:
                log.debug("forced-minimal attempt %s fits: %sx%s size=%s", attempt + 1, s.width, s.height, cand.size)
                return cand, True
            if not self._scale(FALLBACK_SHRINK):
                break

        cand = probe(
            self.encoder, r.surface, s.width, s.height, QUALITY_MIN, r.codec,
            budget=self.budget, unit=self.settings.size_unit,
        )
        log.warning("cannot reach target %s; returning %sx%s at size %s", r.target_size, s.width, s.height, cand.size)
        return cand, cand.size <= r.target_size

    def _nudge(self) -> None:
        s = self.state
        target = self.request.target_size
        nudges = 0
        while s.best is not None and target - s.best.size >= NUDGE_MIN_GAP and nudges < NUDGE_ATTEMPTS:
            self._check_cancel()
            if not self.budget.available():
                break
            if not self._scale(NUDGE_FACTOR):
                break
            cand = self._quality_search()
            if cand is None:
                self._scale(1 / NUDGE_FACTOR)
                break
            if s.offer(cand):
                log.debug("nudge %s: adopted %sx%s size=%s", nudges + 1, cand.width, cand.height, cand.size)
            nudges += 1

    def run(self) -> Iterator[Event]:
        yield from self._refine()

        s = self.state
        self.budget.reserve = 1
        fallback_used = s.best is None
        final = s.best
        if final is None:
            final, feasible = self._forced_minimal()
            if feasible:
                s.best = final

        if s.best is not None:
            self._nudge()
            final = s.best
        best_effort = s.best is None

        r = self.request
        yield ResultEvent(
            SearchResult(
                data=final.data,
                size=final.size,
                width=final.width,
                height=final.height,
                quality=final.quality,
                codec=r.codec,
                target_size=r.target_size,
                best_effort=best_effort,
                fallback_used=fallback_used,
                rounds=s.rounds,
                encode_calls=self.budget.used,
            )
        )


def _fallback_reserve(limit: int | None) -> int:
    if limit is None:
        return 1
    return max(1, min(FALLBACK_ATTEMPTS + 1, limit // 2))


def _start_dimensions(
    native: tuple[int, int], width: int | None, height: int | None, preserve_aspect: bool
) -> tuple[int, int]:
    """Fill in whichever side the caller left out.

    With the aspect ratio preserved a single given side sets the other from
    the source ratio; otherwise the missing side keeps its native value.
    """

    native_w, native_h = native
    if width and height:
        return width, height
    if width:
        if preserve_aspect:
            return width, max(1, round_half_up(width * native_h / native_w))
        return width, native_h
    if height:
        if preserve_aspect:
            return max(1, round_half_up(height * native_w / native_h)), height
        return native_w, height
    return native_w, native_h


def _growth_cap(request: SearchRequest) -> tuple[int, int]:
    native_w, native_h = getattr(request.surface, "size", (request.width, request.height))
    return max(int(native_w), request.width), max(int(native_h), request.height)


def search(
    request: SearchRequest,
    encoder: Encoder,
    settings: SearchSettings | None = None,
    cancel: threading.Event | None = None,
) -> Iterator[Event]:
    """Run one search over an already decoded surface.

    Yields ProgressEvent after each refinement round, then exactly one
    ResultEvent. Errors from the encoder propagate; closing the generator
    stops the search at the next round boundary.
    """

    yield from _Search(request, encoder, settings or SearchSettings(), cancel).run()


def _session_events(
    data: bytes,
    target_size: int,
    codec: str,
    width: int | None,
    height: int | None,
    backend: CodecBackend | None,
    settings: SearchSettings | None,
    cancel: threading.Event | None,
) -> Iterator[Event]:
    backend = backend or PillowCodec()
    settings = settings or SearchSettings()
    with backend.open_surface(data, codec) as surface:
        native_w, native_h = surface.size
        start_w, start_h = _start_dimensions((native_w, native_h), width, height, settings.preserve_aspect)
        request = SearchRequest(
            surface=surface,
            target_size=target_size,
            width=start_w,
            height=start_h,
            codec=codec,
        )
        log.debug("session start: %sx%s -> %s (target=%s)", native_w, native_h, codec, target_size)
        yield from search(request, backend, settings, cancel)


def iter_session(
    data: bytes,
    target_size: int,
    codec: str = DEFAULT_CODEC,
    width: int | None = None,
    height: int | None = None,
    *,
    codec_backend: CodecBackend | None = None,
    settings: SearchSettings | None = None,
    cancel: threading.Event | None = None,
) -> Iterator[Event]:
    """Decode `data` and search, reporting everything as events.

    Never raises: the stream ends with exactly one ResultEvent or ErrorEvent.
    """

    problem = request_problem(target_size, width, height)
    if problem:
        yield ErrorEvent(error_type="invalid_request", human_message=problem)
        return

    try:
        yield from _session_events(data, target_size, codec, width, height, codec_backend, settings, cancel)
    except ImageResizeError as e:
        log.info("resize session ended: %s (%s)", e.error_type, e)
        yield ErrorEvent(error_type=e.error_type, human_message=e.human_message, details=str(e) or None)
    except Exception:
        log.exception("resize session failed due to an internal error")
        yield ErrorEvent(error_type=ImageResizeError.error_type, human_message=ImageResizeError.human_message)


def resize_to_target(
    data: bytes,
    target_size: int,
    codec: str = DEFAULT_CODEC,
    width: int | None = None,
    height: int | None = None,
    *,
    codec_backend: CodecBackend | None = None,
    settings: SearchSettings | None = None,
    cancel: threading.Event | None = None,
    on_progress: Callable[[int], None] | None = None,
) -> SearchResult:
    """Blocking variant of iter_session.

    Raises DecodeError, EncoderUnavailableError or SearchCancelled; anything
    unexpected is wrapped in ImageResizeError("failed_to_resize").
    """

    problem = request_problem(target_size, width, height)
    if problem:
        raise ValueError(problem)

    result: SearchResult | None = None
    try:
        for event in _session_events(data, target_size, codec, width, height, codec_backend, settings, cancel):
            if isinstance(event, ResultEvent):
                result = event.result
            elif on_progress is not None:
                on_progress(event.percent)
    except ImageResizeError:
        raise
    except Exception as e:
        raise ImageResizeError("failed_to_resize") from e

    if result is None:
        raise ImageResizeError("failed_to_resize")
    if on_progress is not None:
        on_progress(100)
    return result
