"""Fit-to-size search.

- `sizing`: size estimator and dimension rounding.
- `quality_search`: binary search over encoder quality at fixed dimensions.
- `search`: the refinement loop, forced-minimal fallback and nudge pass, plus
  the session boundary (`iter_session`, `resize_to_target`).
- `codecs`: the Pillow-backed decoder/encoder capability.
"""

from .codecs import CODECS, DEFAULT_CODEC, CodecInfo, PillowCodec, get_codec  # noqa: F401
from .errors import DecodeError, EncoderUnavailableError, ImageResizeError, SearchCancelled  # noqa: F401
from .quality_search import Candidate, EncodeBudget, search_quality  # noqa: F401
from .search import (  # noqa: F401
    ErrorEvent,
    ProgressEvent,
    ResultEvent,
    SearchRequest,
    SearchResult,
    iter_session,
    resize_to_target,
    search,
)
from .settings import SearchSettings  # noqa: F401
from .sizing import estimate_size, round_half_up, scale_dimensions  # noqa: F401
