"""Command line host.

Usage:
  python -m fitsize photo.png -t 100                 # writes photo-resized.jpg
  python -m fitsize photo.png -t 250 -f webp -o out.webp
  python -m fitsize scan.tif -t 50 --width 1200 --height 900 -v

Exit codes: 0 success, 1 error, 2 result is over the target (best effort).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from tqdm import tqdm

from fitsize.core.codecs import CODECS, DEFAULT_CODEC, get_codec
from fitsize.core.errors import ImageResizeError
from fitsize.core.search import resize_to_target
from fitsize.core.settings import MAX_ENCODE_CALLS, SearchSettings
from fitsize.core.sizing import estimate_size


EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BEST_EFFORT = 2


def setup_logging(verbose: bool = False, quiet: bool = False) -> logging.Logger:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(level=level, format="%(levelname)s: %(message)s", stream=sys.stdout)
    return logging.getLogger("fitsize")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fitsize", description="Re-encode an image so it fits a target size in KB.")
    p.add_argument("input", help="Path to the source image")
    p.add_argument("-t", "--target", type=int, required=True, help="Target size in KB")
    p.add_argument("-f", "--format", default=DEFAULT_CODEC, choices=sorted(CODECS), help="Output format")
    p.add_argument("-o", "--output", help="Output file (default: <input>-resized.<ext>)")
    p.add_argument("--width", type=int, help="Starting width (default: source width)")
    p.add_argument("--height", type=int, help="Starting height (default: source height)")
    p.add_argument("--allow-upscale", action="store_true", help="Let the search grow past the source dimensions")
    p.add_argument("--no-preserve-aspect", action="store_true", help="Round width and height independently")
    p.add_argument("--max-encodes", type=int, default=MAX_ENCODE_CALLS, help="Encoder call budget per image")
    p.add_argument("--no-progress", action="store_true", help="Disable the progress bar")
    p.add_argument("-v", "--verbose", action="store_true")
    p.add_argument("-q", "--quiet", action="store_true")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log = setup_logging(verbose=args.verbose, quiet=args.quiet)

    src = Path(args.input)
    try:
        data = src.read_bytes()
    except OSError as e:
        log.error("Cannot read %s: %s", src, e)
        return EXIT_ERROR

    info = get_codec(args.format)
    out = Path(args.output) if args.output else src.with_name(f"{src.stem}-resized{info.ext}")

    try:
        settings = SearchSettings(
            allow_upscale=args.allow_upscale,
            preserve_aspect=not args.no_preserve_aspect,
            max_encode_calls=args.max_encodes,
        )
    except ValueError as e:
        log.error("%s", e)
        return EXIT_ERROR

    use_progress_bar = not args.no_progress and not args.quiet and not args.verbose
    bar = tqdm(total=100, desc="Resizing", unit="%") if use_progress_bar else None

    def on_progress(percent: int) -> None:
        if bar is not None:
            bar.update(percent - bar.n)

    try:
        result = resize_to_target(
            data,
            args.target,
            args.format,
            args.width,
            args.height,
            settings=settings,
            on_progress=on_progress,
        )
    except (ImageResizeError, ValueError) as e:
        log.error("%s", getattr(e, "human_message", None) or e)
        return EXIT_ERROR
    finally:
        if bar is not None:
            bar.close()

    out.write_bytes(result.data)
    log.info(
        "%s: %s KB -> %s KB (%sx%s, quality %.2f) -> %s",
        src.name,
        estimate_size(len(data)),
        result.size,
        result.width,
        result.height,
        result.quality,
        out,
    )
    if result.best_effort:
        log.warning("Could not reach %s KB; wrote the smallest result found (%s KB)", args.target, result.size)
        return EXIT_BEST_EFFORT
    return EXIT_OK
