from __future__ import annotations

import base64
import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from flask import Blueprint, Response, current_app, jsonify, render_template, request, stream_with_context
from werkzeug.utils import secure_filename

from fitsize.core.codecs import CODECS, DEFAULT_CODEC, get_codec
from fitsize.core.errors import ImageResizeError
from fitsize.core.search import ErrorEvent, ProgressEvent, ResultEvent, SearchResult, iter_session, resize_to_target
from fitsize.core.settings import SearchSettings, parse_bool
from fitsize.core.sizing import estimate_size


web = Blueprint("web", __name__)


_ERROR_STATUS = {
    "invalid_request": 400,
    "decode_error": 422,
    "cancelled": 409,
    "encoder_unavailable": 503,
    "internal_error": 500,
}


@dataclass(frozen=True)
class ResizeForm:
    data: bytes
    original_name: str
    target_kb: int
    codec: str
    width: int | None
    height: int | None
    settings: SearchSettings


class FormError(ValueError):
    pass


def _error(error_type: str, human_message: str) -> tuple[Response, int]:
    body = {"ok": False, "error": {"error_type": error_type, "human_message": human_message}}
    return jsonify(body), _ERROR_STATUS.get(error_type, 500)


def _optional_int(name: str, raw: str | None) -> int | None:
    if not (raw or "").strip():
        return None
    return _positive_int(name, raw)


def _positive_int(name: str, raw: str | None) -> int:
    raw = (raw or "").strip()
    if not raw:
        raise FormError(f"{name} is required")
    try:
        value = int(raw)
    except ValueError:
        raise FormError(f"{name} must be a positive integer") from None
    if value <= 0:
        raise FormError(f"{name} must be a positive integer")
    return value


def _parse_resize_form() -> ResizeForm:
    f = request.files.get("file")
    if f is None:
        raise FormError("missing file")

    codec = (request.form.get("format") or DEFAULT_CODEC).strip().lower()
    if codec not in CODECS:
        raise FormError(f"format must be one of: {', '.join(sorted(CODECS))}")

    target_kb = _positive_int("target_kb", request.form.get("target_kb"))
    width = _optional_int("width", request.form.get("width"))
    height = _optional_int("height", request.form.get("height"))

    settings = SearchSettings.from_mapping(current_app.config)
    if "maintain_aspect" in request.form:
        try:
            keep = parse_bool(request.form.get("maintain_aspect"), settings.preserve_aspect)
        except ValueError:
            raise FormError("maintain_aspect must be a boolean") from None
        settings = dataclasses.replace(settings, preserve_aspect=keep)

    return ResizeForm(
        data=f.read(),
        original_name=f.filename or "image",
        target_kb=target_kb,
        codec=codec,
        width=width,
        height=height,
        settings=settings,
    )


def _download_name(original_name: str, ext: str) -> str:
    stem = Path(secure_filename(original_name) or "image").stem or "image"
    return f"{stem}-resized{ext}"


def _result_payload(result: SearchResult, form: ResizeForm) -> dict[str, Any]:
    info = get_codec(result.codec)
    encoded = base64.b64encode(result.data).decode("ascii")
    return {
        "ok": True,
        "size_kb": int(result.size),
        "target_kb": int(result.target_size),
        "original_size_kb": estimate_size(len(form.data), form.settings.size_unit),
        "width": int(result.width),
        "height": int(result.height),
        "quality": round(float(result.quality), 4),
        "format": info.name,
        "mime": info.mime,
        "best_effort": bool(result.best_effort),
        "fallback_used": bool(result.fallback_used),
        "rounds": int(result.rounds),
        "encode_calls": int(result.encode_calls),
        "data_url": f"data:{info.mime};base64,{encoded}",
        "download_name": _download_name(form.original_name, info.ext),
    }


@web.get("/")
def index() -> str:
    return render_template("index.html", codecs=sorted(CODECS), default_codec=DEFAULT_CODEC)


@web.post("/api/resize")
def api_resize():
    try:
        form = _parse_resize_form()
    except FormError as e:
        return _error("invalid_request", str(e))

    try:
        result = resize_to_target(
            form.data,
            form.target_kb,
            form.codec,
            form.width,
            form.height,
            settings=form.settings,
        )
    except ImageResizeError as e:
        if e.error_type == "internal_error":
            current_app.logger.exception("Resize failed due to an internal error")
        else:
            current_app.logger.warning("Resize failed: %s (%s)", e.error_type, e)
        return _error(e.error_type, e.human_message)

    if result.best_effort:
        current_app.logger.warning(
            "Resize could not reach %s KB; returning %s KB best effort", result.target_size, result.size
        )
    return jsonify(_result_payload(result, form))


@web.post("/api/resize/stream")
def api_resize_stream():
    """Same inputs as /api/resize, answered as newline-delimited JSON events.

    Progress lines look like {"progress": 42}; the last line is either the
    result payload (with "progress": 100) or {"ok": false, "error": {...}}.
    """

    try:
        form = _parse_resize_form()
    except FormError as e:
        return _error("invalid_request", str(e))

    def generate() -> Iterator[str]:
        for event in iter_session(
            form.data,
            form.target_kb,
            form.codec,
            form.width,
            form.height,
            settings=form.settings,
        ):
            if isinstance(event, ProgressEvent):
                line: dict[str, Any] = {"progress": int(event.percent)}
            elif isinstance(event, ResultEvent):
                line = _result_payload(event.result, form)
                line["progress"] = int(event.percent)
            elif isinstance(event, ErrorEvent):
                line = {"ok": False, "error": {"error_type": event.error_type, "human_message": event.human_message}}
            yield json.dumps(line) + "\n"

    return Response(stream_with_context(generate()), mimetype="application/x-ndjson")
