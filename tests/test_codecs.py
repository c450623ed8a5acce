import io

import pytest
from PIL import Image

from fitsize.core.codecs import PillowCodec, _save_options, get_codec
from fitsize.core.errors import DecodeError, EncoderUnavailableError
from fitsize.core.search import ErrorEvent, ResultEvent, iter_session, resize_to_target


def _png(mode, size, color):
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def test_get_codec_rejects_unknown_formats():
    assert get_codec("JPEG").mime == "image/jpeg"
    assert get_codec("png").quality_sensitive is False
    with pytest.raises(EncoderUnavailableError):
        get_codec("gif")


def test_decode_rejects_non_image_bytes():
    codec = PillowCodec()
    with pytest.raises(DecodeError):
        codec.decode(b"this is not an image")
    with pytest.raises(DecodeError):
        codec.decode(b"")


def test_surface_for_jpeg_drops_alpha():
    codec = PillowCodec()
    with codec.open_surface(_png("RGBA", (40, 30), (255, 0, 0, 128)), "jpeg") as surface:
        assert surface.mode == "RGB"
        assert surface.size == (40, 30)


def test_surface_for_png_keeps_alpha():
    codec = PillowCodec()
    with codec.open_surface(_png("RGBA", (8, 8), (0, 0, 255, 10)), "png") as surface:
        assert surface.mode == "RGBA"


def test_encode_resizes_and_writes_the_codec(noise_image):
    codec = PillowCodec()
    with codec.open_surface(noise_image(120, 80), "jpeg") as surface:
        data = codec.encode(surface, 60, 40, 0.5, "jpeg")

    out = Image.open(io.BytesIO(data))
    assert out.format == "JPEG"
    assert out.size == (60, 40)


def test_png_is_saved_optimized():
    assert _save_options(get_codec("png"), 0.3) == {"optimize": True}
    assert _save_options(get_codec("jpeg"), 0.0)["quality"] == 1


def test_jpeg_quality_changes_size_and_png_ignores_it(noise_image):
    codec = PillowCodec()
    raw = noise_image(160, 120)
    with codec.open_surface(raw, "jpeg") as surface:
        low = codec.encode(surface, 160, 120, 0.0, "jpeg")
        high = codec.encode(surface, 160, 120, 1.0, "jpeg")
    assert len(low) < len(high)

    with codec.open_surface(raw, "png") as surface:
        a = codec.encode(surface, 160, 120, 0.0, "png")
        b = codec.encode(surface, 160, 120, 1.0, "png")
    assert a == b


def test_resize_to_target_with_pillow(noise_image):
    raw = noise_image(600, 400)
    seen = []

    result = resize_to_target(raw, 40, "jpeg", on_progress=seen.append)

    assert result.size <= 40
    assert result.best_effort is False
    assert 0 < result.width <= 600 and 0 < result.height <= 400
    assert seen[-1] == 100

    out = Image.open(io.BytesIO(result.data))
    assert out.format == "JPEG"
    assert out.size == (result.width, result.height)


def test_png_session_fits_small_target():
    raw = _png("RGB", (300, 200), (10, 200, 30))
    result = resize_to_target(raw, 5, "png")
    assert result.size <= 5
    assert Image.open(io.BytesIO(result.data)).format == "PNG"


def test_session_reports_decode_error_for_text():
    events = list(iter_session(b"hello world", 10, "jpeg"))
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert events[0].error_type == "decode_error"


def test_session_reports_unknown_codec():
    events = list(iter_session(_png("RGB", (4, 4), (0, 0, 0)), 10, "gif"))
    assert [e.error_type for e in events] == ["encoder_unavailable"]


def test_session_result_event_is_terminal(noise_image):
    events = list(iter_session(noise_image(200, 150), 30, "webp"))
    assert isinstance(events[-1], ResultEvent)
    assert sum(isinstance(e, ResultEvent) for e in events) == 1
