from __future__ import annotations


class ImageResizeError(RuntimeError):
    error_type = "internal_error"
    human_message = "Resizing failed due to an internal error."


class DecodeError(ImageResizeError):
    error_type = "decode_error"
    human_message = "The uploaded file could not be read as an image."


class EncoderUnavailableError(ImageResizeError):
    error_type = "encoder_unavailable"
    human_message = "The requested output format is not available on this server."


class SearchCancelled(ImageResizeError):
    error_type = "cancelled"
    human_message = "Resizing was cancelled."
