from __future__ import annotations

import os
from pathlib import Path
from dotenv import load_dotenv
from flask import Flask

from .core.settings import MAX_ENCODE_CALLS
from .web.routes import web


__version__ = "0.1.0"


def create_app() -> Flask:
    # Make local development reliable: load `.env` if present.
    # Flask CLI can also load this via python-dotenv, but that does not apply to
    # other entrypoints (e.g., gunicorn, tests).
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)

    app = Flask(
        __name__,
        template_folder="web/templates",
    )

    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev"),
        MAX_CONTENT_LENGTH=int(os.environ.get("MAX_CONTENT_LENGTH", str(1024 * 1024 * 10))),  # 10MB
        FITSIZE_ALLOW_UPSCALE=os.environ.get("FITSIZE_ALLOW_UPSCALE", "false"),
        FITSIZE_PRESERVE_ASPECT=os.environ.get("FITSIZE_PRESERVE_ASPECT", "true"),
        FITSIZE_MAX_ENCODE_CALLS=os.environ.get("FITSIZE_MAX_ENCODE_CALLS", str(MAX_ENCODE_CALLS)),
    )

    app.register_blueprint(web)

    return app
