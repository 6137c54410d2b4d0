from __future__ import annotations

import os
from typing import Any, Mapping

from flask import Flask
from flask_cors import CORS

from .config import get_config
from .db import init_db
from .observability import init_observability
from .api.pastes import api_bp


def create_app(
    env_name: str | None = None,
    config_overrides: Mapping[str, Any] | None = None,
) -> Flask:
    """
    Application factory for the Flask backend.

    The configuration is selected based on the provided ``env_name`` or,
    if not given, the ``APP_ENV`` environment variable (falling back to
    ``development``). ``config_overrides`` is applied last.
    """
    if env_name is None:
        env_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__)
    app_config = get_config(env_name)
    app.config.from_object(app_config)
    if config_overrides:
        app.config.update(config_overrides)

    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",") if o.strip()]
    CORS(app, origins=origins or "*")

    # Initialize infrastructure layers
    init_observability(app)
    init_db(app)

    # Register API blueprints
    app.register_blueprint(api_bp)

    return app
