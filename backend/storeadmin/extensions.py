# Overview: Flask extension instances for database and migrations, plus the per-app security runtime.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()

RUNTIME_KEY = "storeadmin"


@dataclass
class SecurityRuntime:
    """Component objects built once per app from SecuritySettings."""
    settings: Any
    tokens: Any
    cipher: Any
    limiter: Any
    audit: Any


def get_runtime(app=None) -> SecurityRuntime:
    app = app or current_app
    return app.extensions[RUNTIME_KEY]
