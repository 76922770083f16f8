"""Logging setup and structured event helpers."""

from __future__ import annotations

import json
import logging
import os

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def safe_json_dumps(payload, **kwargs) -> str:
    """Serialize ``payload`` to JSON, stringifying values json can't handle."""
    return json.dumps(payload, default=str, **kwargs)


def log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logging.log(level, safe_json_dumps(payload, sort_keys=True))
    except Exception as exc:
        logging.log(level, f"log_event_serialization_failed: {exc} message={message}")


def configure_logging(log_dir=None, level=logging.INFO):
    """Install a console handler and, when ``log_dir`` is set, a file handler."""
    root = logging.getLogger("")
    root.setLevel(level)
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    console.setLevel(level)
    root.addHandler(console)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(log_dir, "clipper.log"))
        file_handler.setFormatter(logging.Formatter(_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)
