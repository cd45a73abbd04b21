"""Location helpers for settings, logs and downloaded drivers."""
from __future__ import annotations

import os
import sys
from pathlib import Path

HOME_ENV_VAR = "DRIVER_CATALOG_HOME"


def get_application_directory() -> Path:
    override = os.environ.get(HOME_ENV_VAR, "").strip()
    if override:
        return Path(override)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent


def safe_folder_name(value: str) -> str:
    cleaned = "".join("_" if ch in '<>:"/\\|?*' else ch for ch in value)
    cleaned = cleaned.strip().rstrip(".")
    return cleaned or "unknown"
