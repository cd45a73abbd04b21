"""Persisted, user-editable settings for the drivers tab."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from driver_catalog.constants import IMMUTABLE_CONFIG
from driver_catalog.paths import get_application_directory


@dataclass
class UserSettings:
    download_root: str = ""
    catalog_path: str = ""
    manifest_path: str = ""
    windows_release: str = "11"
    windows_version: str = ""
    windows_arch: str = "x64"
    throttle_limit: int = IMMUTABLE_CONFIG.acquisition.throttle_limit

    def resolved_download_root(self, base: Path) -> Path:
        return Path(self.download_root.strip()) if self.download_root.strip() else base / "Drivers"

    def resolved_catalog_path(self, base: Path) -> Path:
        if self.catalog_path.strip():
            return Path(self.catalog_path.strip())
        return self.resolved_download_root(base) / "Drivers.json"

    def resolved_manifest_path(self, base: Path) -> Path:
        if self.manifest_path.strip():
            return Path(self.manifest_path.strip())
        return self.resolved_download_root(base) / "DriverMapping.json"


class SettingsStore:
    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path else get_application_directory() / IMMUTABLE_CONFIG.settings_file_name

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UserSettings:
        if not self._path.exists():
            return UserSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return UserSettings()
        if not isinstance(data, dict):
            return UserSettings()
        text_fields = {f.name for f in fields(UserSettings) if f.type == "str"}
        values = {key: value for key, value in data.items() if key in text_fields and isinstance(value, str)}
        if "throttle_limit" in data:
            values["throttle_limit"] = data["throttle_limit"]
        settings = UserSettings(**values)
        try:
            settings.throttle_limit = max(1, int(settings.throttle_limit))
        except (TypeError, ValueError):
            settings.throttle_limit = IMMUTABLE_CONFIG.acquisition.throttle_limit
        return settings

    def save(self, settings: UserSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
