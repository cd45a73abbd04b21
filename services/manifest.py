"""Append-only mapping of acquired drivers to their on-disk location."""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from services.errors import ManifestWriteError


@dataclass(frozen=True)
class ManifestEntry:
    make: str
    model: str
    driver_path: str
    system_id: str | None = None
    machine_type: str | None = None
    product_name: str | None = None

    def to_json(self) -> dict[str, str]:
        data = {
            "Make": self.make,
            "Model": self.model,
            "DriverPath": self.driver_path,
            "SystemId": self.system_id,
            "MachineType": self.machine_type,
            "ProductName": self.product_name,
        }
        return {key: value for key, value in data.items() if value is not None}


class DriverManifest:
    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[dict[str, Any]]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8-sig") or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise ManifestWriteError(f"Unable to read driver manifest {self._path}: {exc}") from exc
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise ManifestWriteError(f"Driver manifest {self._path} is not a JSON array")
        return [item for item in data if isinstance(item, dict)]

    def append(self, entries: Iterable[ManifestEntry]) -> int:
        """Add entries whose model is not yet mapped; returns how many were added."""
        existing = self.load()
        known = {str(item.get("Model", "")).strip().lower() for item in existing}
        added = 0
        for entry in entries:
            key = entry.model.strip().lower()
            if key in known:
                continue
            existing.append(entry.to_json())
            known.add(key)
            added += 1
        if not added:
            return 0
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(existing, indent=2), encoding="utf-8")
        except OSError as exc:
            raise ManifestWriteError(f"Unable to write driver manifest {self._path}: {exc}") from exc
        return added
