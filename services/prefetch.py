"""One-time, age-gated refresh of the shared Dell catalog index."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable

from driver_catalog.activity_log import LogCallback, null_log
from driver_catalog.constants import VENDOR_CONFIG, DellSettings
from services.driver_models import DriverModel, Make
from services.errors import SharedResourceError
from services.transfer import CommandRunner, HttpClient, SubprocessRunner, UrllibHttpClient, expand_cab

Fetcher = Callable[[str, Path], Path]
Expander = Callable[[Path, Path], Path]

SHARED_INDEX_MAKE = Make.DELL


class SharedIndexGuard:
    """Keeps the Dell catalog index fresh before any worker starts.

    The index is reused while its file is younger than ``max_age``; otherwise
    it is downloaded and expanded exactly once, on the calling thread.
    """

    def __init__(
        self,
        index_dir: Path | str,
        *,
        settings: DellSettings = VENDOR_CONFIG.dell,
        http: HttpClient | None = None,
        command_runner: CommandRunner | None = None,
        fetcher: Fetcher | None = None,
        expander: Expander | None = None,
        max_age: timedelta = VENDOR_CONFIG.shared_index_max_age,
        clock: Callable[[], datetime] = datetime.now,
        log: LogCallback | None = None,
    ) -> None:
        self._index_dir = Path(index_dir)
        self._settings = settings
        http_client = http or UrllibHttpClient()
        runner = command_runner or SubprocessRunner()
        self._fetch = fetcher or http_client.download
        self._expand = expander or (lambda cab, dest: expand_cab(cab, dest, runner))
        self._max_age = max_age
        self._clock = clock
        self._log = log or null_log
        self._lock = threading.Lock()

    @property
    def index_path(self) -> Path:
        return self._index_dir / self._settings.catalog_xml_name

    @property
    def cab_path(self) -> Path:
        return self._index_dir / Path(self._settings.catalog_cab_url).name

    def needs_index(self, records: Iterable[DriverModel]) -> bool:
        return any(r.is_selected and r.make is SHARED_INDEX_MAKE for r in records)

    def is_fresh(self) -> bool:
        path = self.index_path
        if not path.exists():
            return False
        modified = datetime.fromtimestamp(path.stat().st_mtime)
        return self._clock() - modified < self._max_age

    def ensure_fresh(self, records: Iterable[DriverModel]) -> Path | None:
        if not self.needs_index(records):
            return None
        return self.ensure_index()

    def ensure_index(self) -> Path:
        with self._lock:
            if self.is_fresh():
                self._log(f"Reusing {self._settings.catalog_xml_name} (younger than {self._max_age.days} days).")
                return self.index_path
            self._log(f"Refreshing {self._settings.catalog_xml_name} from {self._settings.catalog_cab_url}...")
            try:
                self._index_dir.mkdir(parents=True, exist_ok=True)
                cab = self._fetch(self._settings.catalog_cab_url, self.cab_path)
                self._expand(cab, self._index_dir)
            except Exception as exc:
                raise SharedResourceError(f"Unable to refresh the Dell catalog index: {exc}") from exc
            if not self.index_path.exists():
                raise SharedResourceError(f"{self._settings.catalog_xml_name} missing after expanding {self.cab_path.name}")
            # expand keeps the archived timestamp; age is measured from the refresh
            self.index_path.touch()
            self.cab_path.unlink(missing_ok=True)
            return self.index_path
