"""Driver catalog service: fetch, reconcile, save/import and download driver models."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Iterable

from driver_catalog.activity_log import LogCallback, null_log
from driver_catalog.constants import IMMUTABLE_CONFIG, ImmutableConfig
from driver_catalog.paths import get_application_directory
from driver_catalog.user_settings import UserSettings
from services.acquisition import (
    AcquisitionOptions,
    AcquisitionOrchestrator,
    AcquisitionReport,
    AcquisitionTaskFn,
    DriverDownloader,
    apply_progress,
)
from services.catalog import ImportResult, load_catalog, save_catalog
from services.driver_models import DriverModel, Make
from services.executor import ParallelTaskExecutor, ProgressChannel
from services.normalizer import normalize_batch
from services.prefetch import SharedIndexGuard
from services.reconcile import clear_records, reconcile
from services.transfer import CommandRunner, HttpClient, SubprocessRunner, UrllibHttpClient
from services.vendors import FetchContext, VendorCatalogClient, default_catalog_client


class DriverService:
    """Single entry point used by the drivers tab.

    Every operation builds a new record list and swaps ``records`` in one
    assignment, so readers on other threads never see a half-updated list.
    """

    def __init__(
        self,
        *,
        working_dir: Path | str | None = None,
        settings: UserSettings | None = None,
        config: ImmutableConfig = IMMUTABLE_CONFIG,
        http: HttpClient | None = None,
        command_runner: CommandRunner | None = None,
        guard: SharedIndexGuard | None = None,
        catalog_client: VendorCatalogClient | None = None,
        downloader: AcquisitionTaskFn | None = None,
        executor: ParallelTaskExecutor | None = None,
        log_callback: LogCallback | None = None,
        log_path: Path | None = None,
    ) -> None:
        self._working_dir = Path(working_dir) if working_dir is not None else get_application_directory()
        self._settings = settings or UserSettings()
        self._config = config
        self._log_sink = log_callback or null_log
        self._http = http or UrllibHttpClient(headers=config.vendors.headers(), timeout=config.vendors.request_timeout)
        self._runner = command_runner or SubprocessRunner()
        self._guard = guard or SharedIndexGuard(
            self._working_dir / "cache" / "Dell",
            settings=config.vendors.dell,
            http=self._http,
            command_runner=self._runner,
            max_age=config.vendors.shared_index_max_age,
            log=self._log,
        )
        self._catalog_client = catalog_client or default_catalog_client(
            self._http,
            self._guard,
            self._working_dir / "cache",
            command_runner=self._runner,
            config=config.vendors,
            log=self._log,
        )
        task_fn = downloader or DriverDownloader(self._http, command_runner=self._runner, config=config.vendors)
        self._orchestrator = AcquisitionOrchestrator(
            self._guard,
            task_fn,
            executor=executor,
            log=self._log,
            log_path=log_path,
            digest_limit=config.acquisition.digest_limit,
            prepare=task_fn.prepare if isinstance(task_fn, DriverDownloader) else None,
        )
        self.records: list[DriverModel] = []
        self.last_warnings: list[str] = []

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def _log(self, message: str) -> None:
        if message.startswith("[WARN] "):
            self.last_warnings.append(message[len("[WARN] "):])
        self._log_sink(message)

    def fetch_models(self, make: Make, context: FetchContext | None = None) -> list[DriverModel]:
        self.last_warnings = []
        ctx = context or self.fetch_context()
        raws = self._catalog_client.fetch_model_list(make, ctx)
        batch = normalize_batch(raws, log=self._log, excluded_product_lines=self._config.vendors.lenovo.excluded_product_lines)
        self.records = reconcile(self.records, batch)
        self._log(f"{make.value}: {len(batch)} model(s) listed, {self.selected_count()} selected overall.")
        return self.records

    def fetch_context(self, keyword: str = "") -> FetchContext:
        return FetchContext(
            keyword=keyword,
            release=self._settings.windows_release,
            version=self._settings.windows_version,
            arch=self._settings.windows_arch,
        )

    def selected_count(self) -> int:
        return sum(1 for record in self.records if record.is_selected)

    def set_selected(self, keys: Iterable[tuple[str, str]], selected: bool) -> list[DriverModel]:
        wanted = set(keys)
        self.records = [replace(r, is_selected=selected) if r.key in wanted else r for r in self.records]
        return self.records

    def clear_list(self) -> list[DriverModel]:
        self.records = clear_records()
        self._log("Driver model list cleared.")
        return self.records

    def save_selection(self, path: Path | str | None = None) -> Path:
        target = Path(path) if path else self._settings.resolved_catalog_path(self._working_dir)
        written = save_catalog(self.records, target)
        self._log(f"Saved {self.selected_count()} selected model(s) to {written}.")
        return written

    def import_catalog(self, path: Path | str | None = None) -> ImportResult:
        self.last_warnings = []
        source = Path(path) if path else self._settings.resolved_catalog_path(self._working_dir)
        result = load_catalog(self.records, source, log=self._log)
        self.records = result.records
        return result

    def build_options(self) -> AcquisitionOptions:
        return AcquisitionOptions(
            release=self._settings.windows_release,
            version=self._settings.windows_version,
            arch=self._settings.windows_arch,
            download_root=self._settings.resolved_download_root(self._working_dir),
            manifest_path=self._settings.resolved_manifest_path(self._working_dir),
            throttle_limit=max(1, int(self._settings.throttle_limit)),
        )

    def download_selected(
        self,
        options: AcquisitionOptions | None = None,
        progress: ProgressChannel | None = None,
    ) -> AcquisitionReport:
        self.last_warnings = []
        report = self._orchestrator.run(self.records, options or self.build_options(), progress)
        self.records = report.records
        return report

    def apply_progress(self, channel: ProgressChannel) -> list[DriverModel]:
        messages = channel.drain()
        if messages:
            self.records = apply_progress(self.records, messages)
        return self.records
