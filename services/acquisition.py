"""Parallel acquisition of the selected driver models."""
from __future__ import annotations

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence
from urllib.parse import urlparse

from driver_catalog.activity_log import LogCallback, null_log
from driver_catalog.constants import IMMUTABLE_CONFIG, VENDOR_CONFIG, VendorConfig
from driver_catalog.paths import safe_folder_name
from services.driver_models import DriverModel, Make
from services.errors import AcquisitionItemError, ManifestWriteError, PreconditionError, SharedResourceError
from services.executor import ParallelTaskExecutor, ProgressChannel, TaskResult
from services.manifest import DriverManifest, ManifestEntry
from services.prefetch import SharedIndexGuard
from services.transfer import CommandRunner, HttpClient, SubprocessRunner, expand_cab
from services.vendors import local_name

VERSION_SPECIFIC_MAKES = frozenset({Make.HP, Make.LENOVO})
COMPLETED_STATUS = "Completed"
QUEUED_STATUS = "Queued"
NO_PATH_MESSAGE = "Download task did not return a path"


@dataclass(frozen=True)
class AcquisitionOptions:
    release: str
    version: str
    arch: str
    download_root: Path
    manifest_path: Path | None = None
    throttle_limit: int = IMMUTABLE_CONFIG.acquisition.throttle_limit


@dataclass(frozen=True)
class AcquisitionTask:
    task_id: str
    make: Make
    model: str
    base_name: str
    identifier: str | None = None
    product_name: str | None = None
    link: str | None = None
    cab_url: str | None = None

    @classmethod
    def from_record(cls, record: DriverModel) -> "AcquisitionTask":
        return cls(
            task_id=record.task_id,
            make=record.make,
            model=record.model,
            base_name=record.base_name,
            identifier=record.identifier,
            product_name=record.product_name,
            link=record.link,
            cab_url=record.cab_url,
        )


@dataclass(frozen=True)
class DownloadArgs:
    release: str
    version: str
    arch: str
    download_root: Path
    dell_index_path: Path | None = None
    lenovo_catalog: str | None = None


@dataclass
class ItemOutcome:
    task_id: str
    model: str
    success: bool
    message: str
    artifact_path: str | None = None


@dataclass
class AcquisitionReport:
    success: bool
    records: list[DriverModel]
    outcomes: list[ItemOutcome] = field(default_factory=list)
    digest: str = ""
    manifest_warning: str | None = None

    @property
    def failures(self) -> list[ItemOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]


AcquisitionTaskFn = Callable[[AcquisitionTask, DownloadArgs, ProgressChannel], TaskResult]
PrepareFn = Callable[[Sequence[AcquisitionTask], DownloadArgs], DownloadArgs]


class DriverDownloader:
    """Downloads the driver payload for one model; safe to run on worker threads."""

    def __init__(
        self,
        http: HttpClient,
        *,
        command_runner: CommandRunner | None = None,
        config: VendorConfig = VENDOR_CONFIG,
    ) -> None:
        self._http = http
        self._runner = command_runner or SubprocessRunner()
        self._config = config

    def __call__(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        handlers = {
            Make.MICROSOFT: self._download_microsoft,
            Make.DELL: self._download_dell,
            Make.HP: self._download_hp,
            Make.LENOVO: self._download_lenovo,
        }
        progress.post(task.task_id, "Starting")
        return handlers[task.make](task, args, progress)

    def prepare(self, tasks: Sequence[AcquisitionTask], args: DownloadArgs) -> DownloadArgs:
        """Fetch shared vendor catalogs once so workers do not each request them."""
        if args.lenovo_catalog is not None or not any(task.make is Make.LENOVO for task in tasks):
            return args
        try:
            catalog = self._http.get_text(self._config.lenovo.driver_catalog_url)
        except RuntimeError as exc:
            raise SharedResourceError(f"Unable to fetch the Lenovo driver catalog: {exc}") from exc
        return replace(args, lenovo_catalog=catalog)

    def model_folder(self, task: AcquisitionTask, args: DownloadArgs) -> Path:
        return Path(args.download_root) / task.make.value / safe_folder_name(task.model)

    def _fetch_all(self, task: AcquisitionTask, urls: Sequence[str], folder: Path, progress: ProgressChannel) -> int:
        for position, url in enumerate(urls, start=1):
            name = Path(urlparse(url).path).name or f"driver_{position}"
            destination = folder / name
            if destination.exists():
                continue
            progress.post(task.task_id, f"Downloading {position}/{len(urls)}: {name}")
            try:
                self._http.download(url, destination)
            except RuntimeError as exc:
                raise AcquisitionItemError(f"{name}: {exc}") from exc
        return len(urls)

    def _download_microsoft(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        if not task.link:
            return TaskResult(task.task_id, 1, "No download page link for this model")
        progress.post(task.task_id, "Resolving MSI")
        page = self._http.get_text(task.link)
        urls = sorted(set(re.findall(self._config.microsoft.download_host_pattern, page)))
        wanted = f"win{args.release}".lower()
        candidates = [url for url in urls if wanted in url.lower()] or urls
        if not candidates:
            return TaskResult(task.task_id, 1, "No MSI link found on the download page")
        url = candidates[-1]
        folder = self.model_folder(task, args)
        self._fetch_all(task, [url], folder, progress)
        return TaskResult(task.task_id, 0, "Downloaded", str(folder / Path(urlparse(url).path).name), link=task.link)

    def _download_dell(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        folder = self.model_folder(task, args)
        if task.cab_url:
            self._fetch_all(task, [task.cab_url], folder, progress)
            return TaskResult(task.task_id, 0, "Downloaded driver pack", str(folder), cab_url=task.cab_url)
        if not task.identifier:
            return TaskResult(task.task_id, 1, "No Dell system ID for this model")
        if args.dell_index_path is None or not Path(args.dell_index_path).exists():
            return TaskResult(task.task_id, 1, "Dell catalog index is not available")
        progress.post(task.task_id, "Searching Dell catalog")
        urls = find_dell_driver_urls(args.dell_index_path, task.identifier, args.arch, self._config.dell.download_base_url)
        if not urls:
            return TaskResult(task.task_id, 1, f"No Dell drivers found for system ID {task.identifier}")
        count = self._fetch_all(task, urls, folder, progress)
        return TaskResult(task.task_id, 0, f"Downloaded {count} driver(s)", str(folder))

    def _download_hp(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        if not task.identifier:
            return TaskResult(task.task_id, 1, "No HP system ID for this model")
        arch = "64" if args.arch.lower() in {"x64", "amd64", "64"} else args.arch
        url = self._config.hp.reference_cab_url.format(
            system_id=task.identifier,
            arch=arch,
            release=args.release,
            version=args.version,
        )
        folder = self.model_folder(task, args)
        reference_dir = folder / "_reference"
        progress.post(task.task_id, "Fetching HP reference catalog")
        cab = self._http.download(url, reference_dir / Path(urlparse(url).path).name)
        expand_cab(cab, reference_dir, self._runner)
        xml_path = next(reference_dir.glob("*.xml"), None)
        if xml_path is None:
            return TaskResult(task.task_id, 1, f"HP reference catalog missing after expanding {cab.name}")
        urls = find_hp_softpaq_urls(xml_path)
        if not urls:
            return TaskResult(task.task_id, 1, f"No HP driver SoftPaqs listed for {task.identifier}")
        count = self._fetch_all(task, urls, folder, progress)
        return TaskResult(task.task_id, 0, f"Downloaded {count} SoftPaq(s)", str(folder))

    def _download_lenovo(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        if not task.identifier:
            return TaskResult(task.task_id, 1, "No Lenovo machine type for this model")
        progress.post(task.task_id, "Searching Lenovo catalog")
        catalog = args.lenovo_catalog
        if catalog is None:
            catalog = self._http.get_text(self._config.lenovo.driver_catalog_url)
        url = find_lenovo_pack_url(catalog, task.identifier, args.release, args.version)
        if not url:
            return TaskResult(task.task_id, 1, f"No Lenovo driver pack for Windows {args.release} {args.version}")
        folder = self.model_folder(task, args)
        self._fetch_all(task, [url], folder, progress)
        return TaskResult(task.task_id, 0, "Downloaded driver pack", str(folder / Path(urlparse(url).path).name))


def find_dell_driver_urls(index_path: Path, system_id: str, arch: str, base_url: str) -> list[str]:
    wanted_id = system_id.strip().lower()
    wanted_arch = arch.strip().lower()
    base = (base_url or "").rstrip("/")
    urls: list[str] = []
    for _, element in ET.iterparse(str(index_path), events=("end",)):
        if local_name(element.tag) != "SoftwareComponent":
            continue
        component_type = next((c for c in element.iter() if local_name(c.tag) == "ComponentType"), None)
        if component_type is None or (component_type.get("value") or "").upper() != "DRVR":
            element.clear()
            continue
        system_ids = {(m.get("systemID") or "").lower() for m in element.iter() if local_name(m.tag) == "Model"}
        os_arches = {(o.get("osArch") or "").lower() for o in element.iter() if local_name(o.tag) == "OperatingSystem"}
        path = element.get("path")
        if path and wanted_id in system_ids and (not os_arches or wanted_arch in os_arches):
            url = path if path.startswith("http") else f"{base}/{path.lstrip('/')}"
            if url not in urls:
                urls.append(url)
        element.clear()
    return urls


def find_hp_softpaq_urls(xml_path: Path) -> list[str]:
    root = ET.parse(str(xml_path)).getroot()
    urls: list[str] = []
    for update in root.iter():
        if local_name(update.tag) != "UpdateInfo":
            continue
        values = {local_name(child.tag): (child.text or "").strip() for child in update}
        if "driver" not in values.get("Category", "").lower():
            continue
        url = values.get("Url", "")
        if not url:
            continue
        if not url.lower().startswith("http"):
            url = f"https://{url}"
        if url not in urls:
            urls.append(url)
    return urls


def find_lenovo_pack_url(catalog_xml: str, machine_type: str, release: str, version: str) -> str | None:
    root = ET.fromstring(catalog_xml)
    wanted_type = machine_type.strip().upper()
    wanted_os = f"win{release}".lower()
    for model in root.iter():
        if local_name(model.tag) != "Model":
            continue
        types = {(t.text or "").strip().upper() for t in model.iter() if local_name(t.tag) == "Type"}
        if wanted_type not in types:
            continue
        for pack in model.iter():
            if local_name(pack.tag) != "SCCM":
                continue
            if (pack.get("os") or "").lower() == wanted_os and (pack.get("version") or "").lower() == version.lower():
                return (pack.text or "").strip() or None
    return None


def check_preconditions(selected: Sequence[DriverModel], options: AcquisitionOptions) -> None:
    if not selected:
        raise PreconditionError("Select at least one driver model to download.")
    if not options.release.strip():
        raise PreconditionError("Select a Windows release before downloading drivers.")
    if not options.arch.strip():
        raise PreconditionError("Select a Windows architecture before downloading drivers.")
    needs_version = sorted({r.make.value for r in selected if r.make in VERSION_SPECIFIC_MAKES})
    if needs_version and not options.version.strip():
        raise PreconditionError(f"Select a Windows version; {', '.join(needs_version)} driver packs are version specific.")


def apply_progress(records: Iterable[DriverModel], messages: Iterable[tuple[str, str]]) -> list[DriverModel]:
    latest: dict[str, str] = {}
    for identifier, status in messages:
        latest[identifier] = status
    if not latest:
        return list(records)
    return [replace(r, download_status=latest[r.task_id]) if r.task_id in latest else r for r in records]


class AcquisitionOrchestrator:
    def __init__(
        self,
        guard: SharedIndexGuard,
        task: AcquisitionTaskFn,
        *,
        executor: ParallelTaskExecutor | None = None,
        log: LogCallback | None = None,
        log_path: Path | None = None,
        digest_limit: int = IMMUTABLE_CONFIG.acquisition.digest_limit,
        prepare: PrepareFn | None = None,
    ) -> None:
        self._guard = guard
        self._task = task
        self._prepare = prepare
        self._executor = executor or ParallelTaskExecutor()
        self._log = log or null_log
        self._log_path = log_path
        self._digest_limit = digest_limit

    def run(
        self,
        records: Sequence[DriverModel],
        options: AcquisitionOptions,
        progress: ProgressChannel | None = None,
    ) -> AcquisitionReport:
        channel = progress or ProgressChannel()
        selected = [r for r in records if r.is_selected]
        check_preconditions(selected, options)
        index_path = self._guard.ensure_fresh(selected)
        tasks = [AcquisitionTask.from_record(r) for r in selected]
        args = DownloadArgs(
            release=options.release.strip(),
            version=options.version.strip(),
            arch=options.arch.strip(),
            download_root=Path(options.download_root),
            dell_index_path=index_path,
        )
        if self._prepare is not None:
            args = self._prepare(tasks, args)
        for task in tasks:
            channel.post(task.task_id, QUEUED_STATUS)
        self._log(f"Downloading drivers for {len(tasks)} model(s) with up to {options.throttle_limit} in parallel...")
        results = self._executor.execute(tasks, lambda t: t.task_id, self._task, args, options.throttle_limit, channel)
        resolved = self._match_results(tasks, results)
        outcomes = self._correlate(tasks, resolved)
        by_id = {outcome.task_id: outcome for outcome in outcomes}
        updated: list[DriverModel] = []
        for record in records:
            outcome = by_id.get(record.task_id) if record.is_selected else None
            if outcome is None:
                updated.append(record)
                continue
            result = resolved.get(record.task_id)
            updated.append(
                replace(
                    record,
                    download_status=COMPLETED_STATUS if outcome.success else f"Failed: {outcome.message}",
                    link=(result.link if result and result.link else record.link),
                    cab_url=(result.cab_url if result and result.cab_url else record.cab_url),
                )
            )
        report = AcquisitionReport(
            success=all(outcome.success for outcome in outcomes),
            records=updated,
            outcomes=outcomes,
        )
        report.digest = self._digest(report.failures)
        if options.manifest_path is not None:
            report.manifest_warning = self._update_manifest(options.manifest_path, tasks, outcomes)
        ok = len(outcomes) - len(report.failures)
        self._log(f"Driver download finished: {ok} succeeded, {len(report.failures)} failed.")
        return report

    def _match_results(self, tasks: Sequence[AcquisitionTask], results: Sequence[TaskResult]) -> dict[str, TaskResult]:
        """Index results by task id; the first result for an id wins."""
        known = {task.task_id for task in tasks}
        by_id: dict[str, TaskResult] = {}
        for result in results:
            if not isinstance(result, TaskResult) or result.identifier not in known:
                self._log(f"[WARN] Ignoring unmatched acquisition result: {result!r}")
                continue
            if result.identifier in by_id:
                self._log(f"[WARN] Ignoring duplicate acquisition result for {result.identifier}: {result!r}")
                continue
            by_id[result.identifier] = result
        return by_id

    def _correlate(self, tasks: Sequence[AcquisitionTask], resolved: Mapping[str, TaskResult]) -> list[ItemOutcome]:
        outcomes: list[ItemOutcome] = []
        for task in tasks:
            result = resolved.get(task.task_id)
            if result is None:
                outcome = ItemOutcome(task.task_id, task.model, False, "No result returned")
            elif result.succeeded:
                outcome = ItemOutcome(task.task_id, task.model, True, result.message or COMPLETED_STATUS, result.artifact_path)
            elif result.result_code != 0:
                outcome = ItemOutcome(task.task_id, task.model, False, result.message or f"Exit code {result.result_code}")
            else:
                outcome = ItemOutcome(task.task_id, task.model, False, NO_PATH_MESSAGE)
            status = "OK" if outcome.success else "FAIL"
            self._log(f"[{status}] download :: {task.make.value} {task.model} -> {outcome.message}")
            outcomes.append(outcome)
        return outcomes

    def _digest(self, failures: Sequence[ItemOutcome]) -> str:
        if not failures:
            return ""
        lines = [f"{len(failures)} driver download(s) failed:"]
        lines.extend(f"- {f.model}: {f.message}" for f in failures[: self._digest_limit])
        remaining = len(failures) - self._digest_limit
        if remaining > 0:
            lines.append(f"...and {remaining} more.")
        if self._log_path is not None:
            lines.append(f"See {self._log_path} for the full log.")
        return "\n".join(lines)

    def _update_manifest(self, path: Path, tasks: Sequence[AcquisitionTask], outcomes: Sequence[ItemOutcome]) -> str | None:
        tasks_by_id = {task.task_id: task for task in tasks}
        entries: list[ManifestEntry] = []
        for outcome in outcomes:
            if not outcome.success or not outcome.artifact_path:
                continue
            task = tasks_by_id[outcome.task_id]
            entries.append(
                ManifestEntry(
                    make=task.make.value,
                    model=task.model,
                    driver_path=outcome.artifact_path,
                    system_id=task.identifier if task.make in {Make.DELL, Make.HP} else None,
                    machine_type=task.identifier if task.make is Make.LENOVO else None,
                    product_name=task.product_name,
                )
            )
        if not entries:
            return None
        try:
            added = DriverManifest(path).append(entries)
        except ManifestWriteError as exc:
            warning = f"Driver mapping not updated: {exc}"
            self._log(f"[WARN] {warning}")
            return warning
        self._log(f"Driver mapping {path} updated with {added} new model(s).")
        return None
