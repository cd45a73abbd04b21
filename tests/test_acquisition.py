from __future__ import annotations

import json
from pathlib import Path

import pytest

from services.acquisition import (
    COMPLETED_STATUS,
    NO_PATH_MESSAGE,
    AcquisitionOptions,
    AcquisitionOrchestrator,
    AcquisitionTask,
    DownloadArgs,
    DriverDownloader,
    apply_progress,
    find_dell_driver_urls,
    find_hp_softpaq_urls,
    find_lenovo_pack_url,
)
from services.driver_models import DriverModel, Make
from services.errors import AcquisitionItemError, PreconditionError, SharedResourceError
from services.executor import ParallelTaskExecutor, ProgressChannel, TaskResult
from services.prefetch import SharedIndexGuard


class FailingFetcher:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, url: str, destination: Path) -> Path:
        self.calls += 1
        raise RuntimeError("offline")


class FakeTask:
    """Succeeds for every model except those listed in ``failures``."""

    def __init__(self, failures: dict[str, TaskResult] | None = None) -> None:
        self.failures = failures or {}
        self.calls: list[AcquisitionTask] = []
        self.args: list[DownloadArgs] = []

    def __call__(self, task: AcquisitionTask, args: DownloadArgs, progress: ProgressChannel) -> TaskResult:
        self.calls.append(task)
        self.args.append(args)
        progress.post(task.task_id, "Downloading")
        if task.model in self.failures:
            result = self.failures[task.model]
            return TaskResult(result.identifier or task.task_id, result.result_code, result.message, result.artifact_path)
        return TaskResult(task.task_id, 0, "Downloaded", f"/drivers/{task.base_name}", link=task.link)


def _guard(tmp_path: Path, fetcher: FailingFetcher | None = None) -> SharedIndexGuard:
    return SharedIndexGuard(tmp_path / "index", fetcher=fetcher or FailingFetcher(), expander=lambda cab, dest: dest)


def _options(tmp_path: Path, **overrides) -> AcquisitionOptions:
    values = {
        "release": "11",
        "version": "23H2",
        "arch": "x64",
        "download_root": tmp_path / "Drivers",
        "manifest_path": None,
        "throttle_limit": 2,
    }
    values.update(overrides)
    return AcquisitionOptions(**values)


def _surface_batch() -> list[DriverModel]:
    return [
        DriverModel(Make.MICROSOFT, "Surface Laptop 4", link="https://ms/sl4", is_selected=True),
        DriverModel(Make.MICROSOFT, "Surface Laptop 5", link="https://ms/sl5", is_selected=True),
        DriverModel(Make.MICROSOFT, "Surface Pro 9", link="https://ms/sp9", is_selected=True),
        DriverModel(Make.MICROSOFT, "Surface Go 3", link="https://ms/sg3"),
    ]


def test_failed_item_does_not_block_the_batch(tmp_path) -> None:
    task = FakeTask({"Surface Laptop 5": TaskResult("", 1, "MSI not found")})
    messages: list[str] = []
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), task, log=messages.append, log_path=tmp_path / "drivers.log")
    report = orchestrator.run(_surface_batch(), _options(tmp_path))
    assert report.success is False
    assert len(report.outcomes) == 3
    statuses = {r.model: r.download_status for r in report.records}
    assert statuses["Surface Laptop 4"] == COMPLETED_STATUS
    assert statuses["Surface Pro 9"] == COMPLETED_STATUS
    assert statuses["Surface Laptop 5"] == "Failed: MSI not found"
    assert statuses["Surface Go 3"] == ""
    assert [f.model for f in report.failures] == ["Surface Laptop 5"]
    assert "Surface Laptop 5: MSI not found" in report.digest
    assert str(tmp_path / "drivers.log") in report.digest
    assert any(m.startswith("[FAIL] download :: Microsoft Surface Laptop 5") for m in messages)


def test_zero_code_without_path_counts_as_failure(tmp_path) -> None:
    task = FakeTask({"Surface Pro 9": TaskResult("", 0, "Downloaded", None)})
    report = AcquisitionOrchestrator(_guard(tmp_path), task).run(_surface_batch(), _options(tmp_path))
    failed = report.failures
    assert [f.model for f in failed] == ["Surface Pro 9"]
    assert failed[0].message == NO_PATH_MESSAGE


def test_unmatched_result_is_ignored_and_item_fails(tmp_path) -> None:
    task = FakeTask({"Surface Pro 9": TaskResult("someone|else", 0, "Downloaded", "/drivers/x")})
    messages: list[str] = []
    report = AcquisitionOrchestrator(_guard(tmp_path), task, log=messages.append).run(_surface_batch(), _options(tmp_path))
    assert [f.message for f in report.failures] == ["No result returned"]
    assert any("Ignoring unmatched acquisition result" in m for m in messages)


class ReversedExecutor(ParallelTaskExecutor):
    def execute(self, items, identifier_key, task, task_args, throttle_limit, progress=None):
        return list(reversed(super().execute(items, identifier_key, task, task_args, throttle_limit, progress)))


class DuplicatingExecutor(ParallelTaskExecutor):
    def execute(self, items, identifier_key, task, task_args, throttle_limit, progress=None):
        results = super().execute(items, identifier_key, task, task_args, throttle_limit, progress)
        return results + [TaskResult(results[0].identifier, 1, "Late retry", None, link="https://ms/other")]


def test_results_are_matched_by_identifier_not_position(tmp_path) -> None:
    task = FakeTask({"Surface Laptop 5": TaskResult("", 1, "MSI not found")})
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), task, executor=ReversedExecutor())
    report = orchestrator.run(_surface_batch(), _options(tmp_path))
    statuses = {r.model: r.download_status for r in report.records}
    assert statuses == {
        "Surface Laptop 4": COMPLETED_STATUS,
        "Surface Laptop 5": "Failed: MSI not found",
        "Surface Pro 9": COMPLETED_STATUS,
        "Surface Go 3": "",
    }
    assert [(f.model, f.message) for f in report.failures] == [("Surface Laptop 5", "MSI not found")]
    paths = {o.model: o.artifact_path for o in report.outcomes if o.success}
    assert paths == {"Surface Laptop 4": "/drivers/Surface Laptop 4", "Surface Pro 9": "/drivers/Surface Pro 9"}


def test_duplicate_result_is_ignored_and_first_one_wins(tmp_path) -> None:
    messages: list[str] = []
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), FakeTask(), executor=DuplicatingExecutor(), log=messages.append)
    report = orchestrator.run(_surface_batch(), _options(tmp_path))
    assert report.success
    first = report.records[0]
    assert first.model == "Surface Laptop 4"
    assert first.download_status == COMPLETED_STATUS
    assert first.link == "https://ms/sl4"
    assert any("Ignoring duplicate acquisition result for microsoft|surface laptop 4" in m for m in messages)


def test_digest_lists_first_failures_only(tmp_path) -> None:
    records = [DriverModel(Make.MICROSOFT, f"Surface {n}", link="https://ms/x", is_selected=True) for n in range(7)]
    task = FakeTask({r.model: TaskResult("", 1, "offline") for r in records})
    report = AcquisitionOrchestrator(_guard(tmp_path), task, digest_limit=5).run(records, _options(tmp_path))
    lines = report.digest.splitlines()
    assert lines[0] == "7 driver download(s) failed:"
    assert sum(1 for line in lines if line.startswith("- ")) == 5
    assert "...and 2 more." in lines


def test_missing_preconditions_dispatch_nothing(tmp_path) -> None:
    task = FakeTask()
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), task)
    with pytest.raises(PreconditionError):
        orchestrator.run(_surface_batch(), _options(tmp_path, release=""))
    with pytest.raises(PreconditionError):
        orchestrator.run([DriverModel(Make.MICROSOFT, "Surface Go 3")], _options(tmp_path))
    hp = [DriverModel(Make.HP, "ProBook 450 G8", "8AB8", is_selected=True)]
    with pytest.raises(PreconditionError, match="HP"):
        orchestrator.run(hp, _options(tmp_path, version=" "))
    assert task.calls == []


def test_shared_index_failure_aborts_before_workers(tmp_path) -> None:
    fetcher = FailingFetcher()
    task = FakeTask()
    records = [DriverModel(Make.DELL, "Latitude 5420", "0A1B", is_selected=True)]
    with pytest.raises(SharedResourceError):
        AcquisitionOrchestrator(_guard(tmp_path, fetcher), task).run(records, _options(tmp_path))
    assert fetcher.calls == 1
    assert task.calls == []


def test_fresh_dell_index_is_handed_to_every_worker(tmp_path) -> None:
    fetcher = FailingFetcher()
    guard = _guard(tmp_path, fetcher)
    guard.index_path.parent.mkdir(parents=True)
    guard.index_path.write_text("<Manifest />", encoding="utf-8")
    task = FakeTask()
    records = [
        DriverModel(Make.DELL, "Latitude 5420", "0A1B", is_selected=True),
        DriverModel(Make.DELL, "Latitude 7420", "0A2B", is_selected=True),
    ]
    report = AcquisitionOrchestrator(guard, task).run(records, _options(tmp_path))
    assert report.success
    assert fetcher.calls == 0
    assert {args.dell_index_path for args in task.args} == {guard.index_path}


def test_successful_items_are_added_to_the_manifest(tmp_path) -> None:
    manifest = tmp_path / "DriverMapping.json"
    manifest.write_text(json.dumps([{"Make": "Microsoft", "Model": "Surface Laptop 4", "DriverPath": "old"}]), encoding="utf-8")
    task = FakeTask({"Surface Laptop 5": TaskResult("", 1, "offline")})
    report = AcquisitionOrchestrator(_guard(tmp_path), task).run(_surface_batch(), _options(tmp_path, manifest_path=manifest))
    assert report.manifest_warning is None
    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert [item["Model"] for item in data] == ["Surface Laptop 4", "Surface Pro 9"]
    assert data[0]["DriverPath"] == "old"


def test_manifest_failure_is_a_warning_not_an_error(tmp_path) -> None:
    manifest = tmp_path / "DriverMapping.json"
    manifest.mkdir()
    report = AcquisitionOrchestrator(_guard(tmp_path), FakeTask()).run(_surface_batch(), _options(tmp_path, manifest_path=manifest))
    assert report.success
    assert report.manifest_warning is not None
    assert report.manifest_warning.startswith("Driver mapping not updated")


def test_last_progress_message_wins() -> None:
    records = [DriverModel(Make.HP, "ZBook 15 G6", "860F", is_selected=True), DriverModel(Make.HP, "ProBook 450 G8", "8AB8")]
    task_id = records[0].task_id
    updated = apply_progress(records, [(task_id, "Queued"), (task_id, "Downloading 1/3"), ("unknown|id", "Queued")])
    assert updated[0].download_status == "Downloading 1/3"
    assert updated[1] is records[1]


DELL_INDEX = """<?xml version="1.0" encoding="utf-8"?>
<Manifest>
  <SoftwareComponent path="FOLDER01/Audio_Driver.exe">
    <ComponentType value="DRVR" />
    <SupportedSystems><Brand><Model systemID="0A1B" /></Brand></SupportedSystems>
    <SupportedOperatingSystems><OperatingSystem osArch="x64" /></SupportedOperatingSystems>
  </SoftwareComponent>
  <SoftwareComponent path="FOLDER02/Bios.exe">
    <ComponentType value="BIOS" />
    <SupportedSystems><Brand><Model systemID="0A1B" /></Brand></SupportedSystems>
  </SoftwareComponent>
  <SoftwareComponent path="FOLDER03/Video_Driver.exe">
    <ComponentType value="DRVR" />
    <SupportedSystems><Brand><Model systemID="0A2B" /></Brand></SupportedSystems>
  </SoftwareComponent>
</Manifest>
"""

HP_REFERENCE = """<?xml version="1.0" encoding="utf-8"?>
<ImagePal>
  <Solutions>
    <UpdateInfo><Category>Driver - Network</Category><Url>ftp.hp.com/pub/softpaq/sp140001-140500/sp140123.exe</Url></UpdateInfo>
    <UpdateInfo><Category>BIOS</Category><Url>https://ftp.hp.com/pub/softpaq/sp1.exe</Url></UpdateInfo>
    <UpdateInfo><Category>Driver - Audio</Category><Url>https://ftp.hp.com/pub/softpaq/sp2.exe</Url></UpdateInfo>
  </Solutions>
</ImagePal>
"""

LENOVO_CATALOG = """<?xml version="1.0" encoding="utf-8"?>
<ModelList>
  <Model name="ThinkPad T480">
    <Types><Type>20L5</Type><Type>20L6</Type></Types>
    <SCCM os="win10" version="22H2">https://download.lenovo.com/pccbbs/mobiles/tp_t480_w1022h2.exe</SCCM>
    <SCCM os="win11" version="23H2">https://download.lenovo.com/pccbbs/mobiles/tp_t480_w1123h2.exe</SCCM>
  </Model>
</ModelList>
"""


def test_dell_driver_urls_come_from_matching_components(tmp_path) -> None:
    index = tmp_path / "CatalogPC.xml"
    index.write_text(DELL_INDEX, encoding="utf-8")
    urls = find_dell_driver_urls(index, "0a1b", "x64", "https://downloads.dell.com/")
    assert urls == ["https://downloads.dell.com/FOLDER01/Audio_Driver.exe"]


def test_hp_softpaq_urls_only_include_drivers(tmp_path) -> None:
    reference = tmp_path / "880D_64_11.0.23H2.xml"
    reference.write_text(HP_REFERENCE, encoding="utf-8")
    assert find_hp_softpaq_urls(reference) == [
        "https://ftp.hp.com/pub/softpaq/sp140001-140500/sp140123.exe",
        "https://ftp.hp.com/pub/softpaq/sp2.exe",
    ]


def test_lenovo_pack_url_matches_release_and_version() -> None:
    assert find_lenovo_pack_url(LENOVO_CATALOG, "20l6", "11", "23H2").endswith("tp_t480_w1123h2.exe")
    assert find_lenovo_pack_url(LENOVO_CATALOG, "20L5", "11", "22H2") is None


class FakeHttp:
    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = pages
        self.downloads: list[str] = []

    def get_text(self, url: str) -> str:
        return self.pages[url]

    def download(self, url: str, destination: Path) -> Path:
        self.downloads.append(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(b"payload")
        return destination


def test_downloader_fetches_lenovo_pack_into_model_folder(tmp_path) -> None:
    http = FakeHttp({"https://download.lenovo.com/cdrt/td/catalogv2.xml": LENOVO_CATALOG})
    record = DriverModel(Make.LENOVO, "ThinkPad T480", "20L5", is_selected=True)
    args = DownloadArgs(release="10", version="22H2", arch="x64", download_root=tmp_path)
    result = DriverDownloader(http)(AcquisitionTask.from_record(record), args, ProgressChannel())
    assert result.succeeded
    assert Path(result.artifact_path) == tmp_path / "Lenovo" / "ThinkPad T480 (20L5)" / "tp_t480_w1022h2.exe"
    assert http.downloads == ["https://download.lenovo.com/pccbbs/mobiles/tp_t480_w1022h2.exe"]


class CountingHttp(FakeHttp):
    def __init__(self, pages: dict[str, str]) -> None:
        super().__init__(pages)
        self.requests: list[str] = []

    def get_text(self, url: str) -> str:
        self.requests.append(url)
        return super().get_text(url)


def test_lenovo_catalog_is_fetched_once_per_batch(tmp_path) -> None:
    catalog_url = "https://download.lenovo.com/cdrt/td/catalogv2.xml"
    http = CountingHttp({catalog_url: LENOVO_CATALOG})
    downloader = DriverDownloader(http)
    records = [
        DriverModel(Make.LENOVO, "ThinkPad T480", "20L5", is_selected=True),
        DriverModel(Make.LENOVO, "ThinkPad T480", "20L6", is_selected=True),
        DriverModel(Make.LENOVO, "ThinkPad X1", "20XW", is_selected=True),
    ]
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), downloader, prepare=downloader.prepare)
    report = orchestrator.run(records, _options(tmp_path, throttle_limit=3))
    assert http.requests == [catalog_url]
    statuses = [r.download_status for r in report.records]
    assert statuses[:2] == [COMPLETED_STATUS, COMPLETED_STATUS]
    assert statuses[2] == "Failed: No Lenovo driver pack for Windows 11 23H2"


def test_prepare_skips_catalog_without_lenovo_models(tmp_path) -> None:
    http = CountingHttp({})
    args = DownloadArgs(release="11", version="23H2", arch="x64", download_root=tmp_path)
    tasks = [AcquisitionTask.from_record(DriverModel(Make.DELL, "Latitude 5420", "0A1B"))]
    assert DriverDownloader(http).prepare(tasks, args) is args
    assert http.requests == []


class OfflineHttp(FakeHttp):
    def get_text(self, url: str) -> str:
        raise RuntimeError(f"Request failed for {url}: offline")


def test_lenovo_catalog_failure_aborts_before_workers(tmp_path) -> None:
    downloader = DriverDownloader(OfflineHttp({}))
    task = FakeTask()
    records = [DriverModel(Make.LENOVO, "ThinkPad T480", "20L5", is_selected=True)]
    orchestrator = AcquisitionOrchestrator(_guard(tmp_path), task, prepare=downloader.prepare)
    with pytest.raises(SharedResourceError, match="Lenovo driver catalog"):
        orchestrator.run(records, _options(tmp_path))
    assert task.calls == []


def test_downloader_uses_dell_cab_url_when_known(tmp_path) -> None:
    http = FakeHttp({})
    record = DriverModel(Make.DELL, "Latitude 5420", "0A1B", cab_url="https://dl.dell.com/5420-win11-A05.CAB")
    args = DownloadArgs(release="11", version="", arch="x64", download_root=tmp_path)
    result = DriverDownloader(http)(AcquisitionTask.from_record(record), args, ProgressChannel())
    assert result.succeeded
    assert result.cab_url == "https://dl.dell.com/5420-win11-A05.CAB"
    assert (tmp_path / "Dell" / "Latitude 5420 (0A1B)" / "5420-win11-A05.CAB").exists()


def test_downloader_reports_missing_microsoft_link(tmp_path) -> None:
    record = DriverModel(Make.MICROSOFT, "Surface Go 3")
    args = DownloadArgs(release="11", version="", arch="x64", download_root=tmp_path)
    result = DriverDownloader(FakeHttp({}))(AcquisitionTask.from_record(record), args, ProgressChannel())
    assert result.result_code == 1


class BrokenHttp(FakeHttp):
    def download(self, url: str, destination: Path) -> Path:
        raise RuntimeError("Download failed: HTTP Error 404")


def test_payload_download_failure_is_an_item_error(tmp_path) -> None:
    record = DriverModel(Make.DELL, "Latitude 5420", "0A1B", cab_url="https://dl.dell.com/5420.CAB", is_selected=True)
    args = DownloadArgs(release="11", version="", arch="x64", download_root=tmp_path)
    downloader = DriverDownloader(BrokenHttp({}))
    with pytest.raises(AcquisitionItemError, match="5420.CAB"):
        downloader(AcquisitionTask.from_record(record), args, ProgressChannel())
    guard = _guard(tmp_path)
    guard.index_path.parent.mkdir(parents=True)
    guard.index_path.write_text("<Manifest />", encoding="utf-8")
    report = AcquisitionOrchestrator(guard, downloader).run([record], _options(tmp_path))
    assert report.success is False
    assert "HTTP Error 404" in report.records[0].download_status
