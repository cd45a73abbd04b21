"""Drivers tab UI for fetching, selecting, saving and downloading vendor driver models."""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

from PySide6.QtCore import Qt, QThreadPool, QTimer
from PySide6.QtWidgets import (
    QAbstractItemView,
    QComboBox,
    QFileDialog,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)

from driver_catalog.activity_log import LogCallback
from driver_catalog.paths import get_application_directory
from driver_catalog.user_settings import SettingsStore, UserSettings
from services.acquisition import AcquisitionReport
from services.catalog import ImportResult
from services.driver_models import DriverModel, Make
from services.drivers import DriverService
from services.executor import ProgressChannel
from ui.driver_settings_dialog import DriverSettingsDialog
from ui.workers import ServiceWorker

PROGRESS_INTERVAL_MS = 300
COLUMNS = ["Select", "Make", "Model", "Identifier", "Status"]


class DriversTab(QWidget):
    def __init__(
        self,
        log_callback: LogCallback,
        thread_pool: QThreadPool,
        *,
        working_dir: Path | None = None,
        settings: UserSettings | None = None,
        settings_store: SettingsStore | None = None,
        log_path: Path | None = None,
    ) -> None:
        super().__init__()
        self._log = log_callback
        self._thread_pool = thread_pool
        self._working_dir = working_dir or get_application_directory()
        self._settings_store = settings_store or SettingsStore()
        self._settings = settings or self._settings_store.load()
        self._log_path = log_path
        self._service = DriverService(
            working_dir=self._working_dir,
            settings=self._settings,
            log_callback=self._log,
            log_path=self._log_path,
        )
        self._workers: set[ServiceWorker] = set()
        self._busy = False
        self._rows_by_id: dict[str, int] = {}
        self._progress: ProgressChannel | None = None
        self._progress_timer = QTimer(self)
        self._progress_timer.setInterval(PROGRESS_INTERVAL_MS)
        self._progress_timer.timeout.connect(self._drain_progress)
        self._build_ui()

    def _track_worker(self, worker: ServiceWorker) -> None:
        self._workers.add(worker)
        worker.signals.finished.connect(lambda *_: self._workers.discard(worker))
        worker.signals.error.connect(lambda *_: self._workers.discard(worker))

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)

        fetch_row = QHBoxLayout()
        self._make_combo = QComboBox()
        for make in Make:
            self._make_combo.addItem(make.value)
        self._make_combo.currentTextChanged.connect(self._update_keyword_state)
        self._keyword = QLineEdit()
        self._keyword.setPlaceholderText("Lenovo model or machine type (e.g. T480 or 20L5)")
        self._btn_fetch = QPushButton("Fetch Models")
        fetch_row.addWidget(QLabel("Make"))
        fetch_row.addWidget(self._make_combo)
        fetch_row.addWidget(self._keyword, 1)
        fetch_row.addWidget(self._btn_fetch)
        layout.addLayout(fetch_row)

        button_row = QHBoxLayout()
        self._btn_save = QPushButton("Save Selection")
        self._btn_import = QPushButton("Import Catalog")
        self._btn_download = QPushButton("Download Selected")
        self._btn_clear = QPushButton("Clear List")
        self._btn_settings = QPushButton("Settings")
        self._btn_select_all = QPushButton("Select All")
        self._btn_select_none = QPushButton("Select None")
        for btn in (self._btn_save, self._btn_import, self._btn_download):
            btn.setMinimumWidth(150)
            button_row.addWidget(btn)
        button_row.addWidget(self._btn_clear)
        button_row.addWidget(self._btn_settings)
        button_row.addStretch()
        button_row.addWidget(self._btn_select_all)
        button_row.addWidget(self._btn_select_none)
        layout.addLayout(button_row)

        self._table = QTableWidget(0, len(COLUMNS), self)
        self._table.setHorizontalHeaderLabels(COLUMNS)
        self._table.setEditTriggers(QAbstractItemView.NoEditTriggers)
        self._table.setAlternatingRowColors(True)
        self._table.verticalHeader().setVisible(False)
        header = self._table.horizontalHeader()
        header.setStretchLastSection(True)
        for column in (0, 1, 3):
            header.setSectionResizeMode(column, QHeaderView.ResizeMode.ResizeToContents)
        header.setSectionResizeMode(2, QHeaderView.ResizeMode.Stretch)
        self._table.itemChanged.connect(self._handle_item_changed)
        layout.addWidget(self._table)

        self._summary = QLabel("")
        layout.addWidget(self._summary)

        self._btn_fetch.clicked.connect(self._start_fetch)
        self._btn_save.clicked.connect(self._save_selection)
        self._btn_import.clicked.connect(self._start_import)
        self._btn_download.clicked.connect(self._start_download)
        self._btn_clear.clicked.connect(self._clear_list)
        self._btn_settings.clicked.connect(self._open_driver_settings)
        self._btn_select_all.clicked.connect(lambda: self._set_all(True))
        self._btn_select_none.clicked.connect(lambda: self._set_all(False))
        self._update_keyword_state(self._make_combo.currentText())

    def _update_keyword_state(self, make_text: str) -> None:
        self._keyword.setEnabled(make_text == Make.LENOVO.value)

    def _start(self, action: Callable[..., object], on_finished: Callable[[object], None], *args: object) -> bool:
        if self._busy:
            QMessageBox.information(self, "In Progress", "Wait for the current operation to finish.")
            return False
        self._busy = True
        self._set_buttons_enabled(False)
        worker = ServiceWorker(action, *args)
        worker.signals.finished.connect(on_finished)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)
        return True

    def _start_fetch(self) -> None:
        make = Make.parse(self._make_combo.currentText())
        context = self._service.fetch_context(self._keyword.text())
        if make is Make.LENOVO and not context.keyword.strip():
            QMessageBox.information(self, "Lenovo Search", "Enter a Lenovo model name or machine type first.")
            return
        self._log(f"Fetching {make.value} models...")
        self._start(self._service.fetch_models, self._handle_fetch_results, make, context)

    def _handle_fetch_results(self, records: object) -> None:
        self._finish()
        self._populate_table(self._service.records)

    def _save_selection(self) -> None:
        if self._busy:
            return
        if not self._service.selected_count():
            QMessageBox.information(self, "No Selection", "Select at least one driver model to save.")
            return
        default = self._settings.resolved_catalog_path(self._working_dir)
        path, _ = QFileDialog.getSaveFileName(self, "Save Driver Catalog", str(default), "JSON Files (*.json)")
        if not path:
            return
        try:
            self._service.save_selection(path)
        except OSError as exc:
            self._log(f"[ERROR] Unable to save driver catalog: {exc}")
            QMessageBox.critical(self, "Save Failed", str(exc))

    def _start_import(self) -> None:
        default = self._settings.resolved_catalog_path(self._working_dir)
        path, _ = QFileDialog.getOpenFileName(self, "Import Driver Catalog", str(default), "JSON Files (*.json);;All Files (*)")
        if not path:
            return
        self._log(f"Importing driver catalog {path}...")
        self._start(self._service.import_catalog, self._handle_import_results, path)

    def _handle_import_results(self, result: object) -> None:
        self._finish()
        self._populate_table(self._service.records)
        if isinstance(result, ImportResult) and result.skipped:
            QMessageBox.warning(
                self,
                "Import Warnings",
                f"{result.skipped} catalog entr{'y was' if result.skipped == 1 else 'ies were'} skipped. See the log for details.",
            )

    def _start_download(self) -> None:
        if not self._service.selected_count():
            QMessageBox.information(self, "No Selection", "Select at least one driver model.")
            return
        self._progress = ProgressChannel()
        if self._start(self._service.download_selected, self._handle_download_results, None, self._progress):
            self._progress_timer.start()

    def _drain_progress(self) -> None:
        if self._progress is None:
            return
        messages = self._progress.drain()
        for identifier, status in messages:
            row = self._rows_by_id.get(identifier)
            if row is not None:
                self._table.setItem(row, 4, QTableWidgetItem(status))

    def _handle_download_results(self, report: object) -> None:
        self._progress_timer.stop()
        self._progress = None
        self._finish()
        self._populate_table(self._service.records)
        if not isinstance(report, AcquisitionReport):
            return
        if report.success:
            QMessageBox.information(self, "Download Complete", f"Downloaded drivers for {len(report.outcomes)} model(s).")
        else:
            QMessageBox.warning(self, "Download Finished With Errors", report.digest)
        if report.manifest_warning:
            QMessageBox.warning(self, "Driver Mapping", report.manifest_warning)

    def _clear_list(self) -> None:
        if self._busy:
            return
        answer = QMessageBox.question(self, "Clear List", "Remove all models, including selected ones, from the list?")
        if answer != QMessageBox.Yes:
            return
        self._populate_table(self._service.clear_list())

    def _finish(self) -> None:
        if self._service.last_warnings:
            self._log(f"{len(self._service.last_warnings)} warning(s) during the last operation.")
        self._busy = False
        self._set_buttons_enabled(True)

    def _populate_table(self, records: Iterable[DriverModel]) -> None:
        rows = list(records)
        self._table.blockSignals(True)
        self._table.setRowCount(len(rows))
        self._rows_by_id = {}
        for row, record in enumerate(rows):
            checkbox = QTableWidgetItem()
            checkbox.setFlags(Qt.ItemIsSelectable | Qt.ItemIsUserCheckable | Qt.ItemIsEnabled)
            checkbox.setCheckState(Qt.Checked if record.is_selected else Qt.Unchecked)
            checkbox.setData(Qt.UserRole, record.key)
            self._table.setItem(row, 0, checkbox)
            self._table.setItem(row, 1, QTableWidgetItem(record.make.value))
            self._table.setItem(row, 2, QTableWidgetItem(record.model))
            self._table.setItem(row, 3, QTableWidgetItem(record.identifier or ""))
            self._table.setItem(row, 4, QTableWidgetItem(record.download_status))
            self._rows_by_id[record.task_id] = row
        self._table.blockSignals(False)
        self._update_summary()

    def _handle_item_changed(self, item: QTableWidgetItem) -> None:
        if item.column() != 0:
            return
        key = item.data(Qt.UserRole)
        if not isinstance(key, tuple):
            return
        self._service.set_selected([key], item.checkState() == Qt.Checked)
        self._update_summary()

    def _set_all(self, selected: bool) -> None:
        if self._busy:
            return
        self._service.set_selected([r.key for r in self._service.records], selected)
        self._populate_table(self._service.records)

    def _update_summary(self) -> None:
        self._summary.setText(f"{len(self._service.records)} model(s), {self._service.selected_count()} selected")

    def _set_buttons_enabled(self, enabled: bool) -> None:
        for button in (
            self._btn_fetch,
            self._btn_save,
            self._btn_import,
            self._btn_download,
            self._btn_clear,
            self._btn_settings,
            self._btn_select_all,
            self._btn_select_none,
        ):
            button.setEnabled(enabled)
        self._table.setEnabled(enabled)

    def _handle_error(self, message: str) -> None:
        self._progress_timer.stop()
        self._progress = None
        self._busy = False
        self._set_buttons_enabled(True)
        self._populate_table(self._service.records)
        self._log(f"[ERROR] {message}")
        QMessageBox.critical(self, "Drivers", message)

    def _open_driver_settings(self) -> None:
        dialog = DriverSettingsDialog(self._settings, self._settings_store, self)
        if dialog.exec():
            self._log("Driver settings saved.")
