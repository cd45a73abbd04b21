"""Settings dialog for driver download locations and target Windows build."""
from __future__ import annotations

from pathlib import Path

from PySide6.QtWidgets import (
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLineEdit,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from driver_catalog.constants import IMMUTABLE_CONFIG
from driver_catalog.user_settings import SettingsStore, UserSettings


class DriverSettingsDialog(QDialog):
    def __init__(self, settings: UserSettings, store: SettingsStore, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._store = store
        self.setWindowTitle("Driver Settings")
        self.setMinimumWidth(560)
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        form = QFormLayout()
        defaults = IMMUTABLE_CONFIG.acquisition

        self._download_root = QLineEdit(self._settings.download_root)
        self._download_root.setPlaceholderText("Defaults to <app folder>\\Drivers")
        form.addRow("Drivers Folder", self._make_dir_picker(self._download_root, "Select Drivers Folder"))

        self._catalog_path = QLineEdit(self._settings.catalog_path)
        self._catalog_path.setPlaceholderText("Defaults to <drivers folder>\\Drivers.json")
        form.addRow("Catalog File", self._catalog_path)

        self._manifest_path = QLineEdit(self._settings.manifest_path)
        self._manifest_path.setPlaceholderText("Defaults to <drivers folder>\\DriverMapping.json")
        form.addRow("Driver Mapping File", self._manifest_path)

        self._release = self._make_combo(defaults.releases, self._settings.windows_release)
        form.addRow("Windows Release", self._release)
        self._version = self._make_combo(("",) + defaults.versions, self._settings.windows_version)
        form.addRow("Windows Version", self._version)
        self._arch = self._make_combo(defaults.architectures, self._settings.windows_arch)
        form.addRow("Architecture", self._arch)

        self._throttle = QSpinBox()
        self._throttle.setRange(1, 32)
        self._throttle.setValue(max(1, int(self._settings.throttle_limit)))
        form.addRow("Parallel Downloads", self._throttle)
        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._save)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _make_combo(self, items: tuple[str, ...], current: str) -> QComboBox:
        combo = QComboBox()
        combo.setEditable(True)
        combo.addItems(list(items))
        combo.setCurrentText(current)
        return combo

    def _make_dir_picker(self, field: QLineEdit, title: str) -> QWidget:
        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(field)
        browse = QPushButton("Browse")
        browse.clicked.connect(lambda: self._browse_for_dir(field, title))
        row.addWidget(browse)
        return container

    def _browse_for_dir(self, field: QLineEdit, title: str) -> None:
        current = field.text().strip()
        start_dir = current or str(Path.home())
        path = QFileDialog.getExistingDirectory(self, title, start_dir)
        if path:
            field.setText(path)

    def _save(self) -> None:
        self._settings.download_root = self._download_root.text().strip()
        self._settings.catalog_path = self._catalog_path.text().strip()
        self._settings.manifest_path = self._manifest_path.text().strip()
        self._settings.windows_release = self._release.currentText().strip()
        self._settings.windows_version = self._version.currentText().strip()
        self._settings.windows_arch = self._arch.currentText().strip()
        self._settings.throttle_limit = self._throttle.value()
        self._store.save(self._settings)
        self.accept()
