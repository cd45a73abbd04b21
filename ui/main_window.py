"""Main window hosting the drivers tab and the activity log pane."""
from __future__ import annotations

import sys

from PySide6.QtCore import QObject, Qt, QThreadPool, Signal
from PySide6.QtWidgets import QApplication, QMainWindow, QPlainTextEdit, QSplitter, QTabWidget

from driver_catalog.activity_log import ActivityLog
from driver_catalog.constants import IMMUTABLE_CONFIG
from driver_catalog.paths import get_application_directory
from driver_catalog.user_settings import SettingsStore
from ui.drivers_tab import DriversTab


class LogBridge(QObject):
    message = Signal(str)


class MainWindow(QMainWindow):
    def __init__(self) -> None:
        super().__init__()
        self.setWindowTitle("Driver Catalog Tool")
        self.resize(1100, 760)
        working_dir = get_application_directory()
        self._thread_pool = QThreadPool.globalInstance()
        self._activity_log = ActivityLog(working_dir / IMMUTABLE_CONFIG.log_file_name)
        self._bridge = LogBridge()
        self._log_view = QPlainTextEdit()
        self._log_view.setReadOnly(True)
        # listeners fire on worker threads; the signal queues onto the UI thread
        self._bridge.message.connect(self._log_view.appendPlainText)
        self._activity_log.subscribe(self._bridge.message.emit)

        store = SettingsStore()
        tabs = QTabWidget()
        tabs.addTab(
            DriversTab(
                self._activity_log,
                self._thread_pool,
                working_dir=working_dir,
                settings=store.load(),
                settings_store=store,
                log_path=self._activity_log.path,
            ),
            "Drivers",
        )
        splitter = QSplitter(Qt.Vertical)
        splitter.addWidget(tabs)
        splitter.addWidget(self._log_view)
        splitter.setStretchFactor(0, 3)
        splitter.setStretchFactor(1, 1)
        self.setCentralWidget(splitter)


def main() -> int:
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
