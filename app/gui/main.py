from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

from PySide6 import QtCore, QtGui, QtWidgets
from loguru import logger

# Ensure local src/ is importable when running from project root
ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pau.catalog import (  # noqa: E402
    ChannelLayout,
    ContainerFormat,
    OutputFormat,
    Quality,
    auto_select_container,
    compatible_containers,
    layouts_in_order,
    parse_container,
    parse_format,
    parse_quality,
    layout_for,
)
from pau.config import PauSettings  # noqa: E402
from pau.errors import UpmixError  # noqa: E402
from pau.events import RunSnapshot  # noqa: E402
from pau.handles import ResourceHandle  # noqa: E402
from pau.jobs import JobStatus  # noqa: E402
from pau.logging import setup_qt_sink  # noqa: E402
from pau.orchestrator import RunConfig, Upmixer  # noqa: E402
from pau.scanner import expand_sources  # noqa: E402


STATUS_COLORS = {
    JobStatus.PENDING: "#8a8fa3",
    JobStatus.PROCESSING: "#3d6bcc",
    JobStatus.UPMIXED: "#3aa55d",
    JobStatus.FAILED: "#d04040",
    JobStatus.CANCELLED: "#e0902a",
}


class DropListWidget(QtWidgets.QListWidget):
    """File list that accepts file and folder drops via text/uri-list."""

    files_dropped = QtCore.Signal(list)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.setAcceptDrops(True)

    def dragEnterEvent(self, event: QtGui.QDragEnterEvent) -> None:
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            event.ignore()

    def dragMoveEvent(self, event: QtGui.QDragMoveEvent) -> None:
        if event.mimeData().hasUrls():
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event: QtGui.QDropEvent) -> None:
        paths = [url.toLocalFile() for url in event.mimeData().urls() if url.isLocalFile()]
        if paths:
            self.files_dropped.emit(paths)
            event.acceptProposedAction()
        else:
            event.ignore()


class LogEmitter(QtCore.QObject):
    message = QtCore.Signal(str)


class SnapshotEmitter(QtCore.QObject):
    snapshot = QtCore.Signal(object)


class UpmixWorker(QtCore.QThread):
    finished_with_error = QtCore.Signal(str)

    def __init__(self, upmixer: Upmixer, config: RunConfig, parent=None) -> None:
        super().__init__(parent)
        self.upmixer = upmixer
        self.config = config

    def cancel(self) -> None:
        self.upmixer.cancel()

    def run(self) -> None:  # type: ignore[override]
        try:
            self.upmixer.run(self.config)
        except UpmixError as e:
            self.finished_with_error.emit(e.user_message)
        except Exception as e:
            logger.exception("Exception in UpmixWorker")
            self.finished_with_error.emit(str(e))


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, *, output: Optional[str] = None) -> None:
        super().__init__()
        self.setWindowTitle("Python Audio Upmixer")
        self.resize(900, 640)

        self.settings = PauSettings.load()
        self.worker: Optional[UpmixWorker] = None

        self.snapshot_emitter = SnapshotEmitter()
        self.snapshot_emitter.snapshot.connect(self.on_snapshot)
        self.upmixer = Upmixer.from_settings(self.settings)
        self.upmixer.bus.subscribe(self.snapshot_emitter.snapshot.emit)

        central = QtWidgets.QWidget()
        self.setCentralWidget(central)
        outer = QtWidgets.QVBoxLayout(central)

        # Selectors
        form = QtWidgets.QFormLayout()
        self.combo_format = QtWidgets.QComboBox()
        for fmt in OutputFormat:
            self.combo_format.addItem(fmt.display_name, fmt)
        self.combo_layout = QtWidgets.QComboBox()
        self.combo_quality = QtWidgets.QComboBox()
        for q in Quality:
            self.combo_quality.addItem(q.display_name, q)
        self.combo_container = QtWidgets.QComboBox()
        self.check_ai = QtWidgets.QCheckBox("AI stem separation (7.1.4 only)")
        self.check_ai.setChecked(self.settings.ai_mode)

        form.addRow("Format:", self.combo_format)
        form.addRow("Layout:", self.combo_layout)
        form.addRow("Quality:", self.combo_quality)
        form.addRow("Container:", self.combo_container)
        form.addRow("", self.check_ai)

        self.edit_out = QtWidgets.QLineEdit()
        self.edit_out.setPlaceholderText("Output directory")
        self.edit_out.setText(output or self.settings.output_dir or "")
        self.btn_out = QtWidgets.QPushButton("Browse…")
        out_row = QtWidgets.QHBoxLayout()
        out_row.addWidget(self.edit_out)
        out_row.addWidget(self.btn_out)
        out_wrap = QtWidgets.QWidget()
        out_row.setContentsMargins(0, 0, 0, 0)
        out_wrap.setLayout(out_row)
        form.addRow("Output:", out_wrap)
        outer.addLayout(form)

        # Queue
        self.list_files = DropListWidget()
        outer.addWidget(QtWidgets.QLabel("Drop audio files or folders here:"))
        outer.addWidget(self.list_files, 1)

        btns = QtWidgets.QHBoxLayout()
        self.btn_add = QtWidgets.QPushButton("Add Files…")
        self.btn_clear = QtWidgets.QPushButton("Clear")
        self.btn_start = QtWidgets.QPushButton("Start Upmix")
        self.btn_cancel = QtWidgets.QPushButton("Cancel")
        self.btn_cancel.setEnabled(False)
        for b in (self.btn_add, self.btn_clear, self.btn_start, self.btn_cancel):
            btns.addWidget(b)
        outer.addLayout(btns)

        self.progress = QtWidgets.QProgressBar()
        self.progress.setRange(0, 1000)
        self.label_status = QtWidgets.QLabel("Ready")
        self.label_error = QtWidgets.QLabel("")
        self.label_error.setStyleSheet("color: #d04040")
        self.label_error.setWordWrap(True)
        outer.addWidget(self.progress)
        outer.addWidget(self.label_status)
        outer.addWidget(self.label_error)

        self.log = QtWidgets.QPlainTextEdit()
        self.log.setReadOnly(True)
        self.log.setMaximumBlockCount(2000)
        outer.addWidget(self.log, 1)

        # Connections
        self.combo_format.currentIndexChanged.connect(self._on_format_change)
        self.btn_out.clicked.connect(self._pick_output)
        self.btn_add.clicked.connect(self._pick_files)
        self.btn_clear.clicked.connect(self.on_clear)
        self.btn_start.clicked.connect(self.on_start)
        self.btn_cancel.clicked.connect(self.on_cancel)
        self.list_files.files_dropped.connect(self.add_paths)

        self.log_emitter = LogEmitter()
        self.log_emitter.message.connect(self.log.appendPlainText)
        setup_qt_sink(self.log_emitter, level=self.settings.log_level, json_path=self.settings.log_json)

        self._apply_settings()
        if not self.upmixer.encoder_path:
            self.label_status.setText("FFmpeg not found - please install FFmpeg")

    # Selectors -------------------------------------------------------

    def _apply_settings(self) -> None:
        try:
            fmt = parse_format(self.settings.output_format)
            self.combo_format.setCurrentIndex(self.combo_format.findData(fmt))
            self._on_format_change()
            layout = layout_for(fmt, self.settings.channel_layout)
            self.combo_layout.setCurrentIndex(max(0, self.combo_layout.findData(layout)))
            self.combo_quality.setCurrentIndex(max(0, self.combo_quality.findData(parse_quality(self.settings.quality))))
            container = parse_container(self.settings.container)
            self.combo_container.setCurrentIndex(max(0, self.combo_container.findData(container)))
        except ValueError as e:
            logger.warning(f"Ignoring saved selection: {e}")
            self._on_format_change()

    def _on_format_change(self) -> None:
        fmt: OutputFormat = self.combo_format.currentData()
        if fmt is None:
            return
        current: Optional[ContainerFormat] = self.combo_container.currentData()
        self.combo_layout.clear()
        for layout in layouts_in_order(fmt):
            self.combo_layout.addItem(layout.label, layout)
        self.combo_container.clear()
        for c in compatible_containers(fmt):
            self.combo_container.addItem(c.display_name, c)
        selected = auto_select_container(fmt, current)
        self.combo_container.setCurrentIndex(self.combo_container.findData(selected))
        self.combo_quality.setEnabled(fmt is OutputFormat.PCM)

    def _current_config(self) -> RunConfig:
        out = self.edit_out.text().strip()
        layout: ChannelLayout = self.combo_layout.currentData()
        return RunConfig(
            output_format=self.combo_format.currentData(),
            layout=layout,
            quality=self.combo_quality.currentData(),
            container=self.combo_container.currentData(),
            ai_mode=self.check_ai.isChecked(),
            output_dir=ResourceHandle.directory(out) if out else None,
        )

    # Queue -----------------------------------------------------------

    def _pick_output(self) -> None:
        d = QtWidgets.QFileDialog.getExistingDirectory(self, "Select output directory", self.edit_out.text())
        if d:
            self.edit_out.setText(d)

    def _pick_files(self) -> None:
        files, _ = QtWidgets.QFileDialog.getOpenFileNames(
            self, "Add audio files", "", "Audio (*.wav *.flac *.aiff *.aif *.m4a *.mp3 *.ogg *.opus);;All files (*)"
        )
        if files:
            self.add_paths(files)

    def add_paths(self, paths: list) -> None:
        for p in expand_sources(paths):
            try:
                self.upmixer.add_file(p)
            except UpmixError as e:
                logger.warning(e.user_message)
                return

    def on_clear(self) -> None:
        try:
            self.upmixer.clear_files()
        except UpmixError as e:
            logger.warning(e.user_message)

    # Run -------------------------------------------------------------

    def on_start(self) -> None:
        if self.worker is not None and self.worker.isRunning():
            return
        self.worker = UpmixWorker(self.upmixer, self._current_config(), self)
        self.worker.finished_with_error.connect(self.label_error.setText)
        self.worker.finished.connect(self._on_worker_finished)
        self.btn_start.setEnabled(False)
        self.btn_cancel.setEnabled(True)
        self.worker.start()

    def on_cancel(self) -> None:
        if self.worker is not None:
            self.label_status.setText("Cancelling...")
            self.worker.cancel()

    def _on_worker_finished(self) -> None:
        self.btn_start.setEnabled(True)
        self.btn_cancel.setEnabled(False)

    @QtCore.Slot(object)
    def on_snapshot(self, snap: RunSnapshot) -> None:
        self.progress.setValue(int(snap.progress * 1000))
        self.label_status.setText(snap.status)
        self.label_error.setText(snap.error or "")
        running = snap.running
        self.btn_clear.setEnabled(not running)
        self.btn_add.setEnabled(not running)
        self.list_files.setAcceptDrops(not running)
        self.list_files.clear()
        for job in snap.jobs:
            item = QtWidgets.QListWidgetItem(f"{job.display_name}    {job.status.value}")
            item.setForeground(QtGui.QColor(STATUS_COLORS[job.status]))
            if job.reason:
                item.setToolTip(job.reason)
            self.list_files.addItem(item)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="python-audio-upmixer-gui")
    parser.add_argument("--output", default=None, help="Pre-fill the output directory")
    args, qt_args = parser.parse_known_args(argv)
    app = QtWidgets.QApplication([sys.argv[0], *qt_args])
    w = MainWindow(output=args.output)
    w.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
