from __future__ import annotations

import logging
from typing import Optional

from PyQt5 import QtCore

from models import CaptureEvent, CaptureMode

logger = logging.getLogger(__name__)


class CaptureSession(QtCore.QObject):
    """
    Speech capture contract shared by the dialogue and practice engines.

    Emits:
      started()
      result(event: CaptureEvent)   interim or final transcript update
      error(kind: str)              "aborted", "no-speech", "not-allowed", ...
      ended()                       always last, once per started take

    Subclasses implement ``_open``, ``_close`` and ``_cancel`` and report
    back through ``_deliver_result`` / ``_deliver_error`` / ``_deliver_end``.
    Deliveries after the take has ended are dropped.
    """

    started = QtCore.pyqtSignal()
    result = QtCore.pyqtSignal(object)
    error = QtCore.pyqtSignal(str)
    ended = QtCore.pyqtSignal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self._active = False
        self._stopping = False
        self._mode: Optional[CaptureMode] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def mode(self) -> Optional[CaptureMode]:
        return self._mode

    def start(self, mode: CaptureMode = CaptureMode.CONTINUOUS) -> bool:
        """Begin a take. Returns False (and does nothing) if one is running."""
        if self._active:
            logger.debug("Capture start ignored; a %s take is running", self._mode)
            return False
        self._active = True
        self._stopping = False
        self._mode = mode
        logger.debug("Capture started (%s)", mode.value)
        self.started.emit()
        self._open(mode)
        return True

    def stop(self) -> None:
        """Stop listening; whatever was heard is still delivered."""
        if not self._active or self._stopping:
            return
        self._stopping = True
        self._close()

    def abort(self) -> None:
        """Stop immediately and discard anything in flight."""
        if not self._active:
            return
        self._cancel()
        self._deliver_error("aborted")
        self._deliver_end()

    # ----------------------- subclass plumbing -----------------------

    def _open(self, mode: CaptureMode) -> None:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError

    def _cancel(self) -> None:
        raise NotImplementedError

    def _deliver_result(self, event: CaptureEvent) -> None:
        if self._active:
            self.result.emit(event)

    def _deliver_error(self, kind: str) -> None:
        if self._active:
            logger.debug("Capture error: %s", kind)
            self.error.emit(kind)

    def _deliver_end(self) -> None:
        if not self._active:
            return
        self._active = False
        self._stopping = False
        logger.debug("Capture ended")
        self.ended.emit()
