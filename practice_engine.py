from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Tuple

from PyQt5 import QtCore

from models import (
    BENIGN_CAPTURE_ERRORS,
    CaptureEvent,
    CaptureMode,
    Mistake,
    PracticeStatus,
    PracticeWord,
    capture_error_message,
)
from settings import default_settings
from transcript_utils import matches_target, practice_words_from_mistakes
from workers import BreakdownWorker

logger = logging.getLogger(__name__)

MIC_START_FAILED = "Mic failed to start. Please try again."


class PracticeEngine(QtCore.QObject):
    """
    Drill the words missed during the dialogue, one at a time.

    ``prepare()`` breaks every distinct missed word into syllables; words
    with no syllables are dropped. Each ``listen()`` is a single-shot
    capture judged by containment: a hit shows Success for a moment and
    moves on, a miss shows TryAgain until ``retry()``. ``completed`` fires
    exactly once, after the last word or immediately when there is
    nothing to practice.
    """

    prepared = QtCore.pyqtSignal(object)  # tuple[PracticeWord]
    word_changed = QtCore.pyqtSignal(int, object)  # (cursor, PracticeWord)
    status_changed = QtCore.pyqtSignal(object)
    transcript_changed = QtCore.pyqtSignal(str)
    capture_error = QtCore.pyqtSignal(str)
    completed = QtCore.pyqtSignal()

    def __init__(
        self,
        mistakes: Sequence[Mistake],
        capture,
        service,
        playback=None,
        settings: Optional[Dict] = None,
        parent=None,
    ):
        super().__init__(parent)
        self.capture = capture
        self.service = service
        self.playback = playback
        self.settings = dict(settings or default_settings())

        self.target_words = practice_words_from_mistakes(mistakes)
        self.words: Tuple[PracticeWord, ...] = ()
        self.cursor = 0
        self.status = PracticeStatus.IDLE
        self.transcript = ""
        self.error_message: Optional[str] = None

        self._ready = False
        self._done = False
        self._closed = False
        self._take_owned = False
        self._worker: Optional[BreakdownWorker] = None

        self._advance_timer = QtCore.QTimer(self)
        self._advance_timer.setSingleShot(True)
        self._advance_timer.timeout.connect(self._on_success_shown)

    @property
    def done(self) -> bool:
        return self._done

    @property
    def current_word(self) -> Optional[PracticeWord]:
        if not self._ready or self.cursor >= len(self.words):
            return None
        return self.words[self.cursor]

    def _set_status(self, status: PracticeStatus) -> None:
        if status is not self.status:
            self.status = status
            self.status_changed.emit(status)

    # ---------------------------- preparation ----------------------------

    def prepare(self) -> None:
        if not self.target_words:
            logger.info("Nothing to practice")
            self.prepared.emit(())
            self._finish()
            return
        logger.info("Preparing %d practice word(s)", len(self.target_words))
        worker = BreakdownWorker(self.service, self.target_words, parent=self)
        worker.completed.connect(self._on_breakdown)
        worker.finished.connect(worker.deleteLater)
        self._worker = worker
        worker.start()

    @QtCore.pyqtSlot(object)
    def _on_breakdown(self, words: object) -> None:
        if self._closed:
            return
        self.words = tuple(w for w in (words or []) if w.phonemes)
        dropped = len(self.target_words) - len(self.words)
        if dropped:
            logger.debug("Dropped %d word(s) without syllables", dropped)
        self.prepared.emit(self.words)
        if not self.words:
            self._finish()
            return
        self._ready = True
        self.cursor = 0
        self.word_changed.emit(0, self.words[0])

    # ---------------------------- learner actions ----------------------------

    def listen(self) -> bool:
        """Capture one attempt at the current word. Only valid while Idle."""
        if not self._ready or self._done or self._closed:
            return False
        if self.status is not PracticeStatus.IDLE:
            logger.warning("Listen blocked; status is %s", self.status.value)
            return False
        if self._advance_timer.isActive():
            logger.warning("Listen blocked; moving on to the next word")
            return False
        self.transcript = ""
        self.error_message = None
        self._set_status(PracticeStatus.LISTENING)
        if not self.capture.start(CaptureMode.SINGLE_SHOT):
            self.error_message = MIC_START_FAILED
            self.capture_error.emit(MIC_START_FAILED)
            self._set_status(PracticeStatus.IDLE)
            return False
        self._take_owned = True
        return True

    def retry(self) -> bool:
        if self.status is not PracticeStatus.TRY_AGAIN or self._closed:
            return False
        self.transcript = ""
        self._set_status(PracticeStatus.IDLE)
        return True

    def pronounce_current(self) -> None:
        word = self.current_word
        if word is not None and self.playback is not None:
            self.playback.speak(word.word)

    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._advance_timer.stop()
        if self.playback is not None:
            self.playback.cancel()
        if self._take_owned and self.capture.active:
            self.capture.abort()
        self._take_owned = False

    # ---------------------------- capture events ----------------------------

    def on_capture_result(self, event: CaptureEvent) -> None:
        if self._closed or self._done or not self._take_owned:
            return
        self.transcript = event.results[0].transcript if event.results else ""
        self.transcript_changed.emit(self.transcript)
        if self.status is not PracticeStatus.LISTENING:
            return
        target = self.words[self.cursor].word
        if matches_target(self.transcript, target):
            logger.debug("Matched %r in %r", target, self.transcript)
            self._set_status(PracticeStatus.SUCCESS)
            self._advance_timer.start(int(self.settings.get("success_display_ms", 1500)))
        else:
            self._set_status(PracticeStatus.TRY_AGAIN)

    def on_capture_error(self, kind: str) -> None:
        if self._closed or not self._take_owned:
            return
        if kind not in BENIGN_CAPTURE_ERRORS:
            self.error_message = capture_error_message(kind)
            logger.warning("Capture error %r during practice: %s", kind, self.error_message)
            self.capture_error.emit(self.error_message)
        # a pending advance after a hit still runs
        self._set_status(PracticeStatus.IDLE)

    def on_capture_end(self) -> None:
        if self._closed:
            return
        self._take_owned = False
        if self.status is PracticeStatus.LISTENING:
            self._set_status(PracticeStatus.IDLE)

    # ---------------------------- advance ----------------------------

    @QtCore.pyqtSlot()
    def _on_success_shown(self) -> None:
        if self._closed or self._done:
            return
        if self.cursor < len(self.words) - 1:
            self.cursor += 1
            self.transcript = ""
            self._set_status(PracticeStatus.IDLE)
            self.word_changed.emit(self.cursor, self.words[self.cursor])
        else:
            self._finish()

    def _finish(self) -> None:
        if self._done:
            return
        self._done = True
        self._advance_timer.stop()
        logger.info("Practice complete")
        self.completed.emit()
