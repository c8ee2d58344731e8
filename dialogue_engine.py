from __future__ import annotations

import enum
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from PyQt5 import QtCore

from models import (
    BENIGN_CAPTURE_ERRORS,
    CaptureEvent,
    CaptureMode,
    CaptureStatus,
    Mistake,
    ScriptLine,
    TurnKind,
    capture_error_message,
)
from settings import default_settings
from transcript_utils import count_spoken_words
from workers import AnalyzeWorker

logger = logging.getLogger(__name__)


class TurnStage(enum.Enum):
    SETTLING = "settling"    # waiting out the settle delay
    SPEAKING = "speaking"    # synthesized line playing
    LISTENING = "listening"  # learner's line, capture armed
    ANALYZING = "analyzing"  # submitted, analyzer running
    DONE = "done"


def classify_turn(script: Sequence[ScriptLine], turn: int, role: str) -> TurnKind:
    """Whether ``script[turn]`` is read by the learner playing ``role``."""
    return TurnKind.SELF if script[turn].speaker == role else TurnKind.OTHER


class DialogueEngine(QtCore.QObject):
    """
    Walks the script one turn at a time.

    Synthesized turns are played through the PlaybackSession; the
    learner's turns are captured continuously until 2.5 s pass without a
    new transcript update, then analyzed. Mistakes accumulate in script
    order and are frozen when the last turn completes.

    Capture events are not subscribed here: the owner forwards them to
    ``on_capture_result`` / ``on_capture_error`` / ``on_capture_end``.
    """

    turn_started = QtCore.pyqtSignal(int, bool)  # (turn, learner speaks)
    transcript_changed = QtCore.pyqtSignal(str)
    word_count_changed = QtCore.pyqtSignal(int)
    speaking_changed = QtCore.pyqtSignal(bool)
    analyzing_changed = QtCore.pyqtSignal(bool)
    capture_status_changed = QtCore.pyqtSignal(object)
    capture_error = QtCore.pyqtSignal(str)
    turn_completed = QtCore.pyqtSignal(int, object)  # (turn, mistakes of that turn)
    finished = QtCore.pyqtSignal(object)  # tuple of all mistakes

    def __init__(
        self,
        script: Sequence[ScriptLine],
        role: str,
        capture,
        playback,
        service,
        settings: Optional[Dict] = None,
        parent=None,
    ):
        super().__init__(parent)
        if not script:
            raise ValueError("Empty script")
        self.script: Tuple[ScriptLine, ...] = tuple(script)
        self.role = role
        self.capture = capture
        self.playback = playback
        self.service = service
        self.settings = dict(settings or default_settings())

        self.turn = 0
        self.stage = TurnStage.SETTLING
        self.capture_status = CaptureStatus.IDLE
        self.error_message: Optional[str] = None
        self.transcript = ""
        self.word_count = 0
        self._mistakes: List[Mistake] | Tuple[Mistake, ...] = []
        self._processed = False  # current turn already submitted
        self._take_owned = False  # the live capture take was started for this turn
        self._closed = False
        self._worker: Optional[AnalyzeWorker] = None

        self._settle_timer = QtCore.QTimer(self)
        self._settle_timer.setSingleShot(True)
        self._settle_timer.timeout.connect(self._on_settled)

        self._silence_timer = QtCore.QTimer(self)
        self._silence_timer.setSingleShot(True)
        self._silence_timer.timeout.connect(self._on_silence)

        self.playback.finished.connect(self._on_playback_finished)

    # ---------------------------- state ----------------------------

    @property
    def mistakes(self) -> Tuple[Mistake, ...]:
        return tuple(self._mistakes)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def current_line(self) -> ScriptLine:
        return self.script[self.turn]

    @property
    def current_kind(self) -> TurnKind:
        return classify_turn(self.script, self.turn, self.role)

    def _set_capture_status(self, status: CaptureStatus) -> None:
        if status is not self.capture_status:
            self.capture_status = status
            self.capture_status_changed.emit(status)

    # ---------------------------- turn flow ----------------------------

    def start(self) -> None:
        logger.info("Dialogue: %d turns, learner reads %r", len(self.script), self.role)
        self._begin_turn()

    def _begin_turn(self) -> None:
        self._processed = False
        # a take still closing belongs to the previous turn
        self._take_owned = False
        self.transcript = ""
        self.word_count = 0
        self.stage = TurnStage.SETTLING
        kind = self.current_kind
        logger.debug("Turn %d (%s): %s", self.turn, kind.value, self.current_line.text)
        self.turn_started.emit(self.turn, kind is TurnKind.SELF)
        self.word_count_changed.emit(0)
        if kind is TurnKind.OTHER and self.capture.active:
            self.capture.stop()
        self._settle_timer.start(int(self.settings.get("settle_delay_ms", 700)))

    @QtCore.pyqtSlot()
    def _on_settled(self) -> None:
        if self._closed or self.stage not in (TurnStage.SETTLING, TurnStage.LISTENING):
            return
        if self.current_kind is TurnKind.OTHER:
            self.stage = TurnStage.SPEAKING
            self.speaking_changed.emit(True)
            self.playback.speak(self.current_line.text)
        else:
            self._start_listening()

    def _start_listening(self) -> None:
        self.stage = TurnStage.LISTENING
        if self._processed:
            return
        if self.capture_status is CaptureStatus.ERROR:
            logger.debug("Capture blocked by %s; waiting for clear_error()", self.error_message)
            return
        if self.capture.start(CaptureMode.CONTINUOUS):
            self._take_owned = True
            self._set_capture_status(CaptureStatus.LISTENING)
        else:
            # a previous take is still closing; its end event re-arms us
            logger.debug("Capture busy at turn %d", self.turn)

    @QtCore.pyqtSlot()
    def _on_playback_finished(self) -> None:
        if self._closed or self.stage is not TurnStage.SPEAKING:
            return
        self.speaking_changed.emit(False)
        self._next_turn()

    def _next_turn(self) -> None:
        self._settle_timer.stop()
        self._silence_timer.stop()
        if self.turn < len(self.script) - 1:
            self.turn += 1
            self._begin_turn()
        else:
            self._close_out()

    def _close_out(self) -> None:
        self.stage = TurnStage.DONE
        frozen = tuple(self._mistakes)
        self._mistakes = frozen
        logger.info("Dialogue finished with %d mistake(s)", len(frozen))
        self.shutdown()
        self.finished.emit(frozen)

    def shutdown(self) -> None:
        """Cancel timers and device work; stale callbacks become no-ops."""
        if self._closed:
            return
        self._closed = True
        self._settle_timer.stop()
        self._silence_timer.stop()
        try:
            self.playback.finished.disconnect(self._on_playback_finished)
        except TypeError:
            pass
        self.playback.cancel()
        if self.capture.active:
            self.capture.abort()
        self._take_owned = False
        if self.capture_status is CaptureStatus.LISTENING:
            self._set_capture_status(CaptureStatus.IDLE)

    # ---------------------------- submission ----------------------------

    def submit_turn(self, text: Optional[str] = None) -> bool:
        """Force the learner's current turn through with ``text`` (or what was heard)."""
        if self._closed or self._processed or self.current_kind is not TurnKind.SELF:
            return False
        self._submit(self.transcript if text is None else text)
        return True

    @QtCore.pyqtSlot()
    def _on_silence(self) -> None:
        if self._closed or self._processed:
            return
        text = self.transcript.strip()
        if text:
            self._submit(text)

    def _submit(self, text: str) -> None:
        if self._processed:
            return
        self._processed = True
        self._settle_timer.stop()
        self._silence_timer.stop()
        if self._take_owned and self.capture.active:
            self.capture.stop()
        self.stage = TurnStage.ANALYZING
        self.analyzing_changed.emit(True)
        logger.debug("Submitting turn %d: %r", self.turn, text)
        worker = AnalyzeWorker(self.service, text.strip(), self.current_line.text, self.turn, parent=self)
        worker.completed.connect(self._on_analyzed)
        worker.finished.connect(worker.deleteLater)
        self._worker = worker
        worker.start()

    @QtCore.pyqtSlot(int, object)
    def _on_analyzed(self, turn: int, mistakes: object) -> None:
        if self._closed or turn != self.turn or self.stage is not TurnStage.ANALYZING:
            return
        found = list(mistakes or [])
        self.analyzing_changed.emit(False)
        self._mistakes.extend(found)
        self.turn_completed.emit(turn, tuple(found))
        self._next_turn()

    # ---------------------------- capture events ----------------------------

    def on_capture_result(self, event: CaptureEvent) -> None:
        if self._closed or self._processed or not self._take_owned:
            return
        if self.stage is not TurnStage.LISTENING:
            return
        self.transcript = event.transcript
        self.word_count = count_spoken_words(self.transcript)
        self.transcript_changed.emit(self.transcript)
        self.word_count_changed.emit(self.word_count)
        self._silence_timer.start(int(self.settings.get("silence_timeout_ms", 2500)))

    def on_capture_error(self, kind: str) -> None:
        if self._closed or not self._take_owned:
            return
        if kind in BENIGN_CAPTURE_ERRORS:
            logger.debug("Capture interrupted (%s) at turn %d", kind, self.turn)
            self._set_capture_status(CaptureStatus.IDLE)
            return
        self._silence_timer.stop()
        self.error_message = capture_error_message(kind)
        logger.warning("Capture error %r at turn %d: %s", kind, self.turn, self.error_message)
        self._set_capture_status(CaptureStatus.ERROR)
        self.capture_error.emit(self.error_message)

    def on_capture_end(self) -> None:
        if self._closed:
            return
        self._take_owned = False
        if self.capture_status is CaptureStatus.LISTENING:
            self._set_capture_status(CaptureStatus.IDLE)
        if self._processed or self.stage is not TurnStage.LISTENING:
            return
        if self.capture_status is CaptureStatus.ERROR:
            return
        if self.transcript.strip():
            self._submit(self.transcript)
            return
        # nothing heard yet: listen again for the same turn
        self._settle_timer.start(int(self.settings.get("settle_delay_ms", 700)))

    def clear_error(self) -> None:
        """Lift a blocking capture error and resume listening if the turn needs it."""
        if self.capture_status is not CaptureStatus.ERROR:
            return
        self.error_message = None
        self._set_capture_status(CaptureStatus.IDLE)
        if not self._closed and not self._processed and self.stage is TurnStage.LISTENING:
            self._settle_timer.start(int(self.settings.get("settle_delay_ms", 700)))
