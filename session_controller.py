from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

from PyQt5 import QtCore

from dialogue_engine import DialogueEngine
from models import CaptureEvent, Mistake, Phase, ScriptLine
from practice_engine import PracticeEngine
from scenes import SCENES, difficulty_description, partner_role, roles_for
from settings import default_settings
from workers import ScriptWorker

logger = logging.getLogger(__name__)

SCRIPT_FAILED = "Sorry, I couldn't create a script. Please try again."


class SessionController(QtCore.QObject):
    """
    Owns the rehearsal phase and the single active engine.

    The controller is the only subscriber of the capture session; every
    capture event is forwarded to whichever engine is active, so an engine
    that has been shut down never sees another event.
    """

    phase_changed = QtCore.pyqtSignal(object)
    error_changed = QtCore.pyqtSignal(str)
    script_ready = QtCore.pyqtSignal(object)  # tuple[ScriptLine]
    dialogue_started = QtCore.pyqtSignal(object)  # DialogueEngine
    practice_started = QtCore.pyqtSignal(object)  # PracticeEngine
    completed = QtCore.pyqtSignal()

    def __init__(
        self,
        capture,
        playback,
        service,
        settings: Optional[Dict] = None,
        grade: int = 1,
        level: int = 0,
        parent=None,
    ):
        super().__init__(parent)
        self.capture = capture
        self.playback = playback
        self.service = service
        self.settings = dict(settings or default_settings())
        self.grade = grade
        self.level = level

        self.phase = Phase.SCENE_SELECT
        self.scene: Optional[str] = None
        self.role: Optional[str] = None
        self.ai_role: Optional[str] = None
        self.script: Tuple[ScriptLine, ...] = ()
        self.mistakes: Tuple[Mistake, ...] = ()
        self.error_message: Optional[str] = None

        self.dialogue: Optional[DialogueEngine] = None
        self.practice: Optional[PracticeEngine] = None
        self._script_worker: Optional[ScriptWorker] = None

        self.capture.result.connect(self._on_capture_result)
        self.capture.error.connect(self._on_capture_error)
        self.capture.ended.connect(self._on_capture_end)

    @property
    def scenes(self):
        return list(SCENES)

    @property
    def active_engine(self):
        return self.practice or self.dialogue

    def _set_phase(self, phase: Phase) -> None:
        if phase is self.phase:
            return
        logger.debug("Phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase
        self.phase_changed.emit(phase)

    def _set_error(self, message: Optional[str]) -> None:
        self.error_message = message
        self.error_changed.emit(message or "")

    # ---------------------------- selection ----------------------------

    def select_scene(self, scene: str) -> None:
        if self.phase not in (Phase.SCENE_SELECT, Phase.CHARACTER_SELECT):
            raise RuntimeError(f"Cannot pick a scene during {self.phase.value}")
        roles_for(scene)  # raises ValueError for unknown scenes
        self.scene = scene
        self.role = self.ai_role = None
        self._set_phase(Phase.CHARACTER_SELECT)

    def select_character(self, role: str) -> None:
        if self.phase is not Phase.CHARACTER_SELECT or self.scene is None:
            raise RuntimeError(f"Cannot pick a character during {self.phase.value}")
        if role not in roles_for(self.scene):
            raise ValueError(f"{role!r} is not a role of {self.scene!r}")
        self.role = role
        self.ai_role = partner_role(self.scene, role)
        self.mistakes = ()
        self._set_error(None)
        self._set_phase(Phase.SCRIPT_LOADING)

        difficulty = difficulty_description(self.grade, self.level)
        logger.info("Loading script: %s, learner %s, AI %s", self.scene, role, self.ai_role)
        worker = ScriptWorker(self.service, self.scene, role, self.ai_role, difficulty, parent=self)
        worker.completed.connect(self._on_script)
        worker.failed.connect(self._on_script_failed)
        worker.finished.connect(worker.deleteLater)
        self._script_worker = worker
        worker.start()

    def back_to_scenes(self) -> None:
        self._release_engines()
        self.scene = self.role = self.ai_role = None
        self.script = ()
        self._set_phase(Phase.SCENE_SELECT)

    def shutdown(self) -> None:
        self._release_engines()
        if self.capture.active:
            self.capture.abort()
        self.playback.cancel()

    # ---------------------------- script ----------------------------

    @QtCore.pyqtSlot(object)
    def _on_script(self, lines: object) -> None:
        if self.phase is not Phase.SCRIPT_LOADING or self.sender() is not self._script_worker:
            logger.debug("Discarding script that arrived during %s", self.phase.value)
            return
        self.script = tuple(lines)
        self.script_ready.emit(self.script)
        self._set_phase(Phase.DIALOGUE)

        engine = DialogueEngine(
            self.script, self.role, self.capture, self.playback, self.service, self.settings, parent=self
        )
        engine.finished.connect(self._on_dialogue_finished)
        self.dialogue = engine
        self.dialogue_started.emit(engine)
        engine.start()

    @QtCore.pyqtSlot(str)
    def _on_script_failed(self, message: str) -> None:
        if self.phase is not Phase.SCRIPT_LOADING or self.sender() is not self._script_worker:
            return
        logger.warning("Script unavailable: %s", message)
        self._set_error(SCRIPT_FAILED)
        self._set_phase(Phase.CHARACTER_SELECT)

    # ---------------------------- engines ----------------------------

    def _release_engines(self) -> None:
        for engine in (self.dialogue, self.practice):
            if engine is not None:
                engine.shutdown()
        self.dialogue = None
        self.practice = None

    @QtCore.pyqtSlot(object)
    def _on_dialogue_finished(self, mistakes: object) -> None:
        if self.phase is not Phase.DIALOGUE:
            return
        self.mistakes = tuple(mistakes)
        self._release_engines()
        if not self.mistakes:
            self._complete()
            return
        self._set_phase(Phase.PRACTICE_PREP)
        engine = PracticeEngine(
            self.mistakes, self.capture, self.service, self.playback, self.settings, parent=self
        )
        engine.prepared.connect(self._on_practice_prepared)
        engine.completed.connect(self._complete)
        self.practice = engine
        self.practice_started.emit(engine)
        engine.prepare()

    @QtCore.pyqtSlot(object)
    def _on_practice_prepared(self, words: object) -> None:
        if words and self.phase is Phase.PRACTICE_PREP:
            self._set_phase(Phase.PRACTICE)

    @QtCore.pyqtSlot()
    def _complete(self) -> None:
        if self.phase is Phase.COMPLETE:
            return
        self._release_engines()
        self._set_phase(Phase.COMPLETE)
        logger.info("Rehearsal complete with %d mistake(s)", len(self.mistakes))
        self.completed.emit()

    # ---------------------------- capture dispatch ----------------------------

    @QtCore.pyqtSlot(object)
    def _on_capture_result(self, event: CaptureEvent) -> None:
        engine = self.active_engine
        if engine is not None:
            engine.on_capture_result(event)

    @QtCore.pyqtSlot(str)
    def _on_capture_error(self, kind: str) -> None:
        engine = self.active_engine
        if engine is not None:
            engine.on_capture_error(kind)

    @QtCore.pyqtSlot()
    def _on_capture_end(self) -> None:
        engine = self.active_engine
        if engine is not None:
            engine.on_capture_end()
