from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import numpy as np
import pyttsx3
from PyQt5 import QtCore

from models import PracticeWord

logger = logging.getLogger(__name__)


class TranscribeWorker(QtCore.QThread):
    """
    Runs Whisper on a snapshot of captured audio so the event loop stays
    responsive.
    Emits:
      completed(tag: int, text: str)
      failed(tag: int, message: str)
    ``tag`` lets the capture session drop results of an aborted take.
    """

    completed = QtCore.pyqtSignal(int, str)
    failed = QtCore.pyqtSignal(int, str)

    def __init__(self, model, audio: np.ndarray, tag: int, parent=None, options: Optional[Dict] = None):
        super().__init__(parent)
        self._model = model
        self._audio = np.ascontiguousarray(audio, dtype=np.float32)
        self._tag = tag
        self._options = options or {}

    def run(self) -> None:
        try:
            result = self._model.transcribe(self._audio, **self._options)
            self.completed.emit(self._tag, str(result["text"]).strip())
        except Exception as e:
            logger.exception("Transcription failed")
            self.failed.emit(self._tag, str(e))


class AnalyzeWorker(QtCore.QThread):
    """
    Sends one submitted turn to the reading analyzer.
    Emits completed(turn: int, mistakes: list[Mistake]).
    """

    completed = QtCore.pyqtSignal(int, object)

    def __init__(self, service, spoken: str, target: str, turn: int, parent=None):
        super().__init__(parent)
        self._service = service
        self._spoken = spoken
        self._target = target
        self._turn = turn

    def run(self) -> None:
        try:
            mistakes = self._service.analyze_reading(self._spoken, self._target)
        except Exception:
            logger.exception("Analyzer raised for turn %d", self._turn)
            mistakes = []
        self.completed.emit(self._turn, list(mistakes))


class ScriptWorker(QtCore.QThread):
    """
    Emits:
      completed(lines: list[ScriptLine])
      failed(message: str)
    """

    completed = QtCore.pyqtSignal(object)
    failed = QtCore.pyqtSignal(str)

    def __init__(self, service, scene: str, user_role: str, ai_role: str, difficulty: str, parent=None):
        super().__init__(parent)
        self._service = service
        self._args = (scene, user_role, ai_role, difficulty)

    def run(self) -> None:
        try:
            lines = self._service.generate_script(*self._args)
        except Exception as e:
            logger.error("Script generation failed: %s", e)
            self.failed.emit(str(e))
            return
        self.completed.emit(list(lines))


class BreakdownWorker(QtCore.QThread):
    """
    Fetches the syllables of every practice word concurrently and emits
    completed(words: list[PracticeWord]) once all of them are back, in the
    order the words were given.
    """

    completed = QtCore.pyqtSignal(object)

    def __init__(self, service, words: Sequence[str], max_workers: int = 4, parent=None):
        super().__init__(parent)
        self._service = service
        self._words = list(words)
        self._max_workers = max(1, max_workers)

    def _one(self, word: str) -> PracticeWord:
        try:
            phonemes = self._service.phonetic_breakdown(word)
        except Exception:
            logger.exception("Phonetic breakdown raised for %r", word)
            phonemes = [word]
        return PracticeWord(word=word, phonemes=tuple(phonemes))

    def run(self) -> None:
        results: List[PracticeWord] = []
        if self._words:
            with ThreadPoolExecutor(max_workers=self._max_workers) as pool:
                results = list(pool.map(self._one, self._words))
        self.completed.emit(results)


class SynthesisWorker(QtCore.QThread):
    """
    Renders one utterance to a WAV file with pyttsx3.
    Emits:
      completed(tag: int, path: str)
      failed(tag: int, message: str)
    """

    completed = QtCore.pyqtSignal(int, str)
    failed = QtCore.pyqtSignal(int, str)

    def __init__(self, text: str, voice_id: Optional[str], out_path: str, tag: int, rate: int = 160, parent=None):
        super().__init__(parent)
        self._text = text
        self._voice_id = voice_id
        self._out_path = out_path
        self._tag = tag
        self._rate = rate

    def run(self) -> None:
        try:
            engine = pyttsx3.init()
            engine.setProperty("rate", self._rate)
            if self._voice_id:
                engine.setProperty("voice", self._voice_id)
            engine.save_to_file(self._text, self._out_path)
            engine.runAndWait()
            self.completed.emit(self._tag, self._out_path)
        except Exception as e:
            logger.exception("Speech synthesis failed")
            self.failed.emit(self._tag, str(e))
