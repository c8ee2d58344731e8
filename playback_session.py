from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from PyQt5 import QtCore

from settings import default_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Voice:
    id: str
    name: str
    lang: str


def _is_english(voice: Voice) -> bool:
    return voice.lang.lower().replace("_", "-").startswith("en")


def select_voice(voices: Sequence[Voice], quality_hints: Sequence[str] = ("Google",)) -> Optional[Voice]:
    """
    English voice whose name carries a quality hint, else any English
    voice, else None. First match in ``voices`` order wins.
    """
    for voice in voices:
        if _is_english(voice) and any(h in voice.name for h in quality_hints):
            return voice
    return next((v for v in voices if _is_english(v)), None)


class PlaybackSession(QtCore.QObject):
    """
    Text-to-speech contract used by the dialogue engine.

    Emits:
      started()   audio began (or simulated playback began)
      finished()  the current utterance completed; never for cancelled ones

    With no usable voice, completion is simulated after
    ``len(text) * simulated_ms_per_char`` so a turn never stalls.
    """

    started = QtCore.pyqtSignal()
    finished = QtCore.pyqtSignal()

    def __init__(self, settings: Optional[Dict] = None, parent=None):
        super().__init__(parent)
        self.settings = dict(settings or default_settings())
        self.voices: List[Voice] = []
        self.voice: Optional[Voice] = None
        self._tag = 0
        self._speaking = False
        self._sim_timer = QtCore.QTimer(self)
        self._sim_timer.setSingleShot(True)
        self._sim_timer.timeout.connect(self._on_simulated_end)

    @property
    def speaking(self) -> bool:
        return self._speaking

    def set_voices(self, voices: Sequence[Voice]) -> None:
        self.voices = list(voices)
        self.voice = select_voice(self.voices, self.settings.get("voice_quality_hints", ("Google",)))
        logger.debug("Voice: %s", self.voice.name if self.voice else "none (simulated)")

    def speak(self, text: str) -> None:
        """Start ``text``, cancelling anything still playing."""
        self.cancel()
        self._tag += 1
        self._speaking = True
        if self.voice is None:
            per_char = int(self.settings.get("simulated_ms_per_char", 50))
            self._sim_timer.start(max(0, len(text) * per_char))
            self.started.emit()
            return
        self._utter(text, self.voice, self._tag)

    def cancel(self) -> None:
        self._tag += 1
        self._sim_timer.stop()
        if self._speaking:
            self._speaking = False
            self._halt()

    # ----------------------- subclass plumbing -----------------------

    def _utter(self, text: str, voice: Voice, tag: int) -> None:
        raise NotImplementedError

    def _halt(self) -> None:
        """Silence the device; called only while an utterance is live."""

    def _complete(self, tag: int) -> None:
        if tag != self._tag or not self._speaking:
            return
        self._speaking = False
        self.finished.emit()

    @QtCore.pyqtSlot()
    def _on_simulated_end(self) -> None:
        self._complete(self._tag)
