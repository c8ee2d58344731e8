from __future__ import annotations

import logging
import os
import tempfile
from typing import Dict, List, Optional

import pyttsx3
import sounddevice as sd
import soundfile as sf
from PyQt5 import QtCore

from audio_player import AudioPlayer
from playback_session import PlaybackSession, Voice
from workers import SynthesisWorker

logger = logging.getLogger(__name__)


def _voice_lang(raw) -> str:
    langs = list(getattr(raw, "languages", None) or [])
    if not langs:
        return ""
    lang = langs[0]
    if isinstance(lang, bytes):
        # espeak reports b"\x05en-us"
        lang = lang.decode("utf-8", "ignore").lstrip("\x00\x01\x02\x03\x04\x05")
    return str(lang)


class TtsPlaybackSession(PlaybackSession):
    """
    pyttsx3 renders each utterance to a WAV file in a worker thread, the
    file is played through AudioPlayer and a 50 ms timer watches for the
    end of playback. Synthesis or device failures complete the utterance.
    """

    def __init__(self, settings: Optional[Dict] = None, parent=None):
        super().__init__(settings, parent)
        self.player: Optional[AudioPlayer] = None
        self._worker: Optional[SynthesisWorker] = None
        self._play_tag = 0
        self._play_timer = QtCore.QTimer(self)
        self._play_timer.setInterval(50)
        self._play_timer.timeout.connect(self._poll_playback)
        self._tmp_dir = tempfile.mkdtemp(prefix="talkers-tts-")

    def load_voices(self) -> None:
        voices: List[Voice] = []
        try:
            engine = pyttsx3.init()
            for raw in engine.getProperty("voices") or []:
                voices.append(Voice(id=str(raw.id), name=str(raw.name or ""), lang=_voice_lang(raw)))
            engine.stop()
        except (RuntimeError, OSError, ImportError) as e:
            logger.warning("No speech synthesizer available (%s); playback will be simulated", e)
        self.set_voices(voices)

    def _utter(self, text: str, voice: Voice, tag: int) -> None:
        out_path = os.path.join(self._tmp_dir, f"utt_{tag}.wav")
        worker = SynthesisWorker(
            text, voice.id, out_path, tag, rate=int(self.settings.get("speech_rate", 160)), parent=self
        )
        worker.completed.connect(self._on_synthesized)
        worker.failed.connect(self._on_synthesis_failed)
        worker.finished.connect(worker.deleteLater)
        self._worker = worker
        worker.start()

    @QtCore.pyqtSlot(int, str)
    def _on_synthesized(self, tag: int, path: str) -> None:
        try:
            if tag != self._tag:
                return
            try:
                data, sr = sf.read(path, dtype="float32")
                if self.player is None or self.player.sr != sr:
                    if self.player is not None:
                        self.player.close()
                    self.player = AudioPlayer(sr)
                self.player.load(data)
                self.player.play()
            except (RuntimeError, OSError, sd.PortAudioError) as e:
                logger.error("Could not play synthesized speech: %s", e)
                self._complete(tag)
                return
            logger.debug("Playing %.1fs utterance", self.player.duration)
            self._play_tag = tag
            self._play_timer.start()
            self.started.emit()
        finally:
            try:
                os.remove(path)
            except OSError:
                pass

    @QtCore.pyqtSlot(int, str)
    def _on_synthesis_failed(self, tag: int, message: str) -> None:
        logger.warning("Synthesis failed, skipping utterance: %s", message)
        self._complete(tag)

    @QtCore.pyqtSlot()
    def _poll_playback(self) -> None:
        if self.player is not None and self.player.playing:
            return
        self._play_timer.stop()
        self._complete(self._play_tag)

    def _halt(self) -> None:
        self._play_timer.stop()
        if self.player is not None:
            self.player.stop()

    def close(self) -> None:
        self.cancel()
        if self.player is not None:
            self.player.close()
            self.player = None
