from __future__ import annotations

import logging
import queue
import time
from typing import Dict, List, Optional

import numpy as np
import sounddevice as sd
import whisper
from PyQt5 import QtCore

from audio_utils import is_voiced, trim_silence
from capture_session import CaptureSession
from models import CaptureEvent, CaptureMode, SpeechResult
from settings import default_settings, whisper_options
from workers import TranscribeWorker

logger = logging.getLogger(__name__)


def _error_kind(exc: Exception) -> str:
    text = str(exc).lower()
    if "permission" in text or "not allowed" in text or "denied" in text:
        return "not-allowed"
    return "audio-capture"


class MicCaptureSession(CaptureSession):
    """
    Microphone capture transcribed with Whisper.

    The PortAudio callback only queues blocks; a 100 ms timer on the event
    loop drains the queue, tracks voice activity and schedules
    transcriptions. Continuous takes re-transcribe the whole take at most
    every ``interim_interval_ms``, and only when new voiced audio arrived
    since the last pass (interim results; a repeat of the last interim
    text is not delivered). Single-shot takes end themselves after a tail
    of silence.
    """

    def __init__(self, settings: Optional[Dict] = None, parent=None):
        super().__init__(parent)
        self.settings = dict(settings or default_settings())
        self.sr = int(self.settings.get("sample_rate", 16_000))
        self.model = None

        self.stream: Optional[sd.InputStream] = None
        self._rec_queue: Optional[queue.Queue] = None
        self._rec_blocks: List[np.ndarray] = []
        self._xrun_count = 0

        self._tick = QtCore.QTimer(self)
        self._tick.setInterval(100)
        self._tick.timeout.connect(self._on_tick)

        self._tag = 0  # bumped per take and on cancel; stale workers are ignored
        self._worker: Optional[TranscribeWorker] = None
        self._final_pending = False
        self._t_start = 0.0
        self._t_last_voice = 0.0
        self._t_last_interim = 0.0
        self._heard_voice = False
        self._last_interim = ""

    def ensure_model(self) -> None:
        if self.model is None:
            name = self.settings.get("model_name", "base.en")
            logger.info("Loading Whisper model %s", name)
            self.model = whisper.load_model(name)

    # ---------------------------- device ----------------------------

    def _record_callback(self, indata, frames, time_info, status):
        if status:
            self._xrun_count += 1
        try:
            self._rec_queue.put_nowait(indata.copy())
        except (queue.Full, AttributeError):
            self._xrun_count += 1

    def _open(self, mode: CaptureMode) -> None:
        self._tag += 1
        self._rec_blocks = []
        self._xrun_count = 0
        self._final_pending = False
        self._heard_voice = False
        self._last_interim = ""
        self._t_start = self._t_last_voice = self._t_last_interim = time.monotonic()
        self._rec_queue = queue.Queue(maxsize=256)
        try:
            self.ensure_model()
        except (OSError, RuntimeError, ValueError) as e:
            logger.error("Whisper model unavailable: %s", e)
            self._deliver_error("audio-capture")
            self._deliver_end()
            return
        try:
            self.stream = sd.InputStream(
                samplerate=self.sr,
                channels=1,
                dtype="float32",
                blocksize=2048,
                latency="high",
                callback=self._record_callback,
            )
            self.stream.start()
        except sd.PortAudioError as e:
            logger.error("Microphone unavailable: %s", e)
            self._release_stream()
            self._deliver_error(_error_kind(e))
            self._deliver_end()
            return
        self._tick.start()

    def _release_stream(self) -> None:
        self._tick.stop()
        if self.stream is not None:
            try:
                self.stream.stop()
                self.stream.close()
            except sd.PortAudioError as e:
                logger.warning("Error closing input stream: %s", e)
            self.stream = None
        self._drain()
        if self._xrun_count:
            logger.debug("Input overflows / queue drops: %d", self._xrun_count)

    def _drain(self) -> None:
        if self._rec_queue is None:
            return
        threshold = float(self.settings.get("speech_threshold_db", -45.0))
        now = time.monotonic()
        while True:
            try:
                block = self._rec_queue.get_nowait()
            except queue.Empty:
                break
            self._rec_blocks.append(block.reshape(-1))
            if is_voiced(block, threshold):
                self._heard_voice = True
                self._t_last_voice = now

    def _take_audio(self) -> np.ndarray:
        if not self._rec_blocks:
            return np.zeros(0, dtype=np.float32)
        return trim_silence(np.concatenate(self._rec_blocks), self.sr)

    # ---------------------------- timing ----------------------------

    def _on_tick(self) -> None:
        self._drain()
        now = time.monotonic()
        elapsed = now - self._t_start

        if not self._heard_voice:
            if elapsed >= float(self.settings.get("no_speech_timeout_s", 8.0)):
                self._release_stream()
                self._deliver_error("no-speech")
                self._deliver_end()
            return

        if self._mode is CaptureMode.SINGLE_SHOT:
            tail = now - self._t_last_voice
            if (
                tail >= float(self.settings.get("single_shot_tail_s", 0.8))
                or elapsed >= float(self.settings.get("single_shot_max_s", 6.0))
            ):
                self.stop()
            return

        interval = int(self.settings.get("interim_interval_ms", 1000)) / 1000.0
        fresh_voice = self._t_last_voice > self._t_last_interim
        if fresh_voice and now - self._t_last_interim >= interval and self._worker is None:
            self._t_last_interim = now
            self._transcribe(final=False)

    def _transcribe(self, final: bool) -> None:
        audio = self._take_audio()
        worker = TranscribeWorker(self.model, audio, self._tag, self, options=whisper_options(self.settings))
        if final:
            worker.completed.connect(self._on_final)
            worker.failed.connect(self._on_final_failed)
        else:
            worker.completed.connect(self._on_interim)
            worker.failed.connect(self._on_interim_failed)
        worker.finished.connect(self._on_worker_finished)
        self._worker = worker
        worker.start()

    # ---------------------------- close ----------------------------

    def _close(self) -> None:
        self._release_stream()
        if not self._heard_voice:
            if self._mode is CaptureMode.SINGLE_SHOT:
                self._deliver_error("no-speech")
            self._deliver_end()
            return
        self._final_pending = True
        if self._worker is None:
            self._transcribe(final=True)
        # otherwise the final pass starts once the interim worker finishes

    def _cancel(self) -> None:
        self._tag += 1
        self._final_pending = False
        self._release_stream()
        self._rec_blocks = []

    # ---------------------------- worker slots ----------------------------

    @QtCore.pyqtSlot()
    def _on_worker_finished(self) -> None:
        worker = self.sender()
        if worker is self._worker:
            self._worker = None
        if worker is not None:
            worker.deleteLater()
        if self._final_pending and self._worker is None and self._active:
            self._transcribe(final=True)

    @QtCore.pyqtSlot(int, str)
    def _on_interim(self, tag: int, text: str) -> None:
        if tag != self._tag or self._final_pending or not text:
            return
        if text == self._last_interim:
            return
        self._last_interim = text
        self._deliver_result(CaptureEvent(0, (SpeechResult(text, is_final=False),)))

    @QtCore.pyqtSlot(int, str)
    def _on_interim_failed(self, tag: int, message: str) -> None:
        logger.warning("Interim transcription failed: %s", message)

    @QtCore.pyqtSlot(int, str)
    def _on_final(self, tag: int, text: str) -> None:
        if tag != self._tag:
            return
        self._final_pending = False
        if text:
            self._deliver_result(CaptureEvent(0, (SpeechResult(text, confidence=1.0, is_final=True),)))
        elif self._mode is CaptureMode.SINGLE_SHOT:
            self._deliver_error("no-speech")
        self._deliver_end()

    @QtCore.pyqtSlot(int, str)
    def _on_final_failed(self, tag: int, message: str) -> None:
        if tag != self._tag:
            return
        logger.warning("Final transcription failed: %s", message)
        self._final_pending = False
        self._deliver_end()
