import numpy as np
import sounddevice as sd


class AudioPlayer:
    """
    Plays one synthesized utterance at a time through a single output
    stream. ``load()`` replaces the utterance, ``play()`` starts it from
    the top and ``stop()`` cuts it off at once.
    """

    def __init__(self, samplerate: int):
        self.sr = int(samplerate)
        self.data = np.zeros((0,), dtype=np.float32)
        self.idx = 0
        self.stream = sd.OutputStream(
            samplerate=self.sr,
            channels=1,
            dtype="float32",
            callback=self._callback,
            blocksize=1024,
            latency="high",
        )

    def _callback(self, outdata, frames, time_info, status):
        # PortAudio thread: copy the next block, pad the tail with silence
        n = max(0, min(frames, self.data.size - self.idx))
        outdata[:n, 0] = self.data[self.idx:self.idx + n]
        outdata[n:, 0] = 0
        self.idx += n
        if n < frames:
            raise sd.CallbackStop()

    def load(self, data: np.ndarray) -> None:
        self.stop()
        x = np.asarray(data, dtype=np.float32)
        if x.ndim > 1:
            # synthesizers may hand back stereo
            x = x.mean(axis=1)
        self.data = np.ascontiguousarray(x, dtype=np.float32)
        self.idx = 0

    @property
    def duration(self) -> float:
        return self.data.size / float(self.sr)

    def play(self) -> None:
        if self.data.size == 0:
            return
        self.idx = 0
        # a stream that ended through CallbackStop must be reset before restart
        if not self.stream.stopped:
            self.stream.abort()
        self.stream.start()

    def stop(self) -> None:
        if self.stream.active:
            self.stream.abort()

    def close(self) -> None:
        """Release the output device for good."""
        self.stop()
        self.stream.close()

    @property
    def playing(self) -> bool:
        return bool(self.stream.active) and self.idx < self.data.size
