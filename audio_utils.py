from __future__ import annotations

import numpy as np


def _frame_rms_db(x: np.ndarray, frame_len: int, hop: int) -> np.ndarray:
    """Smoothed per-frame RMS level in dB."""
    n = x.size
    pad = (-(n - frame_len) % hop) if n >= frame_len else (frame_len - n)
    x_pad = np.pad(x, (0, pad), mode="constant", constant_values=0.0)
    num_frames = 1 + max(0, (x_pad.size - frame_len) // hop)
    strided = np.lib.stride_tricks.as_strided(
        x_pad,
        shape=(num_frames, frame_len),
        strides=(x_pad.strides[0] * hop, x_pad.strides[0]),
        writeable=False,
    )
    rms = np.sqrt(np.maximum(1e-12, (strided * strided).mean(axis=1)))
    smooth_win = 2
    kernel = np.ones(smooth_win, dtype=np.float32) / float(smooth_win)
    rms_smooth = np.convolve(rms, kernel, mode="same")
    return 20.0 * np.log10(np.maximum(rms_smooth, 1e-8))


def level_db(block: np.ndarray) -> float:
    """Overall RMS level of one capture block in dB (-160 for silence)."""
    x = np.asarray(block, dtype=np.float32).reshape(-1)
    if x.size == 0:
        return -160.0
    rms = float(np.sqrt(np.mean(x * x)))
    return 20.0 * float(np.log10(max(rms, 1e-8)))


def is_voiced(block: np.ndarray, threshold_db: float = -45.0) -> bool:
    return level_db(block) > float(threshold_db)


def trim_silence(
    y: np.ndarray,
    sr: int,
    threshold_db: float = -50.0,
    window_ms: float = 20.0,
    hop_ms: float = 10.0,
    pre_pad_ms: float = 120.0,
    post_pad_ms: float = 280.0,
) -> np.ndarray:
    """
    Cut leading/trailing silence before transcription, keeping generous
    padding so word onsets survive. Returns ``y`` unchanged when nothing
    rises above ``threshold_db``.
    """
    x = np.asarray(y, dtype=np.float32).reshape(-1)
    n = x.size
    if n == 0:
        return x

    frame_len = max(3, int(sr * (window_ms / 1000.0)))
    hop = max(1, int(sr * (hop_ms / 1000.0)))
    active = _frame_rms_db(x, frame_len, hop) > float(threshold_db)
    if not np.any(active):
        return x
    first_f = int(np.argmax(active))
    last_f = int(len(active) - np.argmax(active[::-1]) - 1)

    i1 = max(0, first_f * hop - int(sr * (pre_pad_ms / 1000.0)))
    i2 = min(n, last_f * hop + frame_len + int(sr * (post_pad_ms / 1000.0)))
    if i2 <= i1:
        return x
    return x[i1:i2]
