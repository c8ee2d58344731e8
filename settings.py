from __future__ import annotations

import json
import logging
import os
from typing import Dict

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()


def default_settings() -> Dict:
    return {
        # turn timing (ms)
        "settle_delay_ms": 700,
        "silence_timeout_ms": 2500,
        "success_display_ms": 1500,
        "simulated_ms_per_char": 50,
        # language service
        "gemini_model": os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        "gemini_api_key": os.getenv("GEMINI_API_KEY", ""),
        "service": "auto",  # auto | gemini | offline
        "script_turns": 8,
        "scripts_dir": "",  # empty = bundled scripts/
        # capture
        "model_name": os.getenv("WHISPER_MODEL", "base.en"),
        "language": "en",
        "sample_rate": 16_000,
        "interim_interval_ms": 1000,
        "no_speech_timeout_s": 8.0,
        "single_shot_max_s": 6.0,
        "single_shot_tail_s": 0.8,
        "speech_threshold_db": -45.0,
        "beam_size": 1,
        "temperature": 0.0,
        # playback
        "voice_quality_hints": ["Google"],
        "speech_rate": 160,
    }


def settings_path() -> str:
    return os.path.abspath("settings.json")


def load_settings(defaults: Dict | None = None, path: str | None = None) -> Dict:
    settings = dict(defaults if defaults is not None else default_settings())
    path = path or settings_path()
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
                if isinstance(data, dict):
                    settings.update(data)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
    return settings


def save_settings(settings: Dict, path: str | None = None) -> None:
    path = path or settings_path()
    # never write the key back to disk
    data = {k: v for k, v in settings.items() if k != "gemini_api_key"}
    try:
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2)
    except OSError as e:
        logger.warning("Could not save settings to %s: %s", path, e)


def whisper_options(settings: Dict) -> Dict:
    language = None if settings.get("language") == "auto" else settings.get("language", "en")
    opts: Dict = dict(
        language=language,
        task="transcribe",
        temperature=float(settings.get("temperature", 0.0)),
        beam_size=int(settings.get("beam_size", 1)),
        without_timestamps=True,
        condition_on_previous_text=False,
        no_speech_threshold=0.45,
    )
    # fp16 only helps on CUDA; whisper warns and falls back on CPU
    try:
        import torch
        opts["fp16"] = bool(torch.cuda.is_available())
    except ImportError:
        opts["fp16"] = False
    return opts
