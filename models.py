from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Tuple


class Phase(enum.Enum):
    SCENE_SELECT = "scene_select"
    CHARACTER_SELECT = "character_select"
    SCRIPT_LOADING = "script_loading"
    DIALOGUE = "dialogue"
    PRACTICE_PREP = "practice_prep"
    PRACTICE = "practice"
    COMPLETE = "complete"


class CaptureStatus(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ERROR = "error"


class PracticeStatus(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    SUCCESS = "success"
    TRY_AGAIN = "try_again"


class TurnKind(enum.Enum):
    SELF = "self"    # read aloud by the learner
    OTHER = "other"  # synthesized


class CaptureMode(enum.Enum):
    CONTINUOUS = "continuous"    # interim results until stopped
    SINGLE_SHOT = "single_shot"  # one final result, then end


# capture error kinds that only interrupt listening
BENIGN_CAPTURE_ERRORS = frozenset({"aborted", "no-speech"})
PERMISSION_CAPTURE_ERRORS = frozenset({"not-allowed", "service-not-allowed"})


@dataclass(frozen=True)
class ScriptLine:
    speaker: str
    text: str


@dataclass(frozen=True)
class Mistake:
    """One word-level divergence. Empty ``said`` is an omission,
    empty ``expected`` an insertion."""

    said: str = ""
    expected: str = ""


@dataclass(frozen=True)
class PracticeWord:
    word: str
    phonemes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SpeechResult:
    transcript: str
    confidence: float = 0.0
    is_final: bool = False


@dataclass(frozen=True)
class CaptureEvent:
    """A transcript update from the capture device.

    ``results`` is the full result list of the listening session;
    ``result_index`` is the first entry changed by this update.
    """

    result_index: int = 0
    results: Tuple[SpeechResult, ...] = field(default_factory=tuple)

    @property
    def transcript(self) -> str:
        return "".join(r.transcript for r in self.results[self.result_index:])

    @property
    def is_final(self) -> bool:
        return bool(self.results) and all(r.is_final for r in self.results)


def capture_error_message(kind: str) -> str:
    if kind in PERMISSION_CAPTURE_ERRORS:
        return "Microphone access denied."
    return f'Mic error: "{kind}".'
