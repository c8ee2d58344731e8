import os

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from alignment_utils import align_mistakes
from capture_session import CaptureSession
from errors import ServiceError
from language_service import LanguageService
from models import CaptureEvent, CaptureMode, ScriptLine, SpeechResult
from playback_session import PlaybackSession
from settings import default_settings


class FakeCaptureSession(CaptureSession):
    """In-memory capture device; tests push results through the helpers."""

    def __init__(self):
        super().__init__()
        self.starts = []
        self.stops = 0
        self.aborts = 0
        self.refuse = False

    def start(self, mode=CaptureMode.CONTINUOUS):
        if self.refuse:
            return False
        if not self.active:
            self.starts.append(mode)
        return super().start(mode)

    def _open(self, mode):
        pass

    def _close(self):
        self.stops += 1
        self._deliver_end()

    def _cancel(self):
        self.aborts += 1

    def say(self, text, final=False):
        self._deliver_result(CaptureEvent(0, (SpeechResult(text, is_final=final),)))

    def fail(self, kind):
        self._deliver_error(kind)

    def finish(self):
        self._deliver_end()


class FakePlaybackSession(PlaybackSession):
    """No voice, so every utterance completes on the simulated timer."""

    def __init__(self, settings):
        super().__init__(settings)
        self.spoken = []

    def speak(self, text):
        self.spoken.append(text)
        super().speak(text)


class FakeLanguageService(LanguageService):
    name = "fake"

    def __init__(self, script=None, breakdowns=None, fail_script=False):
        super().__init__()
        self.script = list(script or [])
        self.breakdowns = dict(breakdowns or {})
        self.fail_script = fail_script
        self.script_calls = []
        self.analyze_calls = []

    def _generate_script(self, scene, user_role, ai_role, difficulty):
        self.script_calls.append((scene, user_role, ai_role, difficulty))
        if self.fail_script:
            raise ServiceError("quota exceeded")
        return list(self.script)

    def _analyze(self, spoken, target):
        self.analyze_calls.append((spoken, target))
        return align_mistakes(spoken, target)

    def _breakdown(self, word):
        return list(self.breakdowns.get(word, [word]))


SHOP_SCRIPT = [
    ScriptLine("Shopkeeper", "Welcome to my shop! Can I help you?"),
    ScriptLine("Customer", "Yes please, I want some apples."),
    ScriptLine("Shopkeeper", "Red apples or green apples?"),
    ScriptLine("Customer", "Red apples, please."),
    ScriptLine("Shopkeeper", "Here you are. That is two dollars."),
    ScriptLine("Customer", "Here is the money."),
    ScriptLine("Shopkeeper", "Thank you! Have a nice day."),
    ScriptLine("Customer", "Thank you, goodbye!"),
]


@pytest.fixture
def fast_settings():
    settings = default_settings()
    settings.update(
        settle_delay_ms=5,
        silence_timeout_ms=40,
        success_display_ms=20,
        simulated_ms_per_char=0,
        gemini_api_key="",
    )
    return settings


@pytest.fixture
def capture(qapp):
    return FakeCaptureSession()


@pytest.fixture
def playback(qapp, fast_settings):
    return FakePlaybackSession(fast_settings)


@pytest.fixture
def service():
    return FakeLanguageService(script=SHOP_SCRIPT, breakdowns={"together": ["tu", "geh", "dhuh"]})


def wire(capture, engine):
    """Forward capture events to ``engine`` the way the controller does."""
    capture.result.connect(engine.on_capture_result)
    capture.error.connect(engine.on_capture_error)
    capture.ended.connect(engine.on_capture_end)
