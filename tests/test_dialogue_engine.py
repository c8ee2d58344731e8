import pytest
from PyQt5 import QtCore

from conftest import SHOP_SCRIPT, FakeCaptureSession, wire
from dialogue_engine import DialogueEngine, classify_turn
from models import CaptureMode, CaptureStatus, Mistake, ScriptLine, TurnKind


def make_engine(capture, playback, service, settings, script=SHOP_SCRIPT, role="Customer"):
    engine = DialogueEngine(script, role, capture, playback, service, settings)
    wire(capture, engine)
    return engine


def read_lines(capture, engine, texts=None):
    """Answer every learner take with ``texts[turn]`` (default: the line itself)."""

    def on_started():
        text = (texts or {}).get(engine.turn, engine.script[engine.turn].text)
        QtCore.QTimer.singleShot(0, lambda: capture.say(text, final=True))

    capture.started.connect(on_started)


def test_classify_turn():
    assert classify_turn(SHOP_SCRIPT, 0, "Customer") is TurnKind.OTHER
    assert classify_turn(SHOP_SCRIPT, 1, "Customer") is TurnKind.SELF
    assert classify_turn(SHOP_SCRIPT, 0, "Shopkeeper") is TurnKind.SELF


def test_perfect_reading_visits_every_turn_once(qtbot, capture, playback, service, fast_settings):
    engine = make_engine(capture, playback, service, fast_settings)
    visited = []
    engine.turn_started.connect(lambda turn, learner: visited.append((turn, learner)))
    read_lines(capture, engine)

    with qtbot.waitSignal(engine.finished, timeout=5000) as blocker:
        engine.start()

    assert blocker.args == [()]
    assert visited == [(i, i % 2 == 1) for i in range(8)]
    assert playback.spoken == [line.text for line in SHOP_SCRIPT[0::2]]
    assert [target for _, target in service.analyze_calls] == [line.text for line in SHOP_SCRIPT[1::2]]
    assert capture.starts == [CaptureMode.CONTINUOUS] * 4
    assert engine.closed


def test_mistakes_accumulate_in_script_order_and_freeze(qtbot, capture, playback, service, fast_settings):
    engine = make_engine(capture, playback, service, fast_settings)
    read_lines(capture, engine, {1: "yes please i want apples", 5: "here is money"})

    with qtbot.waitSignal(engine.finished, timeout=5000) as blocker:
        engine.start()

    expected = (Mistake("", "some"), Mistake("", "the"))
    assert blocker.args[0] == expected
    assert engine.mistakes == expected
    assert isinstance(engine._mistakes, tuple)
    assert not engine.submit_turn("anything")
    capture.start()
    capture.say("late words")
    assert engine.mistakes == expected


def test_submission_is_idempotent_when_end_and_timer_race(qtbot, capture, playback, service, fast_settings):
    script = [ScriptLine("Shopkeeper", "Hello!"), ScriptLine("Customer", "Red apples, please.")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    second_submits = []

    def on_started():
        def race():
            capture.say("red apples please")
            capture.finish()  # end with a pending transcript submits at once
            second_submits.append(engine.submit_turn())
            engine._on_silence()

        QtCore.QTimer.singleShot(0, race)

    capture.started.connect(on_started)
    with qtbot.waitSignal(engine.finished, timeout=5000):
        engine.start()
    qtbot.wait(100)

    assert second_submits == [False]
    assert service.analyze_calls == [("red apples please", "Red apples, please.")]


def test_empty_turn_counts_every_word_as_omitted(qtbot, capture, playback, service, fast_settings):
    script = [ScriptLine("Customer", "Hello!"), ScriptLine("Shopkeeper", "Can I help you")]
    engine = make_engine(capture, playback, service, fast_settings, script=script, role="Shopkeeper")
    capture.started.connect(lambda: QtCore.QTimer.singleShot(0, lambda: engine.submit_turn("")))

    with qtbot.waitSignal(engine.finished, timeout=5000) as blocker:
        engine.start()

    assert blocker.args[0] == tuple(Mistake("", w) for w in ["Can", "I", "help", "you"])
    assert service.analyze_calls == []


def test_word_count_follows_latest_transcript(qtbot, capture, playback, service, fast_settings):
    fast_settings["silence_timeout_ms"] = 2000
    script = [ScriptLine("Customer", "Red apples, please.")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    counts = []
    engine.word_count_changed.connect(counts.append)

    engine.start()
    qtbot.waitUntil(lambda: capture.active, timeout=1000)
    capture.say("red")
    capture.say("red apples ,")
    assert engine.transcript == "red apples ,"
    assert counts[-2:] == [1, 2]
    engine.shutdown()


def test_benign_error_restarts_capture_for_same_turn(qtbot, capture, playback, service, fast_settings):
    script = [ScriptLine("Customer", "Red apples, please.")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    statuses = []
    engine.capture_status_changed.connect(statuses.append)

    def on_started():
        if len(capture.starts) == 1:
            QtCore.QTimer.singleShot(0, lambda: (capture.fail("no-speech"), capture.finish()))
        else:
            QtCore.QTimer.singleShot(0, lambda: capture.say("red apples please", final=True))

    capture.started.connect(on_started)
    with qtbot.waitSignal(engine.finished, timeout=5000) as blocker:
        engine.start()

    assert blocker.args[0] == ()
    assert len(capture.starts) == 2
    assert CaptureStatus.ERROR not in statuses
    assert engine.error_message is None


@pytest.mark.parametrize(
    "kind, message",
    [("not-allowed", "Microphone access denied."), ("audio-capture", 'Mic error: "audio-capture".')],
)
def test_blocking_error_waits_for_clear(qtbot, capture, playback, service, fast_settings, kind, message):
    script = [ScriptLine("Customer", "Red apples, please.")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    errors = []
    engine.capture_error.connect(errors.append)

    def on_started():
        if len(capture.starts) == 1:
            QtCore.QTimer.singleShot(0, lambda: (capture.fail(kind), capture.finish()))
        else:
            QtCore.QTimer.singleShot(0, lambda: capture.say("red apples please", final=True))

    capture.started.connect(on_started)
    engine.start()
    qtbot.waitUntil(lambda: errors == [message], timeout=1000)
    qtbot.wait(100)
    assert len(capture.starts) == 1
    assert engine.capture_status is CaptureStatus.ERROR

    with qtbot.waitSignal(engine.finished, timeout=5000):
        engine.clear_error()
    assert len(capture.starts) == 2


def test_other_turn_stops_capture_before_speaking(qtbot, capture, playback, service, fast_settings):
    script = [ScriptLine("Shopkeeper", "Hello!")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    capture.start()
    with qtbot.waitSignal(engine.finished, timeout=5000):
        engine.start()
        assert not capture.active
    assert capture.stops == 1
    assert playback.spoken == ["Hello!"]


def test_shutdown_discards_pending_analysis(qtbot, capture, playback, service, fast_settings):
    script = [ScriptLine("Customer", "Red apples, please."), ScriptLine("Shopkeeper", "Here you are.")]
    engine = make_engine(capture, playback, service, fast_settings, script=script)
    finished = []
    engine.finished.connect(finished.append)

    engine.start()
    qtbot.waitUntil(lambda: capture.active, timeout=1000)
    capture.say("red apples please")
    assert engine.submit_turn()
    engine.shutdown()
    qtbot.wait(200)

    assert finished == []
    assert engine.turn == 0
    assert playback.spoken == []


class SlowStopCapture(FakeCaptureSession):
    """A graceful stop hands over the last words heard, and the end, a little later."""

    def __init__(self):
        super().__init__()
        self.heard = ""

    def _open(self, mode):
        self.heard = ""

    def say(self, text, final=False):
        self.heard = text
        super().say(text, final)

    def _close(self):
        self.stops += 1
        heard = self.heard

        def deliver():
            if heard:
                self.say(heard, final=True)
            self._deliver_end()

        QtCore.QTimer.singleShot(150, deliver)


def test_closing_take_never_feeds_the_next_learner_turn(qtbot, playback, service, fast_settings):
    capture = SlowStopCapture()
    script = [
        ScriptLine("Shopkeeper", "Can I help you?"),
        ScriptLine("Customer", "Red apples, please."),
        ScriptLine("Customer", "Here is the money."),
    ]
    engine = make_engine(capture, playback, service, fast_settings, script=script)

    def on_started():
        if len(capture.starts) == 1:
            QtCore.QTimer.singleShot(0, lambda: capture.say("red apples please"))

    capture.started.connect(on_started)
    engine.start()
    qtbot.waitUntil(lambda: engine.turn == 2 and len(capture.starts) == 2, timeout=3000)
    qtbot.wait(100)

    assert service.analyze_calls == [("red apples please", "Red apples, please.")]
    assert engine.transcript == ""
    assert engine.capture_status is CaptureStatus.LISTENING

    with qtbot.waitSignal(engine.finished, timeout=2000) as blocker:
        engine.submit_turn("here is the money")
    assert blocker.args == [()]
    qtbot.wait(200)
