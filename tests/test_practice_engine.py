import pytest

from conftest import FakeLanguageService, wire
from models import CaptureMode, Mistake, PracticeStatus, PracticeWord
from practice_engine import MIC_START_FAILED, PracticeEngine


def make_engine(qtbot, mistakes, capture, service, settings, playback=None):
    engine = PracticeEngine(mistakes, capture, service, playback, settings)
    wire(capture, engine)
    with qtbot.waitSignal(engine.prepared, timeout=2000):
        engine.prepare()
    return engine


def attempt(capture, text):
    capture.say(text, final=True)
    capture.finish()


def test_words_come_from_distinct_expected_values(qtbot, capture, service, fast_settings):
    mistakes = [Mistake("", "Apples,"), Mistake("um", ""), Mistake("tugeda", "together"), Mistake("", "apples")]
    engine = make_engine(qtbot, mistakes, capture, service, fast_settings)
    assert engine.words == (
        PracticeWord("apples", ("apples",)),
        PracticeWord("together", ("tu", "geh", "dhuh")),
    )
    assert engine.current_word.word == "apples"


def test_wrong_attempt_is_try_again_until_retry(qtbot, capture, service, fast_settings):
    engine = make_engine(qtbot, [Mistake("tugeda", "together")], capture, service, fast_settings)

    assert engine.listen()
    assert engine.status is PracticeStatus.LISTENING
    assert capture.starts == [CaptureMode.SINGLE_SHOT]
    attempt(capture, "tugeda")

    assert engine.status is PracticeStatus.TRY_AGAIN
    assert engine.cursor == 0
    assert engine.transcript == "tugeda"
    assert not engine.listen()
    qtbot.wait(60)
    assert engine.status is PracticeStatus.TRY_AGAIN

    assert engine.retry()
    assert engine.status is PracticeStatus.IDLE
    assert engine.listen()


def test_success_advances_and_completes_once(qtbot, capture, service, fast_settings):
    mistakes = [Mistake("", "two"), Mistake("", "money")]
    engine = make_engine(qtbot, mistakes, capture, service, fast_settings)
    completions = []
    engine.completed.connect(lambda: completions.append(True))

    assert engine.listen()
    attempt(capture, "I think it's two.")
    assert engine.status is PracticeStatus.SUCCESS
    with qtbot.waitSignal(engine.word_changed, timeout=1000) as blocker:
        pass
    assert blocker.args == [1, PracticeWord("money", ("money",))]
    assert engine.status is PracticeStatus.IDLE

    assert engine.listen()
    with qtbot.waitSignal(engine.completed, timeout=1000):
        attempt(capture, "Money!")
    assert engine.listen() is False
    qtbot.wait(100)
    assert completions == [True]
    assert engine.cursor == 1


def test_words_without_syllables_are_dropped(qtbot, capture, fast_settings):
    service = FakeLanguageService(breakdowns={"the": []})
    engine = make_engine(qtbot, [Mistake("", "the"), Mistake("", "money")], capture, service, fast_settings)
    assert [w.word for w in engine.words] == ["money"]


def test_nothing_to_practice_completes_immediately(qtbot, capture, fast_settings):
    service = FakeLanguageService(breakdowns={"the": []})
    engine = PracticeEngine([Mistake("", "the")], capture, service, settings=fast_settings)
    with qtbot.waitSignal(engine.completed, timeout=2000):
        engine.prepare()
    assert engine.done
    assert not engine.listen()

    only_insertions = PracticeEngine([Mistake("um", "")], capture, service, settings=fast_settings)
    with qtbot.waitSignals([only_insertions.prepared, only_insertions.completed], timeout=1000):
        only_insertions.prepare()


@pytest.mark.parametrize(
    "kind, message",
    [("no-speech", None), ("aborted", None), ("audio-capture", 'Mic error: "audio-capture".')],
)
def test_capture_errors_return_to_idle(qtbot, capture, service, fast_settings, kind, message):
    engine = make_engine(qtbot, [Mistake("", "money")], capture, service, fast_settings)
    errors = []
    engine.capture_error.connect(errors.append)

    assert engine.listen()
    capture.fail(kind)
    capture.finish()

    assert engine.status is PracticeStatus.IDLE
    assert engine.error_message == message
    assert errors == ([message] if message else [])
    assert engine.listen()


def test_end_without_result_returns_to_idle(qtbot, capture, service, fast_settings):
    engine = make_engine(qtbot, [Mistake("", "money")], capture, service, fast_settings)
    assert engine.listen()
    capture.finish()
    assert engine.status is PracticeStatus.IDLE


def test_refused_start_reports_and_stays_idle(qtbot, capture, service, fast_settings):
    engine = make_engine(qtbot, [Mistake("", "money")], capture, service, fast_settings)
    capture.refuse = True
    assert not engine.listen()
    assert engine.status is PracticeStatus.IDLE
    assert engine.error_message == MIC_START_FAILED


def test_pronounce_current(qtbot, capture, service, playback, fast_settings):
    engine = make_engine(qtbot, [Mistake("", "money")], capture, service, fast_settings, playback=playback)
    engine.pronounce_current()
    assert playback.spoken == ["money"]


def test_capture_error_after_a_hit_reverts_to_idle_and_still_advances(qtbot, capture, service, fast_settings):
    engine = make_engine(qtbot, [Mistake("", "two"), Mistake("", "money")], capture, service, fast_settings)
    errors = []
    engine.capture_error.connect(errors.append)

    assert engine.listen()
    capture.say("two", final=True)
    assert engine.status is PracticeStatus.SUCCESS
    capture.fail("audio-capture")
    capture.finish()

    assert engine.status is PracticeStatus.IDLE
    assert errors == ['Mic error: "audio-capture".']
    assert not engine.listen()
    assert capture.starts == [CaptureMode.SINGLE_SHOT]

    with qtbot.waitSignal(engine.word_changed, timeout=1000) as blocker:
        pass
    assert blocker.args[0] == 1
    assert engine.listen()
