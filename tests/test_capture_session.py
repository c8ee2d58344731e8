from models import CaptureMode


def test_start_while_active_is_a_no_op(capture):
    started = []
    capture.started.connect(lambda: started.append(True))
    assert capture.start(CaptureMode.CONTINUOUS)
    assert not capture.start(CaptureMode.SINGLE_SHOT)
    assert capture.mode is CaptureMode.CONTINUOUS
    assert started == [True]


def test_abort_reports_aborted_then_end(capture):
    events = []
    capture.error.connect(lambda kind: events.append(("error", kind)))
    capture.ended.connect(lambda: events.append(("ended",)))
    capture.start()
    capture.abort()
    assert events == [("error", "aborted"), ("ended",)]
    assert not capture.active
    assert capture.aborts == 1


def test_deliveries_after_end_are_dropped(capture):
    results = []
    capture.result.connect(results.append)
    capture.start()
    capture.say("hello")
    capture.finish()
    capture.say("late")
    capture.abort()
    assert [e.transcript for e in results] == ["hello"]


def test_stop_is_graceful_and_idempotent(capture):
    ended = []
    capture.ended.connect(lambda: ended.append(True))
    capture.start()
    capture.stop()
    capture.stop()
    assert ended == [True]
    assert capture.stops == 1
    assert capture.start()
