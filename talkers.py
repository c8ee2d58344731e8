# talkers.py
"""
Console runner: rehearse one scene with the microphone and speakers.

    python talkers.py --scene "Doctor and Patient" --role Patient
"""
from __future__ import annotations

import argparse
import logging
import sys

from PyQt5 import QtCore

from errors import ServiceError
from language_service import make_language_service
from mic_capture import MicCaptureSession
from models import PracticeStatus
from scenes import SCENES, roles_for
from session_controller import SessionController
from settings import load_settings
from transcript_utils import reading_accuracy
from tts_playback import TtsPlaybackSession

logger = logging.getLogger(__name__)


def setup_argparse() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Read a short dialogue aloud, then practice the missed words")
    parser.add_argument("--scene", choices=list(SCENES), default="Doctor and Patient", help="scene to rehearse")
    parser.add_argument("--role", default=None, help="character you read (default: the second one)")
    parser.add_argument("--grade", type=int, default=1, help="school grade, 1-10")
    parser.add_argument("--level", type=int, default=0, help="learner level inside the grade")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser


def _attach_dialogue(engine) -> None:
    def on_turn(turn: int, learner: bool) -> None:
        line = engine.script[turn]
        who = "YOU" if learner else line.speaker
        print(f"[{turn + 1}/{len(engine.script)}] {who}: {line.text}")
        if learner:
            print("    (read the line aloud)")

    def on_turn_completed(turn: int, mistakes) -> None:
        score = reading_accuracy(engine.transcript, engine.script[turn].text)
        if mistakes:
            missed = ", ".join(m.expected or f"+{m.said}" for m in mistakes)
            print(f"    heard: {engine.transcript!r} ({score:.0%})  check: {missed}")
        else:
            print(f"    heard: {engine.transcript!r} ({score:.0%})  great!")

    engine.turn_started.connect(on_turn)
    engine.turn_completed.connect(on_turn_completed)
    engine.capture_error.connect(lambda msg: print(f"!! {msg}"))


def _attach_practice(engine, app: QtCore.QCoreApplication, settle_ms: int) -> None:
    def listen_soon() -> None:
        QtCore.QTimer.singleShot(settle_ms, engine.listen)

    def on_word(cursor: int, word) -> None:
        print(f"Practice {cursor + 1}/{len(engine.words)}: {word.word}  ({' - '.join(word.phonemes)})")
        if cursor == 0:
            listen_soon()

    def on_status(status: PracticeStatus) -> None:
        if status is PracticeStatus.SUCCESS:
            print("    correct!")
        elif status is PracticeStatus.TRY_AGAIN:
            print(f"    heard {engine.transcript!r}, try again")
            engine.retry()
        elif status is PracticeStatus.IDLE and not engine.done:
            listen_soon()

    def on_error(message: str) -> None:
        print(f"!! {message}")
        app.exit(1)

    engine.word_changed.connect(on_word)
    engine.status_changed.connect(on_status)
    engine.capture_error.connect(on_error)


def main() -> None:
    args = setup_argparse().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    roles = roles_for(args.scene)
    role = args.role or roles[-1]
    if role not in roles:
        setup_argparse().error(f"--role must be one of {roles} for {args.scene!r}")

    settings = load_settings()
    try:
        service = make_language_service(settings)
    except ServiceError as e:
        print(e, file=sys.stderr)
        sys.exit(2)

    app = QtCore.QCoreApplication(sys.argv)
    capture = MicCaptureSession(settings)
    capture.ensure_model()
    playback = TtsPlaybackSession(settings)
    playback.load_voices()

    controller = SessionController(capture, playback, service, settings, grade=args.grade, level=args.level)
    settle_ms = int(settings.get("settle_delay_ms", 700))

    def on_error(message: str) -> None:
        if message:
            print(message, file=sys.stderr)
            app.exit(1)

    def on_complete() -> None:
        if controller.mistakes:
            print(f"Done! Practiced the words from {len(controller.mistakes)} mistake(s).")
        else:
            print("Done! Perfect reading.")
        app.quit()

    def on_dialogue(engine) -> None:
        _attach_dialogue(engine)
        engine.capture_error.connect(lambda _msg: app.exit(1))

    controller.error_changed.connect(on_error)
    controller.completed.connect(on_complete)
    controller.dialogue_started.connect(on_dialogue)
    controller.practice_started.connect(lambda engine: _attach_practice(engine, app, settle_ms))

    def begin() -> None:
        print(f"{args.scene}: you are the {role}.")
        controller.select_scene(args.scene)
        controller.select_character(role)

    QtCore.QTimer.singleShot(0, begin)
    ret = app.exec_()
    controller.shutdown()
    playback.close()
    sys.exit(ret)


if __name__ == "__main__":
    main()
