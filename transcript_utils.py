# transcript_utils.py
from __future__ import annotations

import re
from typing import Iterable, List

from jiwer import wer

from models import Mistake

_STRIP_PUNCT = re.compile(r"[.,?!]")


def clean_word(text: str) -> str:
    """Trim, lowercase and drop ``. , ? !``."""
    return _STRIP_PUNCT.sub("", text.strip().lower())


def count_spoken_words(transcript: str) -> int:
    # live highlight only; never used to judge a turn
    return len([w for w in (clean_word(t) for t in transcript.split(" ")) if w])


def matches_target(transcript: str, target: str) -> bool:
    """Lenient containment: carrier words around the target are fine."""
    return clean_word(target) in clean_word(transcript)


def omission_mistakes(target: str) -> List[Mistake]:
    # every word of the line counts as skipped
    return [Mistake(said="", expected=word) for word in target.split(" ") if word]


def practice_words_from_mistakes(mistakes: Iterable[Mistake]) -> List[str]:
    """
    Distinct non-empty cleaned ``expected`` words of ``mistakes``,
    first occurrence first.
    """
    seen = set()
    words: List[str] = []
    for m in mistakes:
        word = clean_word(m.expected or "")
        if not word or word in seen:
            continue
        seen.add(word)
        words.append(word)
    return words


def reading_accuracy(spoken: str, target: str) -> float:
    """Share of the target read correctly: ``1 - WER`` on cleaned words, in [0, 1]."""
    ref, hyp = clean_word(target), clean_word(spoken)
    if not ref.split():
        return 1.0
    if not hyp.split():
        return 0.0
    return max(0.0, 1.0 - float(wer(ref, hyp)))
