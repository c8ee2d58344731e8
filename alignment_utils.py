# alignment_utils.py
from __future__ import annotations

from typing import List, Optional, Tuple

from models import Mistake
from transcript_utils import clean_word

Op = Tuple[str, Optional[int], Optional[int]]  # (op, ref_index, hyp_index)


def tokenize_words(text: str) -> List[str]:
    """Whitespace tokens that still contain something after cleaning."""
    return [tok for tok in text.split() if clean_word(tok)]


def _align_tokens(ref: List[str], hyp: List[str]) -> List[Op]:
    """
    Levenshtein alignment over cleaned words.
    op in {"equal","sub","del","ins"}; "del" = word missing from hyp.
    """
    n, m = len(ref), len(hyp)
    ref_c = [clean_word(w) for w in ref]
    hyp_c = [clean_word(w) for w in hyp]
    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        dp[i][0] = i
    for j in range(1, m + 1):
        dp[0][j] = j

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            cost_sub = 0 if ref_c[i - 1] == hyp_c[j - 1] else 1
            dp[i][j] = min(
                dp[i - 1][j] + 1,  # del
                dp[i][j - 1] + 1,  # ins
                dp[i - 1][j - 1] + cost_sub,  # sub/equal
            )

    # Walk back, preferring diagonal moves so substitutions stay paired
    i, j = n, m
    ops: List[Op] = []
    while i > 0 or j > 0:
        if i > 0 and j > 0:
            cost_sub = 0 if ref_c[i - 1] == hyp_c[j - 1] else 1
            if dp[i][j] == dp[i - 1][j - 1] + cost_sub:
                ops.append(("equal" if cost_sub == 0 else "sub", i - 1, j - 1))
                i, j = i - 1, j - 1
                continue
        if i > 0 and dp[i][j] == dp[i - 1][j] + 1:
            ops.append(("del", i - 1, None))
            i -= 1
        else:
            ops.append(("ins", None, j - 1))
            j -= 1
    ops.reverse()
    return ops


def align_mistakes(spoken: str, target: str) -> List[Mistake]:
    """
    Offline stand-in for the reading analyzer: word-level diff of the
    transcript against the line, ignoring case and ``. , ? !``.
    """
    ref = tokenize_words(target)
    hyp = tokenize_words(spoken)
    mistakes: List[Mistake] = []
    for op, ri, hj in _align_tokens(ref, hyp):
        if op == "equal":
            continue
        said = hyp[hj] if hj is not None else ""
        expected = ref[ri] if ri is not None else ""
        mistakes.append(Mistake(said=said, expected=expected))
    return mistakes
