from __future__ import annotations

from typing import Dict, List, Optional

SCENES: Dict[str, List[str]] = {
    "Doctor and Patient": ["Doctor", "Patient"],
    "Shopkeeper and Customer": ["Shopkeeper", "Customer"],
    "Waiter and Customer": ["Waiter", "Customer"],
}


def roles_for(scene: str) -> List[str]:
    try:
        return list(SCENES[scene])
    except KeyError:
        raise ValueError(f"Unknown scene: {scene!r}") from None


def partner_role(scene: str, role: str) -> Optional[str]:
    """The role voiced by the synthesizer opposite ``role``."""
    return next((r for r in roles_for(scene) if r != role), None)


def difficulty_description(grade: int, level: int) -> str:
    if level <= 5:
        return f"at a foundational level for grade {grade}, using very simple words and short sentences"
    if level <= 15:
        return f"at the core of a grade {grade} level"
    if level <= 30:
        return (
            f"at the upper end of a grade {grade} level, introducing slightly "
            "more complex sentences and vocabulary"
        )
    if level <= 50:
        return (
            f"at a level that slightly exceeds grade {grade}, preparing them "
            "for the next grade level"
        )
    next_grade = min(10, grade + 1)
    return f"at a level suitable for grade {next_grade}, blending in more advanced content"
