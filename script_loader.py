from __future__ import annotations

import json
import logging
import os
import random
from typing import Dict, List, Sequence

from errors import ScriptError
from models import ScriptLine

logger = logging.getLogger(__name__)

SCRIPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "scripts")
INDEX_FILE = "script_index.json"
SCRIPT_TURNS = 8


def validate_script(
    items: object, ai_role: str, turns: int = SCRIPT_TURNS
) -> List[ScriptLine]:
    """
    Turn raw ``[{"character", "line"}, ...]`` data into ScriptLines.
    Anything that is not exactly ``turns`` well-formed entries with the
    AI role speaking first raises ScriptError.
    """
    if not isinstance(items, list):
        raise ScriptError("Script is not a list")
    if len(items) != turns:
        raise ScriptError(f"Script has {len(items)} turns, expected {turns}")
    lines: List[ScriptLine] = []
    for item in items:
        if not isinstance(item, dict) or "character" not in item or "line" not in item:
            raise ScriptError(f"Malformed script entry: {item!r}")
        speaker, text = item["character"], item["line"]
        if not isinstance(speaker, str) or not isinstance(text, str) or not text.strip():
            raise ScriptError(f"Malformed script entry: {item!r}")
        lines.append(ScriptLine(speaker=speaker.strip(), text=text.strip()))
    if lines[0].speaker != ai_role:
        raise ScriptError(f"Script opens with {lines[0].speaker!r}, expected {ai_role!r}")
    return lines


def _load_index(path: str) -> Dict:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            idx = json.load(fh)
        if isinstance(idx, dict):
            return idx
    except (OSError, ValueError):
        pass
    return {}


def _scripts_for(scene: str, ai_role: str, scripts_dir: str) -> List[str]:
    """Script files of ``scene`` whose first line belongs to ``ai_role``."""
    if not os.path.isdir(scripts_dir):
        return []
    found = []
    for fname in sorted(os.listdir(scripts_dir)):
        if not fname.lower().endswith(".json") or fname == INDEX_FILE:
            continue
        path = os.path.join(scripts_dir, fname)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.warning("Skipping unreadable script %s: %s", path, e)
            continue
        if not isinstance(data, dict) or data.get("scene") != scene:
            continue
        lines = data.get("lines") or [{}]
        if isinstance(lines[0], dict) and lines[0].get("character") == ai_role:
            found.append(path)
    return found


def pick_next_script(
    scene: str,
    ai_role: str,
    scripts_dir: str = SCRIPTS_DIR,
    index_file: str | None = None,
    turns: int = SCRIPT_TURNS,
) -> List[ScriptLine]:
    """
    Round-robin + shuffle picker over the bundled scripts of ``scene``
    that ``ai_role`` opens.
    """
    files: Sequence[str] = _scripts_for(scene, ai_role, scripts_dir)
    if not files:
        raise ScriptError(f"No offline scripts for {scene!r} opened by {ai_role!r}")

    index_file = index_file or os.path.join(scripts_dir, INDEX_FILE)
    idx = _load_index(index_file)
    key = f"{scene}|{ai_role}"
    entry = dict(idx[key]) if isinstance(idx.get(key), dict) else {}

    # If script set changed, reshuffle
    if len(entry.get("order", [])) != len(files):
        entry["order"] = list(range(len(files)))
        random.shuffle(entry["order"])
        entry["pos"] = 0

    i = entry["order"][entry["pos"] % len(files)]
    entry["pos"] = (entry["pos"] + 1) % len(files)
    idx[key] = entry
    try:
        with open(index_file, "w", encoding="utf-8") as fh:
            json.dump(idx, fh, indent=2)
    except OSError as e:
        logger.warning("Could not update script index %s: %s", index_file, e)

    logger.debug("Offline script %s for %s", files[i], key)
    with open(files[i], "r", encoding="utf-8") as fh:
        data = json.load(fh)
    return validate_script(data.get("lines"), ai_role, turns)
