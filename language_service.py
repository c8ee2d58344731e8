"""
Language services used by a rehearsal: script generation, reading
analysis and phonetic breakdown.

Two backends share one interface:
  GeminiLanguageService  - Google Gemini, JSON response mode with a schema per call
  OfflineLanguageService - bundled scripts + local word alignment

The public ``analyze_reading`` / ``phonetic_breakdown`` wrappers apply the
degradation rules (never raise); ``generate_script`` raises ScriptError.
"""
from __future__ import annotations

import json
import logging
import re
import time
from typing import Dict, List, Optional

from google import genai

from alignment_utils import align_mistakes
from errors import ScriptError, ServiceError
from models import Mistake, ScriptLine
from script_loader import SCRIPT_TURNS, SCRIPTS_DIR, pick_next_script, validate_script
from transcript_utils import omission_mistakes

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def extract_json_array(text: str) -> object:
    """
    Parse a JSON array out of model output that may be wrapped in a code
    fence or surrounded by chatter.
    """
    s = (text or "").strip()
    m = _FENCE.search(s)
    if m and m.group(1):
        s = m.group(1).strip()
    else:
        first, last = s.find("["), s.rfind("]")
        if first != -1 and last > first:
            s = s[first:last + 1]
    try:
        return json.loads(s)
    except ValueError as e:
        raise ServiceError(f"Response is not valid JSON: {e}") from e


class LanguageService:
    """Backend-independent behavior; subclasses implement the ``_`` hooks."""

    name = "base"

    def __init__(self, turns: int = SCRIPT_TURNS):
        self.turns = turns

    # ---------------------------- hooks ----------------------------

    def _generate_script(
        self, scene: str, user_role: str, ai_role: str, difficulty: str
    ) -> List[ScriptLine]:
        raise NotImplementedError

    def _analyze(self, spoken: str, target: str) -> List[Mistake]:
        raise NotImplementedError

    def _breakdown(self, word: str) -> List[str]:
        raise NotImplementedError

    # ---------------------------- public ----------------------------

    def generate_script(
        self, scene: str, user_role: str, ai_role: str, difficulty: str
    ) -> List[ScriptLine]:
        t0 = time.time()
        try:
            lines = self._generate_script(scene, user_role, ai_role, difficulty)
        except ScriptError:
            raise
        except Exception as e:
            raise ScriptError(f"Script generation failed: {e}") from e
        logger.info(
            "%s script for %r (%s vs %s) in %.2fs",
            self.name, scene, user_role, ai_role, time.time() - t0,
        )
        return lines

    def analyze_reading(self, spoken: str, target: str) -> List[Mistake]:
        if not spoken.strip():
            return omission_mistakes(target)
        try:
            mistakes = self._analyze(spoken, target)
        except Exception:
            logger.exception("Reading analysis failed; counting the turn as clean")
            return []
        logger.debug("%d mistake(s) for %r", len(mistakes), target)
        return mistakes

    def phonetic_breakdown(self, word: str) -> List[str]:
        try:
            syllables = self._breakdown(word)
        except Exception as e:
            logger.warning("Phonetic breakdown failed for %r: %s", word, e)
            return [word]
        return syllables


class OfflineLanguageService(LanguageService):
    name = "offline"

    def __init__(self, scripts_dir: str = SCRIPTS_DIR, turns: int = SCRIPT_TURNS):
        super().__init__(turns)
        self.scripts_dir = scripts_dir

    def _generate_script(self, scene, user_role, ai_role, difficulty):
        return pick_next_script(scene, ai_role, self.scripts_dir, turns=self.turns)

    def _analyze(self, spoken, target):
        return align_mistakes(spoken, target)

    def _breakdown(self, word):
        return [word]


SCRIPT_INSTRUCTION = """You write short conversation scripts for children learning English.
- The conversation is natural, fun and exactly {turns} turns long.
- The AI character speaks first and the two characters alternate.
- The difficulty must be {difficulty}.
Respond with a single JSON array of exactly {turns} objects, each with the
string properties "character" and "line". No markdown, no other text."""

ANALYZE_INSTRUCTION = """You compare a child's spoken text (from speech-to-text) with a target text.
Be very lenient: accept understandable pronunciations, ignore filler words
("um", "uh", "like") and treat sound-alike transcriptions ("two"/"to",
"see"/"sea") as correct. Only report a word that was
- omitted: "said" is "",
- unrecognisably mispronounced: "said" is what was heard,
- inserted: "expected" is "".
Respond with a JSON array of {"said": string, "expected": string} objects,
or [] when the reading is understandable. No markdown, no other text."""

BREAKDOWN_INSTRUCTION = """You split English words into simple phonetic syllables a child can read,
e.g. "together" -> ["tu", "geh", "dhuh"]. A one-syllable word is returned
as a one-element array holding the word. Respond with a single JSON array of
strings. No markdown, no other text."""


def _array_of(item: Dict) -> Dict:
    return {"type": "ARRAY", "items": item}


def _record(*fields: str) -> Dict:
    return {
        "type": "OBJECT",
        "properties": {name: {"type": "STRING"} for name in fields},
        "required": list(fields),
    }


SCRIPT_SCHEMA = _array_of(_record("character", "line"))
MISTAKES_SCHEMA = _array_of(_record("said", "expected"))
SYLLABLES_SCHEMA = _array_of({"type": "STRING"})


class GeminiLanguageService(LanguageService):
    name = "gemini"

    def __init__(self, api_key: str, model_name: str = "gemini-2.5-flash", turns: int = SCRIPT_TURNS):
        super().__init__(turns)
        if not api_key:
            raise ServiceError("Gemini API key missing. Set GEMINI_API_KEY in .env")
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name

    def _ask(self, system_instruction: str, prompt: str, schema: Dict) -> object:
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config={
                "system_instruction": system_instruction,
                "response_mime_type": "application/json",
                "response_schema": schema,
            },
        )
        return extract_json_array(getattr(response, "text", "") or "")

    def _generate_script(self, scene, user_role, ai_role, difficulty):
        system = SCRIPT_INSTRUCTION.format(turns=self.turns, difficulty=difficulty)
        prompt = (
            f'Write a simple {self.turns}-line script for the scene "{scene}" with the '
            f'user playing "{user_role}" and the AI playing "{ai_role}". '
            f"The difficulty must be {difficulty}."
        )
        try:
            data = self._ask(system, prompt, SCRIPT_SCHEMA)
        except ServiceError as e:
            raise ScriptError(str(e)) from e
        return validate_script(data, ai_role, self.turns)

    def _analyze(self, spoken, target):
        prompt = f'Target Text: "{target}"\nSpoken Text: "{spoken}"'
        data = self._ask(ANALYZE_INSTRUCTION, prompt, MISTAKES_SCHEMA)
        if not isinstance(data, list):
            raise ServiceError("Analysis is not a list")
        mistakes = []
        for item in data:
            if isinstance(item, dict):
                mistakes.append(
                    Mistake(said=str(item.get("said") or ""), expected=str(item.get("expected") or ""))
                )
        return mistakes

    def _breakdown(self, word):
        prompt = f'Break down the word "{word}" into phonetic syllables.'
        data = self._ask(BREAKDOWN_INSTRUCTION, prompt, SYLLABLES_SCHEMA)
        if isinstance(data, list) and all(isinstance(s, str) for s in data):
            return data
        return [word]


def make_language_service(settings: Dict) -> LanguageService:
    """Pick the backend from settings: ``service`` is auto | gemini | offline."""
    choice = settings.get("service", "auto")
    key: Optional[str] = settings.get("gemini_api_key")
    turns = int(settings.get("script_turns", SCRIPT_TURNS))
    if choice == "gemini" or (choice == "auto" and key):
        return GeminiLanguageService(key or "", settings.get("gemini_model", "gemini-2.5-flash"), turns)
    if choice == "auto":
        logger.info("No GEMINI_API_KEY set; using offline scripts and local analysis")
    return OfflineLanguageService(settings.get("scripts_dir") or SCRIPTS_DIR, turns)
