"""
BLINDING.PY - Content Redaction (Blinding) Gate

REDACTION_POLICY is the single source of truth for what a locked result
hides. Every premium narrative field is listed once with its behavior:

    FULL            -> replaced by LOCKED_TEXT
    FIRST_SENTENCE  -> first sentence kept, remainder replaced by LOCKED_TEXT
    LIST            -> replaced by LOCKED_LIST

Fields not in the table (core_message, personality_reading,
peer_comparison, and the engine blocks) pass through byte-identical.

redact() is pure: it returns a new AnalysisResult and never mutates its input.
"""

from typing import Any, Dict, List, Tuple

from models.analysis_schema import AnalysisResult

LOCKED_TEXT = "🔒 프리미엄 분석에서 확인하세요"
LOCKED_LIST = ["🔒 프리미엄 전용 콘텐츠"]

FULL = "full"
FIRST_SENTENCE = "first_sentence"
LIST = "list"

# Paths are relative to AnalysisResult.narrative
REDACTION_POLICY: Dict[str, str] = {
    "fortune_advice.overall": FIRST_SENTENCE,
    "fortune_advice.wealth": FULL,
    "fortune_advice.love": FULL,
    "fortune_advice.career": FULL,
    "fortune_advice.health": FULL,
    "warning_advice": FIRST_SENTENCE,
    "action_plan": LIST,
    "life_path": FULL,
    "day_master_analysis": FULL,
    "ten_year_fortune": FULL,
    "yearly_fortune": FULL,
    "monthly_fortune": FULL,
    "relationship_analysis": FULL,
    "career_guidance": FULL,
    "wealth_strategy": FULL,
    "health_advice": FULL,
    "spiritual_guidance": FULL,
}

FREE_TEASER_FIELDS = ("core_message", "personality_reading", "peer_comparison")

SENTENCE_END = "."


def first_sentence_teaser(text: str) -> str:
    """
    Keep the first sentence, lock the rest.

    A value with nothing after its first sentence is locked entirely,
    otherwise the teaser would reveal the whole premium value.
    """
    cut = text.find(SENTENCE_END)
    if cut < 0 or not text[cut + 1:].strip():
        return LOCKED_TEXT
    return f"{text[:cut + 1]} {LOCKED_TEXT}"


def _redact_value(value: Any, behavior: str) -> Any:
    if behavior == LIST:
        return list(LOCKED_LIST)
    if behavior == FIRST_SENTENCE:
        return first_sentence_teaser(value) if isinstance(value, str) else LOCKED_TEXT
    return LOCKED_TEXT


def _split(path: str) -> Tuple[List[str], str]:
    parts = path.split(".")
    return parts[:-1], parts[-1]


def redact_narrative(narrative: Dict[str, Any]) -> Dict[str, Any]:
    """Apply REDACTION_POLICY to a serialized narrative (already a copy)."""
    for path, behavior in REDACTION_POLICY.items():
        parents, leaf = _split(path)
        node = narrative
        for key in parents:
            node = node.get(key) if isinstance(node, dict) else None
            if node is None:
                break
        if isinstance(node, dict) and node.get(leaf) is not None:
            node[leaf] = _redact_value(node[leaf], behavior)
    return narrative


def redact(result: AnalysisResult, unlocked: bool) -> AnalysisResult:
    """
    Redacted copy of an analysis.

    Args:
        result: full analysis
        unlocked: True for admins and point-payers

    Returns:
        A new AnalysisResult; premium fields are locked unless `unlocked`
    """
    if unlocked:
        return result.model_copy(deep=True)

    payload = result.model_dump()
    payload["narrative"] = redact_narrative(payload["narrative"])
    return AnalysisResult.model_validate(payload)


def is_locked(value: Any) -> bool:
    if isinstance(value, list):
        return value == LOCKED_LIST
    return isinstance(value, str) and value.endswith(LOCKED_TEXT)
