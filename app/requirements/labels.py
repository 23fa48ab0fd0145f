from __future__ import annotations

import re

from app.normalize.text import normalize_requirement_key, normalize_whitespace
from app.schemas.requirements import RequirementType

VAGUE_TERMS = frozenset(
    {
        "mechanical",
        "communication",
        "leadership",
        "teamwork",
        "organized",
        "organization",
        "detail oriented",
        "adaptable",
        "adaptability",
        "problem solving",
        "motivated",
        "reliable",
        "hardworking",
        "hard working",
        "experience",
        "skills",
        "knowledge",
    }
)

# Tokens that carry no task meaning on their own.
GENERIC_LABEL_TOKENS = frozenset(
    {
        "mechanical",
        "communication",
        "communications",
        "leadership",
        "teamwork",
        "experience",
        "skills",
        "skill",
        "knowledge",
        "ability",
        "abilities",
        "strong",
        "good",
        "excellent",
        "technical",
        "general",
        "work",
        "team",
        "detail",
        "oriented",
        "problem",
        "solving",
        "organizational",
        "interpersonal",
        "customer",
        "service",
    }
)

_FILLER_PREFIXES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^must have\s+", re.IGNORECASE),
    re.compile(r"^must be able to\s+", re.IGNORECASE),
    re.compile(r"^ability to\s+", re.IGNORECASE),
    re.compile(r"^proven ability to\s+", re.IGNORECASE),
    re.compile(r"^experience with\s+", re.IGNORECASE),
    re.compile(r"^responsible for\s+", re.IGNORECASE),
    re.compile(r"^knowledge of\s+", re.IGNORECASE),
    re.compile(r"^strong\s+", re.IGNORECASE),
)
_EDGE_PUNCTUATION_RE = re.compile(r"^[\s:;,.!?\-]+|[\s:;,.!?\-]+$")
_VERB_PHRASE_RE = re.compile(
    r"^(build|create|deliver|design|develop|execute|install|inspect|maintain|manage|operate|perform|"
    r"prepare|run|support|troubleshoot|use|verify|obtain|complete|demonstrate|ship|document|analyze|"
    r"coordinate|communicate|lead|collaborate|hold|pass)\b",
    re.IGNORECASE,
)

ACTION_VERB_PATTERN = re.compile(
    r"\b(build|create|deliver|design|develop|diagnose|document|execute|inspect|install|maintain|manage|"
    r"operate|optimize|perform|plan|prepare|support|test|troubleshoot|verify|analyze|coordinate|lead|"
    r"obtain|complete|demonstrate|use|communicate|collaborate|ship|run|hold|pass)\b",
    re.IGNORECASE,
)

TOOL_CONTEXT_SUFFIX = "in role-relevant workflows"
HARD_SKILL_CONTEXT_SUFFIX = "in production scenarios"


def _strip_filler_prefix(value: str) -> str:
    output = value
    for pattern in _FILLER_PREFIXES:
        output = pattern.sub("", output)
    return output


def _trim_punctuation(value: str) -> str:
    return _EDGE_PUNCTUATION_RE.sub("", value)


def _is_single_token(value: str) -> bool:
    return len(normalize_requirement_key(value).split()) <= 1


def _expand_single_token(token: str, requirement_type: RequirementType) -> str | None:
    if not normalize_requirement_key(token):
        return None
    if requirement_type == "gate":
        return f"Obtain {token} certification or licensing proof"
    if requirement_type == "tool":
        return f"Use {token} {TOOL_CONTEXT_SUFFIX}"
    if requirement_type == "experience_signal":
        return f"Demonstrate measurable {token} experience in prior work"
    if requirement_type == "soft_signal":
        return f"Demonstrate {token} through documented collaboration outcomes"
    return f"Perform {token} tasks {HARD_SKILL_CONTEXT_SUFFIX}"


def is_vague_requirement_label(value: str) -> bool:
    normalized = normalize_requirement_key(value)
    if not normalized:
        return True
    if normalized in VAGUE_TERMS:
        return True
    return len(normalized) < 3


def is_actionable_requirement_label(value: str) -> bool:
    """False for one- or two-token generic labels that carry no action verb."""
    normalized = normalize_requirement_key(value)
    if not normalized or is_vague_requirement_label(normalized):
        return False
    tokens = normalized.split()
    if len(tokens) <= 2 and not ACTION_VERB_PATTERN.search(normalized):
        if all(token in GENERIC_LABEL_TOKENS for token in tokens):
            return False
    return True


def to_task_level_label(value: str, requirement_type: RequirementType) -> str | None:
    normalized = normalize_whitespace(value)
    if not normalized:
        return None

    stripped = _trim_punctuation(_strip_filler_prefix(normalized))
    if not stripped:
        return None

    if _is_single_token(stripped):
        if is_vague_requirement_label(stripped) and requirement_type != "tool":
            return None
        return _expand_single_token(stripped, requirement_type)

    if is_vague_requirement_label(stripped):
        return None

    if _VERB_PHRASE_RE.match(stripped):
        return stripped[0].upper() + stripped[1:]

    if requirement_type == "gate":
        return f"Obtain {stripped}"
    if requirement_type == "tool":
        return f"Use {stripped} {TOOL_CONTEXT_SUFFIX}"
    if requirement_type == "experience_signal":
        return f"Demonstrate {stripped} with measurable outcomes"
    if requirement_type == "soft_signal":
        return f"Demonstrate {stripped} during cross-functional execution"
    return f"Perform {stripped} {HARD_SKILL_CONTEXT_SUFFIX}"
