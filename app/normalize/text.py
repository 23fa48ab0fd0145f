from __future__ import annotations

import re
import unicodedata
from collections import Counter

_QUOTE_RE = re.compile(r"[‘’‚‛′`]")
_DOUBLE_QUOTE_RE = re.compile(r"[“”„″]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

# Symbol-bearing names that would otherwise collapse to a bare letter.
_SYMBOL_ALIASES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?<![a-z0-9])c\+\+(?![a-z0-9])"), " c plus plus "),
    (re.compile(r"(?<![a-z0-9])c#(?![a-z0-9])"), " c sharp "),
    (re.compile(r"(?<![a-z0-9])f#(?![a-z0-9])"), " f sharp "),
    (re.compile(r"\bcompti\b"), " comptia "),
    (re.compile(r"\.net\b"), " dot net "),
    (re.compile(r"\+"), " plus "),
    (re.compile(r"&"), " and "),
)

_IRREGULAR_PLURALS = {
    "people": "person",
    "children": "child",
    "men": "man",
    "women": "woman",
    "analyses": "analysis",
    "diagnoses": "diagnosis",
    "criteria": "criterion",
    "indices": "index",
    "matrices": "matrix",
}
_ES_SUFFIXES = ("ches", "shes", "sses", "xes", "zes")
_KEEP_S_SUFFIXES = ("ss", "us", "is")


def fold_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize_whitespace(value: str | None) -> str:
    text = _QUOTE_RE.sub("'", str(value or ""))
    text = _DOUBLE_QUOTE_RE.sub('"', text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(value: str | None) -> str:
    """Lowercase, fold diacritics, expand symbol aliases and strip punctuation."""
    text = fold_diacritics(normalize_whitespace(value)).lower()
    for pattern, replacement in _SYMBOL_ALIASES:
        text = pattern.sub(replacement, text)
    text = _NON_ALNUM_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_requirement_key(value: str | None) -> str:
    text = fold_diacritics(normalize_whitespace(value)).lower()
    text = _NON_ALNUM_RE.sub(" ", text)
    return _WHITESPACE_RE.sub(" ", text).strip()


def compact_text(value: str | None) -> str:
    return normalize_text(value).replace(" ", "")


def stem_token(token: str) -> str:
    irregular = _IRREGULAR_PLURALS.get(token)
    if irregular:
        return irregular
    if token.endswith("ies") and len(token) > 4:
        return f"{token[:-3]}y"
    if len(token) > 4 and token.endswith(_ES_SUFFIXES):
        return token[:-2]
    if token.endswith("s") and len(token) > 3 and not token.endswith(_KEEP_S_SUFFIXES):
        return token[:-1]
    return token


def tokenize(value: str | None) -> list[str]:
    normalized = normalize_text(value)
    if not normalized:
        return []
    return [stem_token(token) for token in normalized.split(" ") if token]


def similarity(a: str | None, b: str | None) -> float:
    """Jaccard index over stemmed token sets."""
    left = set(tokenize(a))
    right = set(tokenize(b))
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def token_overlap_ratio(query: str | None, candidate: str | None) -> float:
    """Share of query tokens present in the candidate."""
    left = set(tokenize(query))
    right = set(tokenize(candidate))
    if not left or not right:
        return 0.0
    return len(left & right) / len(left)


def _bigrams(value: str) -> Counter[str]:
    return Counter(value[index : index + 2] for index in range(len(value) - 1))


def dice_coefficient(a: str | None, b: str | None) -> float:
    left = compact_text(a)
    right = compact_text(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    if len(left) < 2 or len(right) < 2:
        return 0.0
    left_bigrams = _bigrams(left)
    right_bigrams = _bigrams(right)
    overlap = sum((left_bigrams & right_bigrams).values())
    return (2.0 * overlap) / (sum(left_bigrams.values()) + sum(right_bigrams.values()))


def _term_pattern(term: str) -> re.Pattern[str]:
    escaped = r"\s+".join(re.escape(part) for part in term.split(" ") if part)
    return re.compile(rf"\b{escaped}\b")


def contains_normalized_term(haystack: str | None, term: str | None) -> bool:
    normalized_term = normalize_text(term)
    if len(normalized_term) < 3:
        return False
    normalized_haystack = normalize_text(haystack)
    if not normalized_haystack:
        return False
    if _term_pattern(normalized_term).search(normalized_haystack):
        return True

    compact_term = normalized_term.replace(" ", "")
    if len(compact_term) >= 4 and compact_term in normalized_haystack.replace(" ", ""):
        return True

    without_single_letters = " ".join(token for token in normalized_term.split(" ") if len(token) > 1)
    if not without_single_letters:
        return False
    return bool(_term_pattern(without_single_letters).search(normalized_haystack))
