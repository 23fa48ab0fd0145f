from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

from app.normalize.text import normalize_requirement_key
from app.schemas.requirements import RequirementType

GATE_PATTERN = re.compile(
    r"\b(licen[cs](?:e|ed|ing)|certif(?:ication|ications|icate|ied)?|registration|registered|clearance|"
    r"bondable|red seal|journeyperson|journeyman|apprenticeship|nclex|rn|cpr|bls|acls|whmis|first aid|"
    r"security clearance)\b",
    re.IGNORECASE,
)
EXPERIENCE_PATTERN = re.compile(
    r"(\b\d+\+?\s*(?:years|yrs|year)\b|\b(?:portfolio|shipped|published|clinical|rotations)\b|"
    r"\bmanaged\s+\$|\bmanaged budgets?\b|\bproduction experience\b|\bfield experience\b)",
    re.IGNORECASE,
)
SOFT_SIGNAL_PATTERN = re.compile(
    r"\b(communication|leadership|teamwork|stakeholders?|collaboration|customer service|presentation|"
    r"problem solving)\b",
    re.IGNORECASE,
)

# Canonical display name -> aliases, matched as whole terms on the requirement key.
TOOL_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Excel", ("excel", "spreadsheet", "spreadsheets", "google sheets")),
    ("AutoCAD", ("autocad",)),
    ("Revit", ("revit",)),
    ("SolidWorks", ("solidworks",)),
    ("Salesforce", ("salesforce",)),
    ("HubSpot", ("hubspot",)),
    ("Google Analytics", ("google analytics", "ga4")),
    ("Google Ads", ("google ads", "adwords")),
    ("Meta Ads", ("meta ads", "facebook ads")),
    ("Jira", ("jira",)),
    ("Figma", ("figma",)),
    ("Python", ("python",)),
    ("SQL", ("sql", "postgresql", "mysql", "sql server")),
    ("Tableau", ("tableau",)),
    ("Power BI", ("power bi",)),
    ("AWS", ("aws", "amazon web services")),
    ("Azure", ("azure", "microsoft azure")),
    ("GCP", ("gcp", "google cloud")),
    ("Git", ("git", "github", "gitlab")),
    ("Node.js", ("node", "nodejs", "node.js")),
    ("React", ("react", "reactjs")),
    ("Docker", ("docker",)),
    ("Kubernetes", ("kubernetes", "k8s")),
    ("EMR Systems", ("emr", "electronic medical record", "electronic medical records", "epic", "cerner")),
    ("PLC Systems", ("plc", "programmable logic controller", "programmable logic controllers")),
    ("Conduit Bender", ("conduit bender", "emt bender")),
)

_ALIAS_TO_CANONICAL: dict[str, str] = {
    normalize_requirement_key(alias): name for name, aliases in TOOL_ALIASES for alias in aliases
}
for _name, _ in TOOL_ALIASES:
    _ALIAS_TO_CANONICAL.setdefault(normalize_requirement_key(_name), _name)

_CONTEXTUAL_TOOL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bexperience (?:with|using)\s+([^,;:()\n]+)", re.IGNORECASE),
    re.compile(r"\bproficiency (?:in|with)\s+([^,;:()\n]+)", re.IGNORECASE),
    re.compile(r"\bproficient (?:in|with)\s+([^,;:()\n]+)", re.IGNORECASE),
    re.compile(r"\bfamiliarity with\s+([^,;:()\n]+)", re.IGNORECASE),
    re.compile(r"\bknowledge of\s+([^,;:()\n]+)", re.IGNORECASE),
    re.compile(r"\bhands-on\s+(?:experience\s+(?:with|in)\s+)?([^,;:()\n]+)", re.IGNORECASE),
)
# A captured phrase ends at the first connective or qualifier.
_PHRASE_BOUNDARY_RE = re.compile(
    r"\s+(?:and|or|to|for|in|on|including|such as|like|is|are|was|required|preferred|an asset|a plus|"
    r"considered|would|will|as well as)\b.*$",
    re.IGNORECASE,
)
_TRAILING_PUNCT_RE = re.compile(r"[\s.!?\-]+$")
_LEADING_ARTICLE_RE = re.compile(r"^(?:the|a|an|any|modern|common|standard|various)\s+", re.IGNORECASE)
_STRUCTURED_CHAR_RE = re.compile(r"[0-9+#/]")
_ACRONYM_RE = re.compile(r"[A-Z]{2,}")

MAX_TOOL_PHRASE_TOKENS = 5

GENERIC_TOOL_PHRASES = frozenset(
    {
        "software",
        "systems",
        "system",
        "tools",
        "tool",
        "technology",
        "technologies",
        "computers",
        "computer",
        "computer systems",
        "applications",
        "application",
        "platforms",
        "platform",
        "programs",
        "equipment",
        "office software",
        "hand tools",
        "power tools",
        "similar tools",
        "related software",
        "relevant software",
        "industry software",
        "best practices",
        "procedures",
        "processes",
    }
)

# Vocabulary that marks a phrase as naming a concrete tool.
TOOL_SIGNAL_TOKENS = frozenset(
    {
        "quickbooks",
        "sage",
        "sap",
        "oracle",
        "netsuite",
        "workday",
        "servicenow",
        "zendesk",
        "shopify",
        "wordpress",
        "autodesk",
        "adobe",
        "photoshop",
        "illustrator",
        "indesign",
        "premiere",
        "canva",
        "sketch",
        "outlook",
        "powerpoint",
        "sharepoint",
        "linux",
        "unix",
        "windows",
        "macos",
        "javascript",
        "typescript",
        "java",
        "kotlin",
        "swift",
        "ruby",
        "rust",
        "golang",
        "scala",
        "php",
        "terraform",
        "ansible",
        "jenkins",
        "kafka",
        "spark",
        "hadoop",
        "snowflake",
        "dbt",
        "airflow",
        "pandas",
        "django",
        "flask",
        "fastapi",
        "spring",
        "angular",
        "vue",
        "matlab",
        "labview",
        "scada",
        "cnc",
        "crm",
        "erp",
        "cad",
        "cam",
        "gis",
        "arcgis",
        "looker",
        "asana",
        "trello",
        "confluence",
        "slack",
        "notion",
        "mailchimp",
        "marketo",
        "semrush",
        "ahrefs",
    }
)


@dataclass(frozen=True)
class ClassifierRule:
    name: str
    type: RequirementType
    matcher: Callable[[str], bool]


def _contains_whole_term(haystack: str, term: str) -> bool:
    if not term:
        return False
    return re.search(rf"\b{re.escape(term)}\b", haystack) is not None


def canonical_tool_name(value: str) -> str | None:
    """Return the display name for a known tool alias, or None."""
    return _ALIAS_TO_CANONICAL.get(normalize_requirement_key(value))


def extract_tool_mentions(text: str) -> list[str]:
    normalized = normalize_requirement_key(text)
    matches: list[str] = []
    for name, aliases in TOOL_ALIASES:
        if any(_contains_whole_term(normalized, normalize_requirement_key(alias)) for alias in aliases):
            matches.append(name)
    return matches


def is_plausible_tool_phrase(phrase: str) -> bool:
    cleaned = (phrase or "").strip()
    key = normalize_requirement_key(cleaned)
    if not key:
        return False
    tokens = key.split()
    if len(tokens) > MAX_TOOL_PHRASE_TOKENS:
        return False
    if key in GENERIC_TOOL_PHRASES:
        return False
    if any(token in TOOL_SIGNAL_TOKENS for token in tokens):
        return True
    if canonical_tool_name(key):
        return True
    if _STRUCTURED_CHAR_RE.search(cleaned):
        return True
    return _ACRONYM_RE.search(cleaned) is not None


def _clean_contextual_phrase(raw: str) -> str:
    phrase = _PHRASE_BOUNDARY_RE.sub("", raw.strip())
    phrase = _LEADING_ARTICLE_RE.sub("", phrase)
    return _TRAILING_PUNCT_RE.sub("", phrase).strip()


def extract_contextual_tools(text: str) -> list[str]:
    """Tool names captured from phrases like "experience with X" that are not known aliases."""
    known = set(extract_tool_mentions(text))
    found: list[str] = []
    seen: set[str] = set()
    for pattern in _CONTEXTUAL_TOOL_PATTERNS:
        for match in pattern.finditer(text or ""):
            phrase = _clean_contextual_phrase(match.group(1))
            if not is_plausible_tool_phrase(phrase):
                continue
            name = canonical_tool_name(phrase) or phrase
            if name in known:
                continue
            # Phrases that only wrap a known alias ("AutoCAD drafting") are already covered.
            phrase_key = normalize_requirement_key(phrase)
            if any(_contains_whole_term(phrase_key, normalize_requirement_key(tool)) for tool in known):
                continue
            key = normalize_requirement_key(name)
            if key in seen:
                continue
            seen.add(key)
            found.append(name)
    return found


def has_gate_signal(text: str) -> bool:
    return GATE_PATTERN.search(text or "") is not None


def has_experience_signal(text: str) -> bool:
    return EXPERIENCE_PATTERN.search(text or "") is not None


def has_soft_signal(text: str) -> bool:
    return SOFT_SIGNAL_PATTERN.search(text or "") is not None


def has_tool_signal(text: str) -> bool:
    return bool(extract_tool_mentions(text)) or bool(extract_contextual_tools(text))


CLASSIFIER_RULES: tuple[ClassifierRule, ...] = (
    ClassifierRule("gate_vocabulary", "gate", has_gate_signal),
    ClassifierRule("tool_mention", "tool", has_tool_signal),
    ClassifierRule("experience_vocabulary", "experience_signal", has_experience_signal),
    ClassifierRule("soft_vocabulary", "soft_signal", has_soft_signal),
)


def classify_requirement(text: str) -> RequirementType:
    for rule in CLASSIFIER_RULES:
        if rule.matcher(text):
            return rule.type
    return "hard_skill"
