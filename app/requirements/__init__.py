from .classify import (
    CLASSIFIER_RULES,
    ClassifierRule,
    canonical_tool_name,
    classify_requirement,
    extract_contextual_tools,
    extract_tool_mentions,
    has_experience_signal,
    has_gate_signal,
    has_soft_signal,
    is_plausible_tool_phrase,
)
from .extractor import (
    aggregate_requirements,
    extract_requirements_from_postings,
    extract_requirements_from_text,
    merge_aggregated_requirements,
    merge_requirement_sources,
    sort_missing_requirements,
    split_segments,
)
from .labels import (
    ACTION_VERB_PATTERN,
    is_actionable_requirement_label,
    is_vague_requirement_label,
    to_task_level_label,
)
