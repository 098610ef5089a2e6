"""Column semantic classifier — assigns every profiled column one dashboard role.

Pure Python, no LLM calls.  Runs BEFORE spec synthesis to decide which
columns become the time axis, KPIs, funnel stages, dimensions and table
detail.  Rules are name/type/statistics heuristics evaluated in a fixed
order; the first rule that fires wins.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Any

from dashboard_compiler.cognitive.vocabulary import Vocabulary, get_vocabulary

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

TIME = "time"
IDENTIFIER = "identifier"
DIMENSION = "dimension"
FUNNEL_STAGE = "funnel_stage"
METRIC_NUMERIC = "metric_numeric"
METRIC_CURRENCY = "metric_currency"
METRIC_PERCENT = "metric_percent"
TEXT_DETAIL = "text_detail"
IGNORED = "ignored"

ROLES = (
    TIME, IDENTIFIER, DIMENSION, FUNNEL_STAGE,
    METRIC_NUMERIC, METRIC_CURRENCY, METRIC_PERCENT, TEXT_DETAIL, IGNORED,
)
METRIC_ROLES = frozenset({METRIC_NUMERIC, METRIC_CURRENCY, METRIC_PERCENT})

# Rate thresholds over sample statistics. Inherited magic numbers, not
# calibrated against real datasets.
DATE_PARSEABLE_THRESHOLD = 0.3
BOOLEAN_LIKE_THRESHOLD = 0.3
NUMERIC_PARSE_THRESHOLD = 0.8

# Upstream role names (introspection / semantic-model tools) → our roles
_ROLE_ALIASES: dict[str, str] = {
    "time": TIME,
    "date": TIME,
    "identifier": IDENTIFIER,
    "id": IDENTIFIER,
    "id_primary": IDENTIFIER,
    "dimension": DIMENSION,
    "status_enum": DIMENSION,
    "funnel_stage": FUNNEL_STAGE,
    "stage_flag": FUNNEL_STAGE,
    "funnel_step": FUNNEL_STAGE,
    "metric": METRIC_NUMERIC,
    "count": METRIC_NUMERIC,
    "metric_numeric": METRIC_NUMERIC,
    "currency": METRIC_CURRENCY,
    "metric_currency": METRIC_CURRENCY,
    "percent": METRIC_PERCENT,
    "rate": METRIC_PERCENT,
    "metric_percent": METRIC_PERCENT,
    "text": TEXT_DETAIL,
    "text_long": TEXT_DETAIL,
    "text_detail": TEXT_DETAIL,
}
_IGNORE_ALIASES = frozenset({"ignore", "ignored", "id_secondary"})

# ---------------------------------------------------------------------------
# SQL / dataframe type helpers
# ---------------------------------------------------------------------------

_SQL_NUMERIC = frozenset({
    "bigint", "integer", "int", "smallint", "real", "float", "double",
    "numeric", "decimal", "money", "number", "float4", "float8",
    "int2", "int4", "int8", "int32", "int64", "float32", "float64",
})

_SQL_TEMPORAL = frozenset({
    "timestamp", "timestamptz", "date", "time", "timetz", "datetime",
    "datetime64", "datetimetz",
})

_SQL_TEXT = frozenset({
    "text", "varchar", "character", "char", "citext", "string", "str",
    "object", "categorical", "category", "enum",
})

_SQL_BOOLEAN = frozenset({"boolean", "bool"})

_TYPE_SPLIT = re.compile(r"[\s(\[]")


def declared_kind(declared_type: str | None) -> str:
    """Collapse a declared column type into temporal/numeric/boolean/text/""."""
    base = _TYPE_SPLIT.split((declared_type or "").strip().lower(), maxsplit=1)[0]
    if base in _SQL_TEMPORAL:
        return "temporal"
    if base in _SQL_BOOLEAN:
        return "boolean"
    if base in _SQL_NUMERIC:
        return "numeric"
    if base in _SQL_TEXT:
        return "text"
    return ""


# ---------------------------------------------------------------------------
# Column profile (input contract)
# ---------------------------------------------------------------------------


@dataclass
class SampleStats:
    """Sample statistics gathered by the introspection step (all rates 0-1)."""
    null_rate: float | None = None
    distinct_count: int | None = None
    boolean_rate: float | None = None
    date_parseable_rate: float | None = None
    numeric_parse_rate: float | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SampleStats | None:
        if isinstance(data, SampleStats):
            return data
        if not isinstance(data, dict):
            return None
        distinct = _finite(data.get("distinct_count"))
        return cls(
            null_rate=_finite(data.get("null_rate")),
            distinct_count=int(distinct) if distinct is not None else None,
            boolean_rate=_finite(data.get("boolean_rate", data.get("boolean_like_rate"))),
            date_parseable_rate=_finite(data.get("date_parseable_rate", data.get("date_parse_rate"))),
            numeric_parse_rate=_finite(data.get("numeric_parse_rate")),
        )


@dataclass
class ColumnProfile:
    """Normalized metadata for one dataset column. Read-only to the compiler."""
    name: str
    declared_type: str = "text"
    semantic_role: str | None = None
    display_label: str = ""
    sample_stats: SampleStats | None = None
    is_hidden: bool = False
    format: str | None = None

    def __post_init__(self) -> None:
        if not self.display_label:
            self.display_label = self.name

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ColumnProfile:
        """Build from an upstream dict; raises ValueError when there is no name."""
        name = data.get("name", data.get("column_name", data.get("key")))
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Column entry has no name: {data!r}")
        declared = data.get("declared_type", data.get("db_type", data.get("type")))
        role = data.get("semantic_role", data.get("semantic_type", data.get("role_hint")))
        label = data.get("display_label", data.get("label"))
        return cls(
            name=name,
            declared_type=declared if isinstance(declared, str) and declared else "text",
            semantic_role=role if isinstance(role, str) and role else None,
            display_label=label if isinstance(label, str) else "",
            sample_stats=SampleStats.from_dict(data.get("sample_stats", data.get("stats"))),
            is_hidden=any(data.get(k) is True for k in ("is_hidden", "hidden", "ignore_in_ui")),
            format=data.get("format") if isinstance(data.get("format"), str) else None,
        )


@dataclass
class ClassifiedColumn:
    """A profile plus its assigned role.

    ``role`` is what the table sees (``ignored`` for hidden columns);
    ``base_role`` is the content role used for KPI/funnel eligibility.
    """
    profile: ColumnProfile
    role: str
    base_role: str
    reason: str

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def label(self) -> str:
        return self.profile.display_label

    @property
    def is_numeric(self) -> bool:
        return (
            self.base_role in METRIC_ROLES
            or declared_kind(self.profile.declared_type) == "numeric"
        )


def coerce_profiles(columns: Any) -> list[ColumnProfile]:
    """Accept profiles, upstream dicts or bare names; skip malformed and duplicate entries."""
    if columns is None or isinstance(columns, (str, bytes, dict)):
        return []
    try:
        items = list(columns)
    except TypeError:
        return []

    profiles: list[ColumnProfile] = []
    seen: set[str] = set()
    for item in items:
        if isinstance(item, ColumnProfile):
            profile = item
        elif isinstance(item, str) and item.strip():
            profile = ColumnProfile(name=item)
        elif isinstance(item, dict):
            try:
                profile = ColumnProfile.from_dict(item)
            except ValueError:
                logger.warning("Skipping column entry without a name: %r", item)
                continue
        else:
            logger.warning("Skipping unrecognized column entry: %r", item)
            continue
        if profile.name in seen:
            logger.warning("Skipping duplicate column %s", profile.name)
            continue
        seen.add(profile.name)
        profiles.append(profile)
    return profiles


# ---------------------------------------------------------------------------
# Name pattern checks (shared with the CRM detector)
# ---------------------------------------------------------------------------


def has_token(name: str, tokens: tuple[str, ...]) -> bool:
    """True if any token is a whole run of ``_``-separated segments of ``name``.

    ``state`` matches ``state_code`` but not ``statement``.
    """
    padded = f"_{name.lower().strip()}_"
    return any(f"_{t.strip('_')}_" in padded for t in tokens if t.strip("_"))


def is_time_name(name: str, vocab: Vocabulary) -> bool:
    lowered = name.lower().strip()
    return (
        lowered in vocab.time_names
        or lowered.startswith(vocab.time_prefixes)
        or lowered.endswith(vocab.time_suffixes)
    )


def is_identifier_name(name: str, vocab: Vocabulary) -> bool:
    lowered = name.lower().strip()
    return lowered in vocab.identifier_names or lowered.endswith(vocab.identifier_suffixes)


def is_stage_name(name: str, vocab: Vocabulary) -> bool:
    return vocab.stage_for(name) is not None or vocab.has_stage_prefix(name)


def is_dimension_name(name: str, vocab: Vocabulary) -> bool:
    return has_token(name, vocab.dimension_tokens)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def classify_profiles(
    profiles: list[ColumnProfile],
    vocab: Vocabulary | None = None,
) -> list[ClassifiedColumn]:
    """Classify every profile, preserving profile order."""
    vocab = vocab or get_vocabulary()
    return [classify_column(p, vocab) for p in profiles]


def classify_column(profile: ColumnProfile, vocab: Vocabulary | None = None) -> ClassifiedColumn:
    """Assign exactly one role to a column."""
    vocab = vocab or get_vocabulary()
    upstream = (profile.semantic_role or "").strip().lower()

    if upstream in _ROLE_ALIASES:
        base_role, reason = _ROLE_ALIASES[upstream], f"upstream role '{upstream}'"
    else:
        base_role, reason = _heuristic_role(profile, vocab)

    if profile.is_hidden:
        return ClassifiedColumn(profile, IGNORED, base_role, "hidden by upstream metadata")
    if upstream in _IGNORE_ALIASES:
        return ClassifiedColumn(profile, IGNORED, base_role, f"upstream role '{upstream}'")
    if has_token(profile.name, vocab.ignore_tokens):
        return ClassifiedColumn(profile, IGNORED, base_role, "sensitive or bookkeeping column")
    return ClassifiedColumn(profile, base_role, base_role, reason)


def columns_with_role(classified: list[ClassifiedColumn], *roles: str) -> list[ClassifiedColumn]:
    """Columns whose content role is one of ``roles`` (hidden columns included)."""
    return [c for c in classified if c.base_role in roles]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _heuristic_role(profile: ColumnProfile, vocab: Vocabulary) -> tuple[str, str]:
    name = profile.name
    kind = declared_kind(profile.declared_type)
    stats = profile.sample_stats or SampleStats()

    # 1. Time
    if kind == "temporal":
        return TIME, f"declared type '{profile.declared_type}'"
    if is_time_name(name, vocab):
        return TIME, "time name pattern"
    if _above(stats.date_parseable_rate, DATE_PARSEABLE_THRESHOLD):
        return TIME, f"date-parseable rate {stats.date_parseable_rate:.2f}"

    # 2. Identifier
    if is_identifier_name(name, vocab):
        return IDENTIFIER, "identifier name pattern"

    # 3. Funnel stage
    if is_stage_name(name, vocab):
        return FUNNEL_STAGE, "funnel stage vocabulary"
    if kind == "boolean":
        return FUNNEL_STAGE, "boolean declared type"
    if _above(stats.boolean_rate, BOOLEAN_LIKE_THRESHOLD):
        return FUNNEL_STAGE, f"boolean-like rate {stats.boolean_rate:.2f}"

    # 4. Dimension
    if kind == "text" and is_dimension_name(name, vocab):
        return DIMENSION, "dimension vocabulary"

    # 5. Numeric metrics
    if kind == "numeric" or _above(stats.numeric_parse_rate, NUMERIC_PARSE_THRESHOLD):
        if has_token(name, vocab.currency_tokens):
            return METRIC_CURRENCY, "numeric with money name"
        if "%" in name or has_token(name, vocab.percent_tokens):
            return METRIC_PERCENT, "numeric with rate name"
        return METRIC_NUMERIC, "numeric"

    # 6. Fallback
    return TEXT_DETAIL, "no rule matched"


def _above(rate: float | None, threshold: float) -> bool:
    return rate is not None and rate > threshold


def _finite(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def format_classification_for_prompt(
    classified: list[ClassifiedColumn],
    dataset_name: str = "",
) -> str:
    """Format a classification into a readable block for LLM prompts."""
    lines = []
    for col in classified:
        line = f"  {col.name}: {col.role} (type={col.profile.declared_type}"
        if col.label != col.name:
            line += f", label={col.label}"
        lines.append(line + ")")

    header = [f"Dataset: {dataset_name or 'unnamed'}", "Column details:"]
    return "\n".join(header + lines)
