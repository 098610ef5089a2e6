"""Column name resolution — map a requested (possibly mistyped) name to a real column.

Plans written by people or LLMs refer to columns loosely: different case,
relabelled ("Entrada" for ``st_entrada``), or with role prefixes added or
dropped.  Resolution tries increasingly loose strategies and the first hit
wins, so the result never depends on scoring ties.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

# Prefixes upstream tools put on flag/stage columns
ROLE_PREFIXES = ("st", "flag", "is", "has", "col")

_PREFIX_RE = re.compile(r"^(?:%s)[_\-\s]+" % "|".join(ROLE_PREFIXES))
_SEPARATORS_RE = re.compile(r"[_\-\s]+")

EXACT = "exact"
CASE_INSENSITIVE = "case_insensitive"
LABEL = "label"
NORMALIZED = "normalized"
SUBSTRING = "substring"


def normalize_column_name(name: str) -> str:
    """Lower-case, drop a role prefix (``st_``, ``flag_`` …) and all separators."""
    lowered = (name or "").strip().lower()
    lowered = _PREFIX_RE.sub("", lowered, count=1)
    return _SEPARATORS_RE.sub("", lowered)


def resolve(
    requested_name: object,
    available_columns: Iterable[str],
    labels: Mapping[str, str] | None = None,
) -> str | None:
    """Return the real column ``requested_name`` refers to, or None."""
    return resolve_with_reason(requested_name, available_columns, labels)[0]


def resolve_with_reason(
    requested_name: object,
    available_columns: Iterable[str],
    labels: Mapping[str, str] | None = None,
) -> tuple[str | None, str | None]:
    """Like :func:`resolve` but also report which strategy matched.

    Args:
        requested_name: Name from a plan or candidate spec. Anything that is
            not a non-blank string resolves to nothing.
        available_columns: Real column names, in profile order. Order only
            matters for the loose strategies, where the first column wins.
        labels: Optional ``{column: display_label}``; a request matching a
            display label resolves to its column.

    Returns:
        ``(column, match_kind)`` or ``(None, None)``.
    """
    if not isinstance(requested_name, str) or not requested_name.strip():
        return None, None

    columns = [c for c in available_columns if isinstance(c, str) and c]
    target = requested_name.strip()
    target_lower = target.lower()

    # 1. Exact
    if requested_name in columns:
        return requested_name, EXACT
    if target in columns:
        return target, EXACT

    # 2. Case-insensitive
    for col in columns:
        if col.lower() == target_lower:
            return col, CASE_INSENSITIVE

    # 2b. Display label ("Exp. Agendada" → exp_agendada)
    if labels:
        wanted = _label_key(target)
        for col in columns:
            label = labels.get(col)
            if label and _label_key(label) == wanted:
                return col, LABEL

    # 3. Normalized (prefix- and separator-insensitive)
    normalized_target = normalize_column_name(target)
    if normalized_target:
        for col in columns:
            if normalize_column_name(col) == normalized_target:
                return col, NORMALIZED

    # 4. Substring either way ("entrada" ↔ "st_entrada")
    for col in columns:
        col_lower = col.lower()
        if col_lower in target_lower or target_lower in col_lower:
            return col, SUBSTRING

    return None, None


def _label_key(text: str) -> str:
    return _SEPARATORS_RE.sub(" ", text.strip().lower())
