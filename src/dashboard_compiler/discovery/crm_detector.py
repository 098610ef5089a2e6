"""CRM / lead-funnel pattern detection over a dataset's column names.

Scores how much a dataset looks like a CRM export (an id, a timestamp, a
run of stage flags and a few sales dimensions).  The score only picks the
template the synthesizer labels things with; it never blocks compilation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from dashboard_compiler.cognitive.column_classifier import (
    is_dimension_name,
    is_identifier_name,
    is_time_name,
)
from dashboard_compiler.cognitive.vocabulary import Vocabulary, get_vocabulary

logger = logging.getLogger(__name__)

# Inherited cut-off, not calibrated on labelled datasets.
CRM_MATCH_THRESHOLD = 60

_PLATFORM_POINTS = 20
_IDENTIFIER_POINTS = 15
_TIME_POINTS = 10
_MANY_STAGES_POINTS = 35   # 4+ stage columns
_FEW_STAGES_POINTS = 15    # 2-3 stage columns
_DIMENSION_POINTS = 20     # 2+ dimension columns


@dataclass
class CrmDetection:
    """Outcome of CRM pattern detection."""
    is_match: bool
    confidence: int  # 0-100
    reasons: list[str] = field(default_factory=list)
    stage_columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_match": self.is_match,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "stage_columns": list(self.stage_columns),
        }


def detect(
    column_names: list[str],
    dataset_name: str = "",
    vocab: Vocabulary | None = None,
    threshold: int | None = None,
) -> CrmDetection:
    """Score ``column_names`` against the CRM funnel template.

    Args:
        column_names: Column names in profile order.
        dataset_name: Free-text dataset name; platform keywords add points.
        vocab: Lookup tables (defaults to the configured vocabulary).
        threshold: Match cut-off; defaults to ``settings.crm_match_threshold``.

    Returns:
        CrmDetection with a confidence capped at 100 and one reason per
        rule that fired.
    """
    vocab = vocab or get_vocabulary()
    if threshold is None:
        from config.settings import settings
        threshold = settings.crm_match_threshold

    names = [n for n in column_names if isinstance(n, str) and n.strip()]
    score = 0
    reasons: list[str] = []

    lowered_name = (dataset_name or "").lower()
    keyword = next((k for k in vocab.platform_keywords if k in lowered_name), None)
    if keyword:
        score += _PLATFORM_POINTS
        reasons.append(f"dataset name mentions '{keyword}'")

    id_col = next((n for n in names if is_identifier_name(n, vocab)), None)
    if id_col:
        score += _IDENTIFIER_POINTS
        reasons.append(f"identifier column '{id_col}'")

    time_col = next((n for n in names if is_time_name(n, vocab)), None)
    if time_col:
        score += _TIME_POINTS
        reasons.append(f"time column '{time_col}'")

    stage_cols = [n for n in names if vocab.stage_containing(n) is not None]
    if len(stage_cols) >= 4:
        score += _MANY_STAGES_POINTS
        reasons.append(f"{len(stage_cols)} funnel stage columns")
    elif len(stage_cols) >= 2:
        score += _FEW_STAGES_POINTS
        reasons.append(f"{len(stage_cols)} funnel stage columns")

    dim_cols = [n for n in names if is_dimension_name(n, vocab)]
    if len(dim_cols) >= 2:
        score += _DIMENSION_POINTS
        reasons.append(f"{len(dim_cols)} dimension columns")

    confidence = min(score, 100)
    result = CrmDetection(
        is_match=confidence >= threshold,
        confidence=confidence,
        reasons=reasons,
        stage_columns=stage_cols,
    )
    logger.debug("CRM detection for %r: %d (%s)", dataset_name, confidence, ", ".join(reasons))
    return result
