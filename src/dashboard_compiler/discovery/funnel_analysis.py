"""Funnel analysis — canonical stage ordering and stage-to-stage conversion.

Pure functions.  Ordering decides how stage-flag columns line up in a
synthesized funnel; conversion metrics decorate the aggregation preview.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from dashboard_compiler.cognitive.vocabulary import StageTerm, Vocabulary, get_vocabulary


@dataclass
class FunnelStage:
    """Metrics for a single funnel stage."""
    name: str
    count: float
    pct_of_total: float  # % of the first stage
    conversion_rate: float | None  # % of previous stage (100 for first, None if previous is 0)
    drop_off: float  # count lost from previous stage


@dataclass
class FunnelResult:
    """Complete funnel analysis result."""
    stages: list[FunnelStage]
    initial_count: float
    final_count: float
    overall_conversion: float  # final / initial * 100
    biggest_drop_stage: str
    summary: str


# ---------------------------------------------------------------------------
# Stage ordering
# ---------------------------------------------------------------------------


def stage_term(name: str, vocab: Vocabulary | None = None) -> StageTerm | None:
    vocab = vocab or get_vocabulary()
    return vocab.stage_containing(name)


def stage_rank(name: str, vocab: Vocabulary | None = None) -> float:
    """Canonical position of a stage column; unknown stages rank last."""
    term = stage_term(name, vocab)
    return term.order if term is not None else math.inf


def order_stages(names: list[str], vocab: Vocabulary | None = None) -> list[str]:
    """Sort stage columns into canonical funnel order.

    Stable, so stages with the same rank (and all unknown stages) keep
    their profile order.
    """
    vocab = vocab or get_vocabulary()
    return sorted(names, key=lambda n: stage_rank(n, vocab))


def won_stage(names: list[str], vocab: Vocabulary | None = None) -> str | None:
    """First column whose stage is a winning outcome (sale, conversion)."""
    vocab = vocab or get_vocabulary()
    for name in names:
        term = vocab.stage_containing(name)
        if term is not None and term.outcome == "won":
            return name
    return None


def stage_label(name: str, vocab: Vocabulary | None = None) -> str:
    """Human label for a stage column: vocabulary label, else a title-cased name."""
    vocab = vocab or get_vocabulary()
    term = vocab.stage_for(name)
    if term is not None:
        return term.label
    return vocab.strip_stage_prefix(name).replace("_", " ").title()


# ---------------------------------------------------------------------------
# Conversion metrics
# ---------------------------------------------------------------------------


def analyze_funnel(
    stage_counts: list[tuple[str, float]],
) -> FunnelResult | None:
    """Analyze a funnel from stage counts.

    Args:
        stage_counts: List of (stage_name, count) tuples in funnel order.
            Counts need not be monotonic; flag columns often are not.

    Returns:
        FunnelResult or None if there are fewer than two stages or the
        first stage is empty.
    """
    if not stage_counts or len(stage_counts) < 2:
        return None

    initial = stage_counts[0][1]
    if initial <= 0:
        return None

    stages: list[FunnelStage] = []
    biggest_drop = ""
    biggest_drop_pct = 0.0

    for i, (name, count) in enumerate(stage_counts):
        count = max(0, count)
        if i == 0:
            conversion_rate: float | None = 100.0
            drop_off = 0
        else:
            prev_count = max(0, stage_counts[i - 1][1])
            conversion_rate = round(count / prev_count * 100, 2) if prev_count > 0 else None
            drop_off = max(0, prev_count - count)
            drop_pct = drop_off / prev_count * 100 if prev_count > 0 else 0.0
            if drop_pct > biggest_drop_pct:
                biggest_drop_pct = drop_pct
                biggest_drop = name

        stages.append(FunnelStage(
            name=name,
            count=count,
            pct_of_total=round(count / initial * 100, 2),
            conversion_rate=conversion_rate,
            drop_off=drop_off,
        ))

    final = max(0, stage_counts[-1][1])
    overall = final / initial * 100

    summary = f"Funnel: {initial:g} → {final:g} ({overall:.1f}% overall conversion)."
    if biggest_drop:
        summary += f" Biggest drop: {biggest_drop} ({biggest_drop_pct:.1f}% lost)."

    return FunnelResult(
        stages=stages,
        initial_count=initial,
        final_count=final,
        overall_conversion=round(overall, 2),
        biggest_drop_stage=biggest_drop,
        summary=summary,
    )
