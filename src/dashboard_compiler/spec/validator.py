"""Specification validation and repair.

``validate_and_repair`` takes any candidate (synthesized, planner-made or
hand-edited) plus the dataset's columns and returns a specification in
which every column reference exists and something is always renderable.

Each repair step is a pure function ``(value, catalog) -> (value, decisions)``.
Warnings and errors are projections of the decision list by severity, so
the whole repair is auditable field by field.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

from dashboard_compiler.cognitive.column_classifier import (
    FUNNEL_STAGE,
    IDENTIFIER,
    IGNORED,
    METRIC_ROLES,
    TIME,
    ClassifiedColumn,
    classify_profiles,
    coerce_profiles,
)
from dashboard_compiler.cognitive.name_resolver import EXACT, resolve_with_reason
from dashboard_compiler.cognitive.vocabulary import Vocabulary, get_vocabulary
from dashboard_compiler.spec.defaults import (
    count_aggregation,
    default_aggregation,
    default_format,
    default_goal_direction,
    default_label,
    default_tabs,
    preferred_time_column,
    table_format,
)
from dashboard_compiler.spec.models import (
    AGGREGATIONS,
    CHART_TYPES,
    ERROR,
    FORMATS,
    GOAL_DIRECTIONS,
    INFO,
    KPI,
    NUMERIC_AGGREGATIONS,
    SPEC_VERSION,
    WARNING,
    Chart,
    ChartSeries,
    Funnel,
    FunnelStageRef,
    RepairDecision,
    Specification,
    Table,
    TableColumn,
    TimeAxis,
    parse_specification,
)

logger = logging.getLogger(__name__)

# Fallback KPI counts: plain datasets get a few, datasets with numeric or
# stage columns get more.
FALLBACK_KPIS = 4
FALLBACK_KPIS_TYPED = 8

Decisions = list[RepairDecision]


@dataclass
class ValidationResult:
    """Outcome of validating and repairing one candidate."""
    repaired_specification: Specification
    decisions: list[RepairDecision] = field(default_factory=list)
    fallback: bool = False
    fallback_reason: str | None = None

    @property
    def errors(self) -> list[str]:
        """Fatal problems; a specification with errors must not be persisted."""
        return [d.message for d in self.decisions if d.severity == ERROR]

    @property
    def warnings(self) -> list[str]:
        return [d.message for d in self.decisions if d.severity == WARNING]

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "fallback": self.fallback,
            "fallback_reason": self.fallback_reason,
            "decisions": [d.to_dict() for d in self.decisions],
            "repaired_specification": self.repaired_specification.to_dict(),
        }


class _Catalog:
    """Classified columns plus lookups the repair steps need."""

    def __init__(self, classified: list[ClassifiedColumn], vocab: Vocabulary):
        self.vocab = vocab
        self.classified = classified
        self.by_name = {c.name: c for c in classified}
        self.names = [c.name for c in classified]
        self.labels = {c.name: c.label for c in classified if c.label != c.name}
        time_col = preferred_time_column(classified, vocab)
        self.time_column = time_col.name if time_col else None
        self.identifier_column = next(
            (c.name for c in classified if c.base_role == IDENTIFIER), None
        )

    def resolve(self, requested: str, path: str, decisions: Decisions) -> ClassifiedColumn | None:
        """Resolve a reference, recording a decision for every outcome but exact."""
        name, kind = resolve_with_reason(requested, self.names, self.labels)
        if name is None:
            decisions.append(RepairDecision(
                path, "dropped", f"column '{requested}' not found in dataset", WARNING,
            ))
            return None
        if kind != EXACT:
            decisions.append(RepairDecision(
                path, "resolved", f"'{requested}' matched column '{name}' ({kind})", INFO,
            ))
        return self.by_name[name]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_and_repair(
    candidate: Any,
    columns: Any,
    vocab: Vocabulary | None = None,
    max_kpis: int | None = None,
    max_charts: int | None = None,
) -> ValidationResult:
    """Enforce the column-existence and never-empty invariants on a candidate.

    Args:
        candidate: Specification, dict in any accepted shape, or anything
            else (treated as an empty candidate).
        columns: ColumnProfile objects, upstream dicts or bare names.
        vocab: Lookup tables (defaults to the configured vocabulary).
        max_kpis / max_charts: Caps; default to settings.

    Returns:
        ValidationResult.  Never raises for malformed input.
    """
    from config.settings import settings

    vocab = vocab or get_vocabulary()
    max_kpis = settings.max_kpis if max_kpis is None else max_kpis
    max_charts = settings.max_charts if max_charts is None else max_charts

    spec, decisions = parse_specification(candidate)
    profiles = coerce_profiles(columns)
    if not profiles:
        decisions.append(RepairDecision("", "rejected", "dataset has no columns; nothing can be rendered", ERROR))
        logger.warning("Validation rejected: no columns")
        return ValidationResult(repaired_specification=Specification(), decisions=decisions)

    catalog = _Catalog(classify_profiles(profiles, vocab), vocab)

    spec.version = _step(_repair_version(spec.version), decisions)
    spec.time = _step(_repair_time(spec.time, catalog), decisions)
    spec.kpis = _step(_repair_kpis(spec.kpis, catalog, max_kpis), decisions)
    spec.funnel = _step(_repair_funnel(spec.funnel, catalog), decisions)
    spec.charts = _step(_repair_charts(spec.charts, spec.time, catalog, max_charts), decisions)
    spec.table = _step(_repair_table(spec.table, catalog), decisions)
    spec.tabs = _step(_repair_tabs(spec.tabs, spec, catalog), decisions)
    spec.labels = _step(_default_labels(spec.labels, catalog), decisions)
    spec.formatting = _step(_default_formatting(spec.formatting, catalog), decisions)
    decisions.extend(scan_non_finite(spec.to_dict()))

    fallback, fallback_reason = spec.fallback, spec.fallback_reason
    if spec.is_empty:
        fallback_reason = "No KPI, chart or funnel survived repair; showing record counts per column"
        spec.kpis = _step(_fallback_kpis(catalog), decisions)
        spec.fallback, spec.fallback_reason = True, fallback_reason
        fallback = True
        logger.warning("Fallback specification used (%d columns)", len(catalog.names))

    result = ValidationResult(
        repaired_specification=spec,
        decisions=decisions,
        fallback=fallback,
        fallback_reason=fallback_reason,
    )
    if result.warnings:
        logger.warning("Specification repaired with %d warnings", len(result.warnings))
    if result.errors:
        logger.warning("Specification has %d fatal errors: %s", len(result.errors), "; ".join(result.errors))
    return result


def scan_non_finite(value: Any, path: str = "") -> list[RepairDecision]:
    """Error decisions for every NaN / Infinity leaf in a nested structure."""
    found: list[RepairDecision] = []
    if isinstance(value, float) and not math.isfinite(value):
        found.append(RepairDecision(path or "specification", "rejected", f"non-finite number {value}", ERROR))
    elif isinstance(value, dict):
        for key, item in value.items():
            found.extend(scan_non_finite(item, f"{path}.{key}" if path else str(key)))
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            found.extend(scan_non_finite(item, f"{path}[{i}]"))
    return found


# ---------------------------------------------------------------------------
# Repair steps
# ---------------------------------------------------------------------------


def _step(outcome: tuple[Any, Decisions], decisions: Decisions) -> Any:
    value, step_decisions = outcome
    decisions.extend(step_decisions)
    return value


def _repair_version(version: Any) -> tuple[Any, Decisions]:
    if isinstance(version, int) and not isinstance(version, bool):
        return version, []
    if version is None:
        return SPEC_VERSION, [RepairDecision("version", "defaulted", f"missing; set to {SPEC_VERSION}", WARNING)]
    if isinstance(version, float) and not math.isfinite(version):
        return SPEC_VERSION, [RepairDecision(
            "version", "replaced", f"non-finite number {version!r}; set to {SPEC_VERSION}", ERROR,
        )]
    return SPEC_VERSION, [RepairDecision(
        "version", "replaced", f"invalid value {version!r}; set to {SPEC_VERSION}", WARNING,
    )]


def _repair_time(time: TimeAxis | None, catalog: _Catalog) -> tuple[TimeAxis | None, Decisions]:
    decisions: Decisions = []
    if time is None:
        if catalog.time_column is None:
            return None, decisions
        decisions.append(RepairDecision(
            "time", "defaulted", f"no time axis; using '{catalog.time_column}'", WARNING,
        ))
        return TimeAxis(column=catalog.time_column), decisions

    col = catalog.resolve(time.column, "time.column", decisions)
    if col is not None:
        return TimeAxis(column=col.name, type=time.type), decisions
    if catalog.time_column is not None:
        decisions.append(RepairDecision(
            "time.column", "replaced", f"falling back to time column '{catalog.time_column}'", WARNING,
        ))
        return TimeAxis(column=catalog.time_column, type=time.type), decisions
    decisions.append(RepairDecision("time", "dropped", "no time column in dataset", WARNING))
    return None, decisions


def _repair_aggregation(
    aggregation: str,
    col: ClassifiedColumn,
    path: str,
    decisions: Decisions,
) -> str:
    if not aggregation:
        aggregation = default_aggregation(col)
        decisions.append(RepairDecision(path, "defaulted", f"set to '{aggregation}'", INFO))
    elif aggregation not in AGGREGATIONS:
        replacement = default_aggregation(col)
        decisions.append(RepairDecision(
            path, "replaced", f"unknown aggregation '{aggregation}'; using '{replacement}'", WARNING,
        ))
        aggregation = replacement

    if (
        aggregation in NUMERIC_AGGREGATIONS
        and not col.is_numeric
        and col.base_role != FUNNEL_STAGE
    ):
        forced = count_aggregation(col)
        decisions.append(RepairDecision(
            path, "forced", f"'{aggregation}' needs numbers but '{col.name}' is not numeric; using '{forced}'",
            WARNING,
        ))
        aggregation = forced
    return aggregation


def _repair_kpis(kpis: list[KPI], catalog: _Catalog, max_kpis: int) -> tuple[list[KPI], Decisions]:
    decisions: Decisions = []
    repaired: list[KPI] = []
    for i, kpi in enumerate(kpis):
        path = f"kpis[{i}]"
        col = catalog.resolve(kpi.column, f"{path}.column", decisions)
        if col is None:
            continue

        aggregation = _repair_aggregation(kpi.aggregation, col, f"{path}.aggregation", decisions)

        label = kpi.label
        if not label:
            label = default_label(col, catalog.vocab)
            decisions.append(RepairDecision(f"{path}.label", "defaulted", f"set to '{label}'", INFO))

        fmt = kpi.format
        if fmt not in FORMATS:
            fmt = default_format(col)
            if kpi.format:
                decisions.append(RepairDecision(
                    f"{path}.format", "replaced", f"unknown format '{kpi.format}'; using '{fmt}'", WARNING,
                ))

        direction = kpi.goal_direction
        if direction not in GOAL_DIRECTIONS:
            direction = default_goal_direction(col, catalog.vocab)
            if kpi.goal_direction:
                decisions.append(RepairDecision(
                    f"{path}.goal_direction", "replaced",
                    f"unknown direction '{kpi.goal_direction}'; using '{direction}'", WARNING,
                ))

        repaired.append(KPI(
            column=col.name, label=label, aggregation=aggregation,
            format=fmt, goal_direction=direction, target=kpi.target,
        ))

    if len(repaired) > max_kpis:
        decisions.append(RepairDecision(
            "kpis", "truncated", f"{len(repaired)} KPIs exceed the limit of {max_kpis}", WARNING,
        ))
        repaired = repaired[:max_kpis]
    return repaired, decisions


def _repair_funnel(funnel: Funnel | None, catalog: _Catalog) -> tuple[Funnel | None, Decisions]:
    decisions: Decisions = []
    if funnel is None:
        return None, decisions

    stages: list[FunnelStageRef] = []
    seen: set[str] = set()
    for i, stage in enumerate(funnel.stages):
        path = f"funnel.stages[{i}]"
        col = catalog.resolve(stage.column, f"{path}.column", decisions)
        if col is None:
            continue
        if col.name in seen:
            decisions.append(RepairDecision(path, "dropped", f"duplicate stage '{col.name}'", WARNING))
            continue
        seen.add(col.name)
        stages.append(FunnelStageRef(column=col.name, label=stage.label or default_label(col, catalog.vocab)))

    if len(stages) < 2:
        decisions.append(RepairDecision(
            "funnel", "dropped", f"only {len(stages)} valid stage(s); a funnel needs at least 2", WARNING,
        ))
        return None, decisions

    id_column = None
    if funnel.id_column:
        col = catalog.resolve(funnel.id_column, "funnel.id_column", decisions)
        if col is not None:
            id_column = col.name
        elif catalog.identifier_column is not None:
            id_column = catalog.identifier_column
            decisions.append(RepairDecision(
                "funnel.id_column", "replaced", f"using identifier '{id_column}'", WARNING,
            ))
    elif catalog.identifier_column is not None:
        id_column = catalog.identifier_column
        decisions.append(RepairDecision("funnel.id_column", "defaulted", f"set to '{id_column}'", INFO))

    return Funnel(stages=stages, id_column=id_column), decisions


def _repair_charts(
    charts: list[Chart],
    time: TimeAxis | None,
    catalog: _Catalog,
    max_charts: int,
) -> tuple[list[Chart], Decisions]:
    decisions: Decisions = []
    repaired: list[Chart] = []
    for i, chart in enumerate(charts):
        path = f"charts[{i}]"
        x_col = catalog.resolve(chart.x_column, f"{path}.x_column", decisions) if chart.x_column else None
        if x_col is not None:
            x_column = x_col.name
        elif time is not None:
            x_column = time.column
            decisions.append(RepairDecision(
                f"{path}.x_column", "replaced", f"using time column '{x_column}'", WARNING,
            ))
        else:
            decisions.append(RepairDecision(path, "dropped", "x axis cannot be resolved", WARNING))
            continue

        series: list[ChartSeries] = []
        for j, s in enumerate(chart.series):
            spath = f"{path}.series[{j}]"
            col = catalog.resolve(s.column, f"{spath}.column", decisions)
            if col is None:
                continue
            series.append(ChartSeries(
                column=col.name,
                label=s.label or default_label(col, catalog.vocab),
                aggregation=_repair_aggregation(s.aggregation, col, f"{spath}.aggregation", decisions),
            ))
        if not series:
            decisions.append(RepairDecision(path, "dropped", "no series left", WARNING))
            continue

        chart_type = chart.type
        if chart_type not in CHART_TYPES:
            is_time_x = catalog.by_name[x_column].base_role == TIME
            chart_type = "line" if is_time_x else "bar"
            if chart.type:
                decisions.append(RepairDecision(
                    f"{path}.type", "replaced", f"unknown chart type '{chart.type}'; using '{chart_type}'", WARNING,
                ))
            else:
                decisions.append(RepairDecision(f"{path}.type", "defaulted", f"set to '{chart_type}'", INFO))

        limit = chart.limit
        if isinstance(limit, (int, float)) and math.isfinite(limit) and limit <= 0:
            decisions.append(RepairDecision(f"{path}.limit", "dropped", f"limit {limit} is not positive", WARNING))
            limit = None

        repaired.append(Chart(type=chart_type, x_column=x_column, series=series, title=chart.title, limit=limit))

    if len(repaired) > max_charts:
        decisions.append(RepairDecision(
            "charts", "truncated", f"{len(repaired)} charts exceed the limit of {max_charts}", WARNING,
        ))
        repaired = repaired[:max_charts]
    return repaired, decisions


def _default_table(catalog: _Catalog) -> Table:
    return Table(columns=[
        TableColumn(column=c.name, label=default_label(c, catalog.vocab), format=table_format(c))
        for c in catalog.classified
        if c.role != IGNORED
    ])


def _repair_table(table: Table | None, catalog: _Catalog) -> tuple[Table, Decisions]:
    decisions: Decisions = []
    if table is None:
        decisions.append(RepairDecision("table", "defaulted", "built from visible columns", INFO))
        return _default_table(catalog), decisions

    columns: list[TableColumn] = []
    seen: set[str] = set()
    for i, tc in enumerate(table.columns):
        path = f"table.columns[{i}]"
        col = catalog.resolve(tc.column, f"{path}.column", decisions)
        if col is None or col.name in seen:
            continue
        seen.add(col.name)
        columns.append(TableColumn(
            column=col.name,
            label=tc.label or default_label(col, catalog.vocab),
            format=tc.format or table_format(col),
        ))

    if not columns:
        default = _default_table(catalog)
        # Every column hidden: an empty table is already the default
        if not table.columns and not default.columns:
            return default, decisions
        decisions.append(RepairDecision("table", "defaulted", "no table column resolved; using visible columns", WARNING))
        return default, decisions
    return Table(columns=columns), decisions


def _repair_tabs(tabs: list[str], spec: Specification, catalog: _Catalog) -> tuple[list[str], Decisions]:
    details = catalog.vocab.tab_names.details
    if not tabs:
        tabs = default_tabs(catalog.vocab, has_funnel=spec.funnel is not None, has_charts=bool(spec.charts))
        return tabs, [RepairDecision("tabs", "defaulted", f"set to {tabs}", INFO)]
    if details not in tabs:
        return tabs + [details], [RepairDecision("tabs", "defaulted", f"added '{details}' tab", INFO)]
    return list(tabs), []


def _default_labels(labels: dict, catalog: _Catalog) -> tuple[dict, Decisions]:
    if labels or not catalog.labels:
        return labels, []
    return dict(catalog.labels), [RepairDecision("labels", "defaulted", "taken from column display labels", INFO)]


def _default_formatting(formatting: dict, catalog: _Catalog) -> tuple[dict, Decisions]:
    if formatting:
        return formatting, []
    defaults = {
        c.name: default_format(c)
        for c in catalog.classified
        if c.base_role in METRIC_ROLES and default_format(c) != "number"
    }
    if not defaults:
        return {}, []
    return defaults, [RepairDecision("formatting", "defaulted", "money and rate columns formatted", INFO)]


def _fallback_kpis(catalog: _Catalog) -> tuple[list[KPI], Decisions]:
    """Count-based KPIs over arbitrary columns so the result is never empty."""
    typed = [c for c in catalog.classified if c.is_numeric or c.base_role == FUNNEL_STAGE]
    limit = FALLBACK_KPIS_TYPED if typed else FALLBACK_KPIS
    visible = [c for c in catalog.classified if c.role != IGNORED]
    hidden = [c for c in catalog.classified if c.role == IGNORED]
    ordered = typed + [c for c in visible + hidden if c not in typed]

    kpis = [
        KPI(
            column=c.name,
            label=default_label(c, catalog.vocab),
            aggregation=count_aggregation(c),
            format="number",
            goal_direction="higher_better",
        )
        for c in ordered[:limit]
    ]
    return kpis, [RepairDecision(
        "kpis", "fallback", f"generated {len(kpis)} count-based KPIs", INFO,
    )]
