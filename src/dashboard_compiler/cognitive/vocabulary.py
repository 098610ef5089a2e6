"""Lookup tables for column classification and CRM/funnel detection.

The built-in tables target Portuguese-language lead/CRM funnels (the
vertical the compiler was first tuned on), with a few English synonyms.
Every table can be replaced from a JSON file named by
``settings.vocabulary_path`` so another vertical needs no code change:

    {
      "dimension_tokens": ["branch", "rep", "channel"],
      "stages": [{"token": "signup", "order": 1, "label": "Signup"},
                 {"token": "paid", "order": 6, "label": "Paid", "outcome": "won"}],
      "tab_names": {"details": "Details"}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class StageTerm:
    """One funnel-stage token with its canonical position."""
    token: str
    order: float
    label: str
    outcome: str = ""  # "won" | "lost" | ""


@dataclass
class TabNames:
    decisions: str = "Decisões"
    executive: str = "Executivo"
    funnel: str = "Funil"
    trends: str = "Tendências"
    details: str = "Detalhes"


@dataclass
class Phrases:
    """Operator-facing labels used by the heuristic templates."""
    total_leads: str = "Total de Leads"
    total_records: str = "Total de Registros"
    per_day: str = "{metric} por Dia"
    per_dimension: str = "{metric} por {dimension}"
    trend: str = "Evolução de {metric}"


# ---------------------------------------------------------------------------
# Built-in tables
# ---------------------------------------------------------------------------

_STAGES: tuple[StageTerm, ...] = (
    StageTerm("entrada", 1, "Entrada"),
    StageTerm("entrou", 1, "Entrada"),
    StageTerm("lead_entrada", 1, "Entrada"),
    StageTerm("entry", 1, "Entry"),
    StageTerm("lead_ativo", 2, "Lead Ativo"),
    StageTerm("ativo", 2, "Lead Ativo"),
    StageTerm("qualificado", 3, "Qualificado"),
    StageTerm("qualificacao", 3, "Qualificado"),
    StageTerm("lead_qualificado", 3, "Qualificado"),
    StageTerm("qualified", 3, "Qualified"),
    StageTerm("exp_nao_confirmada", 3.5, "Exp. Não Confirmada"),
    StageTerm("exp_agendada", 4, "Exp. Agendada"),
    StageTerm("agendada", 4, "Exp. Agendada"),
    StageTerm("agendado", 4, "Exp. Agendada"),
    StageTerm("agendamento", 4, "Exp. Agendada"),
    StageTerm("scheduled", 4, "Scheduled"),
    StageTerm("faltou_exp", 4.5, "Faltou Exp."),
    StageTerm("reagendou", 4.6, "Reagendou"),
    StageTerm("exp_realizada", 5, "Exp. Realizada"),
    StageTerm("realizada", 5, "Exp. Realizada"),
    StageTerm("compareceu", 5, "Exp. Realizada"),
    StageTerm("completed", 5, "Completed"),
    StageTerm("venda", 6, "Venda", "won"),
    StageTerm("vendas", 6, "Venda", "won"),
    StageTerm("fechou", 6, "Venda", "won"),
    StageTerm("ganho", 6, "Venda", "won"),
    StageTerm("vendido", 6, "Venda", "won"),
    StageTerm("convertido", 6, "Venda", "won"),
    StageTerm("won", 6, "Won", "won"),
    StageTerm("aluno_ativo", 7, "Aluno Ativo"),
    StageTerm("cliente_ativo", 7, "Cliente Ativo"),
    StageTerm("perdida", 99, "Perdido", "lost"),
    StageTerm("perdido", 99, "Perdido", "lost"),
    StageTerm("perdeu", 99, "Perdido", "lost"),
    StageTerm("lost", 99, "Lost", "lost"),
)


@dataclass
class Vocabulary:
    """All name-pattern tables consulted by the compiler."""

    time_names: tuple[str, ...] = (
        "created_at", "created_at_ts", "updated_at", "inserted_at",
        "data", "dia", "day", "date", "datetime", "timestamp",
        "created", "updated", "mes", "month", "semana", "week",
    )
    time_prefixes: tuple[str, ...] = ("dt_", "data_", "date_", "dia_")
    time_suffixes: tuple[str, ...] = ("_at", "_date", "_dt", "_ts", "_data")
    # Preferred time axis when several columns qualify
    time_priority: tuple[str, ...] = (
        "dia", "data", "created_at_ts", "created_at", "inserted_at", "updated_at",
    )

    identifier_names: tuple[str, ...] = (
        "id", "idd", "uuid", "lead_id", "leadid", "kommo_lead_id",
        "deal_id", "contact_id", "customer_id", "client_id",
    )
    identifier_suffixes: tuple[str, ...] = ("_id", "_uuid")

    stage_prefixes: tuple[str, ...] = ("st_",)
    stages: tuple[StageTerm, ...] = _STAGES

    dimension_tokens: tuple[str, ...] = (
        "vendedor", "vendedora", "professor", "unidade", "origem", "fonte",
        "canal", "modalidade", "categoria", "tipo", "campanha", "retencao",
        "source", "channel", "campaign", "region", "country", "state", "city",
        "unit", "salesperson", "origin", "segment",
    )
    currency_tokens: tuple[str, ...] = (
        "custo", "valor", "preco", "investimento", "receita", "faturamento",
        "ticket", "cpl", "cac", "price", "cost", "spend", "revenue", "amount",
    )
    percent_tokens: tuple[str, ...] = (
        "taxa", "conv_", "pct", "percent", "percentual", "porcentagem",
        "ratio", "rate",
    )
    lower_is_better_tokens: tuple[str, ...] = ("cpl", "cac", "custo", "cost")
    ignore_tokens: tuple[str, ...] = (
        "token", "hash", "secret", "password", "api_key",
        "internal_id", "external_id", "legacy_id", "old_id",
        "created_by", "updated_by", "deleted_at",
    )
    platform_keywords: tuple[str, ...] = (
        "kommo", "crm", "hubspot", "pipedrive", "rdstation", "salesforce",
    )
    truthy_values: tuple[str, ...] = ("1", "true", "sim", "s", "yes", "y", "ok", "x", "on")

    tab_names: TabNames = field(default_factory=TabNames)
    phrases: Phrases = field(default_factory=Phrases)

    # -- stage lookups -------------------------------------------------------

    def strip_stage_prefix(self, name: str) -> str:
        lowered = name.lower().strip()
        for prefix in self.stage_prefixes:
            if lowered.startswith(prefix) and len(lowered) > len(prefix):
                return lowered[len(prefix):]
        return lowered

    def has_stage_prefix(self, name: str) -> bool:
        lowered = name.lower().strip()
        return any(lowered.startswith(p) and len(lowered) > len(p) for p in self.stage_prefixes)

    def stage_for(self, name: str) -> StageTerm | None:
        """Exact stage match after stripping the stage prefix."""
        stripped = self.strip_stage_prefix(name)
        for term in self.stages:
            if term.token == stripped:
                return term
        return None

    def stage_containing(self, name: str) -> StageTerm | None:
        """Stage whose token appears as a whole ``_``-segment run of ``name``."""
        exact = self.stage_for(name)
        if exact is not None:
            return exact
        padded = f"_{self.strip_stage_prefix(name)}_"
        # Longer tokens first so "exp_agendada" beats "agendada"
        for term in sorted(self.stages, key=lambda t: -len(t.token)):
            if f"_{term.token}_" in padded:
                return term
        return None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_NESTED = {"tab_names": TabNames, "phrases": Phrases}


def load_vocabulary(path: str | Path) -> Vocabulary:
    """Build a Vocabulary from a JSON file, falling back to built-ins per table.

    Raises ``ValueError`` when the file is not a JSON object or a table has
    the wrong shape; a broken vocabulary is a deployment error.
    """
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Vocabulary file {path} must contain a JSON object")
    return vocabulary_from_dict(raw)


def vocabulary_from_dict(raw: dict[str, Any]) -> Vocabulary:
    known = {f.name for f in fields(Vocabulary)}
    overrides: dict[str, Any] = {}
    base = Vocabulary()

    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown vocabulary table %r", key)
            continue
        if key in _NESTED:
            if not isinstance(value, dict):
                raise ValueError(f"Vocabulary table {key!r} must be an object")
            overrides[key] = replace(getattr(base, key), **value)
        elif key == "stages":
            overrides[key] = tuple(_parse_stage(item) for item in value)
        else:
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"Vocabulary table {key!r} must be a list of strings")
            overrides[key] = tuple(v.lower() for v in value)

    return replace(base, **overrides)


def _parse_stage(item: Any) -> StageTerm:
    if not isinstance(item, dict) or "token" not in item:
        raise ValueError(f"Invalid stage entry: {item!r}")
    token = str(item["token"]).lower()
    return StageTerm(
        token=token,
        order=float(item.get("order", 50)),
        label=str(item.get("label") or token.replace("_", " ").title()),
        outcome=str(item.get("outcome") or ""),
    )


@lru_cache(maxsize=1)
def get_vocabulary() -> Vocabulary:
    """Vocabulary configured for this process (built-in unless overridden)."""
    from config.settings import settings

    if settings.vocabulary_path:
        logger.info("Loading vocabulary from %s", settings.vocabulary_path)
        return load_vocabulary(settings.vocabulary_path)
    return Vocabulary()
