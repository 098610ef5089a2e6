"""Specification compile / validate / preview routes.

Persistence is not handled here: callers save a specification only when
the response says it is persistable.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from config.settings import settings
from dashboard_compiler.discovery.crm_detector import detect
from dashboard_compiler.spec.compiler import compile_specification, compile_with_planner
from dashboard_compiler.spec.previewer import PreviewSource, preview
from dashboard_compiler.spec.validator import validate_and_repair

logger = logging.getLogger(__name__)

router = APIRouter(tags=["specs"])

# Planner calls cost money; cap them per client
_PLANNER_MAX_REQUESTS = 20
_PLANNER_WINDOW_SECONDS = 60


# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------


class CompileRequest(BaseModel):
    columns: list[Any]
    dataset_name: str = ""
    plan: Optional[dict] = None
    use_planner: bool = False
    user_prompt: str = ""
    mapping: Optional[dict] = None
    rows: Optional[list[dict]] = None
    source: PreviewSource = PreviewSource.SAMPLE


class ValidateRequest(BaseModel):
    specification: Any = None
    columns: list[Any]


class PreviewRequest(BaseModel):
    specification: dict
    rows: list[dict]
    source: PreviewSource = PreviewSource.SAMPLE
    truthy_values: Optional[list[str]] = None


class DetectRequest(BaseModel):
    column_names: list[str]
    dataset_name: str = ""


def _check_rows(rows: Optional[list[dict]]) -> None:
    if rows is not None and len(rows) > settings.preview_max_rows:
        raise HTTPException(
            status_code=413,
            detail=f"Preview accepts at most {settings.preview_max_rows} rows",
        )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/specs/compile")
async def compile_spec(req: CompileRequest, request: Request) -> dict:
    """Compile a dashboard specification for a dataset's columns."""
    _check_rows(req.rows)

    if req.use_planner and req.plan is None:
        from dashboard_compiler.action.api import check_rate_limit

        client_ip = request.client.host if request.client else "unknown"
        if not check_rate_limit(client_ip, "specs_compile_planner", _PLANNER_MAX_REQUESTS, _PLANNER_WINDOW_SECONDS):
            raise HTTPException(status_code=429, detail="Too many planner requests. Try again in a minute.")
        result = await compile_with_planner(
            req.columns,
            dataset_name=req.dataset_name,
            user_prompt=req.user_prompt,
            mapping=req.mapping,
            rows=req.rows,
            source=req.source,
        )
    else:
        result = compile_specification(
            req.columns,
            dataset_name=req.dataset_name,
            plan=req.plan,
            mapping=req.mapping,
            rows=req.rows,
            source=req.source,
        )
    return result.to_dict()


@router.post("/specs/validate")
async def validate_spec(req: ValidateRequest) -> dict:
    """Validate and repair an existing specification (e.g. after manual edits)."""
    return validate_and_repair(req.specification, req.columns).to_dict()


@router.post("/specs/preview")
async def preview_spec(req: PreviewRequest) -> dict:
    """Approximate KPI / funnel values for a specification over sampled rows."""
    _check_rows(req.rows)
    return preview(req.rows, req.specification, source=req.source, truthy_values=req.truthy_values).to_dict()


@router.post("/specs/detect")
async def detect_crm(req: DetectRequest) -> dict:
    """Score the columns against the CRM funnel template."""
    return detect(req.column_names, req.dataset_name).to_dict()
