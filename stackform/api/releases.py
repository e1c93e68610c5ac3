"""Release validate/render/plan endpoints."""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Header

from stackform.exceptions import ConfigurationError, ReleaseValidationError
from stackform.releases import store
from stackform.releases.assembler import assemble
from stackform.releases.loader import parse_release
from stackform.releases.model import ReleaseSet
from stackform.releases.revisions import plan_release as plan_release_revision
from stackform.releases.validator import list_rules, validate_release
from stackform import schemas

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_auth(authorization: str | None):
    token = os.environ.get("STACKFORM_API_TOKEN", "").strip()
    if not token:
        return
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    expected = f"Bearer {token}"
    if authorization.strip() != expected:
        raise HTTPException(status_code=403, detail="Invalid authorization token")


def _parse(document: Dict[str, Any]) -> ReleaseSet:
    try:
        return parse_release(document)
    except ConfigurationError as exc:
        logger.info(f"Rejected malformed release document: {exc}")
        raise HTTPException(status_code=400, detail=exc.to_dict())


def _blocking_detail(exc: ReleaseValidationError) -> Dict[str, Any]:
    return {
        "code": "blocking_violations",
        "message": str(exc),
        "report": exc.report.to_dict(),
    }


@router.get("/rules", response_model=List[schemas.RuleInfo])
async def get_rules(authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    return [
        {
            "id": rule.rule_id,
            "severity": rule.severity.value,
            "scope": rule.scope,
            "summary": rule.summary,
        }
        for rule in list_rules()
    ]


@router.post("/releases/validate", response_model=schemas.ValidationReportResponse)
async def validate_release_document(request: schemas.ReleaseRequest, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    release = _parse(request.release)
    return validate_release(release).to_dict()


@router.post("/releases/render", response_model=schemas.RenderResponse)
async def render_release_document(request: schemas.ReleaseRequest, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    release = _parse(request.release)
    try:
        assembled = assemble(release)
    except ReleaseValidationError as exc:
        raise HTTPException(status_code=422, detail=_blocking_detail(exc))
    return assembled.to_dict()


@router.post("/releases/plan", response_model=schemas.ReleasePlan)
async def plan_release(request: schemas.ReleaseRequest, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    release = _parse(request.release)
    try:
        return plan_release_revision(release)
    except ReleaseValidationError as exc:
        raise HTTPException(status_code=422, detail=_blocking_detail(exc))


@router.get("/releases/{release_id}/plans/{plan_id}", response_model=schemas.ReleasePlan)
async def get_plan(release_id: str, plan_id: str, authorization: str | None = Header(default=None)):
    _require_auth(authorization)
    try:
        plan = store.load_plan(release_id, plan_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return plan
