"""Pydantic schemas (DTOs) for the stackform HTTP API"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


# Health Schemas
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime_seconds: int
    now: datetime


# Release Schemas
class ReleaseRequest(BaseModel):
    """A release document submitted for validation, rendering or planning."""
    release: Dict[str, Any]


class ViolationOut(BaseModel):
    """One rule violation."""
    rule: str
    severity: str
    service: Optional[str] = None
    path: str = ""
    message: str
    related: Optional[str] = None


class ViolationSummary(BaseModel):
    blocking: int
    warnings: int


class ValidationReportResponse(BaseModel):
    """Validation report for a whole release."""
    release: str
    valid: bool
    services: List[str] = Field(default_factory=list)
    summary: ViolationSummary
    violations: List[ViolationOut] = Field(default_factory=list)


class RenderResponse(BaseModel):
    """Ordered manifests plus non-blocking warnings."""
    release: str
    manifests: List[Dict[str, Any]]
    warnings: List[ViolationOut] = Field(default_factory=list)


class PlanEntryOut(BaseModel):
    kind: str
    name: str
    namespace: Optional[str] = None
    action: str
    fieldPaths: List[str] = Field(default_factory=list)


class ReleasePlan(BaseModel):
    """Stored plan: diff of a new revision against the previous one."""
    planId: str
    releaseId: str
    revisionFrom: Optional[int] = None
    revisionTo: int
    createdAt: str
    summary: Dict[str, int]
    hasChanges: bool
    entries: List[PlanEntryOut]
    warnings: List[ViolationOut] = Field(default_factory=list)
    artifacts: Dict[str, str] = Field(default_factory=dict)


class RuleInfo(BaseModel):
    """A registered validation rule."""
    id: str
    severity: str
    scope: str
    summary: str

