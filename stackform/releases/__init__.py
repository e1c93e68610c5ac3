"""Release validation, rendering and planning."""
from stackform.releases.assembler import AssembledRelease, assemble
from stackform.releases.loader import load_release, parse_release
from stackform.releases.planner import Plan, diff
from stackform.releases.renderer import render
from stackform.releases.validator import ValidationReport, ValidationResult, validate, validate_release

__all__ = [
    "AssembledRelease",
    "Plan",
    "ValidationReport",
    "ValidationResult",
    "assemble",
    "diff",
    "load_release",
    "parse_release",
    "render",
    "validate",
    "validate_release",
]
