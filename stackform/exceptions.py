"""Domain exceptions for stackform"""
from typing import Optional, Dict, Any


class ConfigurationError(Exception):
    """Raised when an input document is structurally malformed.

    This is not a business-rule violation: the document cannot be turned into
    a service model at all (wrong types, missing keys, bad quantities).
    """

    def __init__(self, message: str, path: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.message = message
        self.path = path
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": "configuration_error",
            "message": self.message,
            "path": self.path,
            "details": self.details,
        }


class ReleaseValidationError(Exception):
    """Raised when a release has at least one Blocking violation.

    Carries the full report so callers can surface every violation,
    not just the first one.
    """

    def __init__(self, report):
        blocking = report.blocking
        rules = ", ".join(sorted({v.rule for v in blocking}, key=lambda r: int(r[1:])))
        super().__init__(
            f"Release '{report.release}' has {len(blocking)} blocking violation(s): {rules}"
        )
        self.report = report

    @property
    def violations(self):
        return self.report.violations


class RenderingPreconditionError(Exception):
    """Raised when rendering is attempted on an unvalidated or invalid spec.

    A programming-contract error, not a user error.
    """

    def __init__(self, message: str, service: Optional[str] = None, violations=None):
        super().__init__(message)
        self.service = service
        self.violations = list(violations or [])
