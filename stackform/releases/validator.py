"""Service and release validation rules.

Each rule is an independent pure predicate registered under a stable id
(``R1``, ``R2``, ...). Service-scoped rules see one ServiceSpec plus the
release context; release-scoped rules see the whole ReleaseSet. Violations are
always reported sorted by rule id so identical input yields identical reports.
"""
from __future__ import annotations

import enum
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from pydantic import BaseModel

from stackform.config import CompilerSettings, get_settings
from stackform.observability import metrics
from stackform.releases.model import ReleaseSet, ServiceSpec, parse_cpu, parse_memory

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_CREDENTIAL_NAME_RE = re.compile(r"(PASSWORD|PASSWD|SECRET|TOKEN|API_?KEY|PRIVATE_?KEY|CREDENTIAL)")
_REGISTRY_PREFIXES = ("docker.io/", "index.docker.io/", "registry-1.docker.io/")


class Severity(str, enum.Enum):
    BLOCKING = "Blocking"
    WARNING = "Warning"


class Violation(BaseModel):
    """One rule violation."""
    rule: str
    severity: Severity
    service: Optional[str] = None
    path: str = ""
    message: str
    related: Optional[str] = None

    class Config:
        frozen = True

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.BLOCKING


def rule_number(rule_id: str) -> int:
    return int(rule_id.lstrip("R"))


def sort_violations(violations: Iterable[Violation]) -> Tuple[Violation, ...]:
    return tuple(sorted(
        violations,
        key=lambda v: (rule_number(v.rule), v.service or "", v.path, v.message, v.related or ""),
    ))


class ValidationResult(BaseModel):
    """Outcome of validating one service: valid, or a list of violations."""
    service: str
    violations: Tuple[Violation, ...] = ()

    class Config:
        frozen = True

    @property
    def blocking(self) -> List[Violation]:
        return [v for v in self.violations if v.is_blocking]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if not v.is_blocking]

    @property
    def is_valid(self) -> bool:
        return not self.blocking


class ValidationReport(BaseModel):
    """Outcome of validating a whole release."""
    release: str
    services: Tuple[str, ...] = ()
    violations: Tuple[Violation, ...] = ()

    class Config:
        frozen = True

    @property
    def blocking(self) -> List[Violation]:
        return [v for v in self.violations if v.is_blocking]

    @property
    def warnings(self) -> List[Violation]:
        return [v for v in self.violations if not v.is_blocking]

    @property
    def is_valid(self) -> bool:
        return not self.blocking

    def to_dict(self) -> Dict[str, object]:
        return {
            "release": self.release,
            "valid": self.is_valid,
            "services": list(self.services),
            "summary": {"blocking": len(self.blocking), "warnings": len(self.warnings)},
            "violations": [v.model_dump(mode="json") for v in self.violations],
        }


@dataclass(frozen=True)
class Rule:
    rule_id: str
    severity: Severity
    summary: str
    scope: str
    check: Callable


class RuleRegistry:
    """Registry of validation rules keyed by rule id."""

    def __init__(self):
        self._rules: Dict[str, Rule] = {}

    def register(self, rule: Rule):
        if rule.rule_id in self._rules:
            raise ValueError(f"Rule {rule.rule_id} registered twice")
        self._rules[rule.rule_id] = rule

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._rules.get(rule_id)

    def list_rules(self, scope: Optional[str] = None) -> List[Rule]:
        rules = sorted(self._rules.values(), key=lambda r: rule_number(r.rule_id))
        if scope is None:
            return rules
        return [r for r in rules if r.scope == scope]


_registry = RuleRegistry()


def register_rule(rule_id: str, severity: Severity, summary: str, scope: str = "service"):
    """Decorator to register a rule predicate.

    The decorated function yields ``(path, message)`` or
    ``(path, message, related)`` tuples; the registry wraps them into
    Violations carrying the rule id and severity.
    """
    def decorator(func: Callable):
        _registry.register(Rule(rule_id, severity, summary, scope, func))
        return func
    return decorator


def list_rules(scope: Optional[str] = None) -> List[Rule]:
    return _registry.list_rules(scope)


def _to_violation(rule: Rule, service: Optional[str], finding: tuple) -> Violation:
    path, message = finding[0], finding[1]
    related = finding[2] if len(finding) > 2 else None
    return Violation(
        rule=rule.rule_id,
        severity=rule.severity,
        service=service,
        path=path,
        message=message,
        related=related,
    )


# Service-scoped rules


@register_rule("R1", Severity.BLOCKING, "OneShot needs bounded retries, no scaling, no restart on success")
def _one_shot_shape(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.is_long_running:
        if service.job is not None:
            yield "job", "job settings only apply to OneShot workloads"
        return

    if service.scaling is not None:
        yield "scaling", "OneShot workloads run to completion and cannot be scaled"

    backoff = service.effective_backoff_limit(settings.default_backoff_limit)
    if backoff < 0 or backoff > settings.max_backoff_limit:
        yield (
            "job.backoffLimit",
            f"retry count {backoff} is not bounded to 0..{settings.max_backoff_limit}",
        )

    restart_policy = service.effective_restart_policy(settings.default_restart_policy)
    if restart_policy not in ("Never", "OnFailure"):
        yield (
            "job.restartPolicy",
            f"restart policy '{restart_policy}' would restart on success; use Never or OnFailure",
        )


def _normalize_repository(repository: str) -> str:
    normalized = repository.strip().lower()
    for prefix in _REGISTRY_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):]
            break
    if normalized.startswith("library/"):
        normalized = normalized[len("library/"):]
    return normalized


@register_rule("R2", Severity.BLOCKING, "image repository must not be a placeholder")
def _placeholder_image(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    denylist = {_normalize_repository(item) for item in settings.placeholder_images}
    if _normalize_repository(service.image.repository) in denylist:
        yield (
            "image.repository",
            f"'{service.image.repository}' is a placeholder image, not the service's build",
        )


@register_rule("R3", Severity.BLOCKING, "health check port must equal containerPort")
def _probe_port(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    check = service.health_check
    if check is None or check.port == service.container_port:
        return
    hint = ""
    if service.exposed_port is not None and check.port == service.exposed_port:
        hint = " (it matches exposedPort; probes hit the container directly)"
    yield (
        "healthCheck.port",
        f"health check port {check.port} differs from containerPort {service.container_port}{hint}",
    )


@register_rule("R4", Severity.WARNING, "health check path '/' is probably not a health route")
def _root_probe_path(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    check = service.health_check
    if check is not None and check.path == "/" and not check.confirm_root_path:
        yield (
            "healthCheck.path",
            "health check path is '/'; declare the service's health route or set confirmRootPath",
        )


@register_rule("R5", Severity.BLOCKING, "secret references must resolve against the shared bundle")
def _secret_refs_resolve(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    for index, ref in enumerate(service.secret_refs):
        secret = release.shared.find_secret(ref.secret_name)
        if secret is None:
            yield (
                f"secretRefs[{index}].secretName",
                f"service '{service.name}' references secret '{ref.secret_name}' "
                f"(for {ref.env_var_name}) which is not declared in the shared secret bundle",
                f"Secret/{ref.secret_name}",
            )
        elif not secret.has_key(ref.secret_key):
            yield (
                f"secretRefs[{index}].secretKey",
                f"service '{service.name}' references key '{ref.secret_key}' of secret "
                f"'{ref.secret_name}' which does not declare it",
                f"Secret/{ref.secret_name}#{ref.secret_key}",
            )


@register_rule("R6", Severity.BLOCKING, "resource requests must not exceed limits")
def _requests_within_limits(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    resources = service.resources
    if resources is None:
        return
    if resources.requests_cpu and resources.limits_cpu:
        if parse_cpu(resources.requests_cpu) > parse_cpu(resources.limits_cpu):
            yield (
                "resources.requestsCPU",
                f"CPU request {resources.requests_cpu} exceeds limit {resources.limits_cpu}",
            )
    if resources.requests_memory and resources.limits_memory:
        if parse_memory(resources.requests_memory) > parse_memory(resources.limits_memory):
            yield (
                "resources.requestsMemory",
                f"memory request {resources.requests_memory} exceeds limit {resources.limits_memory}",
            )


@register_rule("R7", Severity.BLOCKING, "ingress requires a health check and a LongRunning workload")
def _ingress_preconditions(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.ingress is None:
        return
    if service.is_one_shot:
        yield "ingress", "OneShot workloads cannot receive routed traffic"
    if service.health_check is None:
        yield "ingress", "public routing to a service without a health check is not allowed"


@register_rule("R8", Severity.WARNING, "resources should declare requests or limits")
def _resources_absent(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.resources is None or service.resources.is_empty():
        yield "resources", "no resource requests or limits declared"


@register_rule("R9", Severity.BLOCKING, "OneShot requires a non-empty command")
def _one_shot_command(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.is_one_shot and not any(part.strip() for part in service.command):
        yield "command", "OneShot workloads need an explicit command to run"


@register_rule("R10", Severity.BLOCKING, "scaling bounds must be consistent")
def _scaling_bounds(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    scaling = service.scaling
    if scaling is None:
        return
    if scaling.min_replicas < 1:
        yield "scaling.minReplicas", f"minReplicas {scaling.min_replicas} must be at least 1"
    if scaling.max_replicas < scaling.min_replicas:
        yield (
            "scaling.maxReplicas",
            f"maxReplicas {scaling.max_replicas} is below minReplicas {scaling.min_replicas}",
        )
    target = scaling.effective_target_cpu_percent(settings.default_target_cpu_percent)
    if not 1 <= target <= 100:
        yield (
            "scaling.targetCPUPercent",
            f"targetCPUPercent {target} must be within 1..100",
        )


@register_rule("R12", Severity.BLOCKING, "environment variable names must be unique per service")
def _unique_env_names(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    seen: Dict[str, str] = {}
    for path, name in service.env_var_names():
        if name in seen:
            yield path, f"environment variable '{name}' is already bound by {seen[name]}", seen[name]
        else:
            seen[name] = path


@register_rule("R13", Severity.WARNING, "LongRunning services should declare a health check")
def _readiness_gating(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.is_long_running and service.health_check is None:
        yield "healthCheck", "no health check declared; pods receive traffic without readiness gating"


@register_rule("R14", Severity.WARNING, "image tag should be immutable")
def _mutable_tag(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    if service.image.tag == "latest":
        yield "image.tag", "tag 'latest' is mutable; pin a version for reproducible releases"


@register_rule("R15", Severity.BLOCKING, "config references must resolve against the shared bundle")
def _config_refs_resolve(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    for index, ref in enumerate(service.config_refs):
        config_map = release.shared.find_config_map(ref.config_name)
        if config_map is None:
            yield (
                f"configRefs[{index}].configName",
                f"service '{service.name}' references ConfigMap '{ref.config_name}' "
                f"(for {ref.env_var_name}) which is not declared in the shared config bundle",
                f"ConfigMap/{ref.config_name}",
            )
        elif not config_map.has_key(ref.config_key):
            yield (
                f"configRefs[{index}].configKey",
                f"service '{service.name}' references key '{ref.config_key}' of ConfigMap "
                f"'{ref.config_name}' which does not define it",
                f"ConfigMap/{ref.config_name}#{ref.config_key}",
            )


@register_rule("R16", Severity.WARNING, "credentials should come from secretRefs, not literal env")
def _literal_credentials(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    for entry in service.env:
        if _CREDENTIAL_NAME_RE.search(entry.name.upper()):
            yield (
                f"env.{entry.name}",
                f"'{entry.name}' looks like a credential but is set as a literal value",
            )


@register_rule("R18", Severity.BLOCKING, "ingress TLS secret must resolve against the shared bundle")
def _tls_secret_resolves(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings):
    ingress = service.ingress
    if ingress is None or not ingress.tls_secret_name:
        return
    if release.shared.find_secret(ingress.tls_secret_name) is None:
        yield (
            "ingress.tlsSecretName",
            f"service '{service.name}' terminates TLS with secret '{ingress.tls_secret_name}' "
            f"which is not declared in the shared secret bundle",
            f"Secret/{ingress.tls_secret_name}",
        )


# Release-scoped rules


@register_rule("R11", Severity.BLOCKING, "service names must be unique within a release", scope="release")
def _unique_service_names(release: ReleaseSet, settings: CompilerSettings):
    first_seen: Dict[str, int] = {}
    for index, service in enumerate(release.services):
        if service.name in first_seen:
            first = first_seen[service.name]
            yield (
                service.name,
                f"services[{index}].name",
                f"service name '{service.name}' at services[{index}] collides with services[{first}]",
                f"services[{first}]",
            )
        else:
            first_seen[service.name] = index


@register_rule("R17", Severity.BLOCKING, "shared bundle entries must have unique names", scope="release")
def _unique_shared_names(release: ReleaseSet, settings: CompilerSettings):
    bundles = (
        ("shared.secrets", "Secret", release.shared.secrets),
        ("shared.configMaps", "ConfigMap", release.shared.config_maps),
    )
    for field, kind, entries in bundles:
        first_seen: Dict[str, int] = {}
        for index, entry in enumerate(entries):
            if entry.name in first_seen:
                first = first_seen[entry.name]
                yield (
                    None,
                    f"{field}[{index}].name",
                    f"{kind} '{entry.name}' at {field}[{index}] collides with {field}[{first}]",
                    f"{field}[{first}]",
                )
            else:
                first_seen[entry.name] = index


def map_services(func: Callable[[T], R], items: Sequence[T], max_workers: int = 1) -> List[R]:
    """Apply ``func`` to every item, optionally on a thread pool.

    Results keep input order; per-item work must not share state.
    """
    if max_workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(func, items))


def validate(
    service: ServiceSpec,
    release: ReleaseSet,
    settings: Optional[CompilerSettings] = None,
) -> ValidationResult:
    """Run every service-scoped rule over one service."""
    settings = settings or get_settings()
    violations: List[Violation] = []
    for rule in _registry.list_rules("service"):
        for finding in rule.check(service, release, settings):
            violations.append(_to_violation(rule, service.name, finding))
    return ValidationResult(service=service.name, violations=sort_violations(violations))


def validate_release_rules(
    release: ReleaseSet,
    settings: Optional[CompilerSettings] = None,
) -> List[Violation]:
    """Run the cross-service rules; these need every service at once."""
    settings = settings or get_settings()
    violations: List[Violation] = []
    for rule in _registry.list_rules("release"):
        for finding in rule.check(release, settings):
            service_name, rest = finding[0], finding[1:]
            violations.append(_to_violation(rule, service_name, rest))
    return violations


def validate_release(
    release: ReleaseSet,
    settings: Optional[CompilerSettings] = None,
) -> ValidationReport:
    """Validate every service, then join on the cross-service rules."""
    settings = settings or get_settings()
    results = map_services(
        lambda service: validate(service, release, settings),
        list(release.services),
        settings.max_workers,
    )
    violations: List[Violation] = []
    for result in results:
        violations.extend(result.violations)
    violations.extend(validate_release_rules(release, settings))

    report = ValidationReport(
        release=release.release_id,
        services=tuple(release.service_names()),
        violations=sort_violations(violations),
    )
    for violation in report.violations:
        metrics.violations_total.labels(rule=violation.rule, severity=violation.severity.value).inc()

    logger.info(
        f"Validated release {report.release}: "
        f"{len(report.blocking)} blocking, {len(report.warnings)} warning(s)"
    )
    return report


__all__ = [
    "Rule",
    "Severity",
    "ValidationReport",
    "ValidationResult",
    "Violation",
    "list_rules",
    "map_services",
    "register_rule",
    "sort_violations",
    "validate",
    "validate_release",
    "validate_release_rules",
]
