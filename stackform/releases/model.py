"""Typed service and release model.

Every object here is immutable once constructed: models are frozen and
sequences are stored as tuples. Input documents use camelCase keys; the
aliases below map them onto snake_case attributes.
"""
from __future__ import annotations

import enum
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

DNS_LABEL_PATTERN = r"^[a-z0-9]([-a-z0-9]{0,61}[a-z0-9])?$"
ENV_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]*$"

_CPU_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)(m?)$")
_MEMORY_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)([KMGTPE]i?|k)?$")
_MEMORY_FACTORS = {
    None: 1,
    "k": 10 ** 3,
    "K": 10 ** 3,
    "M": 10 ** 6,
    "G": 10 ** 9,
    "T": 10 ** 12,
    "P": 10 ** 15,
    "E": 10 ** 18,
    "Ki": 2 ** 10,
    "Mi": 2 ** 20,
    "Gi": 2 ** 30,
    "Ti": 2 ** 40,
    "Pi": 2 ** 50,
    "Ei": 2 ** 60,
}


def parse_cpu(quantity: str) -> Decimal:
    """Parse a CPU quantity (``"250m"``, ``"0.5"``, ``"2"``) into millicores."""
    match = _CPU_RE.match(str(quantity).strip())
    if not match:
        raise ValueError(f"invalid CPU quantity '{quantity}'")
    number, milli = match.groups()
    try:
        value = Decimal(number)
    except InvalidOperation as exc:
        raise ValueError(f"invalid CPU quantity '{quantity}'") from exc
    return value if milli else value * 1000


def parse_memory(quantity: str) -> Decimal:
    """Parse a memory quantity (``"128Mi"``, ``"1G"``, ``"512"``) into bytes."""
    match = _MEMORY_RE.match(str(quantity).strip())
    if not match:
        raise ValueError(f"invalid memory quantity '{quantity}'")
    number, suffix = match.groups()
    return Decimal(number) * _MEMORY_FACTORS[suffix]


def _scalar_to_str(value: Any) -> Any:
    # floats are not coerced
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    return value


def _mapping_to_pairs(value: Any) -> Any:
    """Turn ``{"A": 1}`` into ``[{"name": "A", "value": "1"}]`` sorted by name."""
    if value is None:
        return ()
    if isinstance(value, dict):
        return [
            {"name": key, "value": _scalar_to_str(value[key])}
            for key in sorted(value.keys())
        ]
    return value


class _Model(BaseModel):
    class Config:
        frozen = True
        populate_by_name = True
        extra = "forbid"


class WorkloadKind(str, enum.Enum):
    """Workload lifecycle variant."""
    LONG_RUNNING = "LongRunning"
    ONE_SHOT = "OneShot"


class NamedValue(_Model):
    """A literal name/value pair (environment entry, ConfigMap datum, label)."""
    name: str
    value: str


class ImageSpec(_Model):
    repository: str = Field(min_length=1)
    tag: str = Field(default="latest", min_length=1)
    pull_policy: Optional[str] = Field(default=None, alias="pullPolicy", pattern=r"^(Always|IfNotPresent|Never)$")

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


class HealthCheck(_Model):
    path: str = Field(pattern=r"^/")
    port: int = Field(ge=1, le=65535)
    initial_delay: Optional[int] = Field(default=None, alias="initialDelay", ge=0)
    period: Optional[int] = Field(default=None, ge=1)
    timeout: Optional[int] = Field(default=None, ge=1)
    failure_threshold: Optional[int] = Field(default=None, alias="failureThreshold", ge=1)
    confirm_root_path: bool = Field(default=False, alias="confirmRootPath")


class Resources(_Model):
    requests_cpu: Optional[str] = Field(default=None, alias="requestsCPU")
    requests_memory: Optional[str] = Field(default=None, alias="requestsMemory")
    limits_cpu: Optional[str] = Field(default=None, alias="limitsCPU")
    limits_memory: Optional[str] = Field(default=None, alias="limitsMemory")

    @field_validator("requests_cpu", "limits_cpu", mode="before")
    @classmethod
    def _check_cpu(cls, value):
        if value is None:
            return None
        value = str(value)
        parse_cpu(value)
        return value

    @field_validator("requests_memory", "limits_memory", mode="before")
    @classmethod
    def _check_memory(cls, value):
        if value is None:
            return None
        value = str(value)
        parse_memory(value)
        return value

    def is_empty(self) -> bool:
        return not any((self.requests_cpu, self.requests_memory, self.limits_cpu, self.limits_memory))


class SecretRef(_Model):
    """Reference to one key of a shared secret. Never carries the value."""
    env_var_name: str = Field(alias="envVarName", pattern=ENV_NAME_PATTERN)
    secret_name: str = Field(alias="secretName", min_length=1)
    secret_key: str = Field(alias="secretKey", min_length=1)


class ConfigRef(_Model):
    env_var_name: str = Field(alias="envVarName", pattern=ENV_NAME_PATTERN)
    config_name: str = Field(alias="configName", min_length=1)
    config_key: str = Field(alias="configKey", min_length=1)


class Scaling(_Model):
    min_replicas: int = Field(alias="minReplicas")
    max_replicas: int = Field(alias="maxReplicas")
    target_cpu_percent: Optional[int] = Field(default=None, alias="targetCPUPercent")

    def effective_target_cpu_percent(self, default: int) -> int:
        if self.target_cpu_percent is not None:
            return self.target_cpu_percent
        return default


class Ingress(_Model):
    host: str = Field(min_length=1)
    path_prefix: str = Field(default="/", alias="pathPrefix", pattern=r"^/")
    tls_secret_name: Optional[str] = Field(default=None, alias="tlsSecretName")
    class_name: Optional[str] = Field(default=None, alias="className")


class JobSettings(_Model):
    """Run-to-completion settings for OneShot workloads."""
    backoff_limit: Optional[int] = Field(default=None, alias="backoffLimit")
    active_deadline_seconds: Optional[int] = Field(default=None, alias="activeDeadlineSeconds", ge=1)
    ttl_seconds_after_finished: Optional[int] = Field(default=None, alias="ttlSecondsAfterFinished", ge=0)
    restart_policy: Optional[str] = Field(default=None, alias="restartPolicy")


class ServiceSpec(_Model):
    """One deployable unit."""
    name: str = Field(pattern=DNS_LABEL_PATTERN)
    workload_kind: WorkloadKind = Field(alias="workloadKind")
    image: ImageSpec
    container_port: int = Field(alias="containerPort", ge=1, le=65535)
    exposed_port: Optional[int] = Field(default=None, alias="exposedPort", ge=1, le=65535)
    command: Tuple[str, ...] = ()
    args: Tuple[str, ...] = ()
    env: Tuple[NamedValue, ...] = ()
    health_check: Optional[HealthCheck] = Field(default=None, alias="healthCheck")
    resources: Optional[Resources] = None
    secret_refs: Tuple[SecretRef, ...] = Field(default=(), alias="secretRefs")
    config_refs: Tuple[ConfigRef, ...] = Field(default=(), alias="configRefs")
    scaling: Optional[Scaling] = None
    replicas: Optional[int] = Field(default=None, ge=0)
    ingress: Optional[Ingress] = None
    job: Optional[JobSettings] = None

    @field_validator("env", mode="before")
    @classmethod
    def _env_pairs(cls, value):
        return _mapping_to_pairs(value)

    @field_validator("command", "args", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return () if value is None else value

    @property
    def is_one_shot(self) -> bool:
        return self.workload_kind == WorkloadKind.ONE_SHOT

    @property
    def is_long_running(self) -> bool:
        return self.workload_kind == WorkloadKind.LONG_RUNNING

    def env_var_names(self) -> Iterator[Tuple[str, str]]:
        """Yield ``(field_path, env_var_name)`` for every environment binding."""
        for entry in self.env:
            yield f"env.{entry.name}", entry.name
        for index, ref in enumerate(self.secret_refs):
            yield f"secretRefs[{index}].envVarName", ref.env_var_name
        for index, ref in enumerate(self.config_refs):
            yield f"configRefs[{index}].envVarName", ref.env_var_name

    def effective_backoff_limit(self, default: int) -> int:
        if self.job is not None and self.job.backoff_limit is not None:
            return self.job.backoff_limit
        return default

    def effective_restart_policy(self, default: str) -> str:
        if self.job is not None and self.job.restart_policy:
            return self.job.restart_policy
        return default


class SharedSecret(_Model):
    """A secret declared at release level. Lists key names, never values."""
    name: str = Field(min_length=1)
    keys: Tuple[str, ...] = ()

    def has_key(self, key: str) -> bool:
        return not self.keys or key in self.keys


class SharedConfigMap(_Model):
    name: str = Field(pattern=DNS_LABEL_PATTERN)
    data: Tuple[NamedValue, ...] = ()

    @field_validator("data", mode="before")
    @classmethod
    def _data_pairs(cls, value):
        return _mapping_to_pairs(value)

    def has_key(self, key: str) -> bool:
        return any(entry.name == key for entry in self.data)


class SharedBundle(_Model):
    secrets: Tuple[SharedSecret, ...] = ()
    config_maps: Tuple[SharedConfigMap, ...] = Field(default=(), alias="configMaps")

    def find_secret(self, name: str) -> Optional[SharedSecret]:
        for secret in self.secrets:
            if secret.name == name:
                return secret
        return None

    def find_config_map(self, name: str) -> Optional[SharedConfigMap]:
        for config_map in self.config_maps:
            if config_map.name == name:
                return config_map
        return None


class ReleaseMetadata(_Model):
    name: str = Field(pattern=DNS_LABEL_PATTERN)
    namespace: str = Field(default="default", pattern=DNS_LABEL_PATTERN)
    labels: Tuple[NamedValue, ...] = ()

    @field_validator("labels", mode="before")
    @classmethod
    def _label_pairs(cls, value):
        return _mapping_to_pairs(value)

    def label_dict(self) -> Dict[str, str]:
        return {label.name: label.value for label in self.labels}


class ReleaseSet(_Model):
    """Ordered services plus the shared secret and ConfigMap bundles."""
    metadata: ReleaseMetadata
    shared: SharedBundle = Field(default_factory=SharedBundle)
    services: Tuple[ServiceSpec, ...] = ()

    @property
    def release_id(self) -> str:
        return f"{self.metadata.namespace}.{self.metadata.name}"

    def service_names(self) -> List[str]:
        return [service.name for service in self.services]

    def find_service(self, name: str) -> Optional[ServiceSpec]:
        for service in self.services:
            if service.name == name:
                return service
        return None


__all__ = [
    "ConfigRef",
    "HealthCheck",
    "ImageSpec",
    "Ingress",
    "JobSettings",
    "NamedValue",
    "ReleaseMetadata",
    "ReleaseSet",
    "Resources",
    "Scaling",
    "SecretRef",
    "ServiceSpec",
    "SharedBundle",
    "SharedConfigMap",
    "SharedSecret",
    "WorkloadKind",
    "parse_cpu",
    "parse_memory",
]
