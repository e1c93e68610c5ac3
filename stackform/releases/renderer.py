"""ServiceSpec to Kubernetes manifests renderer (deterministic, fail-fast)."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from stackform.config import CompilerSettings, get_settings
from stackform.exceptions import RenderingPreconditionError
from stackform.observability import metrics
from stackform.releases.model import ReleaseSet, ServiceSpec, SharedConfigMap
from stackform.releases.validator import validate

logger = logging.getLogger(__name__)

Manifest = Dict[str, Any]

# Install order: shared config first, routing last.
KIND_ORDER = (
    "ConfigMap",
    "Service",
    "Deployment",
    "Job",
    "HorizontalPodAutoscaler",
    "Ingress",
)

PORT_NAME = "http"


def kind_rank(kind: str) -> int:
    try:
        return KIND_ORDER.index(kind)
    except ValueError:
        return len(KIND_ORDER)


def _selector(service: ServiceSpec, release: ReleaseSet) -> Dict[str, str]:
    return {
        "app.kubernetes.io/instance": release.metadata.name,
        "app.kubernetes.io/name": service.name,
    }


def _labels(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Dict[str, str]:
    labels = release.metadata.label_dict()
    labels.update(_selector(service, release))
    labels["app.kubernetes.io/component"] = "job" if service.is_one_shot else "service"
    labels["app.kubernetes.io/managed-by"] = settings.managed_by
    labels["app.kubernetes.io/part-of"] = release.metadata.name
    return dict(sorted(labels.items()))


def _metadata(name: str, release: ReleaseSet, labels: Dict[str, str]) -> Dict[str, Any]:
    return {
        "name": name,
        "namespace": release.metadata.namespace,
        "labels": labels,
    }


def _env(service: ServiceSpec) -> List[Dict[str, Any]]:
    env: List[Dict[str, Any]] = [
        {"name": entry.name, "value": entry.value}
        for entry in service.env
    ]
    for ref in service.secret_refs:
        env.append({
            "name": ref.env_var_name,
            "valueFrom": {
                "secretKeyRef": {"name": ref.secret_name, "key": ref.secret_key}
            }
        })
    for ref in service.config_refs:
        env.append({
            "name": ref.env_var_name,
            "valueFrom": {
                "configMapKeyRef": {"name": ref.config_name, "key": ref.config_key}
            }
        })
    return env


def _resources(service: ServiceSpec) -> Dict[str, Dict[str, str]]:
    resources = service.resources
    if resources is None:
        return {}
    rendered: Dict[str, Dict[str, str]] = {}
    requests = {
        key: value
        for key, value in (("cpu", resources.requests_cpu), ("memory", resources.requests_memory))
        if value
    }
    limits = {
        key: value
        for key, value in (("cpu", resources.limits_cpu), ("memory", resources.limits_memory))
        if value
    }
    if requests:
        rendered["requests"] = requests
    if limits:
        rendered["limits"] = limits
    return rendered


def _probe(service: ServiceSpec, settings: CompilerSettings) -> Dict[str, Any]:
    check = service.health_check
    return {
        "httpGet": {"path": check.path, "port": service.container_port},
        "initialDelaySeconds": (
            check.initial_delay if check.initial_delay is not None else settings.probe_initial_delay
        ),
        "periodSeconds": check.period or settings.probe_period,
        "timeoutSeconds": check.timeout or settings.probe_timeout,
        "failureThreshold": check.failure_threshold or settings.probe_failure_threshold,
    }


def _container(service: ServiceSpec, settings: CompilerSettings) -> Dict[str, Any]:
    container: Dict[str, Any] = {
        "name": service.name,
        "image": service.image.reference,
        "imagePullPolicy": service.image.pull_policy or settings.default_pull_policy,
        "ports": [{
            "name": PORT_NAME,
            "containerPort": service.container_port,
            "protocol": "TCP",
        }],
    }
    if service.command:
        container["command"] = list(service.command)
    if service.args:
        container["args"] = list(service.args)
    env = _env(service)
    if env:
        container["env"] = env
    resources = _resources(service)
    if resources:
        container["resources"] = resources
    if service.health_check is not None:
        container["livenessProbe"] = _probe(service, settings)
        if service.is_long_running:
            container["readinessProbe"] = _probe(service, settings)
    return container


def _deployment(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Manifest:
    labels = _labels(service, release, settings)
    if service.scaling is not None:
        replicas = service.scaling.min_replicas
    elif service.replicas is not None:
        replicas = service.replicas
    else:
        replicas = 1
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(service.name, release, labels),
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": _selector(service, release)},
            "template": {
                "metadata": {"labels": labels},
                "spec": {"containers": [_container(service, settings)]},
            },
        },
    }


def _job(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Manifest:
    if not any(part.strip() for part in service.command):
        raise RenderingPreconditionError(
            f"Refusing to render Job '{service.name}' without a command",
            service=service.name,
        )
    labels = _labels(service, release, settings)
    spec: Dict[str, Any] = {
        "backoffLimit": service.effective_backoff_limit(settings.default_backoff_limit),
        "completions": 1,
        "parallelism": 1,
        "template": {
            "metadata": {"labels": labels},
            "spec": {
                "restartPolicy": service.effective_restart_policy(settings.default_restart_policy),
                "containers": [_container(service, settings)],
            },
        },
    }
    job = service.job
    if job is not None and job.active_deadline_seconds is not None:
        spec["activeDeadlineSeconds"] = job.active_deadline_seconds
    if job is not None and job.ttl_seconds_after_finished is not None:
        spec["ttlSecondsAfterFinished"] = job.ttl_seconds_after_finished
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": _metadata(service.name, release, labels),
        "spec": spec,
    }


def service_port(service: ServiceSpec) -> int:
    """Port clients use to reach the service; explicit even when not translated."""
    if service.exposed_port is not None:
        return service.exposed_port
    return service.container_port


def _network_service(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Manifest:
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(service.name, release, _labels(service, release, settings)),
        "spec": {
            "type": "ClusterIP",
            "selector": _selector(service, release),
            "ports": [{
                "name": PORT_NAME,
                "port": service_port(service),
                "targetPort": service.container_port,
                "protocol": "TCP",
            }],
        },
    }


def _autoscaler(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Manifest:
    scaling = service.scaling
    target = scaling.effective_target_cpu_percent(settings.default_target_cpu_percent)
    return {
        "apiVersion": "autoscaling/v2",
        "kind": "HorizontalPodAutoscaler",
        "metadata": _metadata(service.name, release, _labels(service, release, settings)),
        "spec": {
            "scaleTargetRef": {
                "apiVersion": "apps/v1",
                "kind": "Deployment",
                "name": service.name,
            },
            "minReplicas": scaling.min_replicas,
            "maxReplicas": scaling.max_replicas,
            "metrics": [{
                "type": "Resource",
                "resource": {
                    "name": "cpu",
                    "target": {
                        "type": "Utilization",
                        "averageUtilization": target,
                    },
                },
            }],
        },
    }


def _ingress(service: ServiceSpec, release: ReleaseSet, settings: CompilerSettings) -> Manifest:
    ingress = service.ingress
    spec: Dict[str, Any] = {
        "rules": [{
            "host": ingress.host,
            "http": {
                "paths": [{
                    "path": ingress.path_prefix,
                    "pathType": "Prefix",
                    "backend": {
                        "service": {
                            "name": service.name,
                            "port": {"number": service_port(service)},
                        }
                    },
                }]
            },
        }]
    }
    if ingress.class_name:
        spec["ingressClassName"] = ingress.class_name
    if ingress.tls_secret_name:
        spec["tls"] = [{"hosts": [ingress.host], "secretName": ingress.tls_secret_name}]
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": _metadata(service.name, release, _labels(service, release, settings)),
        "spec": spec,
    }


def render_service_manifests(
    service: ServiceSpec,
    release: ReleaseSet,
    settings: CompilerSettings,
) -> List[Manifest]:
    """Map a service onto manifests without re-validating it.

    Callers must have validated ``service`` already; ``render`` and the
    assembler do.
    """
    manifests: List[Manifest] = []
    if service.exposed_port is not None or service.ingress is not None:
        manifests.append(_network_service(service, release, settings))
    if service.is_one_shot:
        manifests.append(_job(service, release, settings))
    else:
        manifests.append(_deployment(service, release, settings))
    if service.scaling is not None:
        manifests.append(_autoscaler(service, release, settings))
    if service.ingress is not None:
        manifests.append(_ingress(service, release, settings))

    for manifest in manifests:
        metrics.manifests_rendered_total.labels(kind=manifest["kind"]).inc()
    return sorted(manifests, key=lambda m: kind_rank(m["kind"]))


def render(
    service: ServiceSpec,
    release: ReleaseSet,
    settings: Optional[CompilerSettings] = None,
) -> List[Manifest]:
    """Render one service; refuses specs with Blocking violations."""
    settings = settings or get_settings()
    result = validate(service, release, settings)
    if not result.is_valid:
        rules = ", ".join(v.rule for v in result.blocking)
        raise RenderingPreconditionError(
            f"Service '{service.name}' has blocking violations ({rules}); refusing to render",
            service=service.name,
            violations=result.blocking,
        )
    logger.debug(f"Rendering service {service.name} ({service.workload_kind.value})")
    return render_service_manifests(service, release, settings)


def render_config_map(
    config_map: SharedConfigMap,
    release: ReleaseSet,
    settings: CompilerSettings,
) -> Manifest:
    labels = release.metadata.label_dict()
    labels["app.kubernetes.io/instance"] = release.metadata.name
    labels["app.kubernetes.io/managed-by"] = settings.managed_by
    labels["app.kubernetes.io/part-of"] = release.metadata.name
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": _metadata(config_map.name, release, dict(sorted(labels.items()))),
        "data": {entry.name: entry.value for entry in config_map.data},
    }


__all__ = [
    "KIND_ORDER",
    "Manifest",
    "kind_rank",
    "render",
    "render_config_map",
    "render_service_manifests",
    "service_port",
]
