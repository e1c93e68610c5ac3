import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from release_fixtures import build_release, long_running, one_shot  # noqa: E402
from stackform.config import CompilerSettings  # noqa: E402
from stackform.exceptions import RenderingPreconditionError  # noqa: E402
from stackform.releases.documents import dump_yaml  # noqa: E402
from stackform.releases.renderer import render, render_service_manifests  # noqa: E402
from stackform.releases.validator import validate  # noqa: E402

SETTINGS = CompilerSettings()


def _render(service_doc, settings=SETTINGS, **release_kwargs):
    release = build_release(services=[service_doc], **release_kwargs)
    return render(release.services[0], release, settings)


def _by_kind(manifests):
    return {m["kind"]: m for m in manifests}


def test_gateway_renders_probes_and_routing():
    service = long_running(
        "gateway",
        containerPort=3000,
        healthCheck={"path": "/healthz", "port": 3000},
        ingress={"host": "api.example.com", "pathPrefix": "/"},
    )
    release = build_release(services=[service])
    assert validate(release.services[0], release, SETTINGS).violations == ()

    manifests = render(release.services[0], release, SETTINGS)
    assert [m["kind"] for m in manifests] == ["Service", "Deployment", "Ingress"]
    kinds = _by_kind(manifests)

    container = kinds["Deployment"]["spec"]["template"]["spec"]["containers"][0]
    assert container["image"] == "registry.example.com/shop/gateway:v1"
    assert container["ports"] == [{"name": "http", "containerPort": 3000, "protocol": "TCP"}]
    for probe in ("livenessProbe", "readinessProbe"):
        assert container[probe]["httpGet"] == {"path": "/healthz", "port": 3000}
        assert container[probe]["periodSeconds"] == SETTINGS.probe_period

    backend = kinds["Ingress"]["spec"]["rules"][0]["http"]["paths"][0]["backend"]["service"]
    assert backend == {"name": "gateway", "port": {"number": 3000}}
    assert kinds["Ingress"]["spec"]["rules"][0]["host"] == "api.example.com"
    assert kinds["Service"]["spec"]["ports"][0]["port"] == 3000
    assert kinds["Service"]["spec"]["ports"][0]["targetPort"] == 3000
    assert kinds["Service"]["spec"]["selector"] == kinds["Deployment"]["spec"]["selector"]["matchLabels"]


def test_rendering_is_deterministic():
    service = long_running(
        env={"B": "2", "A": "1"},
        exposedPort=80,
        scaling={"minReplicas": 2, "maxReplicas": 5},
    )
    first = dump_yaml(_render(service))
    second = dump_yaml(_render(service))
    assert first == second


def test_exposed_port_is_translated_explicitly():
    kinds = _by_kind(_render(long_running(containerPort=8080, exposedPort=80,
                                          healthCheck={"path": "/ready", "port": 8080})))
    port = kinds["Service"]["spec"]["ports"][0]
    assert port["port"] == 80
    assert port["targetPort"] == 8080


def test_no_service_without_exposure():
    kinds = [m["kind"] for m in _render(long_running())]
    assert kinds == ["Deployment"]


def test_secret_and_config_refs_become_references_only():
    service = long_running(
        env={"LOG_FORMAT": "json"},
        secretRefs=[{"envVarName": "DATABASE_URL", "secretName": "shop-db", "secretKey": "DATABASE_URL"}],
        configRefs=[{"envVarName": "LOG_LEVEL", "configName": "shop-config", "configKey": "LOG_LEVEL"}],
    )
    manifests = _render(service, config_maps=[{"name": "shop-config", "data": {"LOG_LEVEL": "info"}}])
    env = _by_kind(manifests)["Deployment"]["spec"]["template"]["spec"]["containers"][0]["env"]

    assert env == [
        {"name": "LOG_FORMAT", "value": "json"},
        {"name": "DATABASE_URL", "valueFrom": {"secretKeyRef": {"name": "shop-db", "key": "DATABASE_URL"}}},
        {"name": "LOG_LEVEL", "valueFrom": {"configMapKeyRef": {"name": "shop-config", "key": "LOG_LEVEL"}}},
    ]


def test_scaling_emits_autoscaler_bound_to_deployment():
    kinds = _by_kind(_render(long_running(scaling={"minReplicas": 2, "maxReplicas": 8, "targetCPUPercent": 65})))

    assert kinds["Deployment"]["spec"]["replicas"] == 2
    hpa = kinds["HorizontalPodAutoscaler"]["spec"]
    assert hpa["scaleTargetRef"] == {"apiVersion": "apps/v1", "kind": "Deployment", "name": "gateway"}
    assert (hpa["minReplicas"], hpa["maxReplicas"]) == (2, 8)
    assert hpa["metrics"][0]["resource"]["target"]["averageUtilization"] == 65


def test_autoscaler_target_defaults_from_settings():
    service = long_running(scaling={"minReplicas": 1, "maxReplicas": 3})
    hpa = _by_kind(_render(service))["HorizontalPodAutoscaler"]["spec"]
    assert hpa["metrics"][0]["resource"]["target"]["averageUtilization"] == SETTINGS.default_target_cpu_percent

    tuned = CompilerSettings(default_target_cpu_percent=55)
    hpa = _by_kind(_render(service, settings=tuned))["HorizontalPodAutoscaler"]["spec"]
    assert hpa["metrics"][0]["resource"]["target"]["averageUtilization"] == 55


def test_fixed_replicas_without_scaling():
    kinds = _by_kind(_render(long_running(replicas=3)))
    assert kinds["Deployment"]["spec"]["replicas"] == 3
    assert "HorizontalPodAutoscaler" not in kinds


def test_one_shot_renders_a_job():
    manifests = _render(one_shot(job={"activeDeadlineSeconds": 600}))
    assert [m["kind"] for m in manifests] == ["Job"]
    job = manifests[0]

    assert job["apiVersion"] == "batch/v1"
    assert "replicas" not in job["spec"]
    assert job["spec"]["backoffLimit"] == SETTINGS.default_backoff_limit
    assert job["spec"]["completions"] == 1
    assert job["spec"]["activeDeadlineSeconds"] == 600
    pod = job["spec"]["template"]["spec"]
    assert pod["restartPolicy"] == "Never"
    assert pod["containers"][0]["command"] == ["npm", "run", "migrate"]
    assert "readinessProbe" not in pod["containers"][0]
    assert job["metadata"]["labels"]["app.kubernetes.io/component"] == "job"


def test_job_defaults_come_from_settings():
    settings = CompilerSettings(default_backoff_limit=5, default_restart_policy="OnFailure")
    job = _render(one_shot(), settings=settings)[0]
    assert job["spec"]["backoffLimit"] == 5
    assert job["spec"]["template"]["spec"]["restartPolicy"] == "OnFailure"


def test_migrate_without_command_is_refused():
    release = build_release(services=[one_shot("migrate", command=[])])
    service = release.services[0]

    with pytest.raises(RenderingPreconditionError) as excinfo:
        render(service, release, SETTINGS)
    assert excinfo.value.service == "migrate"
    assert [v.rule for v in excinfo.value.violations] == ["R9"]

    with pytest.raises(RenderingPreconditionError):
        render_service_manifests(service, release, SETTINGS)


def test_probe_port_mismatch_is_never_corrected():
    release = build_release(services=[long_running(exposedPort=80, healthCheck={"path": "/healthz", "port": 80})])

    with pytest.raises(RenderingPreconditionError) as excinfo:
        render(release.services[0], release, SETTINGS)
    assert [v.rule for v in excinfo.value.violations] == ["R3"]


def test_tls_secret_is_referenced_by_name():
    service = long_running(ingress={
        "host": "api.example.com",
        "tlsSecretName": "api-tls",
        "className": "nginx",
    })
    tls_secret = {"name": "api-tls", "keys": ["tls.crt", "tls.key"]}
    ingress = _by_kind(_render(service, secrets=[tls_secret]))["Ingress"]["spec"]
    assert ingress["tls"] == [{"hosts": ["api.example.com"], "secretName": "api-tls"}]
    assert ingress["ingressClassName"] == "nginx"


def test_labels_and_namespace():
    deployment = _by_kind(_render(long_running()))["Deployment"]
    metadata = deployment["metadata"]
    assert metadata["namespace"] == "shop-prod"
    assert metadata["labels"]["app.kubernetes.io/managed-by"] == "stackform"
    assert metadata["labels"]["app.kubernetes.io/instance"] == "shop"
    assert "v1" not in metadata["labels"].values()


if __name__ == "__main__":
    test_gateway_renders_probes_and_routing()
    test_rendering_is_deterministic()
    test_exposed_port_is_translated_explicitly()
    test_no_service_without_exposure()
    test_secret_and_config_refs_become_references_only()
    test_scaling_emits_autoscaler_bound_to_deployment()
    test_autoscaler_target_defaults_from_settings()
    test_fixed_replicas_without_scaling()
    test_one_shot_renders_a_job()
    test_job_defaults_come_from_settings()
    test_migrate_without_command_is_refused()
    test_probe_port_mismatch_is_never_corrected()
    test_tls_secret_is_referenced_by_name()
    test_labels_and_namespace()
    print("ok - test_renderer")
