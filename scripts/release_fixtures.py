"""Release documents shared by the test scripts."""
import copy
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from stackform.releases.loader import parse_release  # noqa: E402

SAMPLE_RELEASE = ROOT / "samples" / "shop-release.yaml"

_RESOURCES = {
    "requestsCPU": "100m",
    "requestsMemory": "128Mi",
    "limitsCPU": "500m",
    "limitsMemory": "256Mi",
}


def long_running(name: str = "gateway", **overrides) -> dict:
    service = {
        "name": name,
        "workloadKind": "LongRunning",
        "image": {"repository": f"registry.example.com/shop/{name}", "tag": "v1"},
        "containerPort": 3000,
        "healthCheck": {"path": "/healthz", "port": 3000},
        "resources": copy.deepcopy(_RESOURCES),
    }
    service.update(overrides)
    return service


def one_shot(name: str = "migrate", **overrides) -> dict:
    service = {
        "name": name,
        "workloadKind": "OneShot",
        "image": {"repository": "registry.example.com/shop/orders", "tag": "v1"},
        "containerPort": 8080,
        "command": ["npm", "run", "migrate"],
        "resources": copy.deepcopy(_RESOURCES),
    }
    service.update(overrides)
    return service


def release_doc(services=None, secrets=None, config_maps=None, name: str = "shop") -> dict:
    return {
        "apiVersion": "stackform/v1",
        "kind": "Release",
        "metadata": {"name": name, "namespace": "shop-prod"},
        "shared": {
            "secrets": secrets if secrets is not None else [
                {"name": "shop-db", "keys": ["DATABASE_URL"]},
            ],
            "configMaps": config_maps if config_maps is not None else [],
        },
        "services": services if services is not None else [long_running()],
    }


def build_release(services=None, **kwargs):
    return parse_release(release_doc(services=services, **kwargs))
