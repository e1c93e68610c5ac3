import os
import sys
import tempfile
from pathlib import Path

from fastapi import FastAPI
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from release_fixtures import long_running, one_shot, release_doc  # noqa: E402
from stackform.api import releases  # noqa: E402


def _client() -> TestClient:
    app = FastAPI()
    app.include_router(releases.router, prefix="/api/v1")
    return TestClient(app)


def _services(tag: str = "v1"):
    return [
        long_running(
            "gateway",
            image={"repository": "registry.example.com/shop/gateway", "tag": tag},
            exposedPort=80,
            ingress={"host": "api.example.com"},
        ),
        one_shot("migrate"),
    ]


def test_validate_render_and_plan():
    with tempfile.TemporaryDirectory() as tmpdir:
        os.environ["STACKFORM_WORKSPACE"] = str(Path(tmpdir))
        os.environ["STACKFORM_API_TOKEN"] = ""
        client = _client()

        validate_resp = client.post("/api/v1/releases/validate", json={"release": release_doc(services=_services())})
        assert validate_resp.status_code == 200
        report = validate_resp.json()
        assert report["valid"] is True
        assert report["services"] == ["gateway", "migrate"]

        render_resp = client.post("/api/v1/releases/render", json={"release": release_doc(services=_services())})
        assert render_resp.status_code == 200
        kinds = [m["kind"] for m in render_resp.json()["manifests"]]
        assert kinds == ["Service", "Deployment", "Job", "Ingress"]

        first = client.post("/api/v1/releases/plan", json={"release": release_doc(services=_services("v1"))})
        assert first.status_code == 200
        first_plan = first.json()
        assert first_plan["releaseId"] == "shop-prod.shop"
        assert first_plan["revisionFrom"] is None
        assert first_plan["revisionTo"] == 1
        assert first_plan["createdAt"].endswith("Z")
        assert first_plan["summary"]["Added"] == 4
        assert "manifestsYamlPath" in first_plan["artifacts"]

        second = client.post("/api/v1/releases/plan", json={"release": release_doc(services=_services("v2"))})
        assert second.status_code == 200
        second_plan = second.json()
        assert second_plan["revisionFrom"] == 1
        assert second_plan["revisionTo"] == 2
        changed = [e for e in second_plan["entries"] if e["action"] == "Changed"]
        assert changed == [{
            "kind": "Deployment",
            "name": "gateway",
            "namespace": "shop-prod",
            "action": "Changed",
            "fieldPaths": ["spec.template.spec.containers[0].image"],
        }]

        get_resp = client.get(f"/api/v1/releases/shop-prod.shop/plans/{second_plan['planId']}")
        assert get_resp.status_code == 200
        assert get_resp.json()["planId"] == second_plan["planId"]

        missing = client.get("/api/v1/releases/shop-prod.shop/plans/does-not-exist")
        assert missing.status_code == 404


def test_blocking_violations_are_structured():
    with tempfile.TemporaryDirectory() as tmpdir:
        os.environ["STACKFORM_WORKSPACE"] = str(Path(tmpdir))
        os.environ["STACKFORM_API_TOKEN"] = ""
        client = _client()
        broken = release_doc(services=[long_running("gateway"), one_shot("migrate", command=[])])

        validate_resp = client.post("/api/v1/releases/validate", json={"release": broken})
        assert validate_resp.status_code == 200
        report = validate_resp.json()
        assert report["valid"] is False
        assert report["summary"] == {"blocking": 1, "warnings": 0}
        assert report["violations"][0]["rule"] == "R9"
        assert report["violations"][0]["severity"] == "Blocking"

        render_resp = client.post("/api/v1/releases/render", json={"release": broken})
        assert render_resp.status_code == 422
        detail = render_resp.json()["detail"]
        assert detail["code"] == "blocking_violations"
        assert detail["report"]["violations"][0]["service"] == "migrate"

        plan_resp = client.post("/api/v1/releases/plan", json={"release": broken})
        assert plan_resp.status_code == 422
        assert not (Path(tmpdir) / "releases").exists()


def test_malformed_document_is_a_400():
    os.environ["STACKFORM_API_TOKEN"] = ""
    client = _client()
    doc = release_doc()
    doc["services"][0]["containerPort"] = "three thousand"

    resp = client.post("/api/v1/releases/render", json={"release": doc})
    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["code"] == "configuration_error"
    assert detail["path"] == "services[0].containerPort"


def test_rules_catalog():
    os.environ["STACKFORM_API_TOKEN"] = ""
    resp = _client().get("/api/v1/rules")
    assert resp.status_code == 200
    rules = resp.json()
    assert rules[0] == {
        "id": "R1",
        "severity": "Blocking",
        "scope": "service",
        "summary": "OneShot needs bounded retries, no scaling, no restart on success",
    }


def test_app_health_and_metrics():
    from stackform.main import app

    client = TestClient(app)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert "X-Correlation-Id" in resp.headers

    resp = client.get("/api/v1/health", headers={"X-Correlation-Id": "abc-123"})
    assert resp.status_code == 200
    assert resp.headers["X-Correlation-Id"] == "abc-123"

    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "stackform_assemblies_total" in resp.text


def test_release_auth_required():
    os.environ["STACKFORM_API_TOKEN"] = "secret-token"
    try:
        client = _client()
        payload = {"release": release_doc()}

        resp = client.post("/api/v1/releases/validate", json=payload)
        assert resp.status_code == 401

        resp = client.post(
            "/api/v1/releases/validate",
            headers={"Authorization": "Bearer secret-token"},
            json=payload
        )
        assert resp.status_code == 200

        resp = client.post(
            "/api/v1/releases/validate",
            headers={"Authorization": "Bearer wrong"},
            json=payload
        )
        assert resp.status_code == 403
    finally:
        os.environ["STACKFORM_API_TOKEN"] = ""


if __name__ == "__main__":
    test_validate_render_and_plan()
    test_blocking_violations_are_structured()
    test_malformed_document_is_a_400()
    test_rules_catalog()
    test_app_health_and_metrics()
    test_release_auth_required()
    print("ok - test_releases_api")
