import io
import json
import os
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

import yaml

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from release_fixtures import SAMPLE_RELEASE, long_running, one_shot, release_doc  # noqa: E402
from stackform.cli import EXIT_CONFIG_ERROR, EXIT_OK, EXIT_VIOLATIONS, main  # noqa: E402


def _run(argv):
    out, err = io.StringIO(), io.StringIO()
    with redirect_stdout(out), redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


def _write(tmp: Path, name: str, document) -> str:
    path = tmp / name
    path.write_text(yaml.safe_dump(document, sort_keys=False))
    return str(path)


def test_validate_exit_codes():
    code, out, _ = _run(["validate", str(SAMPLE_RELEASE)])
    assert code == EXIT_OK
    assert "shop-prod.shop: valid (0 blocking, 0 warning(s))" in out

    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        broken = _write(tmp, "broken.yaml", release_doc(services=[one_shot(command=[])]))
        code, out, _ = _run(["validate", broken])
        assert code == EXIT_VIOLATIONS
        assert "R9" in out

        malformed = release_doc()
        del malformed["services"][0]["containerPort"]
        code, _, err = _run(["validate", _write(tmp, "malformed.yaml", malformed)])
        assert code == EXIT_CONFIG_ERROR
        assert "configuration error" in err


def test_validate_json_and_strict():
    service = long_running()
    del service["resources"]
    with tempfile.TemporaryDirectory() as tmpdir:
        path = _write(Path(tmpdir), "warn.yaml", release_doc(services=[service]))

        code, out, _ = _run(["validate", path, "--json"])
        assert code == EXIT_OK
        report = json.loads(out)
        assert report["valid"] is True
        assert [v["rule"] for v in report["violations"]] == ["R8"]

        code, _, _ = _run(["validate", path, "--strict"])
        assert code == EXIT_VIOLATIONS


def test_render_then_diff():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        old_out = tmp / "old.yaml"
        new_out = tmp / "new.yaml"

        code, _, _ = _run(["render", str(SAMPLE_RELEASE), "-o", str(old_out)])
        assert code == EXIT_OK
        manifests = list(yaml.safe_load_all(old_out.read_text()))
        assert manifests[0]["kind"] == "ConfigMap"
        assert manifests[-1]["kind"] == "Ingress"

        document = yaml.safe_load(SAMPLE_RELEASE.read_text())
        document["serviceFiles"] = [
            str(SAMPLE_RELEASE.parent / relative) for relative in document.get("serviceFiles", [])
        ]
        for service in document["services"]:
            if service["name"] == "orders":
                service["image"]["tag"] = service["image"]["tag"] + "-next"
        changed = _write(tmp, "release.yaml", document)
        code, _, _ = _run(["render", changed, "-o", str(new_out)])
        assert code == EXIT_OK

        code, out, _ = _run(["diff", str(old_out), str(new_out)])
        assert code == EXIT_OK
        assert "~ Deployment/orders" in out
        assert "    spec.template.spec.containers[0].image" in out

        code, out, _ = _run(["diff", str(old_out), str(new_out), "--json"])
        plan = json.loads(out)
        assert plan["summary"]["Changed"] == 1
        assert plan["hasChanges"] is True


def test_diff_of_malformed_manifests_is_a_configuration_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "old.yaml"
        path.write_text("kind: 5\nmetadata:\n  name: gateway\n")
        code, out, err = _run(["diff", str(path), str(path)])
        assert code == EXIT_CONFIG_ERROR
        assert out == ""
        assert "kind must be a non-empty string" in err


def test_render_refuses_blocking_release():
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        broken = _write(tmp, "broken.yaml", release_doc(services=[
            long_running(secretRefs=[{"envVarName": "API_TOKEN", "secretName": "X", "secretKey": "token"}]),
        ]))
        output = tmp / "out.yaml"
        code, out, err = _run(["render", broken, "-o", str(output)])
        assert code == EXIT_VIOLATIONS
        assert not output.exists()
        assert out == ""
        assert "R5" in err


def test_plan_tracks_revisions():
    with tempfile.TemporaryDirectory() as tmpdir:
        os.environ["STACKFORM_WORKSPACE"] = tmpdir
        code, out, _ = _run(["plan", str(SAMPLE_RELEASE), "--json"])
        assert code == EXIT_OK
        first = json.loads(out)
        assert first["revisionTo"] == 1
        assert first["summary"]["Added"] == 8

        code, out, _ = _run(["plan", str(SAMPLE_RELEASE)])
        assert code == EXIT_OK
        assert "revision 1 -> 2" in out
        assert "= Deployment/gateway" in out


def test_rules_lists_catalog():
    code, out, _ = _run(["rules"])
    assert code == EXIT_OK
    lines = out.splitlines()
    assert len(lines) == 18
    assert lines[0].startswith("R1 ")


if __name__ == "__main__":
    test_validate_exit_codes()
    test_validate_json_and_strict()
    test_render_then_diff()
    test_diff_of_malformed_manifests_is_a_configuration_error()
    test_render_refuses_blocking_release()
    test_plan_tracks_revisions()
    test_rules_lists_catalog()
    print("ok - test_cli")
