"""Filesystem store for rendered release revisions and plans."""
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


def _workspace_root() -> Path:
    env_path = os.getenv("STACKFORM_WORKSPACE")
    if env_path:
        return Path(env_path)
    return Path.cwd() / "workspace"


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _safe_segment(value: str) -> str:
    if not value or value != Path(value).name or ".." in value:
        raise ValueError(f"Invalid path segment: {value!r}")
    return value


def _release_root(release_id: str) -> Path:
    return _ensure_dir(_workspace_root() / "releases" / _safe_segment(release_id))


def release_revisions_dir(release_id: str) -> Path:
    return _ensure_dir(_release_root(release_id) / "revisions")


def release_plans_dir(release_id: str) -> Path:
    return _ensure_dir(_release_root(release_id) / "plans")


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


def latest_revision(release_id: str) -> Optional[int]:
    revisions_dir = release_revisions_dir(release_id)
    candidates = []
    for child in revisions_dir.iterdir():
        if child.is_dir() and child.name.isdigit():
            candidates.append(int(child.name))
    return max(candidates) if candidates else None


def read_json(path: Path) -> Any:
    return json.loads(path.read_text())


def write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, indent=2, sort_keys=True))


def write_text(path: Path, payload: str) -> None:
    path.write_text(payload)


def save_revision(
    release_id: str,
    revision: int,
    release_doc: Dict[str, Any],
    manifests: List[Dict[str, Any]],
    manifests_yaml: str
) -> Dict[str, str]:
    revision_dir = _ensure_dir(release_revisions_dir(release_id) / str(revision))
    release_path = revision_dir / "release.json"
    manifests_path = revision_dir / "manifests.json"
    yaml_path = revision_dir / "manifests.yaml"

    write_json(release_path, release_doc)
    write_json(manifests_path, manifests)
    write_text(yaml_path, manifests_yaml)

    workspace_root = _workspace_root()
    return {
        "releasePath": str(release_path.relative_to(workspace_root)),
        "manifestsPath": str(manifests_path.relative_to(workspace_root)),
        "manifestsYamlPath": str(yaml_path.relative_to(workspace_root)),
    }


def load_revision_manifests(release_id: str, revision: int) -> Optional[List[Dict[str, Any]]]:
    manifests_path = release_revisions_dir(release_id) / str(revision) / "manifests.json"
    if not manifests_path.exists():
        return None
    return read_json(manifests_path)


def save_plan(release_id: str, plan_id: str, plan: Dict[str, Any]) -> Path:
    plan_path = release_plans_dir(release_id) / f"{_safe_segment(plan_id)}.json"
    write_json(plan_path, plan)
    return plan_path


def load_plan(release_id: str, plan_id: str) -> Optional[Dict[str, Any]]:
    plan_path = release_plans_dir(release_id) / f"{_safe_segment(plan_id)}.json"
    if not plan_path.exists():
        return None
    return read_json(plan_path)


__all__ = [
    "latest_revision",
    "load_plan",
    "load_revision_manifests",
    "now_iso",
    "release_plans_dir",
    "release_revisions_dir",
    "save_plan",
    "save_revision",
]
