"""Plan a release against its last stored revision."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from stackform.config import CompilerSettings
from stackform.releases import store
from stackform.releases.assembler import assemble
from stackform.releases.documents import dump_yaml
from stackform.releases.model import ReleaseSet
from stackform.releases.planner import diff

logger = logging.getLogger(__name__)


def plan_release(release: ReleaseSet, settings: Optional[CompilerSettings] = None) -> Dict[str, Any]:
    """Assemble ``release``, diff it against the latest revision and store both.

    Raises ReleaseValidationError before anything is written when the release
    has Blocking violations.
    """
    assembled = assemble(release, settings)
    release_id = release.release_id

    revision_from = store.latest_revision(release_id)
    previous = None
    if revision_from is not None:
        previous = store.load_revision_manifests(release_id, revision_from)
    revision_to = (revision_from or 0) + 1

    plan = diff(previous, assembled.manifests)
    artifacts = store.save_revision(
        release_id,
        revision_to,
        release.model_dump(mode="json", by_alias=True),
        assembled.manifests,
        dump_yaml(assembled.manifests)
    )

    plan_id = str(uuid.uuid4())
    record = {
        "planId": plan_id,
        "releaseId": release_id,
        "revisionFrom": revision_from,
        "revisionTo": revision_to,
        "createdAt": store.now_iso(),
        **plan.to_dict(),
        "warnings": [w.model_dump(mode="json") for w in assembled.warnings],
        "artifacts": artifacts
    }
    store.save_plan(release_id, plan_id, record)
    logger.info(
        f"Planned {release_id} revision {revision_to}: "
        + ", ".join(f"{count} {action.lower()}" for action, count in plan.summary().items())
    )
    return record


__all__ = ["plan_release"]
