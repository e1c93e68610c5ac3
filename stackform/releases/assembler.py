"""Release-wide descriptor set assembly (atomic, deterministic)."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from stackform.config import CompilerSettings, get_settings
from stackform.exceptions import ReleaseValidationError
from stackform.observability import metrics
from stackform.releases.model import ReleaseSet
from stackform.releases.renderer import Manifest, kind_rank, render_config_map, render_service_manifests
from stackform.releases.validator import ValidationReport, Violation, map_services, validate_release

logger = logging.getLogger(__name__)


def manifest_identity(manifest: Manifest) -> str:
    return f"{manifest['kind']}/{manifest['metadata']['name']}"


def sort_manifests(manifests: List[Manifest]) -> List[Manifest]:
    return sorted(
        manifests,
        key=lambda m: (kind_rank(m["kind"]), m["kind"], m["metadata"]["name"]),
    )


@dataclass(frozen=True)
class AssembledRelease:
    """Ordered manifests for a release plus the non-blocking findings."""
    release_id: str
    manifests: List[Manifest] = field(default_factory=list)
    report: Optional[ValidationReport] = None

    @property
    def warnings(self) -> List[Violation]:
        return self.report.warnings if self.report is not None else []

    def identities(self) -> List[str]:
        return [manifest_identity(m) for m in self.manifests]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "release": self.release_id,
            "manifests": self.manifests,
            "warnings": [w.model_dump(mode="json") for w in self.warnings],
        }


def assemble(
    release: ReleaseSet,
    settings: Optional[CompilerSettings] = None,
) -> AssembledRelease:
    """Validate every service, then render the whole release.

    Any Blocking violation anywhere aborts with ReleaseValidationError; no
    manifests are returned for the services that were fine.
    """
    settings = settings or get_settings()
    report = validate_release(release, settings)
    if not report.is_valid:
        metrics.assemblies_total.labels(outcome="rejected").inc()
        logger.warning(
            f"Release {release.release_id} rejected: {len(report.blocking)} blocking violation(s)"
        )
        raise ReleaseValidationError(report)

    manifests: List[Manifest] = [
        render_config_map(config_map, release, settings)
        for config_map in release.shared.config_maps
    ]
    rendered = map_services(
        lambda service: render_service_manifests(service, release, settings),
        list(release.services),
        settings.max_workers,
    )
    for service_manifests in rendered:
        manifests.extend(service_manifests)

    ordered = sort_manifests(manifests)
    metrics.assemblies_total.labels(outcome="assembled").inc()
    logger.info(
        f"Assembled release {release.release_id}: {len(ordered)} manifest(s), "
        f"{len(report.warnings)} warning(s)"
    )
    return AssembledRelease(release_id=release.release_id, manifests=ordered, report=report)


__all__ = ["AssembledRelease", "assemble", "manifest_identity", "sort_manifests"]
