"""Release document loading (structural checks, fail-fast).

A release document is YAML or JSON. Services are declared inline under
``services`` and/or pulled from per-service values documents listed under
``serviceFiles`` (paths relative to the release document).
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml
from jsonschema import Draft202012Validator
from pydantic import ValidationError

from stackform.exceptions import ConfigurationError
from stackform.releases.model import ReleaseSet

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "release.schema.json"


@lru_cache(maxsize=1)
def load_schema() -> Dict[str, Any]:
    return json.loads(SCHEMA_PATH.read_text())


def format_path(parts: Iterable[Any]) -> str:
    """Render ``("services", 0, "image")`` as ``services[0].image``."""
    rendered = ""
    for part in parts:
        if isinstance(part, int):
            rendered += f"[{part}]"
        elif rendered:
            rendered += f".{part}"
        else:
            rendered = str(part)
    return rendered or "<root>"


def read_document(path: Union[str, Path]) -> Any:
    """Read a YAML or JSON document from disk."""
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigurationError(f"cannot read document: {exc}", path=str(path)) from exc
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML: {exc}", path=str(path)) from exc


def _inline_service_files(document: Dict[str, Any], base_dir: Optional[Path]) -> Dict[str, Any]:
    service_files = document.get("serviceFiles") or []
    if not service_files:
        return {key: value for key, value in document.items() if key != "serviceFiles"}
    if not isinstance(service_files, list):
        raise ConfigurationError("must be a list of paths", path="serviceFiles")
    if base_dir is None:
        raise ConfigurationError("serviceFiles requires a document loaded from disk", path="serviceFiles")

    services: List[Any] = list(document.get("services") or [])
    for index, relative in enumerate(service_files):
        service_path = base_dir / str(relative)
        service_doc = read_document(service_path)
        if not isinstance(service_doc, dict):
            raise ConfigurationError(
                "service document must be a mapping",
                path=f"serviceFiles[{index}]",
                details={"file": str(service_path)},
            )
        logger.debug(f"Loaded service document {service_path}")
        services.append(service_doc)

    merged = {key: value for key, value in document.items() if key != "serviceFiles"}
    merged["services"] = services
    return merged


def _check_schema(document: Dict[str, Any]) -> None:
    validator = Draft202012Validator(load_schema())
    errors = sorted(validator.iter_errors(document), key=lambda err: [str(p) for p in err.absolute_path])
    if not errors:
        return
    first = errors[0]
    raise ConfigurationError(
        first.message,
        path=format_path(first.absolute_path),
        details={
            "errors": [
                {"path": format_path(err.absolute_path), "message": err.message}
                for err in errors
            ]
        },
    )


def parse_release(document: Any, base_dir: Optional[Path] = None) -> ReleaseSet:
    """Build a ReleaseSet from an already-parsed document."""
    if not isinstance(document, dict):
        raise ConfigurationError("release document must be a mapping")

    merged = _inline_service_files(document, base_dir)
    _check_schema(merged)

    try:
        release = ReleaseSet(
            metadata=merged["metadata"],
            shared=merged.get("shared") or {},
            services=merged.get("services") or [],
        )
    except ValidationError as exc:
        errors = exc.errors()
        first = errors[0]
        raise ConfigurationError(
            first["msg"],
            path=format_path(first["loc"]),
            details={
                "errors": [
                    {"path": format_path(err["loc"]), "message": err["msg"]}
                    for err in errors
                ]
            },
        ) from exc

    logger.info(
        f"Loaded release {release.release_id} with {len(release.services)} service(s)"
    )
    return release


def load_release(path: Union[str, Path]) -> ReleaseSet:
    """Load a release document (and its service files) from disk."""
    path = Path(path)
    return parse_release(read_document(path), base_dir=path.parent)


__all__ = ["format_path", "load_release", "load_schema", "parse_release", "read_document"]
