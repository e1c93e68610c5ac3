"""Manifest serialization for text output and diffing."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Union

import yaml

from stackform.exceptions import ConfigurationError
from stackform.releases.renderer import Manifest


def dump_yaml(manifests: List[Manifest]) -> str:
    """Multi-document YAML with sorted keys; byte-identical for equal input."""
    if not manifests:
        return ""
    return yaml.safe_dump_all(
        manifests,
        sort_keys=True,
        default_flow_style=False,
        explicit_start=True,
        allow_unicode=True,
    )


def dump_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def parse_manifests(text: str, source: str = "<input>") -> List[Manifest]:
    """Parse multi-document YAML or a JSON list back into manifests."""
    try:
        documents = list(yaml.safe_load_all(text))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid manifest document: {exc}", path=source) from exc

    manifests: List[Manifest] = []
    for document in documents:
        if document is None:
            continue
        if isinstance(document, list):
            items = document
        elif isinstance(document, dict) and "manifests" in document:
            items = document["manifests"]
            if not isinstance(items, list):
                raise ConfigurationError("manifests must be a list", path=source)
        else:
            items = [document]
        for item in items:
            if not isinstance(item, dict):
                raise ConfigurationError("manifest must be a mapping", path=source)
            manifests.append(item)
    return manifests


def load_manifests(path: Union[str, Path]) -> List[Manifest]:
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigurationError(f"cannot read manifests: {exc}", path=str(path)) from exc
    return parse_manifests(text, source=str(path))


__all__ = ["dump_json", "dump_yaml", "load_manifests", "parse_manifests"]
