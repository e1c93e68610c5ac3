"""Diff two rendered descriptor sets into a field-level plan."""
from __future__ import annotations

import enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from stackform.exceptions import ConfigurationError
from stackform.releases.renderer import Manifest, kind_rank


class ChangeType(str, enum.Enum):
    ADDED = "Added"
    REMOVED = "Removed"
    CHANGED = "Changed"
    UNCHANGED = "Unchanged"


class PlanEntry(BaseModel):
    kind: str
    name: str
    namespace: Optional[str] = None
    action: ChangeType
    field_paths: Tuple[str, ...] = ()

    class Config:
        frozen = True

    @property
    def identity(self) -> str:
        return f"{self.kind}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "action": self.action.value,
            "fieldPaths": list(self.field_paths),
        }


class Plan(BaseModel):
    entries: Tuple[PlanEntry, ...] = ()

    class Config:
        frozen = True

    def _with(self, action: ChangeType) -> List[PlanEntry]:
        return [entry for entry in self.entries if entry.action == action]

    @property
    def added(self) -> List[PlanEntry]:
        return self._with(ChangeType.ADDED)

    @property
    def removed(self) -> List[PlanEntry]:
        return self._with(ChangeType.REMOVED)

    @property
    def changed(self) -> List[PlanEntry]:
        return self._with(ChangeType.CHANGED)

    @property
    def unchanged(self) -> List[PlanEntry]:
        return self._with(ChangeType.UNCHANGED)

    @property
    def has_changes(self) -> bool:
        return any(entry.action != ChangeType.UNCHANGED for entry in self.entries)

    def summary(self) -> Dict[str, int]:
        return {action.value: len(self._with(action)) for action in ChangeType}

    def get(self, kind: str, name: str) -> Optional[PlanEntry]:
        for entry in self.entries:
            if entry.kind == kind and entry.name == name:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary(),
            "hasChanges": self.has_changes,
            "entries": [entry.to_dict() for entry in self.entries],
        }


def _child_path(path: str, key: Any) -> str:
    key = str(key)
    if "." in key or "/" in key:
        return f'{path}["{key}"]'
    return f"{path}.{key}" if path else key


def field_paths(previous: Any, current: Any, path: str = "") -> List[str]:
    """Leaf paths at which ``previous`` and ``current`` differ, in sorted key order."""
    paths: List[str] = []
    if isinstance(previous, dict) and isinstance(current, dict):
        for key in sorted(set(previous) | set(current), key=str):
            child = _child_path(path, key)
            if key not in previous or key not in current:
                paths.append(child)
            else:
                paths.extend(field_paths(previous[key], current[key], child))
    elif isinstance(previous, list) and isinstance(current, list):
        for index in range(max(len(previous), len(current))):
            child = f"{path}[{index}]"
            if index >= len(previous) or index >= len(current):
                paths.append(child)
            else:
                paths.extend(field_paths(previous[index], current[index], child))
    elif previous != current:
        paths.append(path or "<root>")
    return paths


def _index_by_identity(manifests: Iterable[Manifest], label: str) -> Dict[Tuple[str, str], Manifest]:
    indexed: Dict[Tuple[str, str], Manifest] = {}
    for position, manifest in enumerate(manifests):
        try:
            key = (manifest["kind"], manifest["metadata"]["name"])
        except (KeyError, TypeError) as exc:
            raise ConfigurationError(
                "manifest is missing kind or metadata.name",
                path=f"{label}[{position}]",
            ) from exc
        for field, value in (("kind", key[0]), ("metadata.name", key[1])):
            if not isinstance(value, str) or not value:
                raise ConfigurationError(
                    f"{field} must be a non-empty string, got {value!r}",
                    path=f"{label}[{position}].{field}",
                )
        namespace = manifest["metadata"].get("namespace")
        if namespace is not None and not isinstance(namespace, str):
            raise ConfigurationError(
                f"metadata.namespace must be a string, got {namespace!r}",
                path=f"{label}[{position}].metadata.namespace",
            )
        if key in indexed:
            raise ConfigurationError(
                f"duplicate resource identity {key[0]}/{key[1]}",
                path=f"{label}[{position}]",
            )
        indexed[key] = manifest
    return indexed


def diff(previous: Optional[Iterable[Manifest]], current: Iterable[Manifest]) -> Plan:
    """Compare two manifest sets by identity (kind + name)."""
    prev_items = _index_by_identity(previous or [], "previous")
    curr_items = _index_by_identity(current, "current")

    entries: List[PlanEntry] = []
    for key in set(prev_items) | set(curr_items):
        kind, name = key
        prev_item = prev_items.get(key)
        curr_item = curr_items.get(key)
        source = curr_item if curr_item is not None else prev_item
        namespace = source.get("metadata", {}).get("namespace")
        if prev_item is None:
            entries.append(PlanEntry(kind=kind, name=name, namespace=namespace, action=ChangeType.ADDED))
        elif curr_item is None:
            entries.append(PlanEntry(kind=kind, name=name, namespace=namespace, action=ChangeType.REMOVED))
        else:
            paths = field_paths(prev_item, curr_item)
            action = ChangeType.CHANGED if paths else ChangeType.UNCHANGED
            entries.append(PlanEntry(
                kind=kind,
                name=name,
                namespace=namespace,
                action=action,
                field_paths=tuple(paths),
            ))

    entries.sort(key=lambda e: (kind_rank(e.kind), e.kind, e.name))
    return Plan(entries=tuple(entries))


__all__ = ["ChangeType", "Plan", "PlanEntry", "diff", "field_paths"]
