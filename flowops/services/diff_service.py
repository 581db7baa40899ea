"""
Diff Service - structural comparison of workflow versions
"""
from typing import Any, Dict, Iterable, List, Optional
from dataclasses import dataclass, field
from enum import Enum

from flowops.core.errors import IncompatibleVersionsError
from flowops.schemas.workflow import Version, WorkflowDefinition


class ChangeKind(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"


class ChangeEntity(str, Enum):
    NODE = "node"
    EDGE = "edge"
    CONFIG = "config"


# Fields that make up a node's or an edge's identity-free content
NODE_FIELDS = ("type", "position", "config")
EDGE_FIELDS = ("source", "target", "type", "config")


@dataclass
class Change:
    """Represents a single difference between two workflow versions"""
    id: str
    kind: ChangeKind
    entity: ChangeEntity
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "entity": self.entity.value,
            "details": self.details,
        }


@dataclass
class ChangeSummary:
    """Aggregate counts over a change set"""
    added: int = 0
    removed: int = 0
    modified: int = 0
    nodes_added: int = 0
    nodes_removed: int = 0
    nodes_modified: int = 0
    edges_added: int = 0
    edges_removed: int = 0
    edges_modified: int = 0
    config_added: int = 0
    config_removed: int = 0
    config_modified: int = 0

    @property
    def total(self) -> int:
        return self.added + self.removed + self.modified

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": self.added,
            "removed": self.removed,
            "modified": self.modified,
            "total": self.total,
            "nodes": {"added": self.nodes_added, "removed": self.nodes_removed, "modified": self.nodes_modified},
            "edges": {"added": self.edges_added, "removed": self.edges_removed, "modified": self.edges_modified},
            "config": {"added": self.config_added, "removed": self.config_removed, "modified": self.config_modified},
        }


@dataclass
class ChangeSet:
    """Complete comparison result"""
    nodes: List[Change] = field(default_factory=list)
    edges: List[Change] = field(default_factory=list)
    config: List[Change] = field(default_factory=list)
    from_version_id: Optional[str] = None
    to_version_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.nodes or self.edges or self.config)

    @property
    def summary(self) -> ChangeSummary:
        summary = ChangeSummary()
        for section, changes in (("nodes", self.nodes), ("edges", self.edges), ("config", self.config)):
            for change in changes:
                kind = change.kind.value
                setattr(summary, kind, getattr(summary, kind) + 1)
                per_section = f"{section}_{kind}"
                setattr(summary, per_section, getattr(summary, per_section) + 1)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "from_version_id": self.from_version_id,
            "to_version_id": self.to_version_id,
            "nodes": [c.to_dict() for c in self.nodes],
            "edges": [c.to_dict() for c in self.edges],
            "config": [c.to_dict() for c in self.config],
            "summary": self.summary.to_dict(),
        }


def ordered_union(a_ids: Iterable[str], b_ids: Iterable[str]) -> List[str]:
    """A's ids in A's order, then ids only in B in B's order"""
    ordered = dict.fromkeys(a_ids)
    for item_id in b_ids:
        ordered.setdefault(item_id)
    return list(ordered)


def compare_fields(before: Dict[str, Any], after: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Per-field before/after for every field that differs"""
    details: Dict[str, Any] = {}
    for name in fields:
        before_val = before.get(name)
        after_val = after.get(name)
        if before_val != after_val:
            entry = {"before": before_val, "after": after_val}
            if isinstance(before_val, dict) and isinstance(after_val, dict):
                entry["changed_keys"] = [
                    key for key in ordered_union(before_val, after_val)
                    if before_val.get(key) != after_val.get(key) or (key in before_val) != (key in after_val)
                ]
            details[name] = entry
    return details


def compare_entities(
    a_items: List[Dict[str, Any]],
    b_items: List[Dict[str, Any]],
    fields: Iterable[str],
    entity: ChangeEntity
) -> List[Change]:
    """Match two lists of node or edge dicts by id and classify the differences"""
    fields = tuple(fields)
    a_by_id = {item["id"]: item for item in a_items}
    b_by_id = {item["id"]: item for item in b_items}

    changes: List[Change] = []
    for item_id in ordered_union(a_by_id, b_by_id):
        a_item = a_by_id.get(item_id)
        b_item = b_by_id.get(item_id)

        if b_item is None:
            changes.append(Change(id=item_id, kind=ChangeKind.REMOVED, entity=entity, details={"before": a_item}))
        elif a_item is None:
            changes.append(Change(id=item_id, kind=ChangeKind.ADDED, entity=entity, details={"after": b_item}))
        else:
            field_diffs = compare_fields(a_item, b_item, fields)
            if field_diffs:
                changes.append(Change(id=item_id, kind=ChangeKind.MODIFIED, entity=entity, details=field_diffs))

    return changes


def compare_nodes(a_nodes: List[Dict[str, Any]], b_nodes: List[Dict[str, Any]]) -> List[Change]:
    return compare_entities(a_nodes, b_nodes, NODE_FIELDS, ChangeEntity.NODE)


def compare_edges(a_edges: List[Dict[str, Any]], b_edges: List[Dict[str, Any]]) -> List[Change]:
    return compare_entities(a_edges, b_edges, EDGE_FIELDS, ChangeEntity.EDGE)


def compare_config(a_config: Dict[str, Any], b_config: Dict[str, Any]) -> List[Change]:
    """Key-by-key comparison of the workflow-level config"""
    a_config = a_config or {}
    b_config = b_config or {}

    changes: List[Change] = []
    for key in ordered_union(a_config, b_config):
        if key not in b_config:
            changes.append(Change(id=key, kind=ChangeKind.REMOVED, entity=ChangeEntity.CONFIG,
                                  details={"before": a_config[key]}))
        elif key not in a_config:
            changes.append(Change(id=key, kind=ChangeKind.ADDED, entity=ChangeEntity.CONFIG,
                                  details={"after": b_config[key]}))
        elif a_config[key] != b_config[key]:
            changes.append(Change(id=key, kind=ChangeKind.MODIFIED, entity=ChangeEntity.CONFIG,
                                  details={"before": a_config[key], "after": b_config[key]}))
    return changes


def compare_snapshots(a: WorkflowDefinition, b: WorkflowDefinition) -> ChangeSet:
    """
    Compare two snapshots. Pure and deterministic.

    Args:
        a: the "from" snapshot
        b: the "to" snapshot

    Returns:
        ChangeSet describing how to get from `a` to `b`
    """
    a_data = a.model_dump(mode="json")
    b_data = b.model_dump(mode="json")
    return ChangeSet(
        nodes=compare_nodes(a_data["nodes"], b_data["nodes"]),
        edges=compare_edges(a_data["edges"], b_data["edges"]),
        config=compare_config(a_data["config"], b_data["config"]),
    )


def compare_versions(version_a: Version, version_b: Version) -> ChangeSet:
    """
    Compare two versions of the same workflow.

    Raises:
        IncompatibleVersionsError: the versions belong to different workflows
    """
    if version_a.workflow_id != version_b.workflow_id:
        raise IncompatibleVersionsError(
            f"Cannot compare version {version_a.id} of workflow {version_a.workflow_id} "
            f"with version {version_b.id} of workflow {version_b.workflow_id}"
        )

    change_set = compare_snapshots(version_a.snapshot, version_b.snapshot)
    change_set.from_version_id = version_a.id
    change_set.to_version_id = version_b.id
    return change_set
