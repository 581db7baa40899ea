"""
Snapshot Validation

Structural checks run before a snapshot is committed and again when a
version is validated for deployment:
- node ids present and unique
- edge ids present and unique
- every edge endpoint references a node in the same snapshot
- pipeline-level settings (timeout, retries) well-formed
"""
from typing import Any, Dict, List

from flowops.core.errors import ValidationError
from flowops.schemas.workflow import WorkflowDefinition


def find_structural_problems(snapshot: WorkflowDefinition) -> List[str]:
    """Return a list of human-readable structural problems (empty when valid)"""
    problems: List[str] = []

    node_ids = set()
    for index, node in enumerate(snapshot.nodes):
        if not node.id:
            problems.append(f"nodes[{index}] has an empty id")
            continue
        if node.id in node_ids:
            problems.append(f"duplicate node id '{node.id}'")
        node_ids.add(node.id)

    edge_ids = set()
    for index, edge in enumerate(snapshot.edges):
        if not edge.id:
            problems.append(f"edges[{index}] has an empty id")
        elif edge.id in edge_ids:
            problems.append(f"duplicate edge id '{edge.id}'")
        else:
            edge_ids.add(edge.id)

        label = edge.id or f"edges[{index}]"
        if edge.source not in node_ids:
            problems.append(f"edge '{label}' source '{edge.source}' does not match any node")
        if edge.target not in node_ids:
            problems.append(f"edge '{label}' target '{edge.target}' does not match any node")

    return problems


def find_config_problems(config: Dict[str, Any]) -> List[str]:
    """Check the pipeline-level settings that the runtime interprets"""
    problems: List[str] = []

    if "timeout" in config:
        timeout = config["timeout"]
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            problems.append(f"config.timeout must be a positive number, got {timeout!r}")

    if "retries" in config:
        retries = config["retries"]
        if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
            problems.append(f"config.retries must be a non-negative integer, got {retries!r}")

    return problems


def validate_snapshot(snapshot: WorkflowDefinition) -> None:
    """
    Raise ValidationError listing every structural problem in `snapshot`.
    """
    problems = find_structural_problems(snapshot)
    if problems:
        raise ValidationError("Workflow snapshot is structurally invalid", details=problems)
