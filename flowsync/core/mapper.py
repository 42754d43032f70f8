"""Translation of editor graphs into engine workflow documents.

The mapper is pure: the same nodes and edges always produce the same
document. Malformed input never raises; it is healed and each repair is
reported as a ``MappingDefect`` on the ``MappingResult``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..models.core import (
    EngineConnectionTarget,
    EngineNode,
    EngineWorkflowDocument,
    GraphEdge,
    GraphNode,
)
from ..models.node_kinds import (
    NodeConfig,
    get_node_kind,
    is_known_kind,
    parse_config,
    resolve_input_index,
    resolve_output_port,
)
from .exceptions import MappingDefect
from .logging import get_logger

logger = get_logger(__name__)

NodeInput = Union[GraphNode, Dict[str, Any]]
EdgeInput = Union[GraphEdge, Dict[str, Any]]


@dataclass
class MappingResult:
    """A translated document and the defects healed while building it."""
    document: EngineWorkflowDocument
    defects: List[MappingDefect] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.defects


def _coerce_nodes(nodes: Iterable[NodeInput]) -> List[GraphNode]:
    return [n if isinstance(n, GraphNode) else GraphNode.model_validate(n) for n in nodes]


def _coerce_edges(edges: Iterable[EdgeInput]) -> List[GraphEdge]:
    return [e if isinstance(e, GraphEdge) else GraphEdge.model_validate(e) for e in edges]


def _base_name(node: GraphNode) -> str:
    label = (node.label or "").strip()
    return label or node.id


def assign_node_names(nodes: List[GraphNode]) -> Dict[str, str]:
    """Give every node a document-unique name, keyed by node id.

    The first node carrying a label keeps it. Later collisions take the
    first ``"<label> <n>"`` that is neither already assigned nor the label
    of any node in the graph, so a generated name can never shadow a node
    that appears further down.
    """
    reserved = {_base_name(node) for node in nodes}
    assigned: Set[str] = set()
    names: Dict[str, str] = {}

    for node in nodes:
        base = _base_name(node)
        name = base
        if name in assigned:
            suffix = 1
            while f"{base} {suffix}" in assigned or f"{base} {suffix}" in reserved:
                suffix += 1
            name = f"{base} {suffix}"
        assigned.add(name)
        names[node.id] = name

    return names


def _node_config(node: GraphNode, defects: List[MappingDefect]) -> NodeConfig:
    if not is_known_kind(node.kind):
        defects.append(MappingDefect(
            f"Unknown node kind '{node.kind}', mapped to {get_node_kind(node.kind).engine_type}",
            node_id=node.id,
        ))

    config, problem = parse_config(node.kind, node.config)
    if problem:
        defects.append(MappingDefect(
            f"Invalid config for '{node.kind}' node, defaults used: {problem}",
            node_id=node.id,
        ))
    return config


def _to_engine_node(node: GraphNode, name: str, config: NodeConfig) -> EngineNode:
    spec = get_node_kind(node.kind)
    return EngineNode(
        id=node.id,
        name=name,
        type=spec.engine_type,
        type_version=spec.type_version,
        position=[node.position.x, node.position.y],
        parameters=config.to_parameters(),
        disabled=node.disabled,
        notes=node.notes,
        continue_on_fail=node.continue_on_fail,
        retry_on_fail=node.retry_on_fail,
        max_tries=node.max_tries,
        wait_between_tries=node.wait_between_tries,
    )


def _build_connections(
    nodes: List[GraphNode],
    edges: List[GraphEdge],
    names: Dict[str, str],
    configs: Dict[str, NodeConfig],
    defects: List[MappingDefect],
) -> Dict[str, Dict[str, List[List[EngineConnectionTarget]]]]:
    by_id = {node.id: node for node in nodes}
    outgoing: Dict[str, List[GraphEdge]] = {}

    for edge in edges:
        missing = [end for end in (edge.source, edge.target) if end not in by_id]
        if missing:
            defects.append(MappingDefect(
                f"Edge references unknown node(s) {', '.join(missing)}, dropped",
                edge_id=edge.id,
            ))
            continue
        outgoing.setdefault(edge.source, []).append(edge)

    connections: Dict[str, Dict[str, List[List[EngineConnectionTarget]]]] = {}
    seen: Set[Tuple[str, int, str, int]] = set()

    # Node order first, then edge order within a source
    for node in nodes:
        node_edges = outgoing.get(node.id)
        if not node_edges:
            continue

        source_name = names[node.id]
        source_spec = get_node_kind(node.kind)
        output_count = configs[node.id].output_count()
        ports: List[List[EngineConnectionTarget]] = []

        for edge in node_edges:
            target = by_id[edge.target]
            port, known = resolve_output_port(source_spec, edge.source_handle, output_count)
            if not known:
                defects.append(MappingDefect(
                    f"Unrecognised output handle '{edge.source_handle}' on '{node.kind}' node, using port 0",
                    node_id=node.id,
                    edge_id=edge.id,
                ))

            index, known = resolve_input_index(get_node_kind(target.kind), edge.target_handle)
            if not known:
                defects.append(MappingDefect(
                    f"Unrecognised input handle '{edge.target_handle}' on '{target.kind}' node, using input 0",
                    node_id=target.id,
                    edge_id=edge.id,
                ))

            target_name = names[target.id]
            key = (source_name, port, target_name, index)
            if key in seen:
                continue
            seen.add(key)

            while len(ports) <= port:
                ports.append([])
            ports[port].append(EngineConnectionTarget(node=target_name, type="main", index=index))

        if ports:
            connections[source_name] = {"main": ports}

    return connections


def map_graph(
    name: str,
    nodes: Iterable[NodeInput],
    edges: Iterable[EdgeInput],
    active: bool = False,
) -> MappingResult:
    """Translate an editor graph and report every repair made on the way."""
    defects: List[MappingDefect] = []

    unique_nodes: List[GraphNode] = []
    seen_ids: Set[str] = set()
    for node in _coerce_nodes(nodes):
        if node.id in seen_ids:
            defects.append(MappingDefect(f"Duplicate node id '{node.id}', dropped", node_id=node.id))
            continue
        seen_ids.add(node.id)
        unique_nodes.append(node)

    names = assign_node_names(unique_nodes)
    configs = {node.id: _node_config(node, defects) for node in unique_nodes}
    engine_nodes = [_to_engine_node(node, names[node.id], configs[node.id]) for node in unique_nodes]
    connections = _build_connections(unique_nodes, _coerce_edges(edges), names, configs, defects)

    document = EngineWorkflowDocument(
        name=name,
        active=active,
        nodes=engine_nodes,
        connections=connections,
    )

    if defects:
        logger.debug(f"Mapped '{name}' with {len(defects)} defect(s)")

    return MappingResult(document=document, defects=defects)


def to_engine_document(
    name: str,
    nodes: Iterable[NodeInput],
    edges: Iterable[EdgeInput],
    active: bool = False,
) -> EngineWorkflowDocument:
    """Translate an editor graph into the engine's workflow document."""
    return map_graph(name, nodes, edges, active=active).document


def validate_document(document: EngineWorkflowDocument) -> List[str]:
    """List structural problems of a document; empty when it is well formed."""
    errors: List[str] = []

    if not document.name:
        errors.append("Workflow name is required")
    if not document.nodes:
        errors.append("Workflow must have at least one node")

    names = document.node_names()
    if len(set(names)) != len(names):
        errors.append("Node names must be unique")

    known = set(names)
    for source, outputs in document.connections.items():
        if source not in known:
            errors.append(f"Connection source '{source}' is not a node")
        for port in outputs.get("main", []):
            for target in port:
                if target.node not in known:
                    errors.append(f"Connection target '{target.node}' is not a node")

    return errors


def summarize_defects(defects: List[MappingDefect]) -> Optional[List[Dict[str, Any]]]:
    """Compact form of defects for execution logs and API responses."""
    if not defects:
        return None
    return [{"message": d.message, **d.context} for d in defects]
