from typing import List, Dict, Tuple, Iterable, Optional
from collections import defaultdict

from ..types import CodeGraphNode, CodeGraphEdge, CodeNodeType, EdgeType, generate_edge_id
from ..utils.logger import app_logger


# Node kinds an unresolved edge of each type may point at
LINKABLE_TARGETS = {
    EdgeType.EXTENDS: (CodeNodeType.CLASS, CodeNodeType.INTERFACE),
    EdgeType.IMPLEMENTS: (CodeNodeType.INTERFACE, CodeNodeType.CLASS),
    EdgeType.CALLS: (CodeNodeType.FUNCTION, CodeNodeType.METHOD),
}


class ReferenceLinker:
    """Resolves raw-name edge targets to node ids across a workspace.

    Extraction runs per file and leaves EXTENDS, IMPLEMENTS and CALLS targets
    as identifier text. Once every file of a batch is extracted, the linker
    indexes all nodes by name and rewrites those edges to real node ids.
    """

    def __init__(self, nodes: Iterable[CodeGraphNode] = ()):
        self.logger = app_logger.bind(component="reference_linker")
        self.nodes_by_id: Dict[str, CodeGraphNode] = {}
        self.index: Dict[Tuple[CodeNodeType, str], List[CodeGraphNode]] = defaultdict(list)
        self.resolved_count = 0
        self.dropped_count = 0
        self.add_nodes(nodes)

    def add_nodes(self, nodes: Iterable[CodeGraphNode]):
        """Add nodes to the name index."""
        for node in nodes:
            if node.id in self.nodes_by_id:
                continue
            self.nodes_by_id[node.id] = node
            self.index[(node.type, node.name)].append(node)

    def _candidates(self, edge_type: EdgeType, name: str) -> List[CodeGraphNode]:
        candidates = []
        for node_type in LINKABLE_TARGETS[edge_type]:
            candidates.extend(self.index.get((node_type, name), []))
        return candidates

    def resolve(self, edge: CodeGraphEdge) -> Optional[str]:
        """Return the node id an unresolved edge refers to, or None."""
        if edge.type not in LINKABLE_TARGETS:
            return None

        names = [edge.target]
        if "." in edge.target:
            names.append(edge.target.rsplit(".", 1)[-1])

        source = self.nodes_by_id.get(edge.source)
        for name in names:
            candidates = self._candidates(edge.type, name)
            if not candidates:
                continue

            # Same-file definitions shadow everything else
            if source is not None:
                local = [c for c in candidates if c.file_path == source.file_path]
                if len(local) == 1:
                    return local[0].id
                if len(local) > 1:
                    return None

            if len(candidates) == 1:
                return candidates[0].id
            return None

        return None

    def link(self, edges: List[CodeGraphEdge], drop_unresolved: bool = True) -> List[CodeGraphEdge]:
        """Rewrite unresolved edges; resolved edges pass through unchanged."""
        linked = []
        seen_ids = set()
        self.resolved_count = 0
        self.dropped_count = 0

        for edge in edges:
            if not edge.unresolved:
                if edge.id not in seen_ids:
                    seen_ids.add(edge.id)
                    linked.append(edge)
                continue

            target_id = self.resolve(edge)
            if target_id is None:
                if drop_unresolved:
                    self.dropped_count += 1
                    self.logger.debug(f"Dropping unresolved {edge.type.value} edge to {edge.target}")
                else:
                    linked.append(edge)
                continue

            edge_id = generate_edge_id(edge.source, target_id, edge.type)
            self.resolved_count += 1
            if edge_id in seen_ids:
                continue
            seen_ids.add(edge_id)

            metadata = {k: v for k, v in edge.metadata.items() if k != "unresolved"}
            metadata["resolved_from"] = edge.target
            linked.append(CodeGraphEdge(
                id=edge_id,
                source=edge.source,
                target=target_id,
                type=edge.type,
                weight=edge.weight,
                metadata=metadata,
            ))

        if self.resolved_count or self.dropped_count:
            self.logger.info(f"Linked {self.resolved_count} references, dropped {self.dropped_count}")
        return linked
