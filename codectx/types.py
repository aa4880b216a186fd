from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
from enum import Enum
import uuid


# Namespace for deterministic point ids
CODE_GRAPH_NAMESPACE = uuid.UUID("f47ac10b-58cc-4372-a567-0e02b2c3d479")


class CodeNodeType(Enum):
    """Structural element kinds."""
    FILE = "file"
    CLASS = "class"
    INTERFACE = "interface"
    FUNCTION = "function"
    METHOD = "method"
    VARIABLE = "variable"
    IMPORT = "import"
    EXPORT = "export"
    MODULE = "module"
    NAMESPACE = "namespace"
    TYPE_ALIAS = "type_alias"
    ENUM = "enum"
    CONSTANT = "constant"


class EdgeType(Enum):
    """Relationship kinds."""
    CONTAINS = "CONTAINS"
    IMPORTS = "IMPORTS"
    EXPORTS = "EXPORTS"
    EXTENDS = "EXTENDS"
    IMPLEMENTS = "IMPLEMENTS"
    CALLS = "CALLS"
    REFERENCES = "REFERENCES"
    DEFINES = "DEFINES"
    USES = "USES"
    OVERRIDES = "OVERRIDES"
    DECORATES = "DECORATES"
    DEPENDS_ON = "DEPENDS_ON"


def generate_node_id(file_path: str, kind: str, name: str, line: int) -> str:
    """Generate a deterministic node id."""
    return str(uuid.uuid5(CODE_GRAPH_NAMESPACE, f"{file_path}-{kind}-{name}-{line}"))


def generate_edge_id(source: str, target: str, edge_type: EdgeType) -> str:
    """Generate a deterministic, direction-sensitive edge id."""
    return str(uuid.uuid5(CODE_GRAPH_NAMESPACE, f"{source}-{target}-{edge_type.value}"))


@dataclass
class CodeGraphNode:
    """A structural code element."""
    id: str
    type: CodeNodeType
    name: str
    file_path: str
    start_line: int
    end_line: int
    content: str
    embedding: Optional[List[float]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        """Convert to a point payload."""
        return {
            "type": self.type.value,
            "name": self.name,
            "file_path": self.file_path,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "content": self.content,
            "metadata": self.metadata or {},
        }

    @classmethod
    def from_payload(cls, node_id: str, payload: Dict[str, Any],
                     vector: Optional[List[float]] = None) -> "CodeGraphNode":
        """Build a node from a stored point."""
        return cls(
            id=node_id,
            type=CodeNodeType(payload["type"]),
            name=payload.get("name", ""),
            file_path=payload.get("file_path", ""),
            start_line=int(payload.get("start_line", 0)),
            end_line=int(payload.get("end_line", 0)),
            content=payload.get("content", ""),
            embedding=list(vector) if vector is not None else None,
            metadata=payload.get("metadata") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"id": self.id, **self.to_payload()}


@dataclass
class CodeGraphEdge:
    """A typed, directed, weighted relationship between two node ids."""
    id: str
    source: str
    target: str
    type: EdgeType
    weight: float = 1.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def unresolved(self) -> bool:
        return bool(self.metadata.get("unresolved"))

    def other_end(self, node_id: str) -> str:
        """Return the endpoint that is not ``node_id``."""
        return self.target if self.source == node_id else self.source

    def to_payload(self) -> Dict[str, Any]:
        """Convert to a point payload."""
        return {
            "source": self.source,
            "target": self.target,
            "type": self.type.value,
            "weight": float(self.weight),
            "metadata": self.metadata or {},
        }

    @classmethod
    def from_payload(cls, edge_id: str, payload: Dict[str, Any]) -> "CodeGraphEdge":
        """Build an edge from a stored point."""
        return cls(
            id=edge_id,
            source=payload["source"],
            target=payload["target"],
            type=EdgeType(payload["type"]),
            weight=float(payload.get("weight", 1.0)),
            metadata=payload.get("metadata") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {"id": self.id, **self.to_payload()}


@dataclass
class Subgraph:
    """Induced subgraph around a root node."""
    nodes: List[CodeGraphNode]
    edges: List[CodeGraphEdge]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass
class ExtractionResult:
    """Nodes and edges extracted from one source file."""
    nodes: List[CodeGraphNode] = field(default_factory=list)
    edges: List[CodeGraphEdge] = field(default_factory=list)


@dataclass
class SearchContext:
    """Graph context gathered around a search hit."""
    related_nodes: List[CodeGraphNode] = field(default_factory=list)
    relationships: List[CodeGraphEdge] = field(default_factory=list)
    call_chain: Optional[List[CodeGraphNode]] = None
    dependencies: List[CodeGraphNode] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "related_nodes": [node.to_dict() for node in self.related_nodes],
            "relationships": [edge.to_dict() for edge in self.relationships],
            "call_chain": [node.to_dict() for node in self.call_chain] if self.call_chain is not None else None,
            "dependencies": [node.to_dict() for node in self.dependencies],
        }


@dataclass
class ContextAwareSearchResult:
    """Represents a context-aware search result."""
    node: CodeGraphNode
    score: float
    context: SearchContext

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node": self.node.to_dict(),
            "score": self.score,
            "context": self.context.to_dict(),
        }
