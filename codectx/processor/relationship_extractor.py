from typing import List, Dict, Any, Optional, Tuple
from pathlib import Path
import os

from ..config import settings
from ..types import (
    CodeGraphNode,
    CodeGraphEdge,
    CodeNodeType,
    EdgeType,
    ExtractionResult,
    generate_node_id,
    generate_edge_id,
)
from ..utils.logger import app_logger


TS_FAMILY = {'typescript', 'tsx', 'javascript', 'jsx'}

TS_FUNCTION_KINDS = {
    'function_declaration',
    'generator_function_declaration',
    'function_expression',
    'function',
    'generator_function',
    'arrow_function',
}

TS_CLASS_KINDS = {'class_declaration', 'abstract_class_declaration'}

# A container is the innermost enclosing class/function: (node id, node type)
Container = Optional[Tuple[str, CodeNodeType]]


def node_text(node) -> str:
    """Decode the source slice of a syntax-tree node."""
    if node is None or node.text is None:
        return ""
    return node.text.decode('utf8', errors='replace')


def start_line(node) -> int:
    return node.start_point[0] + 1


def end_line(node) -> int:
    return node.end_point[0] + 1


def field_text(node, field_name: str) -> Optional[str]:
    child = node.child_by_field_name(field_name)
    if child is None:
        return None
    return node_text(child) or None


def has_child(node, child_type: str) -> bool:
    return any(child is not None and child.type == child_type for child in node.children)


class _FileGraph:
    """Node and edge accumulator for a single file."""

    def __init__(self, file_path: str, file_node_id: str, max_chars: int):
        self.file_path = file_path
        self.file_node_id = file_node_id
        self.max_chars = max_chars
        self.nodes: List[CodeGraphNode] = []
        self.edges: List[CodeGraphEdge] = []
        self.node_ids = set()
        self.edge_ids = set()

    def add_node(self, node_type: CodeNodeType, name: str, ts_node,
                 metadata: Optional[Dict[str, Any]] = None) -> str:
        line = start_line(ts_node)
        node_id = generate_node_id(self.file_path, node_type.value, name, line)
        if node_id not in self.node_ids:
            self.node_ids.add(node_id)
            self.nodes.append(CodeGraphNode(
                id=node_id,
                type=node_type,
                name=name,
                file_path=self.file_path,
                start_line=line,
                end_line=end_line(ts_node),
                content=node_text(ts_node)[:self.max_chars],
                metadata=metadata or {},
            ))
        return node_id

    def add_edge(self, source: str, target: str, edge_type: EdgeType,
                 metadata: Optional[Dict[str, Any]] = None):
        edge_id = generate_edge_id(source, target, edge_type)
        if edge_id in self.edge_ids:
            return
        self.edge_ids.add(edge_id)
        self.edges.append(CodeGraphEdge(
            id=edge_id,
            source=source,
            target=target,
            type=edge_type,
            weight=1.0,
            metadata=metadata or {},
        ))

    def add_reference(self, source: str, raw_name: str, edge_type: EdgeType):
        """Edge to a raw identifier, to be resolved by the linking pass."""
        if raw_name:
            self.add_edge(source, raw_name, edge_type, {"unresolved": True})

    def contain(self, container: Container, child_id: str):
        source = container[0] if container else self.file_node_id
        self.add_edge(source, child_id, EdgeType.CONTAINS)


class RelationshipExtractor:
    """Derives graph nodes and edges from a parsed syntax tree.

    Python and the TypeScript/JavaScript family have dedicated visitors; every
    other language goes through a generic visitor that only recognises
    function-like and class-like constructs by node kind.
    """

    def __init__(self, workspace_path: str):
        self.logger = app_logger.bind(component="relationship_extractor")
        self.workspace_path = workspace_path
        self.max_chars = settings.node_content_max_chars

    def relative_path(self, file_path: str) -> str:
        """Workspace-relative, forward-slash path used in node ids."""
        if os.path.isabs(file_path):
            file_path = os.path.relpath(file_path, self.workspace_path)
        return Path(file_path).as_posix()

    def extract_from_ast(self, tree, file_path: str, content: str, language: str) -> ExtractionResult:
        """Extract nodes and relationships from a syntax tree."""
        relative_path = self.relative_path(file_path)
        full_path = file_path if os.path.isabs(file_path) else os.path.join(self.workspace_path, file_path)

        file_node_id = generate_node_id(relative_path, "file", relative_path, 0)
        graph = _FileGraph(relative_path, file_node_id, self.max_chars)
        graph.node_ids.add(file_node_id)
        graph.nodes.append(CodeGraphNode(
            id=file_node_id,
            type=CodeNodeType.FILE,
            name=os.path.basename(file_path),
            file_path=relative_path,
            start_line=1,
            end_line=len(content.split('\n')),
            content=content[:self.max_chars],
            metadata={"language": language, "fullPath": full_path},
        ))

        root = getattr(tree, 'root_node', tree)
        if language == 'python':
            self._walk(root, graph, self._visit_python)
        elif language in TS_FAMILY:
            self._walk(root, graph, self._visit_typescript)
        else:
            self._walk(root, graph, self._visit_generic)

        self.logger.debug(
            f"Extracted {len(graph.nodes)} nodes and {len(graph.edges)} edges from {relative_path}"
        )
        return ExtractionResult(nodes=graph.nodes, edges=graph.edges)

    def _walk(self, root, graph: _FileGraph, visit):
        """Pre-order traversal; ``visit`` returns the container for the node's children."""
        stack = [(root, None)]
        while stack:
            ts_node, container = stack.pop()
            child_container = visit(ts_node, container, graph) or container
            for child in reversed(ts_node.children):
                if child is not None:
                    stack.append((child, child_container))

    # Python

    def _visit_python(self, ts_node, container: Container, graph: _FileGraph) -> Container:
        kind = ts_node.type

        if kind == 'import_statement':
            for name_node in ts_node.children_by_field_name('name'):
                if name_node.type == 'aliased_import':
                    name_node = name_node.child_by_field_name('name')
                module_name = node_text(name_node)
                if module_name:
                    import_id = graph.add_node(CodeNodeType.IMPORT, module_name, ts_node)
                    graph.add_edge(graph.file_node_id, import_id, EdgeType.IMPORTS)
            return None

        if kind == 'import_from_statement':
            module_name = field_text(ts_node, 'module_name')
            if module_name:
                names = [node_text(n) for n in ts_node.children_by_field_name('name')]
                import_id = graph.add_node(CodeNodeType.IMPORT, module_name, ts_node, {"names": names})
                graph.add_edge(graph.file_node_id, import_id, EdgeType.IMPORTS)
            return None

        if kind == 'class_definition':
            class_name = field_text(ts_node, 'name')
            if not class_name:
                self.logger.debug(f"Skipping unnamed class at {graph.file_path}:{start_line(ts_node)}")
                return None
            class_id = graph.add_node(CodeNodeType.CLASS, class_name, ts_node)
            graph.contain(container, class_id)

            superclasses = ts_node.child_by_field_name('superclasses')
            if superclasses is not None:
                for base in superclasses.named_children:
                    if base.type in ('identifier', 'attribute'):
                        graph.add_reference(class_id, node_text(base), EdgeType.EXTENDS)
            return class_id, CodeNodeType.CLASS

        if kind == 'function_definition':
            function_name = field_text(ts_node, 'name')
            if not function_name:
                return None
            in_class = container is not None and container[1] == CodeNodeType.CLASS
            node_type = CodeNodeType.METHOD if in_class else CodeNodeType.FUNCTION

            metadata = {"isAsync": has_child(ts_node, 'async')}
            decorators = self._python_decorators(ts_node)
            if decorators:
                metadata["decorators"] = decorators
            if in_class:
                metadata["isStatic"] = "staticmethod" in decorators
                metadata["isClassMethod"] = "classmethod" in decorators
                metadata["isPrivate"] = function_name.startswith('_') and not function_name.endswith('__')

            function_id = graph.add_node(node_type, function_name, ts_node, metadata)
            graph.contain(container, function_id)
            return function_id, node_type

        if kind == 'call' and self._in_function(container):
            graph.add_reference(container[0], self._python_callee(ts_node), EdgeType.CALLS)

        return None

    def _python_decorators(self, ts_node) -> List[str]:
        parent = ts_node.parent
        if parent is None or parent.type != 'decorated_definition':
            return []
        return [
            node_text(child).lstrip('@').strip()
            for child in parent.children
            if child is not None and child.type == 'decorator'
        ]

    def _python_callee(self, ts_node) -> Optional[str]:
        function = ts_node.child_by_field_name('function')
        if function is None:
            return None
        if function.type == 'identifier':
            return node_text(function)
        if function.type == 'attribute':
            return field_text(function, 'attribute')
        return None

    # TypeScript / JavaScript

    def _visit_typescript(self, ts_node, container: Container, graph: _FileGraph) -> Container:
        # Keyword tokens share names with constructs ("function", "class")
        if not ts_node.is_named:
            return None
        kind = ts_node.type

        if kind == 'import_statement':
            source = field_text(ts_node, 'source')
            if source:
                source = source.strip('\'"`')
                import_id = graph.add_node(CodeNodeType.IMPORT, source, ts_node, {"source": source})
                graph.add_edge(graph.file_node_id, import_id, EdgeType.IMPORTS)
            return None

        if kind in TS_CLASS_KINDS:
            class_name = field_text(ts_node, 'name')
            if not class_name:
                return None
            class_id = graph.add_node(
                CodeNodeType.CLASS, class_name, ts_node,
                {"isAbstract": kind == 'abstract_class_declaration'},
            )
            graph.contain(container, class_id)
            self._typescript_heritage(ts_node, class_id, graph)
            return class_id, CodeNodeType.CLASS

        if kind == 'interface_declaration':
            interface_name = field_text(ts_node, 'name')
            if not interface_name:
                return None
            interface_id = graph.add_node(CodeNodeType.INTERFACE, interface_name, ts_node)
            graph.contain(container, interface_id)
            for child in ts_node.children:
                if child is not None and child.type == 'extends_type_clause':
                    for base in child.named_children:
                        graph.add_reference(interface_id, self._type_name(base), EdgeType.EXTENDS)
            return interface_id, CodeNodeType.INTERFACE

        if kind in TS_FUNCTION_KINDS:
            function_name = field_text(ts_node, 'name') or self._declarator_name(ts_node)
            if not function_name:
                function_name = f"anonymous_{start_line(ts_node)}"
            function_id = graph.add_node(CodeNodeType.FUNCTION, function_name, ts_node, {
                "isAsync": has_child(ts_node, 'async'),
                "isArrow": kind == 'arrow_function',
            })
            graph.contain(container, function_id)
            return function_id, CodeNodeType.FUNCTION

        if kind == 'method_definition':
            method_name = field_text(ts_node, 'name')
            if not method_name or container is None or container[1] != CodeNodeType.CLASS:
                return None
            method_id = graph.add_node(CodeNodeType.METHOD, method_name, ts_node, {
                "isStatic": has_child(ts_node, 'static'),
                "isPrivate": self._is_private_member(ts_node, method_name),
                "isAsync": has_child(ts_node, 'async'),
            })
            graph.contain(container, method_id)
            return method_id, CodeNodeType.METHOD

        if kind == 'type_alias_declaration':
            type_name = field_text(ts_node, 'name')
            if type_name:
                type_id = graph.add_node(CodeNodeType.TYPE_ALIAS, type_name, ts_node)
                graph.contain(None, type_id)
            return None

        if kind == 'enum_declaration':
            enum_name = field_text(ts_node, 'name')
            if enum_name:
                enum_id = graph.add_node(CodeNodeType.ENUM, enum_name, ts_node)
                graph.contain(None, enum_id)
            return None

        if kind == 'export_statement':
            export_name = self._export_name(ts_node) or f"export_{start_line(ts_node)}"
            export_id = graph.add_node(CodeNodeType.EXPORT, export_name, ts_node, {
                "isDefault": has_child(ts_node, 'default'),
            })
            graph.add_edge(graph.file_node_id, export_id, EdgeType.EXPORTS)
            return None

        if kind == 'call_expression' and self._in_function(container):
            graph.add_reference(container[0], self._typescript_callee(ts_node), EdgeType.CALLS)

        return None

    def _typescript_heritage(self, class_node, class_id: str, graph: _FileGraph):
        for heritage in class_node.children:
            if heritage is None or heritage.type != 'class_heritage':
                continue
            for clause in heritage.named_children:
                if clause.type == 'extends_clause':
                    for base in clause.named_children:
                        if base.type != 'type_arguments':
                            graph.add_reference(class_id, self._type_name(base), EdgeType.EXTENDS)
                elif clause.type == 'implements_clause':
                    for base in clause.named_children:
                        graph.add_reference(class_id, self._type_name(base), EdgeType.IMPLEMENTS)
                else:
                    # JavaScript puts the superclass expression directly under class_heritage
                    graph.add_reference(class_id, self._type_name(clause), EdgeType.EXTENDS)

    def _type_name(self, ts_node) -> str:
        if ts_node.type == 'generic_type':
            name = ts_node.child_by_field_name('name')
            if name is None and ts_node.named_children:
                name = ts_node.named_children[0]
            return node_text(name)
        return node_text(ts_node)

    def _declarator_name(self, ts_node) -> Optional[str]:
        parent = ts_node.parent
        if parent is not None and parent.type == 'variable_declarator':
            return field_text(parent, 'name')
        return None

    def _is_private_member(self, ts_node, name: str) -> bool:
        if name.startswith('#'):
            return True
        return any(
            child is not None and child.type == 'accessibility_modifier' and node_text(child) == 'private'
            for child in ts_node.children
        )

    def _export_name(self, ts_node) -> Optional[str]:
        declaration = ts_node.child_by_field_name('declaration')
        if declaration is not None:
            name = field_text(declaration, 'name')
            if name:
                return name
            for child in declaration.named_children:
                if child.type == 'variable_declarator':
                    return field_text(child, 'name')
            return None

        value = ts_node.child_by_field_name('value')
        if value is not None and value.type == 'identifier':
            return node_text(value)
        return None

    def _typescript_callee(self, ts_node) -> Optional[str]:
        function = ts_node.child_by_field_name('function')
        if function is None:
            return None
        if function.type == 'identifier':
            return node_text(function)
        if function.type == 'member_expression':
            return field_text(function, 'property')
        return None

    # Other languages

    def _visit_generic(self, ts_node, container: Container, graph: _FileGraph) -> Container:
        if not ts_node.is_named:
            return None
        kind = ts_node.type
        line = start_line(ts_node)

        if 'function' in kind or 'method' in kind:
            name = field_text(ts_node, 'name') or f"func_{line}"
            function_id = graph.add_node(CodeNodeType.FUNCTION, name, ts_node)
            graph.contain(None, function_id)

        if 'class' in kind or 'struct' in kind:
            name = field_text(ts_node, 'name') or f"class_{line}"
            class_id = graph.add_node(CodeNodeType.CLASS, name, ts_node)
            graph.contain(None, class_id)

        return None

    @staticmethod
    def _in_function(container: Container) -> bool:
        return container is not None and container[1] in (CodeNodeType.FUNCTION, CodeNodeType.METHOD)
