from typing import Dict, Optional
from pathlib import Path
import importlib

from tree_sitter import Language, Parser, Tree

from ..exceptions import ExtractionError
from ..utils.logger import app_logger


# language tag -> (grammar package, function returning the language pointer)
GRAMMARS = {
    'python': ('tree_sitter_python', 'language'),
    'javascript': ('tree_sitter_javascript', 'language'),
    'jsx': ('tree_sitter_javascript', 'language'),
    'typescript': ('tree_sitter_typescript', 'language_typescript'),
    'tsx': ('tree_sitter_typescript', 'language_tsx'),
    'java': ('tree_sitter_java', 'language'),
    'go': ('tree_sitter_go', 'language'),
    'rust': ('tree_sitter_rust', 'language'),
}

EXTENSION_LANGUAGES = {
    '.py': 'python',
    '.js': 'javascript',
    '.mjs': 'javascript',
    '.cjs': 'javascript',
    '.jsx': 'jsx',
    '.ts': 'typescript',
    '.mts': 'typescript',
    '.cts': 'typescript',
    '.tsx': 'tsx',
    '.java': 'java',
    '.go': 'go',
    '.rs': 'rust',
}


def detect_language(file_path: str) -> Optional[str]:
    """Determine language tag from the file extension."""
    return EXTENSION_LANGUAGES.get(Path(file_path).suffix.lower())


class SourceParser:
    """tree-sitter parsers, loaded lazily per language."""

    def __init__(self):
        self.logger = app_logger.bind(component="source_parser")
        self.parsers: Dict[str, Parser] = {}
        self.unavailable = set()

    def _load_language(self, language: str) -> Optional[Language]:
        module_name, attr = GRAMMARS[language]
        try:
            module = importlib.import_module(module_name)
            return Language(getattr(module, attr)())
        except ImportError:
            self.logger.warning(f"Grammar package {module_name} not installed, {language} disabled")
        except Exception as e:
            self.logger.warning(f"Failed to load {language} grammar: {e}")
        return None

    def get_parser(self, language: str) -> Optional[Parser]:
        """Get the parser for a language, or None if unsupported."""
        if language in self.parsers:
            return self.parsers[language]
        if language not in GRAMMARS or language in self.unavailable:
            return None

        ts_language = self._load_language(language)
        if ts_language is None:
            self.unavailable.add(language)
            return None

        parser = Parser(ts_language)
        self.parsers[language] = parser
        self.logger.info(f"Initialized parser for {language}")
        return parser

    def supports(self, language: Optional[str]) -> bool:
        return language is not None and self.get_parser(language) is not None

    def parse(self, code: str, language: str) -> Tree:
        """Parse source text into a syntax tree."""
        parser = self.get_parser(language)
        if parser is None:
            raise ExtractionError(f"No parser available for language: {language}")

        try:
            return parser.parse(bytes(code, 'utf8'))
        except Exception as e:
            self.logger.error(f"Error parsing {language} code: {e}")
            raise ExtractionError(f"Failed to parse {language} source", e) from e
