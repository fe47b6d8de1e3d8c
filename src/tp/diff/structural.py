"""Structural diffs over the text-bearing leaves of parsed source files.

A structural diff is an ordered list of ``{old, new}`` text substitutions.
It survives formatting changes that would break a line diff because it is
replayed against whatever leaves the target tree has, not against line
numbers.  Each supported grammar parses a file, enumerates its text leaves,
builds a fresh tree with some leaves replaced, and prints a tree back to
source text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from html.parser import HTMLParser
from pathlib import PurePosixPath
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import libcst as cst
import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Parser

from ..errors import StructuralParseError
from ..store.schema import TextChange

LOGGER = logging.getLogger(__name__)


class Grammar(Protocol):
    """Parser and printer for one family of structured source files."""

    name: str
    extensions: Tuple[str, ...]

    def parse(self, text: str) -> object:
        ...

    def leaves(self, tree: object) -> List[str]:
        ...

    def replace_leaves(self, tree: object, mapping: Mapping[str, str]) -> object:
        ...

    def print(self, tree: object) -> str:
        ...


# Markup ---------------------------------------------------------------------------

VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "param",
        "source",
        "track",
        "wbr",
    }
)
# Elements whose end tag HTML lets authors leave out.
OPTIONAL_END_ELEMENTS = frozenset(
    {
        "body",
        "caption",
        "colgroup",
        "dd",
        "dt",
        "head",
        "html",
        "li",
        "optgroup",
        "option",
        "p",
        "rb",
        "rp",
        "rt",
        "rtc",
        "tbody",
        "td",
        "tfoot",
        "th",
        "thead",
        "tr",
    }
)
# A start tag implicitly closes an open sibling of these kinds.
_IMPLIED_CLOSE = {
    "li": frozenset({"li"}),
    "dt": frozenset({"dt", "dd"}),
    "dd": frozenset({"dt", "dd"}),
    "p": frozenset({"p"}),
    "option": frozenset({"option"}),
    "optgroup": frozenset({"optgroup", "option"}),
    "tr": frozenset({"tr", "td", "th"}),
    "td": frozenset({"td", "th"}),
    "th": frozenset({"td", "th"}),
    "thead": frozenset({"tbody", "tfoot", "tr", "td", "th"}),
    "tbody": frozenset({"thead", "tfoot", "tr", "td", "th"}),
    "tfoot": frozenset({"thead", "tbody", "tr", "td", "th"}),
}
_RAW_TEXT_ELEMENTS = frozenset({"script", "style"})
_STRING_LITERAL = re.compile(r"""(['"])((?:\\.|(?!\1).)*)\1""")


@dataclass(frozen=True, slots=True)
class MarkupNode:
    """A contiguous slice of the source: a tag, comment, or run of text."""

    kind: str
    raw: str
    parent: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.kind == "data"


@dataclass(frozen=True, slots=True)
class MarkupDocument:
    nodes: Tuple[MarkupNode, ...] = field(default_factory=tuple)


class _EventRecorder(HTMLParser):
    """Record the start offset of every parser event and enforce tag balance.

    Elements listed in :data:`OPTIONAL_END_ELEMENTS` may be closed implicitly,
    either by a sibling start tag or by the end tag of an ancestor.
    """

    def __init__(self, source: str) -> None:
        super().__init__(convert_charrefs=True)
        self._line_starts = [0]
        for index, char in enumerate(source):
            if char == "\n":
                self._line_starts.append(index + 1)
        self.events: List[Tuple[int, str, Optional[str]]] = []
        self.stack: List[str] = []

    def _offset(self) -> int:
        line, column = self.getpos()
        return self._line_starts[line - 1] + column

    def _record(self, kind: str) -> None:
        parent = self.stack[-1] if self.stack else None
        self.events.append((self._offset(), kind, parent))

    def handle_starttag(self, tag, attrs):
        closes = _IMPLIED_CLOSE.get(tag, frozenset())
        while self.stack and self.stack[-1] in closes:
            self.stack.pop()
        self._record("start")
        if tag not in VOID_ELEMENTS:
            self.stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        self._record("startend")

    def handle_endtag(self, tag):
        self._record("end")
        if tag in VOID_ELEMENTS:
            return
        if tag not in self.stack:
            if tag in OPTIONAL_END_ELEMENTS:
                return
            self._unexpected(tag)
        while self.stack[-1] != tag:
            if self.stack[-1] not in OPTIONAL_END_ELEMENTS:
                self._unexpected(tag)
            self.stack.pop()
        self.stack.pop()

    def _unexpected(self, tag: str) -> None:
        expected = self.stack[-1] if self.stack else None
        line, column = self.getpos()
        raise StructuralParseError(
            f"Unexpected closing tag </{tag}> at line {line}",
            details={"tag": tag, "expected": expected, "line": line, "column": column},
        )

    @property
    def unclosed(self) -> List[str]:
        return [tag for tag in self.stack if tag not in OPTIONAL_END_ELEMENTS]

    def handle_data(self, data):
        self._record("data")

    def handle_comment(self, data):
        self._record("comment")

    def handle_decl(self, decl):
        self._record("decl")

    def handle_pi(self, data):
        self._record("pi")

    def unknown_decl(self, data):
        self._record("decl")


class MarkupGrammar:
    """HTML and Jinja templates, including string literals in ``<script>`` blocks."""

    name = "markup"
    extensions = (".html", ".htm", ".jinja", ".jinja2", ".j2")

    def parse(self, text: str) -> MarkupDocument:
        recorder = _EventRecorder(text)
        recorder.feed(text)
        recorder.close()
        unclosed = recorder.unclosed
        if unclosed:
            raise StructuralParseError(
                f"Unclosed tag <{unclosed[-1]}>",
                details={"open_tags": unclosed},
            )

        events = recorder.events
        nodes: List[MarkupNode] = []
        if not events:
            return MarkupDocument(nodes=(MarkupNode("data", text),) if text else ())
        if events[0][0] > 0:
            nodes.append(MarkupNode("data", text[: events[0][0]]))
        for index, (start, kind, parent) in enumerate(events):
            end = events[index + 1][0] if index + 1 < len(events) else len(text)
            nodes.append(MarkupNode(kind, text[start:end], parent))
        return MarkupDocument(nodes=tuple(nodes))

    def leaves(self, tree: MarkupDocument) -> List[str]:
        values: List[str] = []
        for node in tree.nodes:
            if not node.is_text:
                continue
            if node.parent == "script":
                values.extend(match.group(2) for match in _STRING_LITERAL.finditer(node.raw))
            elif node.parent != "style":
                stripped = node.raw.strip()
                if stripped:
                    values.append(stripped)
        return values

    def replace_leaves(self, tree: MarkupDocument, mapping: Mapping[str, str]) -> MarkupDocument:
        return MarkupDocument(nodes=tuple(self._replace_node(node, mapping) for node in tree.nodes))

    def print(self, tree: MarkupDocument) -> str:
        return "".join(node.raw for node in tree.nodes)

    @staticmethod
    def _replace_node(node: MarkupNode, mapping: Mapping[str, str]) -> MarkupNode:
        if not node.is_text or node.parent == "style":
            return node
        if node.parent == "script":
            def substitute(match: re.Match[str]) -> str:
                quote, value = match.group(1), match.group(2)
                if value in mapping:
                    return f"{quote}{mapping[value]}{quote}"
                return match.group(0)

            return MarkupNode(node.kind, _STRING_LITERAL.sub(substitute, node.raw), node.parent)

        stripped = node.raw.strip()
        if not stripped or stripped not in mapping:
            return node
        leading = node.raw[: len(node.raw) - len(node.raw.lstrip())]
        trailing = node.raw[len(node.raw.rstrip()):]
        return MarkupNode(node.kind, f"{leading}{mapping[stripped]}{trailing}", node.parent)


# Python ---------------------------------------------------------------------------


class _StringCollector(cst.CSTVisitor):
    def __init__(self) -> None:
        self.values: List[str] = []

    def visit_SimpleString(self, node: cst.SimpleString) -> None:
        if "b" in node.prefix.lower():
            return
        value = node.evaluated_value
        if isinstance(value, str):
            self.values.append(value)


class _StringReplacer(cst.CSTTransformer):
    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = mapping

    def leave_SimpleString(
        self,
        original_node: cst.SimpleString,
        updated_node: cst.SimpleString,
    ) -> cst.SimpleString:
        if "b" in original_node.prefix.lower():
            return updated_node
        value = original_node.evaluated_value
        if not isinstance(value, str) or value not in self._mapping:
            return updated_node
        literal = _render_literal(original_node.prefix, original_node.quote, self._mapping[value])
        return updated_node.with_changes(value=literal)


def _render_literal(prefix: str, quote: str, value: str) -> str:
    """Write ``value`` as a Python literal keeping the original prefix and quotes."""
    triple = len(quote) == 3
    if "r" in prefix.lower():
        if quote[0] not in value and not value.endswith("\\") and (triple or "\n" not in value):
            return f"{prefix}{quote}{value}{quote}"
        prefix = prefix.replace("r", "").replace("R", "")

    escaped = value.replace("\\", "\\\\").replace(quote[0], "\\" + quote[0])
    if not triple:
        escaped = escaped.replace("\n", "\\n").replace("\r", "\\r")
    return f"{prefix}{quote}{escaped}{quote}"


class PythonGrammar:
    """Python modules parsed with libcst; non-bytes string literals are the leaves."""

    name = "python"
    extensions = (".py", ".pyi")

    def parse(self, text: str) -> cst.Module:
        try:
            return cst.parse_module(text)
        except cst.ParserSyntaxError as error:
            raise StructuralParseError(
                f"Invalid Python source: {error.message}",
                details={"line": error.raw_line, "column": error.raw_column},
            ) from error

    def leaves(self, tree: cst.Module) -> List[str]:
        collector = _StringCollector()
        tree.visit(collector)
        return collector.values

    def replace_leaves(self, tree: cst.Module, mapping: Mapping[str, str]) -> cst.Module:
        return tree.visit(_StringReplacer(mapping))

    def print(self, tree: cst.Module) -> str:
        return tree.code


# Scripts --------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ScriptLeaf:
    """Byte span of a string literal body or a run of JSX text."""

    kind: str
    start: int
    end: int
    quote: str = ""


@dataclass(frozen=True, slots=True)
class ScriptDocument:
    source: bytes
    leaves: Tuple[ScriptLeaf, ...] = field(default_factory=tuple)

    def text(self, leaf: ScriptLeaf) -> str:
        return self.source[leaf.start : leaf.end].decode("utf-8")


_JSX_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def _escape_quote(value: str, quote: str) -> str:
    escaped: List[str] = []
    backslashes = 0
    for char in value:
        if char == quote and backslashes % 2 == 0:
            escaped.append("\\")
        if char == "\n" and backslashes % 2 == 0:
            escaped.append("\\n")
            backslashes = 0
            continue
        escaped.append(char)
        backslashes = backslashes + 1 if char == "\\" else 0
    return "".join(escaped)


class ScriptGrammar:
    """JavaScript and TypeScript parsed with tree-sitter.

    Leaves are the raw bodies of quoted string literals (JSX attribute values
    included) and non-blank JSX text.  Template literals are left alone since
    their substitutions are code, not copy.
    """

    def __init__(self, name: str, extensions: Tuple[str, ...], language: Callable[[], object]) -> None:
        self.name = name
        self.extensions = extensions
        self._language = language
        self._parser: Optional[Parser] = None

    @property
    def parser(self) -> Parser:
        if self._parser is None:
            self._parser = Parser(Language(self._language()))
        return self._parser

    def parse(self, text: str) -> ScriptDocument:
        source = text.encode("utf-8")
        tree = self.parser.parse(source)
        root = tree.root_node
        if root.has_error:
            line, column = self._first_error(root)
            raise StructuralParseError(
                f"Invalid {self.name} source at line {line}",
                details={"line": line, "column": column},
            )

        leaves: List[ScriptLeaf] = []
        pending = [root]
        while pending:
            node = pending.pop()
            if node.type == "string" and node.end_byte - node.start_byte >= 2:
                quote = source[node.start_byte : node.start_byte + 1].decode("utf-8")
                in_jsx = node.parent is not None and node.parent.type == "jsx_attribute"
                kind = "jsx_string" if in_jsx else "string"
                leaves.append(ScriptLeaf(kind, node.start_byte + 1, node.end_byte - 1, quote))
                continue
            if node.type == "jsx_text":
                leaves.append(ScriptLeaf("jsx_text", node.start_byte, node.end_byte))
                continue
            pending.extend(reversed(node.children))
        return ScriptDocument(source=source, leaves=tuple(leaves))

    @staticmethod
    def _first_error(root) -> Tuple[int, int]:
        pending = [root]
        while pending:
            node = pending.pop()
            if node.type == "ERROR" or node.is_missing:
                row, column = node.start_point
                return row + 1, column
            pending.extend(reversed([child for child in node.children if child.has_error or child.is_missing]))
        row, column = root.start_point
        return row + 1, column

    def leaves(self, tree: ScriptDocument) -> List[str]:
        values: List[str] = []
        for leaf in tree.leaves:
            raw = tree.text(leaf)
            if leaf.kind == "jsx_text":
                raw = raw.strip()
                if not raw:
                    continue
            values.append(raw)
        return values

    def replace_leaves(self, tree: ScriptDocument, mapping: Mapping[str, str]) -> ScriptDocument:
        chunks: List[bytes] = []
        cursor = 0
        for leaf in tree.leaves:
            raw = tree.text(leaf)
            if leaf.kind == "jsx_text":
                stripped = raw.strip()
                if not stripped or stripped not in mapping:
                    continue
                leading = raw[: len(raw) - len(raw.lstrip())]
                trailing = raw[len(raw.rstrip()) :]
                replacement = f"{leading}{mapping[stripped]}{trailing}"
            elif raw not in mapping:
                continue
            elif leaf.kind == "jsx_string":
                # JSX attribute strings take entities, not backslash escapes.
                replacement = mapping[raw].replace(leaf.quote, _JSX_QUOTE_ENTITIES[leaf.quote])
            else:
                replacement = _escape_quote(mapping[raw], leaf.quote)
            chunks.append(tree.source[cursor : leaf.start])
            chunks.append(replacement.encode("utf-8"))
            cursor = leaf.end
        chunks.append(tree.source[cursor:])
        return self.parse(b"".join(chunks).decode("utf-8"))

    def print(self, tree: ScriptDocument) -> str:
        return tree.source.decode("utf-8")


# File kinds -----------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PlainText:
    """Files composed with line diffs only."""


@dataclass(frozen=True, slots=True)
class Structured:
    """Files whose text leaves can be diffed through ``grammar``."""

    grammar: Grammar


FileKind = Union[PlainText, Structured]

MARKUP = MarkupGrammar()
PYTHON = PythonGrammar()
JAVASCRIPT = ScriptGrammar("javascript", (".js", ".jsx", ".mjs", ".cjs"), tree_sitter_javascript.language)
TYPESCRIPT = ScriptGrammar("typescript", (".ts", ".mts", ".cts"), tree_sitter_typescript.language_typescript)
TSX = ScriptGrammar("tsx", (".tsx",), tree_sitter_typescript.language_tsx)
DEFAULT_GRAMMARS: Tuple[Grammar, ...] = (MARKUP, PYTHON, JAVASCRIPT, TYPESCRIPT, TSX)


@lru_cache(maxsize=None)
def _kind_for_extension(extension: str) -> FileKind:
    for grammar in DEFAULT_GRAMMARS:
        if extension in grammar.extensions:
            return Structured(grammar)
    return PlainText()


def resolve_file_kind(file_path: str) -> FileKind:
    """Classify ``file_path`` by extension; unknown extensions are plain text."""
    return _kind_for_extension(PurePosixPath(file_path).suffix.lower())


# Engine ---------------------------------------------------------------------------


def _distinct(values: Sequence[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


class StructuralDiffEngine:
    """Create and replay text-leaf substitutions for structured files."""

    def create_structural_diff(
        self,
        original: str,
        modified: str,
        grammar: Grammar = MARKUP,
    ) -> Optional[List[TextChange]]:
        """Pair each new leaf with the first related original leaf.

        Returns ``None`` when either side fails to parse or no leaf changed.
        """
        try:
            original_leaves = _distinct(grammar.leaves(grammar.parse(original)))
            modified_leaves = _distinct(grammar.leaves(grammar.parse(modified)))
        except StructuralParseError as error:
            LOGGER.debug("Structural diff skipped (%s): %s", grammar.name, error)
            return None

        known = set(original_leaves)
        changes: List[TextChange] = []
        for value in modified_leaves:
            if not value or value in known:
                continue
            lowered = value.lower()
            for candidate in original_leaves:
                other = candidate.lower()
                if lowered in other or other in lowered:
                    changes.append(TextChange(old=candidate, new=value))
                    break
        return changes or None

    def apply_structural_diff(
        self,
        text: str,
        changes: Sequence[TextChange],
        grammar: Grammar = MARKUP,
    ) -> str:
        """Replace every leaf equal to a recorded ``old``; parse failures leave ``text`` as is."""
        if not changes:
            return text
        try:
            tree = grammar.parse(text)
        except StructuralParseError as error:
            LOGGER.debug("Structural apply skipped (%s): %s", grammar.name, error)
            return text

        mapping: Dict[str, str] = {}
        for change in changes:
            mapping.setdefault(change.old, change.new)
        return grammar.print(grammar.replace_leaves(tree, mapping))

    @staticmethod
    def is_parseable(text: str, grammar: Grammar) -> bool:
        try:
            grammar.parse(text)
        except StructuralParseError:
            return False
        return True
