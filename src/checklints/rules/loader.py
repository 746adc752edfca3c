"""Rule document loader: parse YAML and TOML checklists into the typed rule model.

The loader composes the PyYAML node tree instead of calling ``safe_load`` so
that every error can point at the exact node that caused it.  TOML documents
are read with ``tomllib`` and rebuilt as the same node tree, located by key,
so both formats share one schema validation.  It performs no filesystem
access beyond :func:`load_path`, which only reads the bytes.
"""

from __future__ import annotations

import bisect
import datetime
import logging
import re
import tomllib
from typing import TYPE_CHECKING, Any

import yaml

from checklints.errors import ParseError
from checklints.rules.model import (
    AllOf,
    AnyOf,
    CommandAvailable,
    DirectoryCheck,
    DirectoryExists,
    EnvSet,
    EnvVar,
    EvalCommand,
    Fact,
    FactEquals,
    FileCheck,
    FileContent,
    FileExists,
    Literal,
    Not,
    RuleSet,
    SourceSpan,
    StructuredPathQuery,
)

if TYPE_CHECKING:
    from pathlib import Path

    from checklints.rules.model import Check, Condition, FactSource

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SUPPORTED_SCHEMA_VERSIONS: frozenset[int] = frozenset({1})
RULE_FORMATS: tuple[str, ...] = ("yaml", "toml")
TOP_LEVEL_FIELDS: tuple[str, ...] = ("version", "requires", "condition", "fact", "check")

# type -> (required fields, optional fields); "type" and "description" are implicit.
CONDITION_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "file": (("path",), ()),
    "directory": (("path",), ("contains",)),
    "fact-equals": (("key", "expected"), ()),
    "command": (("command",), ()),
    "env": (("variable",), ()),
    "all": (("conditions",), ()),
    "any": (("conditions",), ()),
    "not": (("condition",), ()),
}

# Condition types allowed in a document's "requires" and a check's "requirements".
REQUIREMENT_TYPES: tuple[str, ...] = ("command", "env")

# "key", "type", "description" and "requires" are implicit.
FACT_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "literal": (("value",), ()),
    "eval-command": (("command",), ("inputs", "timeout")),
    "structured-path-query": (("path", "query"), ()),
    "file-content": (("path",), ()),
    "env-var": (("variable",), ()),
}

# "type", "description", "conditions" and "requirements" are implicit.
CHECK_FIELDS: dict[str, tuple[tuple[str, ...], tuple[str, ...]]] = {
    "file": (("path",), ("template", "contents", "contains")),
    "directory": (("path",), ("contains", "contents")),
}

_Fields = dict[str, tuple[yaml.Node, yaml.Node]]


# ---------------------------------------------------------------------------
# Document walker
# ---------------------------------------------------------------------------


class _Document:
    """Node-tree walker that turns YAML nodes into model objects."""

    def __init__(self, text: str, source: str, loader: yaml.SafeLoader | None) -> None:
        self.text = text
        self.source = source
        self._loader = loader
        self._line_starts = [0]
        for idx, char in enumerate(text):
            if char == "\n":
                self._line_starts.append(idx + 1)

    # -- locations ---------------------------------------------------------

    def _position(self, index: int) -> tuple[int, int]:
        line_idx = bisect.bisect_right(self._line_starts, index) - 1
        return line_idx + 1, index - self._line_starts[line_idx] + 1

    def index_at(self, line: int, column: int) -> int:
        """Character index of a 1-based line and column."""
        line_idx = min(max(line - 1, 0), len(self._line_starts) - 1)
        return min(self._line_starts[line_idx] + max(column - 1, 0), len(self.text))

    def _byte_offset(self, index: int) -> int:
        return len(self.text[:index].encode("utf-8"))

    def span_between(self, start: int, end: int) -> SourceSpan:
        start = min(max(start, 0), len(self.text))
        end = min(max(end, start), len(self.text))
        while end > start and self.text[end - 1].isspace():
            end -= 1
        if end == start and start < len(self.text):
            end = start + 1
        start_line, start_col = self._position(start)
        end_line, end_col = self._position(max(end - 1, start))
        return SourceSpan(
            file=self.source,
            start_line=start_line,
            start_column=start_col,
            end_line=end_line,
            end_column=end_col + 1,
            start_byte=self._byte_offset(start),
            end_byte=self._byte_offset(end),
        )

    def span(self, node: yaml.Node) -> SourceSpan:
        return self.span_between(node.start_mark.index, node.end_mark.index)

    def error(self, message: str, node: yaml.Node | None, *, label: str | None = None) -> ParseError:
        span = self.span(node) if node is not None else None
        return ParseError(message, span, source_text=self.text, label=label)

    # -- primitives --------------------------------------------------------

    def construct(self, node: yaml.Node, context: str) -> Any:
        try:
            return self._loader.construct_object(node, deep=True)
        except (yaml.constructor.ConstructorError, ValueError, TypeError) as exc:
            problem = getattr(exc, "problem", None) or str(exc)
            msg = f"{context}: cannot read value: {problem}"
            raise self.error(msg, node, label="unreadable value") from exc

    def mapping(self, node: yaml.Node, context: str) -> _Fields:
        if not isinstance(node, yaml.MappingNode):
            raise self.error(f"{context} must be a mapping", node, label="expected a mapping")
        fields: _Fields = {}
        for key_node, value_node in node.value:
            if not isinstance(key_node, yaml.ScalarNode) or not isinstance(
                self.construct(key_node, context), str
            ):
                raise self.error(f"{context}: keys must be strings", key_node)
            name = str(key_node.value)
            if name in fields:
                raise self.error(
                    f"{context}: duplicate field '{name}'", key_node, label="duplicate field"
                )
            fields[name] = (key_node, value_node)
        return fields

    def sequence(self, node: yaml.Node, context: str) -> list[yaml.Node]:
        if not isinstance(node, yaml.SequenceNode):
            raise self.error(f"{context} must be a list", node, label="expected a list")
        return list(node.value)

    def string(self, node: yaml.Node, context: str, *, allow_empty: bool = False) -> str:
        value = self.construct(node, context) if isinstance(node, yaml.ScalarNode) else None
        if not isinstance(value, str):
            raise self.error(f"{context} must be a string", node, label="expected a string")
        if not allow_empty and not value.strip():
            raise self.error(f"{context} must not be empty", node, label="empty string")
        return value

    def string_list(self, node: yaml.Node, context: str) -> tuple[str, ...]:
        return tuple(
            self.string(item, f"{context}[{idx}]")
            for idx, item in enumerate(self.sequence(node, context))
        )

    def scalar(self, node: yaml.Node, context: str) -> Any:
        value = self.construct(node, context) if isinstance(node, yaml.ScalarNode) else None
        if value is None or not isinstance(value, (str, int, float, bool)):
            raise self.error(
                f"{context} must be a string, number, or boolean", node, label="expected a scalar"
            )
        return value

    def number(self, node: yaml.Node, context: str) -> float:
        value = self.construct(node, context) if isinstance(node, yaml.ScalarNode) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise self.error(f"{context} must be a positive number", node)
        return value

    def check_fields(
        self,
        fields: _Fields,
        node: yaml.Node,
        context: str,
        *,
        required: tuple[str, ...],
        allowed: tuple[str, ...],
    ) -> None:
        for name, (key_node, _value) in fields.items():
            if name not in allowed:
                msg = f"{context}: unknown field '{name}', expected one of {sorted(allowed)}"
                raise self.error(msg, key_node, label="unknown field")
        for name in required:
            if name not in fields:
                raise self.error(
                    f"{context}: missing required field '{name}'", node, label="missing field"
                )

    def type_tag(self, fields: _Fields, node: yaml.Node, context: str, known: list[str]) -> str:
        if "type" not in fields:
            raise self.error(f"{context}: missing required field 'type'", node, label="missing type")
        type_node = fields["type"][1]
        tag = self.string(type_node, f"{context}.type")
        if tag not in known:
            msg = f"{context}: unknown type '{tag}', expected one of {sorted(known)}"
            raise self.error(msg, type_node, label="unknown type")
        return tag

    def description(self, fields: _Fields, context: str) -> str | None:
        if "description" not in fields:
            return None
        return self.string(fields["description"][1], f"{context}.description", allow_empty=True)

    # -- conditions --------------------------------------------------------

    def condition(self, node: yaml.Node, context: str, *, in_requires: bool = False) -> Condition:
        fields = self.mapping(node, context)
        tag = self.type_tag(fields, node, context, list(CONDITION_FIELDS))
        required, optional = CONDITION_FIELDS[tag]
        self.check_fields(
            fields,
            node,
            context,
            required=required,
            allowed=("type", "description", *required, *optional),
        )
        description = self.description(fields, context)
        span = self.span(node)

        if tag == "file":
            return FileExists(
                path=self.string(fields["path"][1], f"{context}.path"),
                description=description,
                span=span,
            )
        if tag == "directory":
            contains: tuple[str, ...] = ()
            if "contains" in fields:
                contains = self.string_list(fields["contains"][1], f"{context}.contains")
            return DirectoryExists(
                path=self.string(fields["path"][1], f"{context}.path"),
                contains=contains,
                description=description,
                span=span,
            )
        if tag == "fact-equals":
            if in_requires:
                raise self.error(
                    f"{context}: 'fact-equals' is not allowed in a fact's requires",
                    fields["type"][1],
                    label="not allowed here",
                )
            return FactEquals(
                key=self.string(fields["key"][1], f"{context}.key"),
                expected=self.scalar(fields["expected"][1], f"{context}.expected"),
                description=description,
                span=span,
            )
        if tag == "command":
            return CommandAvailable(
                command=self.string(fields["command"][1], f"{context}.command"),
                description=description,
                span=span,
            )
        if tag == "env":
            return EnvSet(
                variable=self.string(fields["variable"][1], f"{context}.variable"),
                description=description,
                span=span,
            )
        if tag == "not":
            inner = self.condition(
                fields["condition"][1], f"{context}.condition", in_requires=in_requires
            )
            return Not(condition=inner, description=description, span=span)

        members = self.conditions(fields["conditions"][1], f"{context}.conditions", in_requires)
        if not members:
            raise self.error(
                f"{context}.conditions must not be empty", fields["conditions"][1], label="empty list"
            )
        if tag == "all":
            return AllOf(conditions=members, description=description, span=span)
        return AnyOf(conditions=members, description=description, span=span)

    def conditions(
        self, node: yaml.Node, context: str, in_requires: bool = False
    ) -> tuple[Condition, ...]:
        return tuple(
            self.condition(item, f"{context}[{idx}]", in_requires=in_requires)
            for idx, item in enumerate(self.sequence(node, context))
        )

    def requirements(self, node: yaml.Node, context: str) -> tuple[Condition, ...]:
        found: list[Condition] = []
        for idx, item in enumerate(self.sequence(node, context)):
            item_context = f"{context}[{idx}]"
            fields = self.mapping(item, item_context)
            self.type_tag(fields, item, item_context, list(REQUIREMENT_TYPES))
            found.append(self.condition(item, item_context))
        return tuple(found)

    # -- facts -------------------------------------------------------------

    def fact(self, node: yaml.Node, context: str) -> Fact:
        fields = self.mapping(node, context)
        tag = self.type_tag(fields, node, context, list(FACT_FIELDS))
        required, optional = FACT_FIELDS[tag]
        self.check_fields(
            fields,
            node,
            context,
            required=("key", *required),
            allowed=("key", "type", "description", "requires", *required, *optional),
        )
        key = self.string(fields["key"][1], f"{context}.key")

        source: FactSource
        if tag == "literal":
            source = Literal(value=self.scalar(fields["value"][1], f"{context}.value"))
        elif tag == "eval-command":
            inputs: tuple[str, ...] = ()
            if "inputs" in fields:
                inputs = self.string_list(fields["inputs"][1], f"{context}.inputs")
            timeout: float | None = None
            if "timeout" in fields:
                timeout = self.number(fields["timeout"][1], f"{context}.timeout")
            source = EvalCommand(
                command=self.string(fields["command"][1], f"{context}.command"),
                inputs=inputs,
                timeout=timeout,
            )
        elif tag == "structured-path-query":
            source = StructuredPathQuery(
                path=self.string(fields["path"][1], f"{context}.path"),
                query=self.string(fields["query"][1], f"{context}.query"),
            )
        elif tag == "file-content":
            source = FileContent(path=self.string(fields["path"][1], f"{context}.path"))
        else:
            source = EnvVar(variable=self.string(fields["variable"][1], f"{context}.variable"))

        requires: tuple[Condition, ...] = ()
        if "requires" in fields:
            requires = self.conditions(fields["requires"][1], f"{context}.requires", True)

        return Fact(
            key=key,
            source=source,
            requires=requires,
            description=self.description(fields, context),
            span=self.span(node),
        )

    # -- checks ------------------------------------------------------------

    def check(self, node: yaml.Node, context: str) -> Check:
        fields = self.mapping(node, context)
        tag = self.type_tag(fields, node, context, list(CHECK_FIELDS))
        required, optional = CHECK_FIELDS[tag]
        self.check_fields(
            fields,
            node,
            context,
            required=required,
            allowed=("type", "description", "conditions", "requirements", *required, *optional),
        )
        path = self.string(fields["path"][1], f"{context}.path")
        description = self.description(fields, context)
        conditions: tuple[Condition, ...] = ()
        if "conditions" in fields:
            conditions = self.conditions(fields["conditions"][1], f"{context}.conditions")
        requirements: tuple[Condition, ...] = ()
        if "requirements" in fields:
            requirements = self.requirements(
                fields["requirements"][1], f"{context}.requirements"
            )
        contains: tuple[str, ...] = ()
        if "contains" in fields:
            contains = self.string_list(fields["contains"][1], f"{context}.contains")

        if tag == "file":
            template: str | None = None
            if "template" in fields:
                template = self.string(fields["template"][1], f"{context}.template")
            contents: str | None = None
            if "contents" in fields:
                contents = self.string(
                    fields["contents"][1], f"{context}.contents", allow_empty=True
                )
            return FileCheck(
                path=path,
                template=template,
                contents=contents,
                contains=contains,
                description=description,
                conditions=conditions,
                requirements=requirements,
                span=self.span(node),
            )

        entries: tuple[str, ...] | None = None
        if "contents" in fields:
            entries = self.string_list(fields["contents"][1], f"{context}.contents")
        return DirectoryCheck(
            path=path,
            contains=contains,
            contents=entries,
            description=description,
            conditions=conditions,
            requirements=requirements,
            span=self.span(node),
        )

    # -- references ----------------------------------------------------------

    def fact_references(self, node: yaml.Node) -> list[tuple[str, yaml.Node]]:
        """Collect ``(key, key_node)`` for every fact-equals condition under *node*."""
        found: list[tuple[str, yaml.Node]] = []
        if isinstance(node, yaml.SequenceNode):
            for item in node.value:
                found.extend(self.fact_references(item))
        elif isinstance(node, yaml.MappingNode):
            fields = {str(k.value): (k, v) for k, v in node.value}
            type_node = fields.get("type", (None, None))[1]
            if (
                isinstance(type_node, yaml.ScalarNode)
                and type_node.value == "fact-equals"
                and "key" in fields
            ):
                found.append((str(fields["key"][1].value), fields["key"][1]))
            for name in ("conditions", "condition"):
                if name in fields:
                    found.extend(self.fact_references(fields[name][1]))
        return found


# ---------------------------------------------------------------------------
# TOML documents
# ---------------------------------------------------------------------------

_TOML_POSITION = re.compile(r"\s*\(at line (\d+), column (\d+)\)")
_TOML_BARE_OR_QUOTED = r"[A-Za-z0-9_\-]+|\"[^\"]*\"|'[^']*'"
_TOML_HEADER = re.compile(r"\s*(\[\[?)\s*([^\[\]]+?)\s*\]\]?\s*(?:#.*)?$")
_TOML_KEY = re.compile(
    rf"\s*((?:{_TOML_BARE_OR_QUOTED})(?:\s*\.\s*(?:{_TOML_BARE_OR_QUOTED}))*)\s*=\s*"
)

_KeyPath = tuple[str | int, ...]


def _key_parts(raw: str) -> tuple[str, ...]:
    return tuple(part.strip("\"'") for part in re.findall(_TOML_BARE_OR_QUOTED, raw))


def _bracket_depth(text: str) -> int:
    depth = 0
    quote = ""
    for char in text:
        if quote:
            if char == quote:
                quote = ""
        elif char in "\"'":
            quote = char
        elif char in "[{":
            depth += 1
        elif char in "]}":
            depth -= 1
        elif char == "#":
            break
    return depth


def _value_end(line: str, start: int) -> int:
    quote = line[start : start + 1]
    if quote in ("\"", "'") and not line.startswith(quote * 3, start):
        idx = start + 1
        while idx < len(line):
            if quote == "\"" and line[idx] == "\\":
                idx += 2
                continue
            if line[idx] == quote:
                return idx + 1
            idx += 1
    return len(line.rstrip())


def _toml_tag(value: Any) -> str:
    if isinstance(value, str):
        return "tag:yaml.org,2002:str"
    if isinstance(value, bool):
        return "tag:yaml.org,2002:bool"
    if isinstance(value, int):
        return "tag:yaml.org,2002:int"
    if isinstance(value, float):
        return "tag:yaml.org,2002:float"
    if isinstance(value, (datetime.date, datetime.time)):
        return "tag:yaml.org,2002:timestamp"
    return "tag:yaml.org,2002:null"


class _TomlLocator:
    """Character ranges of TOML tables, keys and values, by key path.

    ``tomllib`` reports no positions, so table headers and ``key = value``
    lines are scanned to recover them.  Array-of-tables entries are indexed
    in order of appearance.  Multi-line values are located by their first
    line; keys inside inline tables are not located.
    """

    def __init__(self, text: str) -> None:
        self.tables: dict[_KeyPath, tuple[int, int]] = {}
        self.keys: dict[_KeyPath, tuple[int, int]] = {}
        self.values: dict[_KeyPath, tuple[int, int]] = {}
        self._counts: dict[_KeyPath, int] = {}
        self._scan(text)

    def _table(self, names: tuple[str, ...], *, array: bool) -> _KeyPath:
        path: _KeyPath = ()
        for idx, name in enumerate(names):
            path = (*path, name)
            if array and idx == len(names) - 1:
                self._counts[path] = self._counts.get(path, -1) + 1
                path = (*path, self._counts[path])
            elif path in self._counts:
                path = (*path, self._counts[path])
        return path

    def _scan(self, text: str) -> None:
        table: _KeyPath = ()
        closing: str | None = None
        depth = 0
        offset = 0
        for raw_line in text.splitlines(keepends=True):
            start = offset
            offset += len(raw_line)
            line = raw_line.rstrip("\r\n")
            if closing is not None:
                if closing in line:
                    closing = None
                continue
            if depth > 0:
                depth += _bracket_depth(line)
                continue

            if line.lstrip().startswith("["):
                header = _TOML_HEADER.match(line)
                if header is not None:
                    names = _key_parts(header.group(2))
                    table = self._table(names, array=header.group(1) == "[[")
                    self.tables[table] = (start + header.start(1), start + len(line.rstrip()))
                continue

            key = _TOML_KEY.match(line)
            if key is None:
                continue
            path = (*table, *_key_parts(key.group(1)))
            self.keys[path] = (start + key.start(1), start + key.end(1))
            self.values[path] = (start + key.end(), start + _value_end(line, key.end()))
            value = line[key.end() :]
            for delimiter in ('"""', "'''"):
                if value.startswith(delimiter) and delimiter not in value[3:]:
                    closing = delimiter
            if value.startswith(("[", "{")):
                depth = _bracket_depth(value)


class _TomlDocument(_Document):
    """Walker over nodes rebuilt from ``tomllib`` output.

    Scalar nodes keep their parsed values, so :meth:`construct` hands them
    back unchanged and the YAML tag resolution never runs on TOML text.
    """

    def __init__(self, text: str, source: str) -> None:
        super().__init__(text, source, None)
        self._locator = _TomlLocator(text)
        self._values: dict[int, Any] = {}

    def construct(self, node: yaml.Node, context: str) -> Any:
        return self._values[id(node)]

    def _mark(self, index: int) -> yaml.Mark:
        return yaml.Mark(self.source, index, 0, 0, None, None)

    def _scalar(self, value: Any, bounds: tuple[int, int]) -> yaml.ScalarNode:
        text = value if isinstance(value, str) else str(value)
        node = yaml.ScalarNode(
            _toml_tag(value), text, self._mark(bounds[0]), self._mark(bounds[1])
        )
        self._values[id(node)] = value
        return node

    def node(self, value: Any, path: _KeyPath, fallback: tuple[int, int]) -> yaml.Node:
        """Build the node for *value* at *path*, falling back to the parent's range."""
        locator = self._locator
        bounds = (
            locator.values.get(path)
            or locator.tables.get(path)
            or locator.tables.get((*path, 0))
            or fallback
        )
        start, end = self._mark(bounds[0]), self._mark(bounds[1])
        if isinstance(value, dict):
            pairs = [
                (
                    self._scalar(key, locator.keys.get((*path, key), bounds)),
                    self.node(item, (*path, key), bounds),
                )
                for key, item in value.items()
            ]
            return yaml.MappingNode("tag:yaml.org,2002:map", pairs, start, end)
        if isinstance(value, list):
            items = [self.node(item, (*path, idx), bounds) for idx, item in enumerate(value)]
            return yaml.SequenceNode("tag:yaml.org,2002:seq", items, start, end)
        return self._scalar(value, bounds)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def rule_format(source: str) -> str:
    """Return ``"toml"`` for ``.toml`` sources and ``"yaml"`` for everything else."""
    return "toml" if source.endswith(".toml") else "yaml"


def load(data: bytes, source: str = "<rules>", *, fmt: str | None = None) -> RuleSet:
    """Parse a rule document into a :class:`RuleSet`.

    *fmt* is ``"yaml"`` or ``"toml"``; when omitted it follows the suffix of
    *source*.  Raises :class:`ParseError` with a source span on any schema
    violation: unknown type tags or fields, missing fields, type mismatches,
    duplicate fact keys, and references to undeclared facts.
    """
    fmt = fmt or rule_format(source)
    if fmt not in RULE_FORMATS:
        msg = f"unknown rule document format {fmt!r}, expected one of {list(RULE_FORMATS)}"
        raise ValueError(msg)

    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as exc:
        line = data[: exc.start].count(b"\n") + 1
        column = exc.start - (data.rfind(b"\n", 0, exc.start) + 1) + 1
        span = SourceSpan(source, line, column, line, column + 1, exc.start, exc.start + 1)
        msg = f"rule document is not valid UTF-8 (byte 0x{data[exc.start]:02x})"
        raise ParseError(msg, span) from exc

    if fmt == "toml":
        return _load_toml(text, source)
    return _load_yaml(text, source)


def load_path(path: Path) -> RuleSet:
    """Read *path* and parse it with :func:`load`."""
    logger.debug("Loading rule document %s", path)
    return load(path.read_bytes(), source=str(path))


def _load_toml(text: str, source: str) -> RuleSet:
    doc = _TomlDocument(text, source)
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        description = str(exc)
        problem = getattr(exc, "msg", None) or _TOML_POSITION.sub("", description).strip()
        index: int | None = getattr(exc, "pos", None)
        match = _TOML_POSITION.search(description)
        if index is None and match is not None:
            index = doc.index_at(int(match.group(1)), int(match.group(2)))
        span = doc.span_between(index, index + 1) if index is not None else None
        raise ParseError(
            f"invalid TOML: {problem}", span, source_text=text, label=problem
        ) from exc
    return _build(doc, doc.node(data, (), (0, 0)))


def _load_yaml(text: str, source: str) -> RuleSet:
    loader = yaml.SafeLoader(text)
    try:
        try:
            root = loader.get_single_node()
        except yaml.MarkedYAMLError as exc:
            doc = _Document(text, source, loader)
            mark = exc.problem_mark or exc.context_mark
            span = doc.span_between(mark.index, mark.index + 1) if mark is not None else None
            msg = f"invalid YAML: {exc.problem or exc.context}"
            raise ParseError(msg, span, source_text=text, label=exc.problem) from exc
        except yaml.YAMLError as exc:
            msg = f"invalid YAML: {exc}"
            raise ParseError(msg, None, source_text=text) from exc

        doc = _Document(text, source, loader)
        if root is None:
            return RuleSet(source=source)
        return _build(doc, root)
    finally:
        loader.dispose()


def _build(doc: _Document, root: yaml.Node) -> RuleSet:
    fields = doc.mapping(root, "rule document")
    doc.check_fields(fields, root, "rule document", required=(), allowed=TOP_LEVEL_FIELDS)

    version: int | None = None
    if "version" in fields:
        version_node = fields["version"][1]
        raw = None
        if isinstance(version_node, yaml.ScalarNode):
            raw = doc.construct(version_node, "version")
        if isinstance(raw, bool) or raw not in SUPPORTED_SCHEMA_VERSIONS:
            expected = sorted(SUPPORTED_SCHEMA_VERSIONS)
            raise doc.error(
                f"unsupported version {raw!r}, expected one of {expected}",
                version_node,
                label="unsupported version",
            )
        version = int(raw)

    facts: list[Fact] = []
    seen: dict[str, Fact] = {}
    if "fact" in fields:
        for idx, node in enumerate(doc.sequence(fields["fact"][1], "fact")):
            fact = doc.fact(node, f"fact[{idx}]")
            if fact.key in seen:
                key_node = doc.mapping(node, f"fact[{idx}]")["key"][1]
                raise doc.error(
                    f"fact[{idx}]: duplicate fact key '{fact.key}'", key_node, label="duplicate key"
                )
            seen[fact.key] = fact
            facts.append(fact)

    requires: tuple[Condition, ...] = ()
    if "requires" in fields:
        requires = doc.requirements(fields["requires"][1], "requires")

    conditions: tuple[Condition, ...] = ()
    if "condition" in fields:
        conditions = doc.conditions(fields["condition"][1], "condition")

    checks: list[Check] = []
    if "check" in fields:
        for idx, node in enumerate(doc.sequence(fields["check"][1], "check")):
            checks.append(doc.check(node, f"check[{idx}]"))

    for section in ("condition", "check"):
        if section not in fields:
            continue
        for key, key_node in doc.fact_references(fields[section][1]):
            if key not in seen:
                raise doc.error(
                    f"fact-equals references undeclared fact '{key}'",
                    key_node,
                    label="undeclared fact",
                )

    return RuleSet(
        source=doc.source,
        conditions=conditions,
        facts=tuple(facts),
        checks=tuple(checks),
        version=version,
        requires=requires,
    )


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _with_description(entry: dict[str, Any], description: str | None) -> dict[str, Any]:
    if description is not None:
        entry["description"] = description
    return entry


def dump_condition(condition: Condition) -> dict[str, Any]:
    entry: dict[str, Any]
    if isinstance(condition, FileExists):
        entry = {"type": "file", "path": condition.path}
    elif isinstance(condition, DirectoryExists):
        entry = {"type": "directory", "path": condition.path}
        if condition.contains:
            entry["contains"] = list(condition.contains)
    elif isinstance(condition, FactEquals):
        entry = {"type": "fact-equals", "key": condition.key, "expected": condition.expected}
    elif isinstance(condition, CommandAvailable):
        entry = {"type": "command", "command": condition.command}
    elif isinstance(condition, EnvSet):
        entry = {"type": "env", "variable": condition.variable}
    elif isinstance(condition, Not):
        entry = {"type": "not", "condition": dump_condition(condition.condition)}
    else:
        tag = "all" if isinstance(condition, AllOf) else "any"
        entry = {"type": tag, "conditions": [dump_condition(c) for c in condition.conditions]}
    return _with_description(entry, condition.description)


def dump_fact(fact: Fact) -> dict[str, Any]:
    entry: dict[str, Any] = {"key": fact.key, "type": fact.source_type}
    source = fact.source
    if isinstance(source, Literal):
        entry["value"] = source.value
    elif isinstance(source, EvalCommand):
        entry["command"] = source.command
        if source.inputs:
            entry["inputs"] = list(source.inputs)
        if source.timeout is not None:
            entry["timeout"] = source.timeout
    elif isinstance(source, StructuredPathQuery):
        entry["path"] = source.path
        entry["query"] = source.query
    elif isinstance(source, FileContent):
        entry["path"] = source.path
    else:
        entry["variable"] = source.variable
    if fact.requires:
        entry["requires"] = [dump_condition(c) for c in fact.requires]
    return _with_description(entry, fact.description)


def dump_check(check: Check) -> dict[str, Any]:
    entry: dict[str, Any]
    if isinstance(check, FileCheck):
        entry = {"type": "file", "path": check.path}
        if check.template is not None:
            entry["template"] = check.template
        if check.contents is not None:
            entry["contents"] = check.contents
    else:
        entry = {"type": "directory", "path": check.path}
        if check.contents is not None:
            entry["contents"] = list(check.contents)
    if check.contains:
        entry["contains"] = list(check.contains)
    if check.conditions:
        entry["conditions"] = [dump_condition(c) for c in check.conditions]
    if check.requirements:
        entry["requirements"] = [dump_condition(c) for c in check.requirements]
    return _with_description(entry, check.description)


def dump(rule_set: RuleSet) -> dict[str, Any]:
    """Re-serialize a rule set into its structured-document form.

    Fields left at their defaults are omitted, so ``dump(load(doc))`` equals
    the parsed document field for field.
    """
    document: dict[str, Any] = {}
    if rule_set.version is not None:
        document["version"] = rule_set.version
    if rule_set.requires:
        document["requires"] = [dump_condition(c) for c in rule_set.requires]
    if rule_set.conditions:
        document["condition"] = [dump_condition(c) for c in rule_set.conditions]
    if rule_set.facts:
        document["fact"] = [dump_fact(f) for f in rule_set.facts]
    if rule_set.checks:
        document["check"] = [dump_check(c) for c in rule_set.checks]
    return document


def dumps(rule_set: RuleSet) -> str:
    """Serialize a rule set as a YAML document."""
    return yaml.safe_dump(dump(rule_set), sort_keys=False, allow_unicode=True)
