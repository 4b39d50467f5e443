"""Terraform (HCL) resource parser.

Extracts only the structure the policy engine needs:
1. Resource blocks -> type, name, properties, raw text span, line numbers
2. Provider, variable and output blocks -> names and properties
3. Nested blocks -> nested mappings (repeated blocks -> lists)

Blocks are located with a brace scanner that understands strings, comments
and heredocs, so one broken block never hides the rest of the file. Each
located block is then decoded on its own with python-hcl2. A block whose
braces never balance, or that hcl2 rejects, is dropped and noted in
``ParsedConfig.warnings``; it is never guessed at.
"""

import re
from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Any

import hcl2
import structlog

from iacguard.errors import ParseError

logger = structlog.get_logger()

BLOCK_HEADER = re.compile(
    r'^[ \t]*(?P<kind>resource|provider|variable|output)\s+"(?P<first>[^"\n]+)"'
    r'(?:\s+"(?P<second>[^"\n]+)")?\s*\{',
    re.MULTILINE,
)
HEREDOC = re.compile(r"<<-?([A-Za-z_][A-Za-z0-9_]*)[ \t]*\n")
INTERPOLATION = re.compile(r"\$\{(?P<expr>.*)\}", re.DOTALL)
INTEGER = re.compile(r"-?\d+")
FLOAT = re.compile(r"-?\d+\.\d*(?:[eE][-+]?\d+)?|-?\d+[eE][-+]?\d+")


@dataclass(frozen=True)
class ResourceRecord:
    """One declared resource block."""

    type: str
    name: str
    properties: dict[str, Any] = field(default_factory=dict)
    raw_text: str = ""
    start_line: int = 0
    end_line: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.type}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "full_name": self.full_name,
            "properties": self.properties,
            "start_line": self.start_line,
            "end_line": self.end_line,
        }


@dataclass
class ParsedConfig:
    """Result of parsing one configuration text."""

    resources: list[ResourceRecord] = field(default_factory=list)
    providers: list[str] = field(default_factory=list)
    variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    raw_content: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def full_names(self) -> list[str]:
        return [r.full_name for r in self.resources]

    def get_resource(self, full_name: str) -> ResourceRecord | None:
        """Look up a resource by ``type.name``."""
        for resource in self.resources:
            if resource.full_name == full_name:
                return resource
        return None

    def serialize(self) -> str:
        """Re-emit the recognized resource blocks as configuration text."""
        if not self.resources:
            return ""
        return "\n\n".join(r.raw_text for r in self.resources) + "\n"


class ConfigParser:
    """Parses configuration text into a ParsedConfig."""

    def __init__(self):
        self._logger = logger.bind(component="ConfigParser")

    def parse(self, text: str | bytes) -> ParsedConfig:
        """Parse configuration text.

        Args:
            text: Raw HCL source (``bytes`` are decoded as UTF-8)

        Returns:
            Parsed configuration; malformed blocks are omitted

        Raises:
            ParseError: If the input is not text at all
        """
        if isinstance(text, bytes):
            try:
                text = text.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ParseError(f"Configuration is not valid UTF-8: {e}") from e
        if not isinstance(text, str):
            raise ParseError(
                f"Configuration must be text, got {type(text).__name__}"
            )

        parsed = ParsedConfig(raw_content=text)
        ignored = IgnoredSpans(text)
        seen: set[str] = set()
        cursor = 0

        while True:
            header = BLOCK_HEADER.search(text, cursor)
            if header is None:
                break

            kind = header.group("kind")
            if ignored.covers(header.start("kind")):
                # Inside a comment or string
                cursor = header.end()
                continue

            open_index = header.end() - 1
            close_index = find_block_end(text, open_index)
            start_line = text.count("\n", 0, header.start("kind")) + 1

            if close_index is None:
                parsed.warnings.append(
                    f"line {start_line}: unterminated {kind} block dropped"
                )
                cursor = header.end()
                continue

            cursor = close_index + 1
            first, second = header.group("first"), header.group("second")
            raw_text = text[header.start("kind") : close_index + 1]

            if kind == "provider":
                if first not in parsed.providers:
                    parsed.providers.append(first)
                continue
            if kind == "resource" and second is None:
                parsed.warnings.append(
                    f"line {start_line}: resource block without a name dropped"
                )
                continue

            labels = [first] if second is None else [first, second]
            properties = self._decode(raw_text, kind, labels)
            if properties is None:
                parsed.warnings.append(
                    f"line {start_line}: {kind} block {'.'.join(labels)} is not valid HCL, dropped"
                )
                continue

            match kind:
                case "resource":
                    record = ResourceRecord(
                        type=first,
                        name=second,
                        properties=properties,
                        raw_text=raw_text,
                        start_line=start_line,
                        end_line=text.count("\n", 0, close_index) + 1,
                    )
                    if record.full_name in seen:
                        parsed.warnings.append(
                            f"line {start_line}: duplicate resource {record.full_name} dropped"
                        )
                    else:
                        seen.add(record.full_name)
                        parsed.resources.append(record)
                case "variable":
                    parsed.variables.setdefault(first, properties)
                case "output":
                    parsed.outputs.setdefault(first, properties)

        if parsed.warnings:
            self._logger.warning(
                "Dropped malformed blocks",
                count=len(parsed.warnings),
                warnings=parsed.warnings,
            )

        return parsed

    def _decode(self, raw_text: str, kind: str, labels: list[str]) -> dict[str, Any] | None:
        """Decode one block with hcl2, or None when hcl2 rejects it."""
        try:
            decoded = hcl2.loads(raw_text + "\n")
        except Exception as e:
            self._logger.debug("hcl2 rejected block", kind=kind, labels=labels, error=str(e))
            return None

        node: Any = decoded.get(kind)
        for label in labels:
            node = _single(node)
            if not isinstance(node, dict):
                return None
            key = label if label in node else f'"{label}"'
            if key not in node:
                return None
            node = node[key]

        node = _single(node)
        return normalize_body(node) if isinstance(node, dict) else None


def parse(text: str | bytes) -> ParsedConfig:
    """Parse configuration text with a default parser."""
    return ConfigParser().parse(text)


# ==================== Scanning ====================


def _skip_string(text: str, index: int) -> int:
    """Return the index just past the string starting at ``index``."""
    i = index + 1
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == '"':
            return i + 1
        if char == "\n":
            # Unterminated single-line string
            return i
        i += 1
    return i


def _skip_comment(text: str, index: int) -> int | None:
    """Return the index past a comment starting at ``index``, or None."""
    if text.startswith("#", index) or text.startswith("//", index):
        newline = text.find("\n", index)
        return len(text) if newline == -1 else newline
    if text.startswith("/*", index):
        end = text.find("*/", index + 2)
        return len(text) if end == -1 else end + 2
    return None


def _skip_heredoc(text: str, index: int) -> int | None:
    """Return the index past a heredoc starting at ``index``, or None."""
    match = HEREDOC.match(text, index)
    if match is None:
        return None
    marker = match.group(1)
    pos = match.end()
    while pos < len(text):
        newline = text.find("\n", pos)
        line_end = len(text) if newline == -1 else newline
        if text[pos:line_end].strip() == marker:
            return line_end
        pos = line_end + 1
    return len(text)


def _skip_literal(text: str, index: int) -> int | None:
    """Return the index past a string, comment or heredoc at ``index``, or None."""
    char = text[index]
    if char == '"':
        return _skip_string(text, index)
    if char in "#/":
        return _skip_comment(text, index)
    if char == "<":
        return _skip_heredoc(text, index)
    return None


class IgnoredSpans:
    """Character spans of a text covered by strings, comments and heredocs."""

    def __init__(self, text: str):
        self.spans: list[tuple[int, int]] = []
        i = 0
        while i < len(text):
            end = _skip_literal(text, i)
            if end is None:
                i += 1
                continue
            self.spans.append((i, end))
            i = max(end, i + 1)
        self._starts = [start for start, _ in self.spans]

    def covers(self, index: int) -> bool:
        position = bisect_right(self._starts, index) - 1
        return position >= 0 and index < self.spans[position][1]


def mask_ignored(text: str) -> str:
    """Blank out strings, comments and heredocs, keeping offsets and newlines.

    Brace counting and attribute matching on the masked text only see code.
    """
    chars = list(text)
    for start, end in IgnoredSpans(text).spans:
        for i in range(start, end):
            if chars[i] != "\n":
                chars[i] = " "
    return "".join(chars)


def find_block_end(text: str, open_index: int) -> int | None:
    """Find the brace closing the block opened at ``open_index``.

    Braces inside strings, comments and heredocs are ignored.

    Returns:
        Index of the closing brace, or None if it never closes
    """
    depth = 0
    i = open_index
    while i < len(text):
        skipped = _skip_literal(text, i)
        if skipped is not None:
            i = max(skipped, i + 1)
            continue
        char = text[i]
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


# ==================== Decoded values ====================


def _single(node: Any) -> Any:
    """Unwrap the one-element lists hcl2 uses for block bodies."""
    if isinstance(node, list) and len(node) == 1:
        return node[0]
    return node


def _is_meta(key: str) -> bool:
    return key.startswith("__") and key.endswith("__")


def normalize_body(body: dict[str, Any]) -> dict[str, Any]:
    """Turn an hcl2 block body into the property mapping policies read.

    Nested blocks arrive as lists of mappings; a single block becomes a
    mapping and repeated blocks stay a list.
    """
    properties: dict[str, Any] = {}
    for key, value in body.items():
        if _is_meta(key):
            continue
        if isinstance(value, list) and value and all(isinstance(v, dict) for v in value):
            blocks = [normalize_body(v) for v in value]
            properties[_plain_key(key)] = blocks[0] if len(blocks) == 1 else blocks
        else:
            properties[_plain_key(key)] = normalize_value(value)
    return properties


def normalize_value(value: Any) -> Any:
    """Convert one decoded attribute value.

    Literals keep their Python type. Expressions hcl2 wraps as ``${...}``
    (references, function calls) become their raw expression text.
    """
    if isinstance(value, dict):
        return {_plain_key(k): normalize_value(v) for k, v in value.items() if not _is_meta(k)}
    if isinstance(value, list):
        return [normalize_value(v) for v in value]
    if not isinstance(value, str):
        return value

    match = INTERPOLATION.fullmatch(value)
    if match is None or "${" in match.group("expr"):
        return value

    expr = match.group("expr").strip()
    # Unary minus is an expression to hcl2
    if INTEGER.fullmatch(expr):
        return int(expr)
    if FLOAT.fullmatch(expr):
        return float(expr)
    return expr


def _plain_key(key: str) -> str:
    if len(key) >= 2 and key.startswith('"') and key.endswith('"'):
        return key[1:-1]
    return key


# ==================== Helpers ====================


def find_resources_by_type(parsed: ParsedConfig, resource_type: str) -> list[ResourceRecord]:
    """Return all resources of one type, in source order."""
    return [r for r in parsed.resources if r.type == resource_type]


def get_property(
    resource: ResourceRecord,
    path: str,
    expected_type: type | tuple[type, ...] | None = None,
) -> Any:
    """Read a property by dotted path without type coercion.

    Args:
        resource: The resource to read from
        path: Attribute name, or ``block.attribute`` for nested blocks
        expected_type: If given, a value of any other type reads as absent

    Returns:
        The value, or None when missing or of the wrong type
    """
    value: Any = resource.properties
    for part in path.split("."):
        if isinstance(value, list) and value and isinstance(value[0], dict):
            value = value[0]
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]

    if expected_type is None:
        return value

    wanted = expected_type if isinstance(expected_type, tuple) else (expected_type,)
    # bool is an int subclass, but a flag is never a number
    if isinstance(value, bool) and bool not in wanted:
        return None
    return value if isinstance(value, wanted) else None


def get_bool(resource: ResourceRecord, path: str) -> bool | None:
    return get_property(resource, path, bool)


def get_number(resource: ResourceRecord, path: str) -> int | float | None:
    return get_property(resource, path, (int, float))


def get_string(resource: ResourceRecord, path: str) -> str | None:
    return get_property(resource, path, str)


def has_block(resource: ResourceRecord, name: str) -> bool:
    """Check whether a nested block is declared."""
    value = resource.properties.get(name)
    return isinstance(value, dict) or (
        isinstance(value, list) and bool(value) and isinstance(value[0], dict)
    )
