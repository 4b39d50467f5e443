"""Static fix templates keyed by policy code.

Each template takes the violation result and the current content and
returns a FixDiff, or None when it cannot produce a safe edit. Edits to an
existing resource replace its exact raw block text with a minimally
modified copy; new resources are appended.
"""

import re
from typing import Callable

from iacguard.parser import ConfigParser, ResourceRecord, mask_ignored
from iacguard.policies import PolicyResult

from .models import FixDiff

FixTemplate = Callable[[PolicyResult, str], FixDiff | None]

GP2_TYPE = re.compile(r'^(?P<indent>[ \t]*)type[ \t]*=[ \t]*"gp2"', re.MULTILINE)

_parser = ConfigParser()


# ==================== Block editing ====================


def find_resource(content: str, resource_ref: str) -> ResourceRecord | None:
    return _parser.parse(content).get_resource(resource_ref)


def _lines_with_depth(block: str) -> list[tuple[int, str, str, int]]:
    """(offset, line, masked line, brace depth at line start) for every line.

    The masked line has strings and comments blanked out.
    """
    lines = []
    offset = 0
    depth = 0
    masked_block = mask_ignored(block)
    for line in block.splitlines(keepends=True):
        masked = masked_block[offset : offset + len(line)]
        lines.append((offset, line, masked, depth))
        depth += masked.count("{") - masked.count("}")
        offset += len(line)
    return lines


def _body_indent(block: str) -> str:
    for _, line, masked, depth in _lines_with_depth(block):
        if depth == 1 and masked.strip() and not masked.strip().startswith("}"):
            return line[: len(line) - len(line.lstrip())]
    closing = block[block.rfind("\n") + 1 :] if "\n" in block else ""
    return closing[: len(closing) - len(closing.lstrip())] + "  "


def insert_before_closing(block: str, text: str) -> str:
    """Insert lines just before the final closing brace of a block."""
    index = mask_ignored(block).rfind("}")
    head = block[:index]
    closing_line_start = head.rfind("\n") + 1
    if head[closing_line_start:].strip():
        # Closing brace shares a line with content
        return head.rstrip() + "\n" + text + block[index:]
    return head[:closing_line_start] + text + head[closing_line_start:] + block[index:]


def set_attribute(block: str, name: str, value: str) -> str:
    """Set a top-level attribute of a block, adding it when absent."""
    pattern = re.compile(rf"^(?P<indent>[ \t]*){re.escape(name)}[ \t]*=")
    for offset, line, masked, depth in _lines_with_depth(block):
        if depth != 1:
            continue
        match = pattern.match(masked)
        if match:
            ending = "\n" if line.endswith("\n") else ""
            replacement = f"{match.group('indent')}{name} = {value}{ending}"
            return block[:offset] + replacement + block[offset + len(line) :]
    return insert_before_closing(block, f"{_body_indent(block)}{name} = {value}\n")


def nested_block_span(block: str, name: str) -> tuple[int, int] | None:
    """Start and end offsets of the first top-level nested block ``name { }``."""
    pattern = re.compile(rf"^[ \t]*{re.escape(name)}[ \t]*\{{")
    for offset, line, masked, depth in _lines_with_depth(block):
        if depth != 1 or not pattern.match(masked):
            continue
        start = offset + len(line) - len(line.lstrip())
        close = _matching_brace(block, offset + masked.index("{"))
        if close is not None:
            return start, close + 1
    return None


def _matching_brace(text: str, open_index: int) -> int | None:
    depth = 0
    for offset, char in enumerate(mask_ignored(text[open_index:])):
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return open_index + offset
    return None


def set_nested_attributes(block: str, name: str, values: dict[str, str]) -> str:
    """Set attributes inside a nested block, creating the block if missing."""
    span = nested_block_span(block, name)
    if span is None:
        indent = _body_indent(block)
        inner = "".join(f"{indent}  {key} = {value}\n" for key, value in values.items())
        return insert_before_closing(block, f"\n{indent}{name} {{\n{inner}{indent}}}\n")

    start, end = span
    nested = block[start:end]
    for key, value in values.items():
        nested = set_attribute(nested, key, value)
    return block[:start] + nested + block[end:]


def _edit(result: PolicyResult, content: str, edit: Callable[[ResourceRecord], str]) -> FixDiff | None:
    resource = find_resource(content, result.resource_ref)
    if resource is None:
        return None
    before = resource.raw_text
    after = edit(resource)
    if after == before:
        return None
    return FixDiff(before=before, after=after)


def _attribute_fix(name: str, value: str) -> FixTemplate:
    def template(result: PolicyResult, content: str) -> FixDiff | None:
        return _edit(result, content, lambda r: set_attribute(r.raw_text, name, value))

    return template


# ==================== Templates ====================


def fix_s3_public_access(result: PolicyResult, content: str) -> FixDiff | None:
    bucket = result.resource_ref.split(".", 1)[-1]
    after = (
        f'resource "aws_s3_bucket_public_access_block" "{bucket}_public_access" {{\n'
        f"  bucket = aws_s3_bucket.{bucket}.id\n"
        "\n"
        "  block_public_acls       = true\n"
        "  block_public_policy     = true\n"
        "  ignore_public_acls      = true\n"
        "  restrict_public_buckets = true\n"
        "}"
    )
    return FixDiff(before="", after=after)


def fix_ebs_encryption(result: PolicyResult, content: str) -> FixDiff | None:
    def edit(resource: ResourceRecord) -> str:
        if resource.type == "aws_instance":
            return set_nested_attributes(resource.raw_text, "root_block_device", {"encrypted": "true"})
        return set_attribute(resource.raw_text, "encrypted", "true")

    return _edit(result, content, edit)


def fix_dynamodb_encryption(result: PolicyResult, content: str) -> FixDiff | None:
    return _edit(
        result,
        content,
        lambda r: set_nested_attributes(r.raw_text, "server_side_encryption", {"enabled": "true"}),
    )


def fix_imdsv2(result: PolicyResult, content: str) -> FixDiff | None:
    return _edit(
        result,
        content,
        lambda r: set_nested_attributes(
            r.raw_text,
            "metadata_options",
            {"http_tokens": '"required"', "http_endpoint": '"enabled"'},
        ),
    )


def fix_gp2_volume(result: PolicyResult, content: str) -> FixDiff | None:
    return _edit(
        result,
        content,
        lambda r: GP2_TYPE.sub(r'\g<indent>type = "gp3"', r.raw_text, count=1),
    )


STATIC_FIXES: dict[str, FixTemplate] = {
    "SEC001": fix_s3_public_access,
    "SEC003": _attribute_fix("publicly_accessible", "false"),
    "SEC004": fix_ebs_encryption,
    "SEC007": _attribute_fix("enable_log_file_validation", "true"),
    "SEC011": _attribute_fix("map_public_ip_on_launch", "false"),
    "SEC012": _attribute_fix("storage_encrypted", "true"),
    "SEC013": _attribute_fix("deletion_protection", "true"),
    "SEC014": fix_dynamodb_encryption,
    "SEC018": fix_imdsv2,
    "COST003": _attribute_fix("multi_az", "false"),
    "COST005": fix_gp2_volume,
}
