"""Substring patching of configuration text.

Edits locate their target by exact substring match and replace the first
occurrence only. Everything that touches raw text goes through
``validate_fix`` / ``apply_fix``.
"""

import structlog

from iacguard.errors import FixValidationError, ParseError
from iacguard.parser import ConfigParser

from .models import FixDiff, ValidationResult

logger = structlog.get_logger()

APPEND_SEPARATOR = "\n\n"

_parser = ConfigParser()


def _patch(content: str, diff: FixDiff) -> str:
    if diff.is_append:
        return content + APPEND_SEPARATOR + diff.after
    return content.replace(diff.before, diff.after, 1)


def validate_fix(content: str, diff: FixDiff) -> ValidationResult:
    """Check that a fix can be applied without losing resources.

    A fix is valid when its ``before`` text is empty or present in
    ``content`` and the patched text parses to at least as many resources.
    An append that re-declares an existing resource stays valid (the parser
    keeps the first block) but the names are reported in ``duplicates``.
    """
    if not diff.is_append and diff.before not in content:
        return ValidationResult(
            valid=False,
            result_content=content,
            error="Before content not found in template",
        )

    patched = _patch(content, diff)
    try:
        original = _parser.parse(content)
        patched_count = len(_parser.parse(patched).resources)
        appended = _parser.parse(diff.after).full_names if diff.is_append else []
    except ParseError as e:
        return ValidationResult(
            valid=False,
            result_content=content,
            error=f"Parse error: {e.message}",
        )

    if patched_count < len(original.resources):
        return ValidationResult(
            valid=False,
            result_content=patched,
            error="Fix removed resources from the template",
        )

    existing = set(original.full_names)
    duplicates = tuple(name for name in appended if name in existing)
    if duplicates:
        logger.warning("Appended block re-declares existing resources", resources=list(duplicates))
    return ValidationResult(valid=True, result_content=patched, duplicates=duplicates)


def apply_fix(content: str, diff: FixDiff) -> str:
    """Apply a fix to content.

    Raises:
        FixValidationError: If ``before`` is not present in ``content``
    """
    if not diff.is_append and diff.before not in content:
        raise FixValidationError(
            "Before content not found in template",
            before=diff.before[:80],
        )
    return _patch(content, diff)
