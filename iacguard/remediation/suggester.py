"""AI fix suggestion via Claude.

The suggester is only consulted when no static template applies. It must
return the same before/after shape as a template; anything else is a
FixGenerationError and the planner degrades to a manual placeholder.
"""

import json
from dataclasses import dataclass
from typing import Any, Protocol

import structlog
from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage, SystemMessage

from iacguard.audit import PolicyViolations
from iacguard.config import Settings, get_settings
from iacguard.errors import FixGenerationError
from iacguard.policies import PolicyResult

logger = structlog.get_logger()

SYSTEM_PROMPT = """You are a Terraform security and cost optimization expert.
Given a Terraform template and one policy violation, produce the minimal code
change that fixes the violation.

Respond with JSON only, in exactly this shape:
{
  "before": "exact lines to replace, or an empty string to add a new block",
  "after": "the corrected or new code",
  "description": "one sentence on what changed and why"
}

Rules:
- "before" must be an exact substring of the template, or empty
- Preserve existing formatting and indentation
- Do not modify unrelated resources
- Never remove a resource"""


@dataclass(frozen=True)
class SuggestedFix:
    """Fix proposed by a suggester."""

    before: str
    after: str
    description: str


class FixSuggester(Protocol):
    """Collaborator that proposes a text edit for one violation."""

    async def suggest_fix(
        self,
        content: str,
        violation: PolicyViolations,
        result: PolicyResult,
    ) -> SuggestedFix:
        ...


def build_prompt(content: str, violation: PolicyViolations, result: PolicyResult) -> str:
    return f"""POLICY: {violation.code} - {violation.name}
SEVERITY: {violation.severity.value}
VIOLATION: {result.message}
RESOURCE: {result.resource_ref}
SUGGESTION: {result.suggestion or "None provided"}

TEMPLATE:
```hcl
{content}
```"""


def _extract_json(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = []
        in_json = False
        for line in text.split("\n"):
            if line.startswith("```") and not in_json:
                in_json = True
                continue
            elif line.startswith("```") and in_json:
                break
            elif in_json:
                lines.append(line)
        return "\n".join(lines)

    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end < start:
        return text
    return text[start : end + 1]


def parse_suggestion(text: str, fallback_description: str) -> SuggestedFix:
    """Parse a model response into a SuggestedFix.

    Raises:
        FixGenerationError: If the response is not the expected JSON shape
    """
    try:
        data: Any = json.loads(_extract_json(text))
    except json.JSONDecodeError as e:
        raise FixGenerationError(f"No JSON found in AI response: {e}") from e

    if not isinstance(data, dict):
        raise FixGenerationError("AI response is not a JSON object")

    before = data.get("before") or ""
    after = data.get("after") or ""
    if not isinstance(before, str) or not isinstance(after, str):
        raise FixGenerationError("AI response before/after must be strings")
    if not after.strip():
        raise FixGenerationError("AI response has an empty 'after'")

    description = data.get("description")
    if not isinstance(description, str) or not description:
        description = fallback_description
    return SuggestedFix(before=before, after=after, description=description)


class AnthropicFixSuggester:
    """FixSuggester backed by ChatAnthropic."""

    def __init__(self, settings: Settings | None = None, llm: Any = None):
        self.settings = settings or get_settings()
        self.llm = llm or ChatAnthropic(
            model=self.settings.ai_model,
            temperature=self.settings.ai_temperature,
            max_tokens=self.settings.ai_max_tokens,
        )
        self._logger = logger.bind(component="AnthropicFixSuggester")

    async def suggest_fix(
        self,
        content: str,
        violation: PolicyViolations,
        result: PolicyResult,
    ) -> SuggestedFix:
        """Ask the model for a fix.

        Raises:
            FixGenerationError: If the response cannot be used
        """
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=build_prompt(content, violation, result)),
        ]

        await self._logger.ainfo(
            "Requesting AI fix",
            policy=violation.code,
            resource=result.resource_ref,
            model=self.settings.ai_model,
        )
        response = await self.llm.ainvoke(messages)

        text = response.content if isinstance(response.content, str) else str(response.content)
        return parse_suggestion(text, f"AI-generated fix for {violation.name}")
