"""Error taxonomy.

Only ParseError on the original content, SessionStateConflictError and the
not-found errors are meant to reach callers. The rest are raised internally
and converted into degraded results at the component boundary.
"""

from typing import Any


class IacGuardError(Exception):
    """Base class for all iacguard errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            **self.context,
        }


class ParseError(IacGuardError):
    """Input could not be read as configuration text at all."""


class PolicyExecutionError(IacGuardError):
    """A policy check raised while running."""

    def __init__(self, code: str, cause: BaseException):
        super().__init__(f"Policy {code} failed: {cause}", code=code)
        self.code = code
        self.cause = cause


class PricingError(IacGuardError):
    """The pricing collaborator could not price a resource."""


class FixGenerationError(IacGuardError):
    """Neither a static template nor the suggester produced a fix."""


class FixValidationError(IacGuardError):
    """A fix cannot be applied to the given content."""


class SessionStateConflictError(IacGuardError):
    """A session transition was attempted from the wrong state."""

    def __init__(
        self,
        session_id: str,
        expected: str,
        actual: str | None,
        reason: str | None = None,
    ):
        message = reason or f"Session {session_id} is {actual}, expected {expected}"
        super().__init__(
            message,
            session_id=session_id,
            expected=expected,
            actual=actual,
        )
        self.session_id = session_id
        self.expected = expected
        self.actual = actual


class SessionNotFoundError(IacGuardError):
    """No session with the given id."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", session_id=session_id)
        self.session_id = session_id


class TemplateNotFoundError(IacGuardError):
    """No content stored for the given template."""

    def __init__(self, template_id: str):
        super().__init__(f"Template not found: {template_id}", template_id=template_id)
        self.template_id = template_id


class VersionNotFoundError(IacGuardError):
    """The requested template version does not exist."""

    def __init__(self, template_id: str, version: int):
        super().__init__(
            f"Version {version} not found for template {template_id}",
            template_id=template_id,
            version=version,
        )
        self.template_id = template_id
        self.version = version
