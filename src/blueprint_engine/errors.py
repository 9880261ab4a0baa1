"""Blueprint Engine Error Hierarchy.

Structured exception types for blueprint execution.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base error for all blueprint engine exceptions."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Step Errors
class StepError(EngineError):
    """Base error for a single step failing to execute."""

    code = "STEP_ERROR"


class ApiCallFailed(StepError):
    """An api_call step received a non-2xx response."""

    code = "API_CALL_FAILED"

    def __init__(self, status: int, status_text: str = ""):
        super().__init__(
            f"API call failed: {status} {status_text}".rstrip(),
            {"status": status, "status_text": status_text},
        )
        self.status = status
        self.status_text = status_text


class AgentInvocationFailed(StepError):
    """The AI agent collaborator returned an error."""

    code = "AGENT_INVOCATION_FAILED"

    def __init__(self, message: str, agent_id: str = None):
        super().__init__(f"AI agent failed: {message}", {"agent_id": agent_id})
        self.agent_id = agent_id


class UnknownStepType(StepError):
    """No handler is registered for the step type."""

    code = "UNKNOWN_STEP_TYPE"

    def __init__(self, step_type: str):
        super().__init__(f"Unknown step type: {step_type}", {"type": step_type})
        self.step_type = step_type


class StepConfigError(StepError):
    """Step configuration is missing or has the wrong shape."""

    code = "STEP_CONFIG"


class StepNetworkError(StepError):
    """Transport-level failure (connect error, timeout) during a step."""

    code = "STEP_NETWORK"

    def __init__(self, message: str, url: str = None):
        super().__init__(message, {"url": url})
        self.url = url


class MaxRetriesExceeded(StepError):
    """A retry step exhausted its attempts."""

    code = "MAX_RETRIES"

    def __init__(self, message: str, attempts: int = 0, cause: Exception = None):
        details = {"attempts": attempts}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.attempts = attempts
        self.cause = cause


# Expression Errors
class ExpressionError(EngineError):
    """Base error for condition expressions."""

    code = "EXPRESSION_ERROR"


class ExpressionParseError(ExpressionError):
    """Expression could not be tokenized or parsed."""

    code = "EXPRESSION_PARSE"


class UnsafeExpressionError(ExpressionError):
    """Expression contains a forbidden keyword or character."""

    code = "EXPRESSION_UNSAFE"


# Run Errors
class RunSetupFailed(EngineError):
    """Run could not be set up or persisted."""

    code = "RUN_SETUP_FAILED"

    def __init__(self, message: str, cause: Exception = None):
        details = {}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.cause = cause


class BlueprintValidationError(EngineError):
    """Blueprint is structurally invalid."""

    code = "BLUEPRINT_INVALID"

    def __init__(self, message: str, errors: list[str] = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class AutomationNotFound(EngineError):
    """No automation is registered under the requested id."""

    code = "AUTOMATION_NOT_FOUND"

    def __init__(self, automation_id: str):
        super().__init__(f"Automation not found: {automation_id}", {"id": automation_id})
        self.automation_id = automation_id
