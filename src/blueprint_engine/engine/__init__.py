"""Blueprint execution: context, step executor, run controller, dispatch."""

from .context import ExecutionContext
from .dispatcher import AutomationDispatcher
from .runner import (
    AutomationExecutionResult,
    AutomationRunner,
    StepResult,
    run_automation,
)
from .step_executor import DEFAULT_AGENT_PROMPT, StepExecutor, StepHandler

__all__ = [
    "AutomationDispatcher",
    "AutomationExecutionResult",
    "AutomationRunner",
    "DEFAULT_AGENT_PROMPT",
    "ExecutionContext",
    "StepExecutor",
    "StepHandler",
    "StepResult",
    "run_automation",
]
