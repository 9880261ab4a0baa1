"""Blueprint Engine - executes trigger-driven automation blueprints."""

__version__ = "0.1.0"

from .blueprint import (
    Blueprint,
    BlueprintAnalyzer,
    BlueprintStats,
    Step,
    StepType,
    analyze_blueprint_structure,
    extract_platform_from_step,
    load_blueprint,
    validate_blueprint,
)
from .config import Settings, configure_logging, get_settings
from .engine import (
    AutomationDispatcher,
    AutomationExecutionResult,
    AutomationRunner,
    ExecutionContext,
    StepExecutor,
    StepResult,
    run_automation,
)
from .errors import EngineError
from .expressions import ExpressionEvaluator, evaluate_expression
from .repository import InMemoryRepository, Repository
from .runs import InMemoryRunStore, RunRecord, RunStatus, RunStore, SQLiteRunStore

__all__ = [
    "AutomationDispatcher",
    "AutomationExecutionResult",
    "AutomationRunner",
    "Blueprint",
    "BlueprintAnalyzer",
    "BlueprintStats",
    "EngineError",
    "ExecutionContext",
    "ExpressionEvaluator",
    "InMemoryRepository",
    "InMemoryRunStore",
    "Repository",
    "RunRecord",
    "RunStatus",
    "RunStore",
    "SQLiteRunStore",
    "Settings",
    "Step",
    "StepExecutor",
    "StepResult",
    "StepType",
    "analyze_blueprint_structure",
    "configure_logging",
    "evaluate_expression",
    "extract_platform_from_step",
    "get_settings",
    "load_blueprint",
    "run_automation",
    "validate_blueprint",
]
