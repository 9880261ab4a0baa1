"""Blueprint model, validation and structural analysis."""

from .analyzer import (
    DEFAULT_PLATFORM_KEYS,
    BlueprintAnalyzer,
    BlueprintStats,
    analyze_blueprint_structure,
    extract_platform_from_step,
)
from .models import (
    VALID_STEP_TYPES,
    AgentCallConfig,
    Blueprint,
    ConditionBlock,
    FallbackBlock,
    LoopBlock,
    RetryBlock,
    Step,
    StepType,
)
from .validation import load_blueprint, validate_blueprint

__all__ = [
    "AgentCallConfig",
    "Blueprint",
    "BlueprintAnalyzer",
    "BlueprintStats",
    "ConditionBlock",
    "DEFAULT_PLATFORM_KEYS",
    "FallbackBlock",
    "LoopBlock",
    "RetryBlock",
    "Step",
    "StepType",
    "VALID_STEP_TYPES",
    "analyze_blueprint_structure",
    "extract_platform_from_step",
    "load_blueprint",
    "validate_blueprint",
]
