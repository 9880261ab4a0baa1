"""Structural validation for stored blueprints."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from blueprint_engine.errors import BlueprintValidationError, UnsafeExpressionError
from blueprint_engine.expressions import ExpressionEvaluator

from .models import VALID_STEP_TYPES, Blueprint

_URL_STEP_TYPES = frozenset({"api_call", "webhook"})

# (block key, nested list keys) pairs that hold child steps
_NESTED_LISTS = (
    ("condition", ("if_true", "if_false")),
    ("loop", ("steps",)),
    ("retry", ("steps", "on_retry_fail_steps")),
    ("fallback", ("primary_steps", "fallback_steps")),
)

_evaluator = ExpressionEvaluator()


def _validate_expression(expression: Any, prefix: str) -> list[str]:
    if expression is None:
        return []
    try:
        _evaluator.check(expression)
    except UnsafeExpressionError as e:
        return [f"{prefix}: {e.message}"]
    return []


def _validate_step_config(step: Mapping, prefix: str) -> list[str]:
    """Validate type-specific config."""
    errors = []
    step_type = step.get("type")
    config = step.get("config", {})

    if "config" in step and not isinstance(config, Mapping):
        return [f"{prefix}: config must be an object"]

    if step_type in _URL_STEP_TYPES and not config.get("url"):
        errors.append(f"{prefix}: {step_type} step requires 'url' in config")

    if step_type == "delay" and "duration" in config:
        duration = config["duration"]
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            errors.append(f"{prefix}: delay duration must be a non-negative number")

    if step_type == "condition":
        block = step.get("condition")
        expression = config.get("condition")
        if expression is None and isinstance(block, Mapping):
            expression = block.get("expression")
        if expression is None:
            errors.append(f"{prefix}: condition step requires an expression")
        errors.extend(_validate_expression(expression, prefix))

    if step_type == "loop" and not isinstance(step.get("loop"), Mapping):
        errors.append(f"{prefix}: loop step requires a 'loop' object")

    if step_type == "retry":
        retry = step.get("retry")
        if not isinstance(retry, Mapping):
            errors.append(f"{prefix}: retry step requires a 'retry' object")
        elif "max_attempts" in retry:
            attempts = retry["max_attempts"]
            if isinstance(attempts, bool) or not isinstance(attempts, int) or attempts < 1:
                errors.append(f"{prefix}: max_attempts must be a positive integer")

    if step_type == "fallback" and not isinstance(step.get("fallback"), Mapping):
        errors.append(f"{prefix}: fallback step requires a 'fallback' object")

    return errors


def _validate_nested(step: Mapping, prefix: str) -> list[str]:
    """Recurse into every nested step list of a step."""
    errors = []
    for block_key, list_keys in _NESTED_LISTS:
        block = step.get(block_key)
        if not isinstance(block, Mapping):
            continue
        for list_key in list_keys:
            if list_key in block and block[list_key] is not None:
                errors.extend(_validate_steps(block[list_key], f"{prefix}.{block_key}.{list_key}"))

    config = step.get("config")
    if isinstance(config, Mapping):
        for key in ("trueStep", "falseStep"):
            if key in config:
                errors.extend(_validate_step(config[key], f"{prefix}.config.{key}"))
    return errors


def _validate_step(step: Any, prefix: str) -> list[str]:
    """Validate a single step and everything nested under it."""
    if not isinstance(step, Mapping):
        return [f"{prefix}: must be an object"]

    errors = []

    if "id" in step and (not isinstance(step["id"], str) or not step["id"].strip()):
        errors.append(f"{prefix}: 'id' must be a non-empty string")
    elif "id" in step:
        prefix = f"Step '{step['id']}'"

    if "type" not in step:
        errors.append(f"{prefix}: missing required field 'type'")
        return errors
    if step["type"] not in VALID_STEP_TYPES:
        errors.append(f"{prefix}: invalid type '{step['type']}'")

    for key in ("stopOnError", "stop_on_error"):
        if key in step and not isinstance(step[key], bool):
            errors.append(f"{prefix}: {key} must be a boolean")

    errors.extend(_validate_step_config(step, prefix))
    errors.extend(_validate_nested(step, prefix))
    return errors


def _validate_steps(steps: Any, path: str) -> list[str]:
    """Validate a step list, including duplicate ids within it."""
    if not isinstance(steps, list):
        return [f"{path} must be a list"]

    errors = []
    step_ids: set[str] = set()
    for i, step in enumerate(steps):
        errors.extend(_validate_step(step, f"{path}[{i}]"))
        step_id = step.get("id") if isinstance(step, Mapping) else None
        if not isinstance(step_id, str) or not step_id:
            continue
        if step_id in step_ids:
            errors.append(f"Duplicate step ID: {step_id}")
        else:
            step_ids.add(step_id)
    return errors


def validate_blueprint(data: Any) -> list[str]:
    """Validate blueprint data.

    Args:
        data: Blueprint mapping (or a parsed Blueprint)

    Returns:
        List of validation errors (empty if valid)
    """
    if isinstance(data, Blueprint):
        data = data.source or data.to_dict()
    if not isinstance(data, Mapping):
        return ["Blueprint must be an object"]
    if "steps" not in data:
        return ["Missing required field: steps"]

    errors = _validate_steps(data["steps"], "steps")

    if "variables" in data and not isinstance(data["variables"], Mapping):
        errors.append("Field 'variables' must be an object")

    return errors


def load_blueprint(data: Any) -> Blueprint:
    """Validate and parse a blueprint mapping.

    Raises:
        BlueprintValidationError: If validation reports any error
    """
    errors = validate_blueprint(data)
    if errors:
        raise BlueprintValidationError(
            f"Blueprint validation failed: {'; '.join(errors)}", errors=errors
        )
    return Blueprint.from_dict(data)
