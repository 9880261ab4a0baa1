"""Blueprint and Step models.

A Blueprint is an ordered list of Steps. Steps of type condition, loop,
retry and fallback own further step lists, so a Blueprint is a tree.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from blueprint_engine.errors import BlueprintValidationError


class StepType(str, Enum):
    """Step types understood by the built-in executor."""

    API_CALL = "api_call"
    AI_AGENT_CALL = "ai_agent_call"
    WEBHOOK = "webhook"
    DELAY = "delay"
    CONDITION = "condition"
    RETRY = "retry"
    FALLBACK = "fallback"
    LOOP = "loop"


VALID_STEP_TYPES = frozenset(t.value for t in StepType)


def _mapping(value: Any) -> dict:
    return dict(value) if isinstance(value, Mapping) else {}


def parse_steps(items: Any, path: str) -> list[Step]:
    """Parse a (possibly absent) list of step mappings."""
    if items is None:
        return []
    if not isinstance(items, list):
        raise BlueprintValidationError(f"{path} must be a list of steps")
    return [Step.from_dict(item, f"{path}[{i}]") for i, item in enumerate(items)]


@dataclass
class AgentCallConfig:
    """``ai_agent_call`` block of a step."""

    agent_id: str | None = None
    input_prompt: str | None = None
    output_variable: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> AgentCallConfig:
        return cls(
            agent_id=data.get("agent_id"),
            input_prompt=data.get("input_prompt"),
            output_variable=data.get("output_variable"),
        )


@dataclass
class ConditionBlock:
    """``condition`` block: an expression and the two branch lists."""

    expression: str | None = None
    if_true: list[Step] = field(default_factory=list)
    if_false: list[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping, path: str) -> ConditionBlock:
        return cls(
            expression=data.get("expression"),
            if_true=parse_steps(data.get("if_true"), f"{path}.if_true"),
            if_false=parse_steps(data.get("if_false"), f"{path}.if_false"),
        )


@dataclass
class LoopBlock:
    """``loop`` block: a source list and the steps run per item."""

    array_source: Any = None
    steps: list[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping, path: str) -> LoopBlock:
        return cls(
            array_source=data.get("array_source"),
            steps=parse_steps(data.get("steps"), f"{path}.steps"),
        )


@dataclass
class RetryBlock:
    """``retry`` block: steps re-run as a unit until they succeed."""

    max_attempts: int | None = None
    backoff_seconds: float = 0.0
    steps: list[Step] = field(default_factory=list)
    on_retry_fail_steps: list[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping, path: str) -> RetryBlock:
        return cls(
            max_attempts=data.get("max_attempts"),
            backoff_seconds=data.get("backoff_seconds", 0.0),
            steps=parse_steps(data.get("steps"), f"{path}.steps"),
            on_retry_fail_steps=parse_steps(
                data.get("on_retry_fail_steps"), f"{path}.on_retry_fail_steps"
            ),
        )


@dataclass
class FallbackBlock:
    """``fallback`` block: primary steps and the steps used if they fail."""

    primary_steps: list[Step] = field(default_factory=list)
    fallback_steps: list[Step] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping, path: str) -> FallbackBlock:
        return cls(
            primary_steps=parse_steps(data.get("primary_steps"), f"{path}.primary_steps"),
            fallback_steps=parse_steps(data.get("fallback_steps"), f"{path}.fallback_steps"),
        )


@dataclass
class Step:
    """One node of a Blueprint."""

    id: str
    type: str
    name: str = ""
    config: dict = field(default_factory=dict)
    stop_on_error: bool = True
    output_variable: str | None = None
    action: dict | None = None
    trigger: dict | None = None
    delay: dict | None = None
    ai_agent_call: AgentCallConfig | None = None
    condition: ConditionBlock | None = None
    loop: LoopBlock | None = None
    retry: RetryBlock | None = None
    fallback: FallbackBlock | None = None
    true_step: Step | None = None
    false_step: Step | None = None

    @classmethod
    def from_dict(cls, data: Any, path: str = "step") -> Step:
        """Create a Step (and its nested steps) from a mapping.

        Raises:
            BlueprintValidationError: If the mapping or any nested step lacks
                a string ``type``
        """
        if not isinstance(data, Mapping):
            raise BlueprintValidationError(f"{path} must be an object")

        step_type = data.get("type")
        if not isinstance(step_type, str) or not step_type:
            raise BlueprintValidationError(f"{path}: missing required field 'type'")

        config = _mapping(data.get("config"))

        stop_on_error = data.get("stopOnError", data.get("stop_on_error"))
        if stop_on_error is None:
            stop_on_error = data.get("on_error") != "continue"

        agent_call = None
        if isinstance(data.get("ai_agent_call"), Mapping):
            agent_call = AgentCallConfig.from_dict(data["ai_agent_call"])

        condition = None
        if isinstance(data.get("condition"), Mapping):
            condition = ConditionBlock.from_dict(data["condition"], f"{path}.condition")

        loop = None
        if isinstance(data.get("loop"), Mapping):
            loop = LoopBlock.from_dict(data["loop"], f"{path}.loop")

        retry = None
        if isinstance(data.get("retry"), Mapping):
            retry = RetryBlock.from_dict(data["retry"], f"{path}.retry")

        fallback = None
        if isinstance(data.get("fallback"), Mapping):
            fallback = FallbackBlock.from_dict(data["fallback"], f"{path}.fallback")

        true_step = None
        if isinstance(config.get("trueStep"), Mapping):
            true_step = cls.from_dict(config["trueStep"], f"{path}.config.trueStep")

        false_step = None
        if isinstance(config.get("falseStep"), Mapping):
            false_step = cls.from_dict(config["falseStep"], f"{path}.config.falseStep")

        output_variable = data.get("output_variable") or config.get("output_variable")
        if not output_variable and agent_call:
            output_variable = agent_call.output_variable

        return cls(
            id=str(data.get("id") or path),
            type=step_type,
            name=str(data.get("name", "")),
            config=config,
            stop_on_error=bool(stop_on_error),
            output_variable=output_variable,
            action=_mapping(data["action"]) if isinstance(data.get("action"), Mapping) else None,
            trigger=_mapping(data["trigger"]) if isinstance(data.get("trigger"), Mapping) else None,
            delay=_mapping(data["delay"]) if isinstance(data.get("delay"), Mapping) else None,
            ai_agent_call=agent_call,
            condition=condition,
            loop=loop,
            retry=retry,
            fallback=fallback,
            true_step=true_step,
            false_step=false_step,
        )

    def to_dict(self) -> dict:
        """Render the step back to its stored mapping form."""
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        if self.name:
            data["name"] = self.name
        if self.config:
            data["config"] = dict(self.config)
        if not self.stop_on_error:
            data["stopOnError"] = False
        if self.output_variable:
            data["output_variable"] = self.output_variable
        for key in ("action", "trigger", "delay"):
            value = getattr(self, key)
            if value is not None:
                data[key] = dict(value)
        if self.ai_agent_call:
            data["ai_agent_call"] = {
                "agent_id": self.ai_agent_call.agent_id,
                "input_prompt": self.ai_agent_call.input_prompt,
                "output_variable": self.ai_agent_call.output_variable,
            }
        if self.condition:
            data["condition"] = {
                "expression": self.condition.expression,
                "if_true": [s.to_dict() for s in self.condition.if_true],
                "if_false": [s.to_dict() for s in self.condition.if_false],
            }
        if self.loop:
            data["loop"] = {
                "array_source": self.loop.array_source,
                "steps": [s.to_dict() for s in self.loop.steps],
            }
        if self.retry:
            data["retry"] = {
                "max_attempts": self.retry.max_attempts,
                "backoff_seconds": self.retry.backoff_seconds,
                "steps": [s.to_dict() for s in self.retry.steps],
                "on_retry_fail_steps": [s.to_dict() for s in self.retry.on_retry_fail_steps],
            }
        if self.fallback:
            data["fallback"] = {
                "primary_steps": [s.to_dict() for s in self.fallback.primary_steps],
                "fallback_steps": [s.to_dict() for s in self.fallback.fallback_steps],
            }
        return data

    def children(self) -> list[Step]:
        """All directly nested steps, in declaration order."""
        nested: list[Step] = []
        if self.condition:
            nested.extend(self.condition.if_true)
            nested.extend(self.condition.if_false)
        if self.true_step:
            nested.append(self.true_step)
        if self.false_step:
            nested.append(self.false_step)
        if self.loop:
            nested.extend(self.loop.steps)
        if self.retry:
            nested.extend(self.retry.steps)
            nested.extend(self.retry.on_retry_fail_steps)
        if self.fallback:
            nested.extend(self.fallback.primary_steps)
            nested.extend(self.fallback.fallback_steps)
        return nested


@dataclass
class Blueprint:
    """An automation's tree of steps plus its initial variables."""

    steps: list[Step] = field(default_factory=list)
    version: str = "1.0"
    description: str = ""
    trigger: dict = field(default_factory=dict)
    variables: dict = field(default_factory=dict)
    source: dict = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Any) -> Blueprint:
        """Create a Blueprint from its stored mapping form."""
        if isinstance(data, Blueprint):
            return data
        if not isinstance(data, Mapping):
            raise BlueprintValidationError("Blueprint must be an object")

        return cls(
            steps=parse_steps(data.get("steps"), "steps"),
            version=str(data.get("version", "1.0")),
            description=data.get("description") or "",
            trigger=_mapping(data.get("trigger")),
            variables=_mapping(data.get("variables")),
            source=dict(data),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "description": self.description,
            "trigger": dict(self.trigger),
            "variables": dict(self.variables),
            "steps": [step.to_dict() for step in self.steps],
        }

    def iter_steps(self) -> Iterator[Step]:
        """Yield every step in the tree, depth-first."""
        stack = list(reversed(self.steps))
        while stack:
            step = stack.pop()
            yield step
            stack.extend(reversed(step.children()))

    def get_step(self, step_id: str) -> Step | None:
        """Find a step anywhere in the tree by id."""
        for step in self.iter_steps():
            if step.id == step_id:
                return step
        return None
