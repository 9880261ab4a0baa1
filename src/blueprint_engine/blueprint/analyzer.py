"""Blueprint structural analysis.

Walks a blueprint's step tree and counts steps, platforms, agents,
conditions and loops. The counts feed planning and diagram sizing, so a
malformed or partial blueprint never raises here: fields with the wrong
shape simply do not contribute.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .models import Blueprint

logger = logging.getLogger(__name__)

# Keys probed, in order, on a step's action/trigger object for its platform
DEFAULT_PLATFORM_KEYS = ("integration", "platform", "service", "provider")


@dataclass(frozen=True)
class BlueprintStats:
    """Aggregate statistics for one blueprint."""

    total_steps: int
    platforms: frozenset[str]
    agents: frozenset[str]
    conditions: int
    loops: int
    expected_nodes: int

    def to_dict(self) -> dict:
        return {
            "totalSteps": self.total_steps,
            "platforms": sorted(self.platforms),
            "agents": sorted(self.agents),
            "conditions": self.conditions,
            "loops": self.loops,
            "expectedNodes": self.expected_nodes,
        }


class _Tally:
    def __init__(self):
        self.total_steps = 0
        self.platforms: set[str] = set()
        self.agents: set[str] = set()
        self.conditions = 0
        self.loops = 0


class BlueprintAnalyzer:
    """Computes BlueprintStats with a configurable platform alias list.

    Args:
        platform_keys: Ordered keys probed on ``action``/``trigger`` objects;
            the first key with a non-empty string value names the platform
    """

    def __init__(self, platform_keys: Iterable[str] = DEFAULT_PLATFORM_KEYS):
        self.platform_keys = tuple(platform_keys)

    def _probe(self, obj: Any) -> str:
        if not isinstance(obj, Mapping):
            return ""
        for key in self.platform_keys:
            value = obj.get(key)
            if isinstance(value, str) and value:
                return value
        return ""

    def extract_platform(self, step: Any) -> str:
        """Platform named by a step's action, else by its trigger, else ``""``."""
        if not isinstance(step, Mapping):
            return ""
        if isinstance(step.get("action"), Mapping):
            return self._probe(step["action"])
        return self._probe(step.get("trigger"))

    def analyze(self, blueprint: Blueprint | Mapping | None) -> BlueprintStats | None:
        """Analyze a blueprint.

        Returns:
            BlueprintStats, or None when the blueprint is missing or has no steps
        """
        if blueprint is None:
            return None
        if isinstance(blueprint, Blueprint):
            data = blueprint.source or blueprint.to_dict()
        elif isinstance(blueprint, Mapping):
            data = blueprint
        else:
            return None

        steps = data.get("steps")
        if not isinstance(steps, list) or not steps:
            return None

        tally = _Tally()
        self._process_steps(steps, tally)

        stats = BlueprintStats(
            total_steps=tally.total_steps,
            platforms=frozenset(tally.platforms),
            agents=frozenset(tally.agents),
            conditions=tally.conditions,
            loops=tally.loops,
            expected_nodes=tally.total_steps + len(tally.platforms) + len(tally.agents) + 1,
        )
        logger.debug(f"Blueprint analysis completed: {stats.to_dict()}")
        return stats

    def _process_steps(self, steps: Any, tally: _Tally) -> None:
        if not isinstance(steps, list):
            return
        for step in steps:
            if isinstance(step, Mapping):
                self._process_step(step, tally)

    def _process_step(self, step: Mapping, tally: _Tally) -> None:
        tally.total_steps += 1

        for key in ("action", "trigger"):
            platform = self._probe(step.get(key))
            if platform:
                tally.platforms.add(platform)

        agent_call = step.get("ai_agent_call")
        if isinstance(agent_call, Mapping):
            agent_id = agent_call.get("agent_id")
            if isinstance(agent_id, (str, int)) and not isinstance(agent_id, bool) and agent_id != "":
                tally.agents.add(str(agent_id))

        step_type = step.get("type")
        if step_type == "condition":
            tally.conditions += 1
            condition = step.get("condition")
            if isinstance(condition, Mapping):
                self._process_steps(condition.get("if_true"), tally)
                self._process_steps(condition.get("if_false"), tally)
            config = step.get("config")
            if isinstance(config, Mapping):
                for key in ("trueStep", "falseStep"):
                    if isinstance(config.get(key), Mapping):
                        self._process_step(config[key], tally)

        if step_type == "loop":
            tally.loops += 1
            loop = step.get("loop")
            if isinstance(loop, Mapping):
                self._process_steps(loop.get("steps"), tally)

        retry = step.get("retry")
        if isinstance(retry, Mapping):
            self._process_steps(retry.get("steps"), tally)
            self._process_steps(retry.get("on_retry_fail_steps"), tally)

        fallback = step.get("fallback")
        if isinstance(fallback, Mapping):
            self._process_steps(fallback.get("primary_steps"), tally)
            self._process_steps(fallback.get("fallback_steps"), tally)


_default_analyzer = BlueprintAnalyzer()


def analyze_blueprint_structure(
    blueprint: Blueprint | Mapping | None,
    platform_keys: Iterable[str] | None = None,
) -> BlueprintStats | None:
    """Analyze *blueprint* with the default (or the given) platform key list."""
    analyzer = BlueprintAnalyzer(platform_keys) if platform_keys is not None else _default_analyzer
    return analyzer.analyze(blueprint)


def extract_platform_from_step(step: Any) -> str:
    """Platform name of a single raw step mapping."""
    return _default_analyzer.extract_platform(step)
