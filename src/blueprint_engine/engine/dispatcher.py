"""Trigger dispatch: every fired trigger becomes an independent run task."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

from blueprint_engine.blueprint.models import Blueprint
from blueprint_engine.blueprint.validation import load_blueprint
from blueprint_engine.errors import AutomationNotFound
from blueprint_engine.repository import InMemoryRepository, Repository

from .runner import AutomationExecutionResult, AutomationRunner

logger = logging.getLogger(__name__)


class AutomationDispatcher:
    """Maps automation ids to blueprints and fires concurrent runs."""

    def __init__(
        self,
        runner: AutomationRunner,
        automations: Repository[Blueprint] | None = None,
    ):
        self.runner = runner
        self.automations = automations if automations is not None else InMemoryRepository()
        self._tasks: set[asyncio.Task] = set()

    def register(self, automation_id: str, blueprint: Blueprint | Mapping) -> Blueprint:
        """Validate and register a blueprint under *automation_id*.

        Raises:
            BlueprintValidationError: If the blueprint is invalid
        """
        if not isinstance(blueprint, Blueprint):
            blueprint = load_blueprint(blueprint)
        self.automations.put(automation_id, blueprint)
        logger.info(f"Registered automation {automation_id} ({len(blueprint.steps)} steps)")
        return blueprint

    def unregister(self, automation_id: str) -> bool:
        removed = self.automations.remove(automation_id)
        if removed:
            logger.info(f"Unregistered automation {automation_id}")
        return removed

    def fire(self, automation_id: str, trigger_data: Any = None) -> asyncio.Task:
        """Start a run of *automation_id* as its own task.

        Must be called from a running event loop.

        Raises:
            AutomationNotFound: If no automation is registered under the id
        """
        blueprint = self.automations.get(automation_id)
        if blueprint is None:
            raise AutomationNotFound(automation_id)

        task = asyncio.create_task(
            self.runner.run(automation_id, blueprint, trigger_data),
            name=f"automation-{automation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Fired automation {automation_id}")
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_all(self) -> list[AutomationExecutionResult]:
        """Wait for every outstanding run and return their results."""
        tasks = list(self._tasks)
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))
