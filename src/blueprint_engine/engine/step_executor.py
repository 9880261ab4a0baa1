"""Step execution.

StepExecutor runs exactly one Step against an ExecutionContext and returns its
output, raising a StepError subclass on failure. Composite steps (condition,
retry, fallback, loop) recurse back into ``execute`` for their nested steps.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from blueprint_engine.agents import AgentClient
from blueprint_engine.blueprint.models import FallbackBlock, RetryBlock, Step, StepType
from blueprint_engine.config import Settings, get_settings
from blueprint_engine.errors import (
    AgentInvocationFailed,
    ApiCallFailed,
    MaxRetriesExceeded,
    StepConfigError,
    StepError,
    StepNetworkError,
    UnknownStepType,
)
from blueprint_engine.expressions import ExpressionEvaluator
from blueprint_engine.http import HTTPClientConfig, create_async_client
from blueprint_engine.utils import redact_headers

from .context import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_AGENT_PROMPT = "Process the automation step"

# Handlers take (step, context) and return the step output
StepHandler = Callable[[Step, ExecutionContext], Awaitable[Any]]


class StepExecutor:
    """Executes blueprint steps, dispatching on ``step.type``.

    Args:
        http_client: httpx client for api_call and webhook steps. Created
            lazily from settings (and closed by ``aclose``) when omitted.
        agent_client: Collaborator for ai_agent_call steps
        evaluator: Expression evaluator for condition steps
        settings: Settings for defaults and timeouts
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        agent_client: AgentClient | None = None,
        evaluator: ExpressionEvaluator | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.agent_client = agent_client
        self.evaluator = evaluator or ExpressionEvaluator()
        self._http_client = http_client
        self._owns_http_client = False
        self._handlers: dict[str, StepHandler] = {
            StepType.API_CALL.value: self._execute_api_call,
            StepType.AI_AGENT_CALL.value: self._execute_ai_agent_call,
            StepType.WEBHOOK.value: self._execute_webhook,
            StepType.DELAY.value: self._execute_delay,
            StepType.CONDITION.value: self._execute_condition,
            StepType.RETRY.value: self._execute_retry,
            StepType.FALLBACK.value: self._execute_fallback,
            StepType.LOOP.value: self._execute_loop,
        }

    def register_handler(self, step_type: str, handler: StepHandler) -> None:
        """Register a custom step handler.

        Args:
            step_type: Step type name
            handler: Coroutine function taking (Step, ExecutionContext) and
                returning the step output
        """
        self._handlers[step_type] = handler

    async def aclose(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False

    async def execute(self, step: Step, context: ExecutionContext) -> Any:
        """Execute one step and return its output.

        The output is stored under ``step.output_variable`` when one is set.

        Raises:
            StepError: If the step fails
        """
        handler = self._handlers.get(step.type)
        if handler is None:
            raise UnknownStepType(step.type)

        log_extra = {
            "execution_id": context.execution_id,
            "step_id": step.id,
            "step_type": step.type,
        }
        logger.debug(f"Executing step {step.id} ({step.type})", extra=log_extra)
        start = time.monotonic()

        output = await handler(step, context)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.debug(
            f"Step {step.id} completed in {duration_ms}ms",
            extra={**log_extra, "duration_ms": duration_ms},
        )

        if step.output_variable:
            context.set(step.output_variable, output)
        return output

    async def execute_steps(self, steps: list[Step], context: ExecutionContext) -> list[dict]:
        """Run a nested step list in order.

        A failing step aborts the list unless it sets ``stopOnError: false``,
        in which case its error is recorded and the list continues.
        """
        results: list[dict] = []
        for step in steps:
            try:
                output = await self.execute(step, context)
            except Exception as e:
                if step.stop_on_error:
                    raise
                logger.warning(f"Nested step {step.id} failed, continuing: {e}")
                results.append({"stepId": step.id, "success": False, "error": str(e)})
                continue
            results.append({"stepId": step.id, "success": True, "output": output})
        return results

    # HTTP

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = create_async_client(HTTPClientConfig.from_settings(self.settings))
            self._owns_http_client = True
        return self._http_client

    def _timeout(self, config: dict) -> httpx.Timeout:
        seconds = config.get("timeout_seconds", self.settings.http_timeout_seconds)
        try:
            seconds = float(seconds)
        except (TypeError, ValueError) as e:
            raise StepConfigError(f"Invalid timeout_seconds: {seconds!r}") from e
        return httpx.Timeout(
            seconds, connect=min(seconds, self.settings.http_connect_timeout_seconds)
        )

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict,
        body: Any,
        timeout: httpx.Timeout,
    ) -> httpx.Response:
        client = await self._get_http_client()
        logger.debug(f"{method} {url} headers={redact_headers(headers)}")
        try:
            if body is None:
                return await client.request(method, url, headers=headers, timeout=timeout)
            return await client.request(method, url, headers=headers, json=body, timeout=timeout)
        except httpx.TimeoutException as e:
            raise StepNetworkError(f"Request to {url} timed out", url) from e
        except httpx.HTTPError as e:
            raise StepNetworkError(f"Request to {url} failed: {e}", url) from e

    @staticmethod
    def _require_url(step: Step, config: dict) -> str:
        url = config.get("url")
        if not url or not isinstance(url, str):
            raise StepConfigError(f"{step.type} step {step.id} requires config.url")
        return url

    # Handlers

    async def _execute_api_call(self, step: Step, context: ExecutionContext) -> Any:
        config = context.resolve(step.config)
        url = self._require_url(step, config)
        method = str(config.get("method") or "GET").upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}

        response = await self._send(method, url, headers, config.get("body"), self._timeout(config))

        logger.debug(
            f"api_call {step.id} returned {response.status_code}",
            extra={"step_id": step.id, "status_code": response.status_code},
        )
        if not response.is_success:
            raise ApiCallFailed(response.status_code, response.reason_phrase)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiCallFailed(response.status_code, "Invalid JSON response") from e

    async def _execute_ai_agent_call(self, step: Step, context: ExecutionContext) -> Any:
        call = step.ai_agent_call
        config = context.resolve(step.config)
        agent_id = config.get("agent_id") or (call.agent_id if call else None)

        if self.agent_client is None:
            raise AgentInvocationFailed("No agent client configured", agent_id)

        prompt = config.get("prompt")
        if not prompt and call and call.input_prompt:
            prompt = context.resolve(call.input_prompt)
        prompt = str(prompt or DEFAULT_AGENT_PROMPT)

        try:
            return await self.agent_client.invoke(prompt, dict(context.variables), agent_id)
        except StepError:
            raise
        except Exception as e:
            raise AgentInvocationFailed(str(e), agent_id) from e

    async def _execute_webhook(self, step: Step, context: ExecutionContext) -> dict:
        config = context.resolve(step.config)
        url = self._require_url(step, config)
        method = str(config.get("method") or "POST").upper()
        headers = {"Content-Type": "application/json", **(config.get("headers") or {})}
        payload = config["payload"] if "payload" in config else dict(context.variables)

        response = await self._send(method, url, headers, payload, self._timeout(config))

        success = response.is_success
        body: Any = response.text
        if success and response.content:
            try:
                body = response.json()
            except ValueError:
                body = response.text
        if not success:
            logger.info(f"Webhook {step.id} answered {response.status_code}")
        return {"status": response.status_code, "success": success, "response": body}

    async def _execute_delay(self, step: Step, context: ExecutionContext) -> dict:
        config = context.resolve(step.config)
        if "duration" in config:
            duration = config["duration"]
        elif step.delay and "duration_seconds" in step.delay:
            try:
                duration = float(context.resolve(step.delay["duration_seconds"])) * 1000
            except (TypeError, ValueError) as e:
                raise StepConfigError(
                    f"Invalid delay.duration_seconds: {step.delay['duration_seconds']!r}"
                ) from e
        else:
            duration = self.settings.default_delay_ms

        try:
            duration_ms = float(duration)
        except (TypeError, ValueError) as e:
            raise StepConfigError(f"Invalid delay duration: {duration!r}") from e
        if duration_ms < 0:
            raise StepConfigError(f"Delay duration must not be negative: {duration_ms}")

        await asyncio.sleep(duration_ms / 1000)
        return {"delayed": int(duration_ms) if duration_ms.is_integer() else duration_ms}

    async def _execute_condition(self, step: Step, context: ExecutionContext) -> dict:
        expression = step.config.get("condition")
        if expression is None and step.condition:
            expression = step.condition.expression
        if expression is None:
            raise StepConfigError(f"Condition step {step.id} has no expression")

        result = self.evaluator.evaluate(expression, context.variables)
        logger.debug(f"Condition {step.id} evaluated to {result}")
        output: dict[str, Any] = {"conditionResult": result}

        if step.true_step or step.false_step:
            nested = step.true_step if result else step.false_step
            if nested is None:
                return output
            nested_output = await self.execute(nested, context)
            if isinstance(nested_output, dict):
                return {"conditionResult": result, **nested_output}
            output["result"] = nested_output
            return output

        if step.condition:
            branch = step.condition.if_true if result else step.condition.if_false
            if branch:
                output["branch"] = await self.execute_steps(branch, context)
        return output

    async def _execute_retry(self, step: Step, context: ExecutionContext) -> dict:
        block = step.retry or RetryBlock()
        max_attempts = (
            block.max_attempts
            or step.config.get("max_attempts")
            or self.settings.default_retry_attempts
        )
        backoff = block.backoff_seconds or step.config.get("backoff_seconds") or 0
        try:
            max_attempts = int(max_attempts)
            backoff = float(backoff)
        except (TypeError, ValueError) as e:
            raise StepConfigError(f"Invalid retry settings on step {step.id}") from e
        if max_attempts < 1:
            raise StepConfigError(f"Retry step {step.id} needs max_attempts >= 1")

        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                results = await self.execute_steps(block.steps, context)
                return {"attempts": attempt, "results": results}
            except Exception as e:
                last_error = e
                logger.warning(f"Retry {step.id} attempt {attempt}/{max_attempts} failed: {e}")
                if attempt < max_attempts and backoff > 0:
                    await asyncio.sleep(backoff)

        if block.on_retry_fail_steps:
            logger.info(f"Retry {step.id} exhausted, running recovery steps")
            results = await self.execute_steps(block.on_retry_fail_steps, context)
            return {"attempts": max_attempts, "recovered": True, "results": results}

        raise MaxRetriesExceeded(
            f"Step {step.id} failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
            cause=last_error,
        )

    async def _execute_fallback(self, step: Step, context: ExecutionContext) -> dict:
        block = step.fallback or FallbackBlock()
        try:
            results = await self.execute_steps(block.primary_steps, context)
            return {"usedFallback": False, "results": results}
        except Exception as e:
            if not block.fallback_steps:
                raise
            logger.warning(f"Primary steps of {step.id} failed, using fallback: {e}")
            results = await self.execute_steps(block.fallback_steps, context)
            return {"usedFallback": True, "results": results, "primaryError": str(e)}

    async def _execute_loop(self, step: Step, context: ExecutionContext) -> dict:
        source = step.loop.array_source if step.loop else step.config.get("array_source")
        steps = step.loop.steps if step.loop else []

        items = self._resolve_array(source, context)
        if not isinstance(items, list):
            raise StepConfigError(
                f"Loop step {step.id} array_source {source!r} did not resolve to a list"
            )

        saved = {
            name: context.variables[name]
            for name in ("loop_item", "loop_index")
            if name in context.variables
        }
        results = []
        try:
            for index, item in enumerate(items):
                context.set("loop_item", item)
                context.set("loop_index", index)
                results.append(await self.execute_steps(steps, context))
        finally:
            context.variables.pop("loop_item", None)
            context.variables.pop("loop_index", None)
            context.variables.update(saved)

        return {"iterations": len(items), "results": results}

    @staticmethod
    def _resolve_array(source: Any, context: ExecutionContext) -> Any:
        if isinstance(source, str):
            if "{{" in source:
                return context.resolve(source)
            found, value = context.lookup(source.strip())
            return value if found else None
        return context.resolve(source)
