"""Tests for StepExecutor step handlers."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from blueprint_engine.agents import AgentClient
from blueprint_engine.blueprint import Step
from blueprint_engine.engine import ExecutionContext, StepExecutor
from blueprint_engine.errors import (
    AgentInvocationFailed,
    ApiCallFailed,
    MaxRetriesExceeded,
    StepConfigError,
    StepError,
    StepNetworkError,
    UnknownStepType,
)


def make_step(**data) -> Step:
    data.setdefault("id", "step-1")
    return Step.from_dict(data)


def mock_agent(reply=None, side_effect=None) -> MagicMock:
    agent = MagicMock(spec=AgentClient)
    agent.invoke = AsyncMock(return_value=reply, side_effect=side_effect)
    return agent


class TestApiCall:
    """Tests for api_call steps."""

    @pytest.mark.asyncio
    async def test_get_returns_json(self, make_executor, context):
        """Test default GET with JSON content type and substituted url."""
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["content_type"] = request.headers["content-type"]
            return httpx.Response(200, json={"ok": True})

        executor = make_executor(handler)
        step = make_step(type="api_call", config={"url": "https://api.test/users/{{user.id}}"})

        output = await executor.execute(step, context)

        assert output == {"ok": True}
        assert seen == {
            "method": "GET",
            "url": "https://api.test/users/7",
            "content_type": "application/json",
        }

    @pytest.mark.asyncio
    async def test_post_body_and_headers(self, make_executor, context):
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(201, json={"id": 1})

        executor = make_executor(handler)
        step = make_step(
            type="api_call",
            config={
                "url": "https://api.test/items",
                "method": "post",
                "headers": {"Authorization": "Bearer abc"},
                "body": {"owner": "{{name}}", "user": "{{user}}"},
            },
        )

        assert await executor.execute(step, context) == {"id": 1}
        assert seen["body"] == {"owner": "Ada", "user": {"id": 7}}
        assert seen["auth"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(404))
        step = make_step(type="api_call", config={"url": "https://api.test"})

        with pytest.raises(ApiCallFailed) as exc_info:
            await executor.execute(step, context)

        assert exc_info.value.status == 404
        assert str(exc_info.value) == "API call failed: 404 Not Found"

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_dict(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(204))
        step = make_step(type="api_call", config={"url": "https://api.test"})

        assert await executor.execute(step, context) == {}

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(200, text="<html>"))
        step = make_step(type="api_call", config={"url": "https://api.test"})

        with pytest.raises(ApiCallFailed, match="Invalid JSON response"):
            await executor.execute(step, context)

    @pytest.mark.asyncio
    async def test_transport_error(self, make_executor, context):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        executor = make_executor(handler)
        step = make_step(type="api_call", config={"url": "https://down.test"})

        with pytest.raises(StepNetworkError) as exc_info:
            await executor.execute(step, context)
        assert exc_info.value.url == "https://down.test"

    @pytest.mark.asyncio
    async def test_timeout(self, make_executor, context):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        executor = make_executor(handler)
        step = make_step(
            type="api_call", config={"url": "https://slow.test", "timeout_seconds": 0.5}
        )

        with pytest.raises(StepNetworkError, match="timed out"):
            await executor.execute(step, context)

    @pytest.mark.asyncio
    async def test_missing_url(self, make_executor, context):
        executor = make_executor()
        with pytest.raises(StepConfigError, match="requires config.url"):
            await executor.execute(make_step(type="api_call"), context)

    @pytest.mark.asyncio
    async def test_output_variable_stored(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(200, json=[1, 2]))
        step = make_step(
            type="api_call", output_variable="items", config={"url": "https://api.test"}
        )

        await executor.execute(step, context)

        assert context.variables["items"] == [1, 2]


class TestWebhook:
    """Tests for webhook steps."""

    @pytest.mark.asyncio
    async def test_default_payload_is_context(self, make_executor, context):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"received": True})

        executor = make_executor(handler)
        output = await executor.execute(
            make_step(type="webhook", config={"url": "https://hook.test"}), context
        )

        assert output == {"status": 200, "success": True, "response": {"received": True}}
        assert seen["method"] == "POST"
        assert seen["body"]["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_error_status_still_succeeds(self, make_executor, context):
        """Test that a non-2xx webhook response is reported, not raised."""
        executor = make_executor(lambda request: httpx.Response(500, text="oops"))
        step = make_step(
            type="webhook", config={"url": "https://hook.test", "payload": {"x": 1}}
        )

        output = await executor.execute(step, context)

        assert output == {"status": 500, "success": False, "response": "oops"}

    @pytest.mark.asyncio
    async def test_text_response(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(200, text="accepted"))
        output = await executor.execute(
            make_step(type="webhook", config={"url": "https://hook.test"}), context
        )
        assert output["response"] == "accepted"

    @pytest.mark.asyncio
    async def test_transport_error_fails(self, make_executor, context):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        executor = make_executor(handler)
        with pytest.raises(StepNetworkError):
            await executor.execute(
                make_step(type="webhook", config={"url": "https://hook.test"}), context
            )


class TestAiAgentCall:
    """Tests for ai_agent_call steps."""

    @pytest.mark.asyncio
    async def test_invokes_agent(self, make_executor, context):
        agent = mock_agent(reply={"reply": "done"})
        executor = make_executor(agent_client=agent)
        step = make_step(
            type="ai_agent_call",
            ai_agent_call={
                "agent_id": "analyst",
                "input_prompt": "Summarize for {{name}}",
                "output_variable": "summary",
            },
        )

        output = await executor.execute(step, context)

        assert output == {"reply": "done"}
        assert context.variables["summary"] == {"reply": "done"}
        prompt, variables, agent_id = agent.invoke.call_args.args
        assert prompt == "Summarize for Ada"
        assert variables["name"] == "Ada"
        assert agent_id == "analyst"

    @pytest.mark.asyncio
    async def test_config_prompt_and_default(self, make_executor, context):
        agent = mock_agent(reply={})
        executor = make_executor(agent_client=agent)

        await executor.execute(make_step(type="ai_agent_call", config={"prompt": "Go"}), context)
        assert agent.invoke.call_args.args[0] == "Go"

        await executor.execute(make_step(type="ai_agent_call"), context)
        assert agent.invoke.call_args.args[0] == "Process the automation step"

    @pytest.mark.asyncio
    async def test_no_agent_client(self, make_executor, context):
        executor = make_executor()
        with pytest.raises(AgentInvocationFailed, match="No agent client configured"):
            await executor.execute(make_step(type="ai_agent_call"), context)

    @pytest.mark.asyncio
    async def test_agent_error_wrapped(self, make_executor, context):
        agent = mock_agent(side_effect=RuntimeError("model overloaded"))
        executor = make_executor(agent_client=agent)

        with pytest.raises(AgentInvocationFailed) as exc_info:
            await executor.execute(make_step(type="ai_agent_call"), context)
        assert str(exc_info.value) == "AI agent failed: model overloaded"

    @pytest.mark.asyncio
    async def test_agent_failure_passes_through(self, make_executor, context):
        error = AgentInvocationFailed("quota exceeded", agent_id="a")
        executor = make_executor(agent_client=mock_agent(side_effect=error))

        with pytest.raises(AgentInvocationFailed) as exc_info:
            await executor.execute(make_step(type="ai_agent_call"), context)
        assert exc_info.value is error


class TestDelay:
    """Tests for delay steps."""

    @pytest.mark.asyncio
    async def test_config_duration(self, make_executor, context):
        output = await make_executor().execute(
            make_step(type="delay", config={"duration": 2}), context
        )
        assert output == {"delayed": 2}

    @pytest.mark.asyncio
    async def test_duration_seconds(self, make_executor, context):
        output = await make_executor().execute(
            make_step(type="delay", delay={"duration_seconds": 0.002}), context
        )
        assert output == {"delayed": 2}

    @pytest.mark.asyncio
    async def test_default_from_settings(self, make_executor, context):
        output = await make_executor().execute(make_step(type="delay"), context)
        assert output == {"delayed": 1}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [-1, "soon"])
    async def test_invalid_duration(self, make_executor, context, duration):
        with pytest.raises(StepConfigError):
            await make_executor().execute(
                make_step(type="delay", config={"duration": duration}), context
            )


class TestCondition:
    """Tests for condition steps."""

    @pytest.mark.asyncio
    async def test_true_step_merged(self, make_executor, context):
        context.set("age", 21)
        step = make_step(
            type="condition",
            config={
                "condition": "age > 18",
                "trueStep": {"id": "t", "type": "delay", "config": {"duration": 1}},
                "falseStep": {"id": "f", "type": "delay", "config": {"duration": 2}},
            },
        )

        output = await make_executor().execute(step, context)

        assert output == {"conditionResult": True, "delayed": 1}

    @pytest.mark.asyncio
    async def test_dotted_trigger_path(self, make_executor, context):
        step = make_step(type="condition", config={"condition": "trigger.user.id == 7"})

        assert await make_executor().execute(step, context) == {"conditionResult": True}

    @pytest.mark.asyncio
    async def test_false_without_false_step(self, make_executor, context):
        context.set("age", 10)
        step = make_step(
            type="condition",
            config={
                "condition": "age > 18",
                "trueStep": {"id": "t", "type": "delay", "config": {"duration": 1}},
            },
        )

        assert await make_executor().execute(step, context) == {"conditionResult": False}

    @pytest.mark.asyncio
    async def test_branch_lists(self, make_executor, context):
        step = make_step(
            type="condition",
            condition={
                "expression": 'name == "Ada"',
                "if_true": [{"id": "yes", "type": "delay", "config": {"duration": 1}}],
                "if_false": [{"id": "no", "type": "delay", "config": {"duration": 1}}],
            },
        )

        output = await make_executor().execute(step, context)

        assert output == {
            "conditionResult": True,
            "branch": [{"stepId": "yes", "success": True, "output": {"delayed": 1}}],
        }

    @pytest.mark.asyncio
    async def test_unsafe_expression_takes_false_branch(self, make_executor, context):
        step = make_step(
            type="condition",
            condition={
                "expression": "this.constructor",
                "if_false": [{"id": "no", "type": "delay", "config": {"duration": 1}}],
            },
        )

        output = await make_executor().execute(step, context)

        assert output["conditionResult"] is False
        assert output["branch"][0]["stepId"] == "no"

    @pytest.mark.asyncio
    async def test_non_mapping_nested_result(self, make_executor, context):
        executor = make_executor()

        async def answer(step, ctx):
            return "forty-two"

        executor.register_handler("answer", answer)
        step = make_step(
            type="condition",
            config={"condition": "true", "trueStep": {"id": "t", "type": "answer"}},
        )

        assert await executor.execute(step, context) == {
            "conditionResult": True,
            "result": "forty-two",
        }

    @pytest.mark.asyncio
    async def test_missing_expression(self, make_executor, context):
        with pytest.raises(StepConfigError):
            await make_executor().execute(make_step(type="condition"), context)


class TestRetry:
    """Tests for retry steps."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, make_executor, context):
        executor = make_executor()
        calls = {"count": 0}

        async def flaky(step, ctx):
            calls["count"] += 1
            if calls["count"] < 2:
                raise StepError("not yet")
            return {"ok": True}

        executor.register_handler("flaky", flaky)
        step = make_step(type="retry", retry={"max_attempts": 3, "steps": [{"id": "f", "type": "flaky"}]})

        output = await executor.execute(step, context)

        assert output == {
            "attempts": 2,
            "results": [{"stepId": "f", "success": True, "output": {"ok": True}}],
        }

    @pytest.mark.asyncio
    async def test_exhausted_raises(self, make_executor, context):
        executor = make_executor()
        failing = AsyncMock(side_effect=StepError("still broken"))
        executor.register_handler("broken", failing)
        step = make_step(type="retry", retry={"steps": [{"id": "b", "type": "broken"}]})

        with pytest.raises(MaxRetriesExceeded) as exc_info:
            await executor.execute(step, context)

        assert exc_info.value.attempts == 3
        assert str(exc_info.value.cause) == "still broken"
        assert failing.await_count == 3

    @pytest.mark.asyncio
    async def test_recovery_steps(self, make_executor, context):
        executor = make_executor()
        executor.register_handler("broken", AsyncMock(side_effect=StepError("nope")))
        step = make_step(
            type="retry",
            retry={
                "max_attempts": 2,
                "steps": [{"id": "b", "type": "broken"}],
                "on_retry_fail_steps": [{"id": "r", "type": "delay", "config": {"duration": 1}}],
            },
        )

        output = await executor.execute(step, context)

        assert output["attempts"] == 2
        assert output["recovered"] is True
        assert output["results"][0]["stepId"] == "r"

    @pytest.mark.asyncio
    async def test_invalid_attempts(self, make_executor, context):
        step = make_step(type="retry", retry={"max_attempts": "many", "steps": []})
        with pytest.raises(StepConfigError):
            await make_executor().execute(step, context)


class TestFallback:
    """Tests for fallback steps."""

    @pytest.mark.asyncio
    async def test_primary_success(self, make_executor, context):
        step = make_step(
            type="fallback",
            fallback={
                "primary_steps": [{"id": "p", "type": "delay", "config": {"duration": 1}}],
                "fallback_steps": [{"id": "f", "type": "delay", "config": {"duration": 1}}],
            },
        )

        output = await make_executor().execute(step, context)

        assert output["usedFallback"] is False
        assert [r["stepId"] for r in output["results"]] == ["p"]

    @pytest.mark.asyncio
    async def test_uses_fallback(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(503))
        step = make_step(
            type="fallback",
            fallback={
                "primary_steps": [
                    {"id": "p", "type": "api_call", "config": {"url": "https://api.test"}}
                ],
                "fallback_steps": [{"id": "f", "type": "delay", "config": {"duration": 1}}],
            },
        )

        output = await executor.execute(step, context)

        assert output["usedFallback"] is True
        assert output["primaryError"] == "API call failed: 503 Service Unavailable"
        assert output["results"][0]["stepId"] == "f"

    @pytest.mark.asyncio
    async def test_no_fallback_steps_reraises(self, make_executor, context):
        executor = make_executor(lambda request: httpx.Response(500))
        step = make_step(
            type="fallback",
            fallback={
                "primary_steps": [
                    {"id": "p", "type": "api_call", "config": {"url": "https://api.test"}}
                ]
            },
        )

        with pytest.raises(ApiCallFailed):
            await executor.execute(step, context)


class TestLoop:
    """Tests for loop steps."""

    @pytest.mark.asyncio
    async def test_iterates_with_bindings(self, make_executor, context):
        executor = make_executor()
        seen = []

        async def record(step, ctx):
            seen.append((ctx.get("loop_index"), ctx.get("loop_item")))
            return ctx.get("loop_item")

        executor.register_handler("record", record)
        context.set("items", ["a", "b", "c"])
        step = make_step(
            type="loop", loop={"array_source": "items", "steps": [{"id": "r", "type": "record"}]}
        )

        output = await executor.execute(step, context)

        assert output["iterations"] == 3
        assert seen == [(0, "a"), (1, "b"), (2, "c")]
        assert output["results"][1] == [{"stepId": "r", "success": True, "output": "b"}]
        assert "loop_item" not in context.variables

    @pytest.mark.asyncio
    async def test_placeholder_source(self, make_executor):
        ctx = ExecutionContext.create("e", "a", {}, {"orders": [1, 2]})
        step = make_step(type="loop", loop={"array_source": "{{trigger.orders}}", "steps": []})

        output = await make_executor().execute(step, ctx)

        assert output == {"iterations": 2, "results": [[], []]}

    @pytest.mark.asyncio
    async def test_non_list_source(self, make_executor, context):
        step = make_step(type="loop", loop={"array_source": "name", "steps": []})
        with pytest.raises(StepConfigError, match="did not resolve to a list"):
            await make_executor().execute(step, context)


class TestDispatch:
    """Tests for handler dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_type(self, make_executor, context):
        with pytest.raises(UnknownStepType, match="Unknown step type: teleport"):
            await make_executor().execute(make_step(type="teleport"), context)

    @pytest.mark.asyncio
    async def test_nested_continue_on_error(self, make_executor, context):
        """Test that a nested stopOnError: false step does not abort its list."""
        executor = make_executor()
        executor.register_handler("broken", AsyncMock(side_effect=StepError("bad")))
        step = make_step(
            type="fallback",
            fallback={
                "primary_steps": [
                    {"id": "b", "type": "broken", "stopOnError": False},
                    {"id": "d", "type": "delay", "config": {"duration": 1}},
                ]
            },
        )

        output = await executor.execute(step, context)

        assert output["usedFallback"] is False
        assert output["results"] == [
            {"stepId": "b", "success": False, "error": "bad"},
            {"stepId": "d", "success": True, "output": {"delayed": 1}},
        ]

    @pytest.mark.asyncio
    async def test_owned_client_closed(self, settings):
        executor = StepExecutor(settings=settings)
        client = await executor._get_http_client()

        await executor.aclose()

        assert client.is_closed
