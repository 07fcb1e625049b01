from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from pyagenthost.cancellation import CancellationToken
from pyagenthost.confirmation.models import ConfirmationResponse
from pyagenthost.context.assembler import ContextAssembler
from pyagenthost.errors import ExecutionStateError
from pyagenthost.pipeline.execution import Aborted, Completed, ToolCallRequest, ToolExecution
from pyagenthost.tools.base import ToolResult
from pyagenthost.tools.builtin_tools.file_read import ReadFileTool

from .conftest import ScriptedConfirmation

POST_LOG_HOOK = {"PostToolUse": [{"command": 'cat >/dev/null; echo fired >> "$AGENTHOST_PROJECT_DIR/post.log"'}]}


def echo_call(text: str = "hi", **kw) -> ToolCallRequest:
    return ToolCallRequest(tool_name="Echo", params={"text": text}, session_id="ses_test", **kw)


def post_fires(project: Path) -> int:
    log = project / "post.log"
    return len(log.read_text().split()) if log.exists() else 0


class TestBasics:
    async def test_allowed_call_completes(self, make_pipeline, echo) -> None:
        pipeline = make_pipeline(allow=["Echo"])
        execution = await pipeline.run(echo_call("hello"))
        assert isinstance(execution.terminal, Completed)
        assert execution.result.success
        assert execution.result.llm_content == "echo: hello"
        assert execution.result.metadata["signature"] == "Echo(hello)"
        assert echo.calls == [{"text": "hello"}]
        assert execution.stages_run == [
            "discovery", "permission", "hook_pre", "confirmation", "execution", "hook_post", "formatting",
        ]

    async def test_unknown_tool_is_validation_error(self, make_pipeline) -> None:
        result = await make_pipeline().execute(ToolCallRequest("Nope", {}, "ses_test"))
        assert not result.success
        assert result.error is not None and result.error.type == "validation_error"
        assert "Echo" in result.llm_content

    async def test_missing_param_is_validation_error(self, make_pipeline, echo) -> None:
        result = await make_pipeline(allow=["Echo"]).execute(ToolCallRequest("Echo", {}, "ses_test"))
        assert result.error is not None and result.error.type == "validation_error"
        assert echo.calls == []

    async def test_wrong_param_type_is_validation_error(self, make_pipeline) -> None:
        result = await make_pipeline(allow=["Echo"]).execute(ToolCallRequest("Echo", {"text": 3}, "ses_test"))
        assert result.error is not None and result.error.type == "validation_error"

    async def test_tool_exception_becomes_execution_error(self, make_pipeline, project) -> None:
        pipeline = make_pipeline(hooks=POST_LOG_HOOK)
        execution = await pipeline.run(ToolCallRequest("Boom", {}, "ses_test"))
        assert isinstance(execution.terminal, Aborted)
        assert execution.result.error is not None
        assert execution.result.error.type == "execution_error"
        assert "kaboom" in execution.result.llm_content
        assert post_fires(project) == 0

    async def test_genuine_failure_result_is_formatted(self, make_pipeline, project) -> None:
        pipeline = make_pipeline(hooks=POST_LOG_HOOK)
        result = await pipeline.execute(ToolCallRequest("Fail", {}, "ses_test"))
        assert not result.success
        assert result.error is not None
        assert result.error.type == "execution_error"
        assert result.error.message == "something broke"
        assert post_fires(project) == 1

    async def test_cancelled_before_start(self, make_pipeline, echo) -> None:
        token = CancellationToken()
        token.cancel("user pressed esc")
        execution = await make_pipeline(allow=["Echo"]).run(echo_call(cancel=token))
        assert execution.result.error is not None
        assert execution.result.error.type == "aborted"
        assert execution.result.llm_content == "user pressed esc"
        assert execution.terminal.stage == "discovery"
        assert echo.calls == []

    async def test_cancel_while_waiting_for_confirmation(self, make_pipeline, echo) -> None:
        token = CancellationToken()

        class Hang:
            async def request_confirmation(self, details):
                await asyncio.sleep(30)

        pipeline = make_pipeline(confirmation=Hang())
        asyncio.get_running_loop().call_later(0.1, token.cancel)
        result = await pipeline.execute(echo_call(cancel=token))
        assert result.error is not None and result.error.type == "aborted"
        assert echo.calls == []

    async def test_execute_many_runs_concurrently(self, make_pipeline, echo) -> None:
        pipeline = make_pipeline(allow=["Echo"])
        results = await pipeline.execute_many([echo_call(str(i)) for i in range(5)])
        assert [r.llm_content for r in results] == [f"echo: {i}" for i in range(5)]
        assert len(echo.calls) == 5


class TestTerminalResult:
    def test_second_terminal_raises(self) -> None:
        execution = ToolExecution(request=echo_call())
        execution.abort("permission_denied", "no")
        with pytest.raises(ExecutionStateError):
            execution.complete(ToolResult.ok("late"))
        with pytest.raises(ExecutionStateError):
            execution.abort("aborted", "again")
        assert execution.result.error is not None
        assert execution.result.error.type == "permission_denied"

    def test_result_before_terminal_raises(self) -> None:
        with pytest.raises(ExecutionStateError):
            _ = ToolExecution(request=echo_call()).result

    async def test_stages_after_denial_do_not_run(self, make_pipeline, echo) -> None:
        execution = await make_pipeline(deny=["Echo"]).run(echo_call())
        assert execution.stages_run == ["discovery", "permission"]
        assert echo.calls == []


class TestPermissionStage:
    async def test_deny_wins_in_yolo(self, make_pipeline, echo) -> None:
        pipeline = make_pipeline(allow=["Echo"], deny=["Echo(rm -rf /)"], mode="yolo")
        result = await pipeline.execute(echo_call("rm -rf /"))
        assert result.error is not None
        assert result.error.type == "permission_denied"
        assert result.metadata["matched_rule"] == "Echo(rm -rf /)"
        assert result.metadata["signature"] == "Echo(rm -rf /)"
        assert echo.calls == []

    async def test_plan_mode_blocks_write_tools(self, make_pipeline, echo) -> None:
        result = await make_pipeline(allow=["Echo"], mode="plan").execute(echo_call())
        assert result.error is not None and result.error.type == "permission_denied"

    async def test_ask_without_handler_denies(self, make_pipeline, echo) -> None:
        result = await make_pipeline().execute(echo_call())
        assert result.error is not None and result.error.type == "permission_denied"
        assert echo.calls == []

    async def test_request_mode_snapshot_overrides_pipeline(self, make_pipeline, echo) -> None:
        pipeline = make_pipeline(mode="default")
        result = await pipeline.execute(echo_call(mode="yolo"))
        assert result.success


class TestConfirmation:
    async def test_once_asks_every_time(self, make_pipeline, echo) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True), ConfirmationResponse(True))
        pipeline = make_pipeline(confirmation=handler)
        await pipeline.execute(echo_call("a"))
        await pipeline.execute(echo_call("a"))
        assert len(handler.requests) == 2
        assert pipeline.engine.session_rules == []

    async def test_session_scope_remembers_exact_signature(self, make_pipeline, echo) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True, scope="session"), ConfirmationResponse(False))
        pipeline = make_pipeline(confirmation=handler)
        assert (await pipeline.execute(echo_call("a"))).success
        assert (await pipeline.execute(echo_call("a"))).success
        assert len(handler.requests) == 1
        denied = await pipeline.execute(echo_call("b"))
        assert not denied.success
        assert [r.raw for r in pipeline.engine.session_rules] == ["Echo(a)"]

    async def test_denial_carries_feedback(self, make_pipeline, echo) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(False, feedback="use the staging db"))
        result = await make_pipeline(confirmation=handler).execute(echo_call())
        assert result.error is not None
        assert result.error.type == "permission_denied"
        assert result.llm_content == "use the staging db"

    async def test_details_describe_the_call(self, make_pipeline) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True))
        await make_pipeline(confirmation=handler).execute(echo_call("x"))
        details = handler.requests[0]
        assert details.tool_name == "Echo"
        assert details.signature == "Echo(x)"
        assert details.params == {"text": "x"}
        assert "Modifies files in the project" in details.risks

    async def test_target_mode_switches_pipeline_mode(self, make_pipeline, echo) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True, target_mode="yolo"))
        pipeline = make_pipeline(confirmation=handler)
        await pipeline.execute(echo_call())
        assert pipeline.mode == "yolo"
        assert (await pipeline.execute(echo_call("other"))).success
        assert len(handler.requests) == 1


class TestHooksInPipeline:
    async def test_pre_hook_ask_waits_for_confirmation_and_once_denial_keeps_rules(self, make_pipeline, echo) -> None:
        seen_calls: list[int] = []
        handler = ScriptedConfirmation(
            ConfirmationResponse(False, scope="once"),
            on_request=lambda _: seen_calls.append(len(echo.calls)),
        )
        hooks = {"PreToolUse": [{"matcher": "Echo", "command": "cat >/dev/null; echo '{\"decision\": \"ask\", \"reason\": \"double-check\"}'"}]}
        pipeline = make_pipeline(allow=["Echo"], hooks=hooks, confirmation=handler)
        rules_before = [r.raw for r in pipeline.engine.rules()]

        result = await pipeline.execute(echo_call())

        assert seen_calls == [0]
        assert handler.requests[0].message == "double-check"
        assert result.error is not None and result.error.type == "permission_denied"
        assert echo.calls == []
        assert [r.raw for r in pipeline.engine.rules()] == rules_before

    async def test_pre_hook_ask_is_auto_approved_in_yolo(self, make_pipeline, echo) -> None:
        hooks = {"PreToolUse": [{"command": "cat >/dev/null; echo '{\"decision\": \"ask\"}'"}]}
        result = await make_pipeline(hooks=hooks, mode="yolo").execute(echo_call())
        assert result.success

    async def test_pre_hook_deny_blocks(self, make_pipeline, echo, project) -> None:
        hooks = {
            "PreToolUse": [{"command": "cat >/dev/null; echo 'frozen branch' >&2; exit 2"}],
            **POST_LOG_HOOK,
        }
        result = await make_pipeline(allow=["Echo"], hooks=hooks).execute(echo_call())
        assert result.error is not None and result.error.type == "permission_denied"
        assert result.llm_content == "frozen branch"
        assert echo.calls == []
        assert post_fires(project) == 0

    async def test_allowing_hook_lets_the_call_run(self, make_pipeline, echo) -> None:
        hooks = {"PreToolUse": [{"command": "cat >/dev/null; exit 0"}], "PostToolUse": [{"command": "cat >/dev/null"}]}
        execution = await make_pipeline(allow=["Echo"], hooks=hooks).run(echo_call())
        assert isinstance(execution.terminal, Completed)
        assert execution.pre_hook is not None and execution.pre_hook.fired
        assert execution.post_hook is not None and execution.post_hook.fired
        assert echo.calls == [{"text": "hi"}]

    async def test_cancel_during_blocking_hook_is_aborted(self, make_pipeline, echo) -> None:
        token = CancellationToken()
        hooks = {"failure_behavior": "block", "PreToolUse": [{"command": "sleep 5"}]}
        pipeline = make_pipeline(allow=["Echo"], hooks=hooks)
        asyncio.get_running_loop().call_later(0.3, token.cancel)
        execution = await asyncio.wait_for(pipeline.run(echo_call(cancel=token)), timeout=10)
        assert execution.result.error is not None
        assert execution.result.error.type == "aborted"
        assert execution.terminal.stage == "hook_pre"
        assert echo.calls == []

    async def test_pre_hook_timeout_with_block_policy(self, make_pipeline, echo) -> None:
        hooks = {"timeout_behavior": "block", "PreToolUse": [{"command": "sleep 5", "timeout": 0.2}]}
        result = await make_pipeline(allow=["Echo"], hooks=hooks).execute(echo_call())
        assert result.error is not None and result.error.type == "hook_timeout"
        assert echo.calls == []

    async def test_modified_input_is_permission_checked_again(self, make_pipeline, echo) -> None:
        hooks = {"PreToolUse": [{"command": "cat >/dev/null; echo '{\"modified_input\": {\"text\": \"secret\"}}'"}]}
        pipeline = make_pipeline(allow=["Echo(safe)"], deny=["Echo(secret)"], hooks=hooks)
        result = await pipeline.execute(echo_call("safe"))
        assert result.error is not None and result.error.type == "permission_denied"
        assert result.metadata["signature"] == "Echo(secret)"
        assert echo.calls == []

    async def test_modified_input_reaches_tool(self, make_pipeline, echo) -> None:
        hooks = {"PreToolUse": [{"command": "cat >/dev/null; echo '{\"modified_input\": {\"text\": \"patched\"}}'"}]}
        result = await make_pipeline(allow=["Echo"], hooks=hooks).execute(echo_call("original"))
        assert result.success
        assert echo.calls == [{"text": "patched"}]

    async def test_post_hook_never_fires_without_execution(self, make_pipeline, echo, project) -> None:
        pipeline = make_pipeline(deny=["Echo"], hooks=POST_LOG_HOOK)
        await pipeline.execute(echo_call())
        await pipeline.execute(ToolCallRequest("Nope", {}, "ses_test"))
        handler_less = make_pipeline(hooks=POST_LOG_HOOK)
        await handler_less.execute(echo_call())
        assert post_fires(project) == 0

        ok = make_pipeline(allow=["Echo"], hooks=POST_LOG_HOOK)
        await ok.execute(echo_call())
        assert post_fires(project) == 1

    async def test_post_hook_can_rewrite_output_and_add_context(self, make_pipeline) -> None:
        hooks = {
            "PostToolUse": [
                {"command": "cat >/dev/null; echo '{\"modified_output\": \"redacted\"}'"},
                {"command": "cat >/dev/null; echo 'lint: 0 warnings'"},
            ]
        }
        result = await make_pipeline(allow=["Echo"], hooks=hooks).execute(echo_call())
        assert result.success
        assert result.llm_content == "redacted\n\nlint: 0 warnings"

    async def test_post_hook_block_becomes_warning(self, make_pipeline) -> None:
        hooks = {"PostToolUse": [{"command": "cat >/dev/null; echo 'too late' >&2; exit 2"}]}
        result = await make_pipeline(allow=["Echo"], hooks=hooks).execute(echo_call())
        assert result.success
        assert any("too late" in w for w in result.metadata["warnings"])

    async def test_guard_is_released_after_call(self, make_pipeline) -> None:
        pipeline = make_pipeline(allow=["Echo"], hooks={"PreToolUse": [{"command": "cat >/dev/null"}]})
        await pipeline.execute(echo_call())
        assert len(pipeline.hooks.guard) == 0


class TestRecording:
    async def test_call_and_result_are_logged(self, make_pipeline, recorder) -> None:
        hooks = {"PreToolUse": [{"command": "cat >/dev/null; echo 'ctx'"}]}
        pipeline = make_pipeline(allow=["Echo"], hooks=hooks, recorder=recorder)
        request = echo_call("logged")
        await pipeline.execute(request)

        assembled = ContextAssembler().assemble(recorder.store.iter_events())
        assert assembled is not None
        [call] = assembled.tool_calls
        assert call.id == request.tool_use_id
        assert call.name == "Echo"
        assert call.input == {"text": "logged"}
        assert call.status == "success"
        assert call.hooks[0]["event"] == "PreToolUse"
        assert request.message_id is not None

    async def test_denial_is_logged_as_error(self, make_pipeline, recorder) -> None:
        pipeline = make_pipeline(deny=["Echo"], recorder=recorder)
        await pipeline.execute(echo_call())
        assembled = ContextAssembler().assemble(recorder.store.iter_events())
        [call] = assembled.tool_calls
        assert call.status == "error"
        assert call.error["type"] == "permission_denied"

    async def test_mode_change_is_logged(self, make_pipeline, recorder) -> None:
        pipeline = make_pipeline(recorder=recorder)
        pipeline.set_mode("plan")
        assembled = ContextAssembler().assemble(recorder.store.iter_events())
        assert assembled.session.configuration == {"permission_mode": "plan"}


class TestPathChecks:
    @pytest.fixture
    def read_pipeline(self, make_pipeline, registry, project):
        registry.register(ReadFileTool())
        (project / "id_rsa").write_text("-----BEGIN KEY-----\n")
        (project / ".env").write_text("TOKEN=x\n")
        return make_pipeline

    @staticmethod
    def read(path: str) -> ToolCallRequest:
        return ToolCallRequest("Read", {"file_path": path}, "ses_test")

    async def test_private_key_needs_explicit_allow(self, read_pipeline) -> None:
        denied = await read_pipeline(mode="yolo").execute(self.read("id_rsa"))
        assert denied.error is not None and denied.error.type == "permission_denied"
        assert "highly sensitive" in denied.llm_content

        allowed = await read_pipeline(allow=["Read(id_rsa)"]).execute(self.read("id_rsa"))
        assert allowed.success
        assert "BEGIN KEY" in allowed.llm_content

    async def test_env_file_is_confirmed_even_when_allowed(self, read_pipeline) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True))
        result = await read_pipeline(allow=["Read"], confirmation=handler).execute(self.read(".env"))
        assert result.success
        [details] = handler.requests
        assert details.message.startswith("Sensitive file access: .env")
        assert details.affected_files == [".env"]

    async def test_env_file_skips_confirmation_in_yolo(self, read_pipeline) -> None:
        handler = ScriptedConfirmation()
        result = await read_pipeline(confirmation=handler, mode="yolo").execute(self.read(".env"))
        assert result.success
        assert handler.requests == []

    async def test_remembered_sensitive_call_is_not_asked_again(self, read_pipeline) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True, scope="session"))
        pipeline = read_pipeline(allow=["Read"], confirmation=handler)
        assert (await pipeline.execute(self.read(".env"))).success
        assert (await pipeline.execute(self.read(".env"))).success
        assert len(handler.requests) == 1

    @pytest.mark.parametrize("path", ["../../etc/passwd", "/etc/passwd"])
    async def test_dangerous_paths_are_denied_in_every_mode(self, read_pipeline, path: str) -> None:
        handler = ScriptedConfirmation(ConfirmationResponse(True))
        pipeline = read_pipeline(allow=["Read"], confirmation=handler, mode="yolo")
        execution = await pipeline.run(self.read(path))
        assert execution.result.error is not None
        assert execution.result.error.type == "permission_denied"
        assert "dangerous path" in execution.result.llm_content
        assert execution.stages_run == ["discovery", "permission"]
        assert handler.requests == []

    async def test_plain_project_file_is_untouched(self, read_pipeline, project) -> None:
        (project / "notes.txt").write_text("hello\n")
        handler = ScriptedConfirmation()
        result = await read_pipeline(confirmation=handler).execute(self.read("notes.txt"))
        assert result.success
        assert handler.requests == []
