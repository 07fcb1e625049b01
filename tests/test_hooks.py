from __future__ import annotations

import asyncio
import json
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from pyagenthost.cancellation import CancellationToken
from pyagenthost.errors import ConfigParseError, HookPayloadTooLarge
from pyagenthost.hooks import executor as executor_mod
from pyagenthost.hooks.executor import SecureProcessExecutor, build_hook_env
from pyagenthost.hooks.guard import HookExecutionGuard
from pyagenthost.hooks.manager import HookManager, combine
from pyagenthost.hooks.matcher import HookMatcher
from pyagenthost.hooks.models import HookDecision, HookExecutionResult, HookRun, HookSettings
from pyagenthost.hooks.parser import HookOutputParser
from pyagenthost.util.subprocess import CANCELLED_EXIT_CODE, TIMEOUT_EXIT_CODE


class TestMatcher:
    def test_any_tool(self) -> None:
        assert HookMatcher.compile("").matches("Bash")
        assert HookMatcher.compile("*").matches("Write")

    def test_alternatives_and_glob(self) -> None:
        m = HookMatcher.compile("Edit|Write")
        assert m.matches("Write")
        assert not m.matches("Read")
        assert HookMatcher.compile("Todo*").matches("TodoWrite")

    def test_path_filter(self) -> None:
        m = HookMatcher.compile("Write", path_glob="*.py")
        assert m.matches("Write", {"file_path": "src/app.py"})
        assert not m.matches("Write", {"file_path": "README.md"})
        assert not m.matches("Write", {})

    def test_command_regex(self) -> None:
        m = HookMatcher.compile("Bash", command_regex=r"^git\s+push")
        assert m.matches("Bash", {"command": "git push origin"})
        assert not m.matches("Bash", {"command": "git status"})

    def test_bad_regex_is_config_error(self) -> None:
        with pytest.raises(ConfigParseError):
            HookMatcher.compile("Bash", command_regex="(")


class TestSettings:
    def test_groups_and_defaults(self) -> None:
        s = HookSettings.from_obj(
            {
                "default_timeout": 5,
                "timeoutBehavior": "block",
                "PreToolUse": [
                    {"matcher": "Bash", "hooks": [{"type": "command", "command": "check.sh"}]},
                    {"matcher": "Write", "command": "lint.sh", "timeout": 2},
                ],
            },
            "settings.json",
        )
        assert s.timeout_behavior == "block"
        pre = s.for_event("PreToolUse")
        assert [d.command for d in pre] == ["check.sh", "lint.sh"]
        assert pre[0].timeout == 5.0
        assert pre[1].timeout == 2.0
        assert pre[0].source == "settings.json"

    def test_layering_keeps_base_definitions(self) -> None:
        base = HookSettings.from_obj({"PostToolUse": [{"command": "a.sh"}]})
        merged = HookSettings.from_obj({"PostToolUse": [{"command": "b.sh"}], "enabled": False}, base=base)
        assert [d.command for d in merged.for_event("PostToolUse")] == ["a.sh", "b.sh"]
        assert merged.enabled is False
        assert base.enabled is True

    @pytest.mark.parametrize(
        "obj",
        [
            {"failure_behavior": "explode"},
            {"PreToolUse": {"command": "x"}},
            {"PreToolUse": [{"hooks": [{"type": "http", "command": "x"}]}]},
            {"PreToolUse": [{"hooks": [{"command": ""}]}]},
            {"default_timeout": -1},
            {"enabled": "yes"},
        ],
    )
    def test_malformed(self, obj: dict) -> None:
        with pytest.raises(ConfigParseError):
            HookSettings.from_obj(obj, "settings.json")


class TestParser:
    def test_exit_zero_empty_is_allow(self) -> None:
        d = HookOutputParser().parse(HookExecutionResult(exit_code=0))
        assert d.kind == "allow"

    def test_json_decision(self) -> None:
        out = json.dumps({"decision": "block", "reason": "not on main"})
        d = HookOutputParser().parse(HookExecutionResult(exit_code=0, stdout=out))
        assert d.kind == "deny"
        assert d.reason == "not on main"

    def test_json_camel_case_fields(self) -> None:
        out = json.dumps({"decision": "approve", "modifiedInput": {"text": "x"}, "additionalContext": "ctx"})
        d = HookOutputParser().parse(HookExecutionResult(exit_code=0, stdout=out))
        assert d.kind == "allow"
        assert d.modified_input == {"text": "x"}
        assert d.additional_context == "ctx"

    def test_plain_text_becomes_context(self) -> None:
        d = HookOutputParser().parse(HookExecutionResult(exit_code=0, stdout="remember to run tests\n"))
        assert d.kind == "allow"
        assert d.additional_context == "remember to run tests"

    def test_exit_two_denies_with_stderr(self) -> None:
        d = HookOutputParser().parse(HookExecutionResult(exit_code=2, stderr="forbidden path\n"))
        assert d.kind == "deny"
        assert d.reason == "forbidden path"
        assert d.error_type is None

    def test_failure_behavior(self) -> None:
        res = HookExecutionResult(exit_code=1, stderr="boom")
        assert HookOutputParser(failure_behavior="ignore").parse(res, "x").kind == "allow"
        blocked = HookOutputParser(failure_behavior="block").parse(res, "x")
        assert blocked.kind == "deny"
        assert blocked.error_type == "hook_failure"

    def test_timeout_behavior(self) -> None:
        res = HookExecutionResult(exit_code=TIMEOUT_EXIT_CODE, timed_out=True)
        ignored = HookOutputParser(timeout_behavior="ignore").parse(res, "slow.sh")
        assert ignored.kind == "allow"
        assert ignored.warning and "slow.sh" in ignored.warning
        blocked = HookOutputParser(timeout_behavior="block").parse(res, "slow.sh")
        assert blocked.kind == "deny"
        assert blocked.error_type == "hook_timeout"

    def test_invalid_json_is_a_failure(self) -> None:
        d = HookOutputParser(failure_behavior="block").parse(HookExecutionResult(exit_code=0, stdout="{nope"))
        assert d.kind == "deny"
        assert d.error_type == "hook_failure"

    def test_cancelled_hook_is_not_a_failure(self) -> None:
        res = HookExecutionResult(exit_code=CANCELLED_EXIT_CODE, cancelled=True)
        d = HookOutputParser(failure_behavior="block", timeout_behavior="block").parse(res, "slow.sh")
        assert d.kind == "allow"
        assert d.error_type is None
        assert d.warning and "slow.sh" in d.warning


class TestCombine:
    def test_deny_beats_ask_beats_allow(self) -> None:
        runs = [
            HookRun("a", HookDecision("allow")),
            HookRun("b", HookDecision("ask", reason="check")),
            HookRun("c", HookDecision("deny", reason="no")),
        ]
        out = combine("PreToolUse", runs)
        assert out.decision == "deny"
        assert out.reason == "no"

    def test_ask_over_allow(self) -> None:
        out = combine("PreToolUse", [HookRun("a", HookDecision("allow")), HookRun("b", HookDecision("ask"))])
        assert out.decision == "ask"
        assert out.reason

    def test_patches_merge_in_order(self) -> None:
        runs = [
            HookRun("a", HookDecision(modified_input={"x": 1, "y": 1}, additional_context="one")),
            HookRun("b", HookDecision(modified_input={"y": 2}, warning="careful", additional_context="two")),
        ]
        out = combine("PreToolUse", runs)
        assert out.decision == "allow"
        assert out.modified_input == {"x": 1, "y": 2}
        assert out.additional_context == ["one", "two"]
        assert out.warnings == ["careful"]


class TestGuard:
    def test_concurrent_claims_yield_exactly_one(self) -> None:
        guard = HookExecutionGuard()
        barrier = threading.Barrier(32, timeout=5)

        def claim() -> bool:
            barrier.wait()
            return guard.can_execute("toolu_1", "PreToolUse")

        with ThreadPoolExecutor(max_workers=32) as pool:
            results = list(pool.map(lambda _: claim(), range(32)))
        assert results.count(True) == 1

    def test_events_are_independent(self) -> None:
        guard = HookExecutionGuard()
        assert guard.can_execute("toolu_1", "PreToolUse")
        assert guard.can_execute("toolu_1", "PostToolUse")
        assert not guard.can_execute("toolu_1", "PreToolUse")

    def test_cleanup_releases_a_call(self) -> None:
        guard = HookExecutionGuard()
        guard.can_execute("toolu_1", "PreToolUse")
        guard.mark_executed("toolu_1", "PreToolUse")
        guard.can_execute("toolu_2", "PreToolUse")
        assert guard.has_executed("toolu_1", "PreToolUse")
        guard.cleanup("toolu_1")
        assert not guard.has_executed("toolu_1", "PreToolUse")
        assert len(guard) == 1
        guard.reset()
        assert len(guard) == 0


class TestExecutor:
    def test_env_is_scrubbed(self) -> None:
        env = build_hook_env(
            project_dir="/p",
            session_id="s",
            event="PreToolUse",
            tool_name="Bash",
            base_env={"PATH": "/bin", "AWS_SECRET_ACCESS_KEY": "x"},
        )
        assert env["PATH"] == "/bin"
        assert "AWS_SECRET_ACCESS_KEY" not in env
        assert env["AGENTHOST_TOOL_NAME"] == "Bash"

    async def test_payload_reaches_stdin(self, project: Path) -> None:
        ex = SecureProcessExecutor()
        res = await ex.execute("cat", {"hello": "world"}, env=build_hook_env(project_dir=str(project), session_id="s", event="Stop"), cwd=str(project), timeout=5)
        assert res.exit_code == 0
        assert json.loads(res.stdout) == {"hello": "world"}

    async def test_timeout_reports_124(self, project: Path) -> None:
        ex = SecureProcessExecutor()
        env = build_hook_env(project_dir=str(project), session_id="s", event="PreToolUse")
        res = await ex.execute("sleep 5", {}, env=env, cwd=str(project), timeout=0.2)
        assert res.timed_out
        assert res.exit_code == TIMEOUT_EXIT_CODE
        assert res.duration_ms < 4000

    async def test_cancellation_kills_hook(self, project: Path) -> None:
        ex = SecureProcessExecutor()
        env = build_hook_env(project_dir=str(project), session_id="s", event="PreToolUse")
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.2, token.cancel)
        res = await ex.execute("sleep 5", {}, env=env, cwd=str(project), timeout=10, cancel=token)
        assert res.cancelled
        assert res.exit_code == CANCELLED_EXIT_CODE

    async def test_output_is_capped(self, project: Path) -> None:
        ex = SecureProcessExecutor(max_output_bytes=100)
        env = build_hook_env(project_dir=str(project), session_id="s", event="PreToolUse")
        res = await ex.execute("head -c 5000 /dev/zero | tr '\\0' x", {}, env=env, cwd=str(project), timeout=5)
        assert len(res.stdout) == 100
        assert res.stdout_truncated

    async def test_oversized_payload_never_spawns(self, project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        spawned: list[str] = []

        async def fake_spawn(command, **kwargs):
            spawned.append(command)
            raise AssertionError("should not spawn")

        monkeypatch.setattr(executor_mod, "spawn_shell", fake_spawn)
        ex = SecureProcessExecutor(max_stdin_bytes=16)
        with pytest.raises(HookPayloadTooLarge) as exc:
            await ex.execute("cat", {"data": "x" * 100}, env={}, cwd=str(project), timeout=5)
        assert exc.value.limit == 16
        assert spawned == []


def _manager(project: Path, hooks: dict) -> HookManager:
    return HookManager(HookSettings.from_obj(hooks), project_dir=str(project))


class TestManager:
    async def test_pre_hook_receives_payload(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"matcher": "Bash", "command": "cat > \"$AGENTHOST_PROJECT_DIR/payload.json\""}]})
        out = await mgr.run_pre(
            session_id="s1", tool_name="Bash", tool_use_id="toolu_1", tool_input={"command": "ls"}, permission_mode="default"
        )
        assert out.decision == "allow"
        assert out.fired
        payload = json.loads((project / "payload.json").read_text())
        assert payload["hook_event_name"] == "PreToolUse"
        assert payload["tool_input"] == {"command": "ls"}
        assert payload["session_id"] == "s1"
        assert payload["permission_mode"] == "default"
        assert "timestamp" in payload and "hook_execution_id" in payload

    async def test_no_matching_hook(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"matcher": "Write", "command": "exit 2"}]})
        out = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        assert out.decision == "allow"
        assert not out.fired

    async def test_exit_two_denies(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"command": "cat >/dev/null; echo 'no rm' >&2; exit 2"}]})
        out = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        assert out.decision == "deny"
        assert out.reason == "no rm"

    async def test_duplicate_fire_is_skipped(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"command": "cat >/dev/null"}]})
        first = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        second = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        assert first.fired and not first.skipped
        assert second.skipped and not second.fired

    async def test_disabled_manager_runs_nothing(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"command": "exit 2"}]})
        mgr.disable()
        out = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        assert out.decision == "allow"
        mgr.reset()
        assert mgr.enabled

    async def test_oversized_payload_follows_failure_behavior(self, project: Path) -> None:
        mgr = _manager(
            project,
            {"max_stdin_bytes": 64, "failure_behavior": "block", "PreToolUse": [{"command": "cat >/dev/null"}]},
        )
        out = await mgr.run_pre(
            session_id="s", tool_name="Write", tool_use_id="t", tool_input={"content": "x" * 500}, permission_mode="default"
        )
        assert out.decision == "deny"
        assert out.error_type == "hook_failure"
        assert out.runs[0].result is None

    async def test_stop_hook(self, project: Path) -> None:
        mgr = _manager(project, {"Stop": [{"command": "cat >/dev/null; echo 'all done'"}]})
        out = await mgr.run_stop(session_id="s", permission_mode="default", turn_id="turn_1")
        assert out.additional_context == ["all done"]

    async def test_stop_hook_without_turn_id_leaves_no_guard_entry(self, project: Path) -> None:
        mgr = _manager(project, {"Stop": [{"command": "cat >/dev/null"}]})
        for _ in range(3):
            out = await mgr.run_stop(session_id="s", permission_mode="default")
            assert out.fired
        assert len(mgr.guard) == 0

    async def test_allow_hook_logs_and_returns(self, project: Path) -> None:
        mgr = _manager(project, {"PreToolUse": [{"command": "cat >/dev/null; exit 0"}]})
        out = await asyncio.wait_for(
            mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default"),
            timeout=10,
        )
        assert out.decision == "allow"
        assert out.runs[0].result is not None and out.runs[0].result.exit_code == 0
        again = await mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id="t", tool_input={}, permission_mode="default")
        assert again.skipped

    async def test_concurrency_is_bounded(self, project: Path) -> None:
        cmd = (
            'cat >/dev/null; d="$AGENTHOST_PROJECT_DIR"; '
            'n=$(ls "$d"/running.* 2>/dev/null | wc -l); echo $n >> "$d/peaks"; '
            'touch "$d/running.$$"; sleep 0.2; rm -f "$d/running.$$"'
        )
        mgr = _manager(project, {"max_concurrent_hooks": 2, "PreToolUse": [{"command": cmd}]})
        runs = asyncio.gather(
            *(
                mgr.run_pre(session_id="s", tool_name="Bash", tool_use_id=f"t{i}", tool_input={}, permission_mode="default")
                for i in range(6)
            )
        )
        await asyncio.wait_for(runs, timeout=10)
        peaks = [int(x) for x in (project / "peaks").read_text().split()]
        assert len(peaks) == 6
        assert max(peaks) <= 1
