"""Tests for the hook dispatcher."""

from __future__ import annotations

from pathlib import Path

import pytest

from hookline.core.diagnostics import DiagnosticsJournal
from hookline.core.hooks.config import ConfigSource, HookRegistry, load
from hookline.core.hooks.dispatcher import HookDispatcher
from hookline.core.hooks.errors import ExecutionTimeout
from hookline.core.hooks.executor import HookExecutor
from hookline.core.hooks.recommend import (
    RecommendationRule,
    RecommendationRules,
    recommend_once,
)
from hookline.core.hooks.session import SessionStateStore
from hookline.core.hooks.types import (
    Audience,
    HookEvent,
    InvocationContext,
    PermissionDecision,
)
from tests.helpers import make_registration, write_script

CONTEXT_X = (
    """echo '{"hookSpecificOutput": {"hookEventName": "PreToolUse", """
    """"additionalContext": "X"}}'"""
)


class TestHookDispatcher:
    def test_initialization(self) -> None:
        dispatcher = HookDispatcher(
            registry=HookRegistry(), session_id="test-session", cwd="/tmp"
        )

        assert dispatcher.enabled is True
        assert dispatcher.session_id == "test-session"
        assert dispatcher.cwd == "/tmp"

    def test_registry_getter(self) -> None:
        registries = [HookRegistry(), HookRegistry([make_registration("echo")])]
        current = [0]
        dispatcher = HookDispatcher(registry_getter=lambda: registries[current[0]])

        assert dispatcher.registry.is_empty()
        current[0] = 1
        assert len(dispatcher.registry) == 1

    def test_update_session_info(self) -> None:
        dispatcher = HookDispatcher(session_id="old-session", cwd="/old/path")

        dispatcher.update_session_info("new-session", "/new/path")

        assert dispatcher.session_id == "new-session"
        assert dispatcher.cwd == "/new/path"

    def test_build_context_fills_defaults(self) -> None:
        dispatcher = HookDispatcher(session_id="s1", cwd="/work")

        context = dispatcher.build_context(
            HookEvent.PRE_TOOL_USE, {"tool_name": "Bash", "hook_event_name": "Stop"}
        )

        assert context.session_id == "s1"
        assert context.cwd == "/work"
        assert context.hook_event_name == "PreToolUse"

    @pytest.mark.asyncio
    async def test_disabled_runs_nothing(self) -> None:
        registry = HookRegistry([make_registration("exit 2")])
        dispatcher = HookDispatcher(registry=registry, enabled=False)

        result = await dispatcher.run_pre_tool_use("Bash", {"command": "ls"})

        assert result.outcomes == []
        assert result.should_proceed

    @pytest.mark.asyncio
    async def test_no_registrations(self) -> None:
        result = await HookDispatcher(registry=HookRegistry()).dispatch(
            "PreToolUse", {"tool_name": "Write"}
        )
        assert result.event == HookEvent.PRE_TOOL_USE
        assert result.decision.permission_decision == PermissionDecision.NONE
        assert result.outcomes == []

    @pytest.mark.asyncio
    async def test_invalid_payload_runs_nothing(self) -> None:
        registry = HookRegistry([make_registration("exit 2")])
        result = await HookDispatcher(registry=registry).dispatch(
            HookEvent.PRE_TOOL_USE, {"tool_name": "Bash", "tool_input": "not a dict"}
        )
        assert result.outcomes == []
        assert result.should_proceed


class TestDispatchScenarios:
    @pytest.mark.asyncio
    async def test_matcher_selects_hooks(self) -> None:
        registry = HookRegistry([make_registration("echo checked", matcher="Write|Edit")])
        dispatcher = HookDispatcher(registry=registry)

        write = await dispatcher.run_pre_tool_use("Write", {"file_path": "a.py"})
        read = await dispatcher.run_pre_tool_use("Read", {"file_path": "a.py"})

        assert len(write.outcomes) == 1
        assert write.messages_for(Audience.TRANSCRIPT) == ["checked"]
        assert read.outcomes == []

    @pytest.mark.asyncio
    async def test_exit_2_blocks_tool(self, tmp_path: Path) -> None:
        script = write_script(
            tmp_path, "guard.sh", "echo 'blocked: path traversal' >&2\nexit 2"
        )
        registry = HookRegistry([make_registration(str(script), matcher="Write")])

        result = await HookDispatcher(registry=registry).run_pre_tool_use(
            "Write", {"file_path": "../../etc/passwd"}
        )

        assert result.decision.permission_decision == PermissionDecision.DENY
        assert result.decision.reason == "blocked: path traversal"
        assert not result.should_proceed
        assert result.messages_for(Audience.ASSISTANT) == ["blocked: path traversal"]

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_timeout_does_not_hide_context(self) -> None:
        registry = HookRegistry(
            [
                make_registration("sleep 10", timeout=0.5),
                make_registration(CONTEXT_X),
            ]
        )

        result = await HookDispatcher(registry=registry).run_pre_tool_use("Bash", {})

        assert result.decision.additional_context == "X"
        assert result.decision.permission_decision == PermissionDecision.NONE
        assert result.should_proceed
        assert any(isinstance(e, ExecutionTimeout) for e in result.diagnostics)

    @pytest.mark.asyncio
    async def test_deny_wins_over_allow(self) -> None:
        allow = (
            """echo '{"hookSpecificOutput": {"hookEventName": "PreToolUse", """
            """"permissionDecision": "allow"}}'"""
        )
        registry = HookRegistry(
            [
                make_registration(allow),
                make_registration("echo 'no .env access' >&2; exit 2"),
            ]
        )

        result = await HookDispatcher(registry=registry).run_pre_tool_use(
            "Read", {"file_path": ".env"}
        )

        assert result.decision.permission_decision == PermissionDecision.DENY
        assert result.decision.reason == "no .env access"

    @pytest.mark.asyncio
    async def test_stop_hook_blocks(self) -> None:
        registry = HookRegistry(
            [
                make_registration(
                    """echo '{"decision": "block", "reason": "tests failing"}'""",
                    event=HookEvent.STOP,
                )
            ]
        )

        result = await HookDispatcher(registry=registry).run_stop()

        assert result.event == HookEvent.STOP
        assert result.decision.blocked is True
        assert result.decision.to_wire(result.event) == {
            "decision": "block",
            "reason": "tests failing",
        }

    @pytest.mark.asyncio
    async def test_session_start_output_becomes_context(self) -> None:
        registry = HookRegistry(
            [make_registration("echo 'Next.js 16 detected'", event=HookEvent.SESSION_START)]
        )

        result = await HookDispatcher(registry=registry).run_session_start()

        assert result.decision.additional_context == "Next.js 16 detected"

    @pytest.mark.asyncio
    async def test_notification_matcher(self) -> None:
        registry = HookRegistry(
            [
                make_registration(
                    "echo notified",
                    event=HookEvent.NOTIFICATION,
                    matcher="permission_prompt",
                )
            ]
        )
        dispatcher = HookDispatcher(registry=registry)

        hit = await dispatcher.dispatch(
            HookEvent.NOTIFICATION, {"notification_type": "permission_prompt"}
        )
        miss = await dispatcher.dispatch(
            HookEvent.NOTIFICATION, {"notification_type": "idle_prompt"}
        )

        assert len(hit.outcomes) == 1
        assert miss.outcomes == []

    def test_dispatch_sync(self) -> None:
        registry = HookRegistry(
            [make_registration("echo done", event=HookEvent.SESSION_END)]
        )

        result = HookDispatcher(registry=registry).dispatch_sync(
            "SessionEnd", {"reason": "logout"}
        )

        assert result.outcomes[0].result.stdout == "done"

    @pytest.mark.asyncio
    async def test_loaded_settings_end_to_end(self) -> None:
        registry = load(
            [
                ConfigSource(
                    {
                        "hooks": {
                            "PostToolUse": [
                                {
                                    "matcher": "Write|Edit",
                                    "hooks": [
                                        {
                                            "type": "command",
                                            "command": "echo 'lint failed' >&2; exit 2",
                                        }
                                    ],
                                }
                            ]
                        }
                    }
                )
            ]
        )

        result = await HookDispatcher(registry=registry).run_post_tool_use(
            "Edit", {"file_path": "a.py"}, {"success": True}
        )

        assert result.decision.blocked is True
        assert result.decision.permission_decision == PermissionDecision.NONE


class TestSessionState:
    @pytest.mark.asyncio
    async def test_session_start_resets_plugin_state(
        self, memory_store: SessionStateStore
    ) -> None:
        registry = HookRegistry(
            [
                make_registration(
                    "true", event=HookEvent.SESSION_START, source_plugin="nextjs-16"
                )
            ]
        )
        memory_store.mark_shown("nextjs-16", "skills")
        dispatcher = HookDispatcher(registry=registry, state_store=memory_store)

        await dispatcher.run_session_start(session_id="s2")

        state = memory_store.get("nextjs-16")
        assert state is not None
        assert state.session_id == "s2"
        assert memory_store.has_shown("nextjs-16", "skills") is False

    @pytest.mark.asyncio
    async def test_session_start_runs_and_resets_every_plugin(
        self, tmp_path: Path, memory_store: SessionStateStore
    ) -> None:
        sources = []
        for directory, name in (("nextjs", "nextjs-16"), ("prisma", "prisma-6")):
            plugin = tmp_path / directory
            (plugin / "hooks" / "scripts").mkdir(parents=True)
            (plugin / ".claude-plugin").mkdir()
            (plugin / ".claude-plugin" / "plugin.json").write_text(
                f'{{"name": "{name}"}}'
            )
            write_script(
                plugin / "hooks" / "scripts", "init-session.sh", f"echo 'init {name}'"
            )
            (plugin / "hooks" / "hooks.json").write_text(
                '{"hooks": {"SessionStart": [{"hooks": [{"type": "command", '
                '"command": "${CLAUDE_PLUGIN_ROOT}/hooks/scripts/init-session.sh"}]}]}}'
            )
            sources.append(ConfigSource.from_plugin_dir(plugin))
            memory_store.mark_shown(name, "skills")
        dispatcher = HookDispatcher(registry=load(sources), state_store=memory_store)

        result = await dispatcher.run_session_start(session_id="s2")

        assert len(result.outcomes) == 2
        assert result.decision.additional_context == "init nextjs-16\ninit prisma-6"
        assert memory_store.has_shown("nextjs-16", "skills") is False
        assert memory_store.has_shown("prisma-6", "skills") is False

    @pytest.mark.asyncio
    async def test_recommendation_shown_once_per_session(
        self, memory_store: SessionStateStore
    ) -> None:
        registry = HookRegistry(
            [
                make_registration(
                    "true", event=HookEvent.SESSION_START, source_plugin="nextjs-16"
                )
            ]
        )
        rules = RecommendationRules(
            rules=[
                RecommendationRule(
                    type="nextjs_skills",
                    patterns=["*.tsx"],
                    message="Next.js detected: use the ROUTING skills",
                )
            ]
        )
        dispatcher = HookDispatcher(registry=registry, state_store=memory_store)

        def tool_use(path: str) -> InvocationContext:
            return dispatcher.build_context(
                HookEvent.PRE_TOOL_USE,
                {"tool_name": "Write", "tool_input": {"file_path": path}},
            )

        await dispatcher.run_session_start()
        first = recommend_once(memory_store, "nextjs-16", rules, tool_use("app/page.tsx"))
        second = recommend_once(
            memory_store, "nextjs-16", rules, tool_use("app/layout.tsx")
        )

        assert first is not None
        assert first.hook_specific_output is not None
        assert first.hook_specific_output.additional_context == (
            "Next.js detected: use the ROUTING skills"
        )
        assert second is None

        await dispatcher.run_session_start()
        assert recommend_once(memory_store, "nextjs-16", rules, tool_use("a.tsx"))


class TestJournal:
    @pytest.mark.asyncio
    async def test_errors_are_journaled(self, tmp_path: Path) -> None:
        journal = DiagnosticsJournal(tmp_path / "errors.jsonl")
        registry = HookRegistry(
            [
                make_registration(
                    "echo 'jq missing' >&2; exit 1",
                    event=HookEvent.STOP,
                    source_plugin="nextjs-16",
                )
            ]
        )
        dispatcher = HookDispatcher(
            registry=registry, executor=HookExecutor(), journal=journal
        )

        await dispatcher.run_stop()

        entries = journal.entries()
        assert len(entries) == 1
        assert entries[0]["code"] == "EXECUTION_FAILURE"
        assert entries[0]["plugin"] == "nextjs-16"
        assert entries[0]["event"] == "Stop"
        assert entries[0]["level"] == "WARN"
        assert entries[0]["message"] == "jq missing"
        assert entries[0]["context"]["exit_code"] == 1
