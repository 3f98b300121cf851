"""Tests for hook configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from hookline.core.hooks.config import ConfigSource, load, validate_document
from hookline.core.hooks.errors import ConfigError
from hookline.core.hooks.matcher import select
from hookline.core.hooks.types import HookEvent, HookKind, SettingsScope


def hooks_doc(event: str, *entries: dict, matcher: str | None = None) -> dict:
    group: dict = {"hooks": list(entries)}
    if matcher is not None:
        group["matcher"] = matcher
    return {"hooks": {event: [group]}}


def command(body: str, **extra) -> dict:
    return {"type": "command", "command": body, **extra}


class TestLoad:
    def test_basic_document(self) -> None:
        doc = hooks_doc("PreToolUse", command("./validate.sh", timeout=10), matcher="Write|Edit")

        registry = load([ConfigSource(doc)])

        hooks = registry.for_event(HookEvent.PRE_TOOL_USE)
        assert len(hooks) == 1
        assert hooks[0].matcher == "Write|Edit"
        assert hooks[0].body == "./validate.sh"
        assert hooks[0].timeout == 10.0
        assert hooks[0].kind == HookKind.COMMAND

    def test_json_text_source(self) -> None:
        doc = hooks_doc("Stop", command("./stop.sh"))
        registry = load([ConfigSource(json.dumps(doc))])
        assert len(registry) == 1

    def test_bare_event_map(self) -> None:
        registry = load(
            [ConfigSource({"SessionStart": [{"hooks": [command("echo hi")]}]})]
        )
        assert registry.for_event(HookEvent.SESSION_START)[0].body == "echo hi"

    def test_settings_without_hooks(self) -> None:
        registry = load([ConfigSource({"permissions": {"allow": ["Bash"]}})])
        assert registry.is_empty()

    def test_default_timeouts(self) -> None:
        doc = {
            "hooks": {
                "Stop": [
                    {
                        "hooks": [
                            command("./stop.sh"),
                            {"type": "prompt", "prompt": "Is the task done? $ARGUMENTS"},
                        ]
                    }
                ]
            }
        }

        registry = load([ConfigSource(doc)])
        command_hook, prompt_hook = registry.for_event(HookEvent.STOP)
        assert command_hook.timeout == 60.0
        assert prompt_hook.timeout == 30.0
        assert prompt_hook.kind == HookKind.PROMPT

        custom = load([ConfigSource(doc)], command_timeout=5, prompt_timeout=7)
        assert [h.timeout for h in custom.for_event(HookEvent.STOP)] == [5.0, 7.0]

    @pytest.mark.parametrize("matcher", ["*", ""])
    def test_wildcard_matcher_normalized(self, matcher: str) -> None:
        doc = hooks_doc("PostToolUse", command("./fmt.sh"), matcher=matcher)
        registry = load([ConfigSource(doc)])
        assert registry.for_event(HookEvent.POST_TOOL_USE)[0].matcher is None

    def test_matcher_dropped_for_events_without_tools(self) -> None:
        doc = hooks_doc("SessionStart", command("./init.sh"), matcher="startup")
        registry = load([ConfigSource(doc)])
        assert registry.for_event(HookEvent.SESSION_START)[0].matcher is None

    def test_malformed_json_raises(self) -> None:
        with pytest.raises(ConfigError, match="malformed JSON"):
            load([ConfigSource("{not json", name="settings.json")])

    def test_non_object_document_raises(self) -> None:
        with pytest.raises(ConfigError):
            load([ConfigSource("[1, 2, 3]")])

    def test_unknown_event_raises(self) -> None:
        with pytest.raises(ConfigError, match="unknown event 'BeforeEverything'"):
            load([ConfigSource({"hooks": {"BeforeEverything": []}})])

    def test_unknown_event_in_bare_event_map_raises(self) -> None:
        doc = {
            "PreToolUse": [{"matcher": "Bash", "hooks": [command("./guard.sh")]}],
            "PreToolUze": [{"matcher": "Bash", "hooks": [command("./typo.sh")]}],
        }
        with pytest.raises(ConfigError, match="unknown event 'PreToolUze'"):
            load([ConfigSource(doc)])

    def test_misspelled_only_event_raises(self) -> None:
        with pytest.raises(ConfigError, match="unknown event 'SesionStart'"):
            load([ConfigSource({"SesionStart": [{"hooks": [command("echo hi")]}]})])

    def test_hooks_must_be_object(self) -> None:
        with pytest.raises(ConfigError):
            load([ConfigSource({"hooks": ["PreToolUse"]})])

    def test_invalid_entries_are_skipped(self) -> None:
        doc = hooks_doc(
            "PreToolUse",
            {"type": "command"},
            {"type": "script", "command": "./x.sh"},
            command("./neg.sh", timeout=-1),
            command("./ok.sh"),
            matcher="Bash",
        )

        registry = load([ConfigSource(doc)])

        assert [h.body for h in registry] == ["./ok.sh"]
        assert len(registry.warnings) == 3
        assert all(isinstance(w, ConfigError) for w in registry.warnings)

    def test_prompt_hook_rejected_for_unsupported_event(self) -> None:
        doc = hooks_doc("PostToolUse", {"type": "prompt", "prompt": "Review this"})
        registry = load([ConfigSource(doc)])
        assert registry.is_empty()
        assert "not supported for PostToolUse" in str(registry.warnings[0])

    def test_sources_are_unioned(self) -> None:
        user = ConfigSource(hooks_doc("Stop", command("./a.sh")), scope=SettingsScope.USER)
        project = ConfigSource(
            hooks_doc("Stop", command("./b.sh")), scope=SettingsScope.PROJECT
        )

        registry = load([project, user])

        assert [h.body for h in registry.for_event(HookEvent.STOP)] == ["./a.sh", "./b.sh"]

    def test_more_specific_scope_wins_for_same_identity(self) -> None:
        user = ConfigSource(
            hooks_doc("Stop", command("./check.sh", timeout=10)),
            scope=SettingsScope.USER,
        )
        local = ConfigSource(
            hooks_doc("Stop", command("./check.sh", timeout=20)),
            scope=SettingsScope.LOCAL,
        )

        for sources in ([user, local], [local, user]):
            hooks = load(sources).for_event(HookEvent.STOP)
            assert len(hooks) == 1
            assert hooks[0].timeout == 20.0
            assert hooks[0].scope == SettingsScope.LOCAL

    def test_plugin_scope_loses_to_user(self) -> None:
        plugin = ConfigSource(
            hooks_doc("Stop", command("./check.sh", timeout=5)),
            scope=SettingsScope.PLUGIN,
            plugin_name="linter",
        )
        user = ConfigSource(
            hooks_doc("Stop", command("./check.sh", timeout=15)),
            scope=SettingsScope.USER,
        )

        hooks = load([user, plugin]).for_event(HookEvent.STOP)

        assert len(hooks) == 1
        assert hooks[0].timeout == 15.0
        assert hooks[0].source_plugin is None


class TestConfigSource:
    def test_from_path(self, tmp_path: Path) -> None:
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(hooks_doc("Stop", command("./stop.sh"))))

        source = ConfigSource.from_path(path, scope=SettingsScope.PROJECT)

        assert source.name == str(path)
        assert load([source]).for_event(HookEvent.STOP)[0].scope == SettingsScope.PROJECT

    def test_from_missing_path_raises(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="cannot read file"):
            ConfigSource.from_path(tmp_path / "missing.json")

    def test_from_plugin_dir(self, tmp_path: Path) -> None:
        plugin_dir = tmp_path / "nextjs-plugin"
        (plugin_dir / ".claude-plugin").mkdir(parents=True)
        (plugin_dir / ".claude-plugin" / "plugin.json").write_text(
            json.dumps({"name": "nextjs-16", "version": "1.0.0"})
        )
        (plugin_dir / "hooks").mkdir()
        (plugin_dir / "hooks" / "hooks.json").write_text(
            json.dumps(
                hooks_doc(
                    "PreToolUse",
                    command("${CLAUDE_PLUGIN_ROOT}/scripts/recommend.sh"),
                    matcher="Read|Write|Edit",
                )
            )
        )

        registry = load([ConfigSource.from_plugin_dir(plugin_dir)])

        hook = registry.for_event(HookEvent.PRE_TOOL_USE)[0]
        assert hook.source_plugin == "nextjs-16"
        assert hook.plugin_root == str(plugin_dir.resolve())
        assert hook.scope == SettingsScope.PLUGIN

    def test_plugin_name_defaults_to_directory(self, tmp_path: Path) -> None:
        plugin_dir = tmp_path / "my-plugin"
        (plugin_dir / "hooks").mkdir(parents=True)
        (plugin_dir / "hooks" / "hooks.json").write_text(
            json.dumps(hooks_doc("Stop", command("./stop.sh")))
        )

        source = ConfigSource.from_plugin_dir(plugin_dir)

        assert source.plugin_name == "my-plugin"


def write_plugin(root: Path, name: str, doc: dict) -> Path:
    (root / ".claude-plugin").mkdir(parents=True)
    (root / ".claude-plugin" / "plugin.json").write_text(json.dumps({"name": name}))
    (root / "hooks").mkdir()
    (root / "hooks" / "hooks.json").write_text(json.dumps(doc))
    return root


class TestDuplicateSources:
    def test_same_document_from_many_sources_selects_one_hook(self) -> None:
        doc = hooks_doc("PreToolUse", command("./validate.sh"), matcher="Write|Edit")
        sources = [
            ConfigSource(doc, scope=scope)
            for scope in (
                SettingsScope.USER,
                SettingsScope.PROJECT,
                SettingsScope.LOCAL,
                SettingsScope.USER,
            )
        ]

        registry = load(sources)
        selected = select(registry, HookEvent.PRE_TOOL_USE, "Write")

        assert len(selected) == 1
        assert selected[0].scope == SettingsScope.LOCAL

    def test_same_plugin_loaded_twice_selects_one_hook(self, tmp_path: Path) -> None:
        doc = hooks_doc(
            "SessionStart", command("${CLAUDE_PLUGIN_ROOT}/hooks/scripts/init-session.sh")
        )
        plugin = write_plugin(tmp_path / "nextjs-plugin", "nextjs-16", doc)

        registry = load(
            [ConfigSource.from_plugin_dir(plugin), ConfigSource.from_plugin_dir(plugin)]
        )

        assert len(select(registry, HookEvent.SESSION_START)) == 1

    def test_plugins_sharing_a_relative_command_stay_separate(
        self, tmp_path: Path
    ) -> None:
        doc = hooks_doc(
            "SessionStart", command("${CLAUDE_PLUGIN_ROOT}/hooks/scripts/init-session.sh")
        )
        nextjs = write_plugin(tmp_path / "nextjs", "nextjs-16", doc)
        prisma = write_plugin(tmp_path / "prisma", "prisma-6", doc)

        registry = load(
            [ConfigSource.from_plugin_dir(nextjs), ConfigSource.from_plugin_dir(prisma)]
        )
        selected = select(registry, HookEvent.SESSION_START)

        assert [h.source_plugin for h in selected] == ["nextjs-16", "prisma-6"]


class TestValidateDocument:
    def test_valid_document(self) -> None:
        report = validate_document(
            ConfigSource(hooks_doc("PreToolUse", command("./v.sh"), matcher="Bash"))
        )
        assert report.valid
        assert report.errors == []
        assert len(report.registrations) == 1

    def test_document_errors_are_reported(self) -> None:
        report = validate_document(ConfigSource("{oops", name="hooks.json"))
        assert not report.valid
        assert report.errors[0].path == "hooks.json"

    def test_entry_errors_have_paths(self) -> None:
        report = validate_document(
            ConfigSource(hooks_doc("Stop", command("./ok.sh"), {"type": "command"}))
        )
        assert not report.valid
        assert str(report.errors[0]).startswith("hooks.Stop[0].hooks[1]")

    def test_warnings(self) -> None:
        report = validate_document(
            ConfigSource(
                hooks_doc("PreToolUse", command("./v.sh", prompt="unused"))
            )
        )
        assert report.valid
        messages = [w.message for w in report.warnings]
        assert any("matcher is recommended" in m for m in messages)
        assert any("prompt is ignored" in m for m in messages)
