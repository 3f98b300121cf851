"""Hookline CLI Entrypoint.

Runs hooks for an event on behalf of a host, validates hook documents and
exposes the session state store to shell hook scripts.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
import sys
from typing import Any

from rich.console import Console
from rich.markup import escape

from hookline import __version__
from hookline.core.config import HooklineConfig, load_config, settings_sources
from hookline.core.diagnostics import DiagnosticsJournal, setup_logging
from hookline.core.hooks.config import ConfigSource, load, validate_document
from hookline.core.hooks.dispatcher import DispatchResult, HookDispatcher
from hookline.core.hooks.errors import ConfigError
from hookline.core.hooks.executor import HookExecutor
from hookline.core.hooks.prompt import HttpPromptEvaluator
from hookline.core.hooks.recommend import RecommendationRules, recommend_once
from hookline.core.hooks.session import SessionStateStore, default_state_dir, file_store
from hookline.core.hooks.types import (
    EXIT_CODE_BLOCKING_ERROR,
    HookEvent,
    InvocationContext,
    PermissionDecision,
    SettingsScope,
)

err_console = Console(stderr=True)


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="hookline",
        description="Hookline - lifecycle hooks for assistant plugins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hookline dispatch PreToolUse < payload.json
  hookline validate my-plugin/hooks/hooks.json
  hookline session mark-shown nextjs-16 middleware_warning
        """,
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("--config", type=Path, default=None, help="Config TOML file")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show non-blocking diagnostics"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    dispatch = subparsers.add_parser(
        "dispatch", help="Run the hooks for an event (payload JSON on stdin)"
    )
    dispatch.add_argument("event", choices=[e.value for e in HookEvent])
    dispatch.add_argument(
        "--settings",
        action="append",
        type=Path,
        default=[],
        help="Additional settings/hooks document (repeatable)",
    )
    dispatch.add_argument(
        "--plugin",
        action="append",
        type=Path,
        default=[],
        help="Plugin directory containing hooks/hooks.json (repeatable)",
    )
    dispatch.add_argument("--project-dir", type=Path, default=None)
    dispatch.add_argument(
        "--no-standard-settings",
        action="store_true",
        help="Do not read the user/project/local/managed settings files",
    )

    validate = subparsers.add_parser("validate", help="Validate a hooks document")
    validate.add_argument("path", type=Path)

    session = subparsers.add_parser("session", help="Per-session plugin state")
    session.add_argument(
        "action", choices=["init", "has-shown", "mark-shown", "clear", "show"]
    )
    session.add_argument("plugin")
    session.add_argument("type", nargs="?", default=None)
    session.add_argument("--session-id", default="")

    recommend = subparsers.add_parser(
        "recommend", help="Emit a once-per-session recommendation for the payload"
    )
    recommend.add_argument("plugin")
    recommend.add_argument("--rules", type=Path, required=True)

    return parser.parse_args(argv)


def read_payload() -> dict[str, Any]:
    if sys.stdin is None or sys.stdin.isatty():
        return {}
    text = sys.stdin.read().strip()
    if not text:
        return {}
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("payload must be a JSON object")
    return data


def collect_sources(args: argparse.Namespace, config: HooklineConfig) -> list[ConfigSource]:
    project_dir = args.project_dir or config.project_dir
    sources: list[ConfigSource] = []
    if not args.no_standard_settings:
        sources.extend(settings_sources(project_dir))
    for path in args.settings:
        sources.append(ConfigSource.from_path(path, scope=SettingsScope.PROJECT))
    for plugin_dir in args.plugin:
        sources.append(ConfigSource.from_plugin_dir(plugin_dir))
    return sources


def report_diagnostics(result: DispatchResult, verbose: bool) -> None:
    if not verbose:
        return
    for error in result.diagnostics:
        err_console.print(
            f"[yellow]{error.code}[/yellow] {escape(str(error))}", highlight=False
        )


async def run_dispatch(
    args: argparse.Namespace, config: HooklineConfig, payload: dict[str, Any]
) -> DispatchResult:
    registry = load(
        collect_sources(args, config),
        command_timeout=config.default_command_timeout,
        prompt_timeout=config.default_prompt_timeout,
    )
    evaluator = None
    if config.prompt_endpoint:
        evaluator = HttpPromptEvaluator(
            endpoint=config.prompt_endpoint,
            model=config.prompt_model,
            api_key_env=config.prompt_api_key_env,
        )
    state_dir = Path(config.state_dir) if config.state_dir else default_state_dir()
    project_dir = args.project_dir or config.project_dir
    executor = HookExecutor(
        project_dir=str(project_dir) if project_dir else None,
        prompt_evaluator=evaluator,
        remote=config.remote,
        state_dir=str(state_dir),
    )
    dispatcher = HookDispatcher(
        registry=registry,
        executor=executor,
        state_store=file_store(state_dir),
        journal=DiagnosticsJournal(config.journal_path) if config.journal_path else None,
        cwd=str(Path.cwd()),
        enabled=config.enabled,
    )
    try:
        return await dispatcher.dispatch(args.event, payload)
    finally:
        if evaluator is not None:
            await evaluator.aclose()


def cmd_dispatch(args: argparse.Namespace, config: HooklineConfig) -> int:
    try:
        payload = read_payload()
        result = asyncio.run(run_dispatch(args, config, payload))
    except (ConfigError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1

    report_diagnostics(result, args.verbose)
    decision = result.decision
    sys.stdout.write(json.dumps(decision.to_wire(result.event)) + "\n")
    if decision.blocked or decision.permission_decision == PermissionDecision.DENY:
        if decision.reason:
            sys.stderr.write(decision.reason + "\n")
        return EXIT_CODE_BLOCKING_ERROR
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    try:
        source = ConfigSource.from_path(args.path)
    except ConfigError as e:
        err_console.print(f"[red]INVALID[/red] {escape(str(e))}", highlight=False)
        return 1

    report = validate_document(source)
    if report.valid:
        err_console.print(
            f"[green]VALID[/green] {len(report.registrations)} hooks", highlight=False
        )
    else:
        err_console.print("[red]INVALID[/red]")
        for issue in report.errors:
            err_console.print(f"  - {escape(str(issue))}", highlight=False)
    if report.warnings:
        err_console.print("[yellow]WARNINGS:[/yellow]")
        for issue in report.warnings:
            err_console.print(f"  - {escape(str(issue))}", highlight=False)
    return 0 if report.valid else 1


def cmd_session(args: argparse.Namespace, store: SessionStateStore) -> int:
    needs_type = args.action in ("has-shown", "mark-shown")
    if needs_type and not args.type:
        err_console.print(f"[red]Error:[/red] {args.action} requires a TYPE")
        return 1

    try:
        match args.action:
            case "init":
                store.init(args.plugin, args.session_id)
            case "has-shown":
                return 0 if store.has_shown(args.plugin, args.type) else 1
            case "mark-shown":
                store.mark_shown(args.plugin, args.type)
            case "clear":
                store.clear(args.plugin)
            case "show":
                state = store.get(args.plugin)
                if state is None:
                    return 1
                sys.stdout.write(state.model_dump_json(indent=2) + "\n")
    except (OSError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    return 0


def cmd_recommend(args: argparse.Namespace, store: SessionStateStore) -> int:
    try:
        rules = RecommendationRules.model_validate_json(
            args.rules.read_text(encoding="utf-8")
        )
        context = InvocationContext.model_validate(read_payload())
        output = recommend_once(store, args.plugin, rules, context)
    except (OSError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    if output is not None:
        sys.stdout.write(output.to_json() + "\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_arguments(argv)
    config = load_config(config_path=args.config)
    setup_logging(config, verbose=args.verbose)

    match args.command:
        case "dispatch":
            return cmd_dispatch(args, config)
        case "validate":
            return cmd_validate(args)
        case "session":
            return cmd_session(args, file_store(config.state_dir))
        case "recommend":
            return cmd_recommend(args, file_store(config.state_dir))
    return 1


if __name__ == "__main__":
    sys.exit(main())
