"""Hook dispatcher module.

The entry point the host agent calls when a lifecycle event fires. It selects
the matching hooks, runs them concurrently, decodes their results and returns
one aggregated decision.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from hookline.core.hooks.codec import HookMessage, HookOutcome, aggregate, decode_outcome
from hookline.core.hooks.config import HookRegistry
from hookline.core.hooks.errors import HookError
from hookline.core.hooks.executor import HookExecutor
from hookline.core.hooks.matcher import Matcher
from hookline.core.hooks.session import SessionStateStore
from hookline.core.hooks.types import (
    Audience,
    Decision,
    HookEvent,
    InvocationContext,
    PermissionDecision,
)

if TYPE_CHECKING:
    from hookline.core.diagnostics import DiagnosticsJournal

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Result of dispatching one event.

    Attributes:
        event: The event that fired.
        decision: Aggregated decision of all hooks that ran.
        outcomes: Per-hook outcomes, in registration order.
        config_warnings: Entries skipped while loading the registry.
    """

    event: HookEvent
    decision: Decision = field(default_factory=Decision)
    outcomes: list[HookOutcome] = field(default_factory=list)
    config_warnings: list[HookError] = field(default_factory=list)

    @property
    def diagnostics(self) -> list[HookError]:
        """Non-blocking errors, for verbose/debug output only."""
        errors = list(self.config_warnings)
        for outcome in self.outcomes:
            errors.extend(e for e in outcome.errors if not e.blocking)
        return errors

    @property
    def messages(self) -> list[HookMessage]:
        return [m for outcome in self.outcomes for m in outcome.messages]

    def messages_for(self, audience: Audience) -> list[str]:
        return [m.text for m in self.messages if m.audience == audience]

    @property
    def should_proceed(self) -> bool:
        """Whether the host may carry on with the action the event announced."""
        return not self.decision.blocked and self.decision.continue_session


class HookDispatcher:
    """Dispatches lifecycle events to registered hooks.

    Args:
        registry: Static hook registry (for testing).
        registry_getter: Callable returning the current registry.
        executor: Runs the hooks. A default executor is created if omitted.
        state_store: Session state reset for every plugin at SessionStart.
        journal: Optional journal every hook error is appended to.
        session_id: Current session ID, used when the payload has none.
        cwd: Current working directory, used when the payload has none.
        enabled: Master switch; a disabled dispatcher runs nothing.
    """

    def __init__(
        self,
        registry: HookRegistry | None = None,
        registry_getter: Callable[[], HookRegistry] | None = None,
        executor: HookExecutor | None = None,
        state_store: SessionStateStore | None = None,
        journal: DiagnosticsJournal | None = None,
        session_id: str = "",
        cwd: str = "",
        enabled: bool = True,
    ) -> None:
        self._registry = registry
        self._registry_getter = registry_getter
        self.executor = executor or HookExecutor()
        self.state_store = state_store
        self.journal = journal
        self.session_id = session_id
        self.cwd = cwd
        self.enabled = enabled
        self.matcher = Matcher()

    @property
    def registry(self) -> HookRegistry:
        if self._registry_getter:
            return self._registry_getter()
        return self._registry if self._registry is not None else HookRegistry()

    def update_session_info(self, session_id: str, cwd: str) -> None:
        self.session_id = session_id
        self.cwd = cwd

    def build_context(
        self, event: HookEvent, payload: dict[str, Any] | InvocationContext | None
    ) -> InvocationContext:
        if isinstance(payload, InvocationContext):
            data = payload.model_dump()
        else:
            data = dict(payload or {})
        data.setdefault("session_id", self.session_id)
        data.setdefault("cwd", self.cwd)
        data["hook_event_name"] = event.value
        return InvocationContext.model_validate(data)

    def _reset_session_state(self, registry: HookRegistry, session_id: str) -> None:
        assert self.state_store is not None
        plugins = {r.source_plugin for r in registry if r.source_plugin}
        for plugin in sorted(plugins):
            try:
                self.state_store.init(plugin, session_id)
            except OSError as e:
                logger.warning(f"Cannot reset session state for {plugin}: {e}")

    def _journal(self, event: HookEvent, outcomes: list[HookOutcome]) -> None:
        if self.journal is None:
            return
        for outcome in outcomes:
            plugin = outcome.registration.source_plugin if outcome.registration else None
            for error in outcome.errors:
                try:
                    self.journal.record(
                        error,
                        event.value,
                        plugin=plugin,
                        context={
                            "exit_code": outcome.result.exit_code,
                            "duration_ms": outcome.result.duration_ms,
                        },
                    )
                except OSError as e:
                    logger.warning(f"Cannot write hook journal: {e}")
                    return

    async def dispatch(
        self,
        event: HookEvent | str,
        payload: dict[str, Any] | InvocationContext | None = None,
    ) -> DispatchResult:
        """Run every hook registered for `event` and aggregate their decisions.

        Blocks until all selected hooks completed or timed out. Errors of one
        hook never abort the others; only blocking failures change the
        aggregated decision.
        """
        event = HookEvent(event)
        if not self.enabled:
            return DispatchResult(event=event)

        registry = self.registry
        try:
            context = self.build_context(event, payload)
        except ValidationError as e:
            logger.error(f"Invalid payload for {event.value}: {e}")
            return DispatchResult(event=event, config_warnings=list(registry.warnings))

        if event == HookEvent.SESSION_START and self.state_store is not None:
            self._reset_session_state(registry, context.session_id)

        registrations = self.matcher.select(registry, event, context.match_target)
        if not registrations:
            return DispatchResult(event=event, config_warnings=list(registry.warnings))

        logger.debug(f"Dispatching {event.value} to {len(registrations)} hooks")
        results = await self.executor.run_all(registrations, context)
        outcomes = [
            decode_outcome(result, event, registration)
            for registration, result in zip(registrations, results, strict=True)
        ]
        decision = aggregate(event, outcomes)
        self._journal(event, outcomes)

        if decision.blocked or decision.permission_decision == PermissionDecision.DENY:
            logger.info(f"{event.value} blocked by hook: {decision.reason}")

        return DispatchResult(
            event=event,
            decision=decision,
            outcomes=outcomes,
            config_warnings=list(registry.warnings),
        )

    def dispatch_sync(
        self,
        event: HookEvent | str,
        payload: dict[str, Any] | InvocationContext | None = None,
    ) -> DispatchResult:
        """Blocking variant of `dispatch` for hosts without an event loop."""
        return asyncio.run(self.dispatch(event, payload))

    async def run_pre_tool_use(
        self, tool_name: str, tool_input: dict[str, Any], **extra: Any
    ) -> DispatchResult:
        return await self.dispatch(
            HookEvent.PRE_TOOL_USE,
            {"tool_name": tool_name, "tool_input": tool_input, **extra},
        )

    async def run_post_tool_use(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        tool_response: Any = None,
        **extra: Any,
    ) -> DispatchResult:
        return await self.dispatch(
            HookEvent.POST_TOOL_USE,
            {
                "tool_name": tool_name,
                "tool_input": tool_input,
                "tool_response": tool_response,
                **extra,
            },
        )

    async def run_user_prompt_submit(self, prompt: str, **extra: Any) -> DispatchResult:
        return await self.dispatch(
            HookEvent.USER_PROMPT_SUBMIT, {"prompt": prompt, **extra}
        )

    async def run_session_start(self, source: str = "startup", **extra: Any) -> DispatchResult:
        return await self.dispatch(HookEvent.SESSION_START, {"source": source, **extra})

    async def run_session_end(self, reason: str = "other", **extra: Any) -> DispatchResult:
        return await self.dispatch(HookEvent.SESSION_END, {"reason": reason, **extra})

    async def run_stop(
        self, stop_hook_active: bool = False, subagent: bool = False, **extra: Any
    ) -> DispatchResult:
        event = HookEvent.SUBAGENT_STOP if subagent else HookEvent.STOP
        return await self.dispatch(
            event, {"stop_hook_active": stop_hook_active, **extra}
        )
