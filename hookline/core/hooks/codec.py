"""Decision codec.

Turns the raw result of a hook run into a normalized `Decision`, following
the exit code protocol:

- 0: success. JSON on stdout is validated against `HookOutput`; plain text
  is informational.
- 2: blocking error. stdout is ignored and stderr becomes the reason; what
  "blocking" means depends on the event (see `EVENT_RULES`).
- anything else, or a timeout: non-blocking error, diagnostics only.

`aggregate` folds the per-hook decisions of one dispatch into one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from hookline.core.hooks.errors import (
    BlockingFailure,
    CodecError,
    ExecutionFailure,
    ExecutionTimeout,
    HookError,
)
from hookline.core.hooks.types import (
    EXIT_CODE_BLOCKING_ERROR,
    Audience,
    ContextSpecificOutput,
    Decision,
    ExecutionResult,
    HookEvent,
    HookKind,
    HookOutput,
    HookRegistration,
    PermissionDecision,
    PermissionRequestSpecificOutput,
    PreToolUseSpecificOutput,
    PromptHookResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_REASON = "Blocked by hook"


@dataclass(frozen=True)
class EventRules:
    """How an event reacts to hook output.

    Attributes:
        blocking: Whether exit code 2 / "block" has an effect.
        permission: Whether a block is expressed as a permission denial.
        block_audience: Who sees the reason of a blocking error.
        stdout_audience: Where plain stdout of a successful hook goes.
    """

    blocking: bool
    permission: bool
    block_audience: Audience
    stdout_audience: Audience = Audience.TRANSCRIPT


EVENT_RULES: dict[HookEvent, EventRules] = {
    HookEvent.PRE_TOOL_USE: EventRules(True, True, Audience.ASSISTANT),
    HookEvent.PERMISSION_REQUEST: EventRules(True, True, Audience.ASSISTANT),
    HookEvent.POST_TOOL_USE: EventRules(True, False, Audience.ASSISTANT),
    HookEvent.NOTIFICATION: EventRules(False, False, Audience.USER),
    HookEvent.USER_PROMPT_SUBMIT: EventRules(
        True, False, Audience.USER, Audience.ASSISTANT
    ),
    HookEvent.STOP: EventRules(True, False, Audience.ASSISTANT),
    HookEvent.SUBAGENT_STOP: EventRules(True, False, Audience.ASSISTANT),
    HookEvent.PRE_COMPACT: EventRules(False, False, Audience.USER),
    HookEvent.SESSION_START: EventRules(
        False, False, Audience.USER, Audience.ASSISTANT
    ),
    HookEvent.SESSION_END: EventRules(False, False, Audience.USER),
}


@dataclass(frozen=True)
class HookMessage:
    audience: Audience
    text: str
    hook: str | None = None


@dataclass
class HookOutcome:
    """Everything the engine derived from one hook run."""

    result: ExecutionResult
    decision: Decision = field(default_factory=Decision)
    registration: HookRegistration | None = None
    errors: list[HookError] = field(default_factory=list)
    messages: list[HookMessage] = field(default_factory=list)

    @property
    def label(self) -> str | None:
        return self.registration.label if self.registration else None

    @property
    def blocking_error(self) -> BlockingFailure | None:
        for error in self.errors:
            if isinstance(error, BlockingFailure):
                return error
        return None


_FENCED_JSON = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _parse_json_object(text: str) -> dict[str, Any]:
    fenced = _FENCED_JSON.match(text.strip())
    if fenced:
        text = fenced.group(1)
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    return data


class _Decoder:
    def __init__(
        self,
        result: ExecutionResult,
        event: HookEvent,
        registration: HookRegistration | None,
    ) -> None:
        self.event = event
        self.rules = EVENT_RULES[event]
        self.outcome = HookOutcome(result=result, registration=registration)

    @property
    def label(self) -> str | None:
        return self.outcome.label

    def message(self, audience: Audience, text: str) -> None:
        self.outcome.messages.append(HookMessage(audience, text, self.label))

    def block(self, decision: Decision, reason: str) -> None:
        """Apply the event's blocking behaviour to `decision`."""
        decision.blocked = True
        decision.reason = reason
        if self.rules.permission:
            decision.permission_decision = PermissionDecision.DENY
        self.outcome.errors.append(BlockingFailure(reason, self.label))
        self.message(self.rules.block_audience, reason)

    def decode_command(self) -> HookOutcome:
        result = self.outcome.result
        if result.timed_out:
            timeout = self.outcome.registration.timeout if self.outcome.registration else 0
            self.outcome.errors.append(ExecutionTimeout(timeout, self.label))
            return self.outcome

        if result.exit_code == EXIT_CODE_BLOCKING_ERROR:
            reason = result.stderr or DEFAULT_BLOCK_REASON
            if self.rules.blocking:
                self.block(self.outcome.decision, reason)
            else:
                self.outcome.errors.append(
                    ExecutionFailure(result.exit_code, result.stderr, self.label)
                )
                self.message(Audience.USER, reason)
            return self.outcome

        if result.exit_code != 0:
            self.outcome.errors.append(
                ExecutionFailure(result.exit_code, result.stderr, self.label)
            )
            return self.outcome

        stdout = result.stdout.strip()
        if not stdout:
            return self.outcome
        if stdout.startswith("{") or stdout.startswith("```"):
            try:
                output = HookOutput.model_validate(_parse_json_object(stdout))
            except (ValueError, ValidationError) as e:
                self.outcome.errors.append(
                    CodecError(f"Invalid hook JSON output: {e}", self.label)
                )
            else:
                self.apply_output(output)
                return self.outcome
        self.plain_text(stdout)
        return self.outcome

    def plain_text(self, text: str) -> None:
        if self.rules.stdout_audience == Audience.ASSISTANT:
            self.outcome.decision.additional_context = text
        self.message(self.rules.stdout_audience, text)

    def apply_output(self, output: HookOutput) -> None:
        decision = self.outcome.decision
        if output.continue_ is False:
            decision.continue_session = False
            decision.stop_reason = output.stop_reason
            if output.stop_reason:
                self.message(Audience.USER, output.stop_reason)
        decision.suppress_output = bool(output.suppress_output)
        if output.system_message:
            decision.system_message = output.system_message
            self.message(Audience.USER, output.system_message)

        specific = output.hook_specific_output
        if specific is not None and specific.hook_event_name != self.event.value:
            self.outcome.errors.append(
                CodecError(
                    f"hookSpecificOutput is for {specific.hook_event_name}, "
                    f"not {self.event.value}; ignoring it",
                    self.label,
                )
            )
            specific = None

        if isinstance(specific, PreToolUseSpecificOutput | PermissionRequestSpecificOutput):
            decision.updated_input = specific.updated_input
            decision.additional_context = specific.additional_context
            if specific.permission_decision is not None:
                permission = PermissionDecision(specific.permission_decision)
                reason = specific.permission_decision_reason or output.reason
                if permission == PermissionDecision.DENY:
                    self.block(decision, reason or DEFAULT_BLOCK_REASON)
                else:
                    decision.permission_decision = permission
                    decision.reason = reason
                return
        elif isinstance(specific, ContextSpecificOutput):
            decision.additional_context = specific.additional_context

        if output.decision == "block":
            if self.rules.blocking:
                self.block(decision, output.reason or DEFAULT_BLOCK_REASON)
            else:
                logger.debug(f"Ignoring block decision for {self.event.value}")
        elif output.decision == "approve" and self.rules.permission:
            decision.permission_decision = PermissionDecision.ALLOW
            decision.reason = output.reason

    def decode_prompt(self) -> HookOutcome:
        result = self.outcome.result
        if result.timed_out or result.exit_code != 0:
            return self.decode_command()

        try:
            response = PromptHookResponse.model_validate(
                _parse_json_object(result.stdout)
            )
        except (ValueError, ValidationError) as e:
            self.outcome.errors.append(
                CodecError(f"Invalid prompt hook response: {e}", self.label)
            )
            return self.outcome

        decision = self.outcome.decision
        if response.decision == "block" and self.rules.blocking:
            self.block(decision, response.reason or DEFAULT_BLOCK_REASON)
        elif response.decision == "approve" and self.rules.permission:
            decision.permission_decision = PermissionDecision.ALLOW
            decision.reason = response.reason or None
        if response.continue_ is False:
            decision.continue_session = False
            decision.stop_reason = response.stop_reason
            if response.stop_reason:
                self.message(Audience.USER, response.stop_reason)
        if response.system_message:
            decision.system_message = response.system_message
            self.message(Audience.USER, response.system_message)
        return self.outcome


def decode_outcome(
    result: ExecutionResult,
    event: HookEvent,
    registration: HookRegistration | None = None,
    kind: HookKind | None = None,
) -> HookOutcome:
    """Decode one hook run into its decision, diagnostics and messages."""
    kind = kind or (registration.kind if registration else HookKind.COMMAND)
    decoder = _Decoder(result, event, registration)
    if kind == HookKind.PROMPT:
        outcome = decoder.decode_prompt()
    else:
        outcome = decoder.decode_command()
    for error in outcome.errors:
        if not error.blocking:
            logger.warning(f"Hook error: {error}")
    return outcome


def decode(
    result: ExecutionResult, event: HookEvent, kind: HookKind = HookKind.COMMAND
) -> Decision:
    """Decode one hook run into a normalized decision."""
    return decode_outcome(result, event, kind=kind).decision


def _join(parts: list[str]) -> str | None:
    return "\n".join(parts) if parts else None


def aggregate(event: HookEvent, outcomes: list[HookOutcome]) -> Decision:
    """Fold the decisions of all hooks of one dispatch.

    The most restrictive permission wins (deny > ask > allow > none) and any
    block blocks. Context and system messages from every hook are kept, in
    registration order. `updated_input` objects are merged in the same order.
    """
    aggregated = Decision()
    if not outcomes:
        return aggregated

    contexts: list[str] = []
    system_messages: list[str] = []
    stop_reasons: list[str] = []

    for outcome in outcomes:
        decision = outcome.decision
        if decision.permission_decision.rank > aggregated.permission_decision.rank:
            aggregated.permission_decision = decision.permission_decision
        aggregated.blocked = aggregated.blocked or decision.blocked
        if not decision.continue_session:
            aggregated.continue_session = False
            if decision.stop_reason:
                stop_reasons.append(decision.stop_reason)
        if decision.additional_context:
            contexts.append(decision.additional_context)
        if decision.system_message:
            system_messages.append(decision.system_message)
        if decision.updated_input is not None:
            if aggregated.updated_input is None:
                aggregated.updated_input = {}
            conflicts = {
                key
                for key, value in decision.updated_input.items()
                if key in aggregated.updated_input
                and aggregated.updated_input[key] != value
            }
            if conflicts:
                logger.warning(
                    f"Hooks for {event.value} returned conflicting updatedInput "
                    f"for {sorted(conflicts)}; keeping the last one"
                )
            aggregated.updated_input.update(decision.updated_input)

    if aggregated.blocked:
        reasons = [
            o.decision.reason
            for o in outcomes
            if o.decision.blocked and o.decision.reason
        ]
    else:
        reasons = [
            o.decision.reason
            for o in outcomes
            if o.decision.permission_decision == aggregated.permission_decision
            and o.decision.reason
        ]
    aggregated.reason = _join(reasons)
    aggregated.stop_reason = _join(stop_reasons)
    aggregated.additional_context = _join(contexts)
    aggregated.system_message = _join(system_messages)
    aggregated.suppress_output = all(o.decision.suppress_output for o in outcomes)
    return aggregated
