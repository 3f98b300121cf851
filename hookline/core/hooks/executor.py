"""Hook executor module.

Runs command hooks as shell processes, passing the invocation payload as JSON
on stdin, and prompt hooks through the configured LLM collaborator. Every
hook has its own timeout; `run_all` starts all hooks of a dispatch together
and returns once each one has finished or been terminated.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
import os
from pathlib import Path
import re
import signal
import time

import httpx

from hookline.core.hooks.prompt import PromptEvaluator, render_prompt
from hookline.core.hooks.types import (
    EXIT_CODE_SENTINEL,
    ExecutionResult,
    HookKind,
    HookRegistration,
    InvocationContext,
)

logger = logging.getLogger(__name__)

PROJECT_DIR_VAR = "CLAUDE_PROJECT_DIR"
PLUGIN_ROOT_VAR = "CLAUDE_PLUGIN_ROOT"
REMOTE_VAR = "CLAUDE_CODE_REMOTE"
STATE_DIR_VAR = "HOOKLINE_STATE_DIR"


def expand_variables(command: str, variables: Mapping[str, str]) -> str:
    """Replace `$NAME` and `${NAME}` for the given variables only.

    Anything else is left for the shell to expand.
    """
    if not variables:
        return command
    names = "|".join(re.escape(name) for name in variables)
    pattern = re.compile(rf"\$\{{({names})\}}|\$({names})\b")
    return pattern.sub(lambda m: variables[m.group(1) or m.group(2)], command)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill the hook's whole process group, then reap the shell.

    The group is killed even if the shell already exited: a background child
    left holding the output pipes keeps the hook from finishing.
    """
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        elif process.returncode is None:
            process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


class HookExecutor:
    """Executes hook registrations against an invocation payload.

    Args:
        project_dir: Project root exported as CLAUDE_PROJECT_DIR. Defaults to
            the payload's cwd.
        prompt_evaluator: LLM collaborator used for prompt hooks.
        remote: Whether the host runs in a remote/web environment.
        state_dir: Session state directory exported as HOOKLINE_STATE_DIR, so
            `hookline session` calls from hooks share the dispatcher's store.
        env: Extra environment variables for command hooks.
    """

    def __init__(
        self,
        project_dir: str | None = None,
        prompt_evaluator: PromptEvaluator | None = None,
        remote: bool = False,
        state_dir: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.project_dir = project_dir
        self.prompt_evaluator = prompt_evaluator
        self.remote = remote
        self.state_dir = state_dir
        self.env = dict(env or {})

    def _variables(
        self, registration: HookRegistration, context: InvocationContext
    ) -> dict[str, str]:
        variables = {
            PROJECT_DIR_VAR: self.project_dir or context.cwd or os.getcwd()
        }
        if registration.plugin_root:
            variables[PLUGIN_ROOT_VAR] = registration.plugin_root
        return variables

    def build_env(
        self, registration: HookRegistration, context: InvocationContext
    ) -> dict[str, str]:
        env = os.environ.copy()
        env.update(self._variables(registration, context))
        env[REMOTE_VAR] = "true" if self.remote else "false"
        env["HOOKLINE_HOOK_EVENT"] = registration.event.value
        env["HOOKLINE_SESSION_ID"] = context.session_id
        if registration.source_plugin:
            env["HOOKLINE_PLUGIN_NAME"] = registration.source_plugin
        if self.state_dir:
            env[STATE_DIR_VAR] = self.state_dir
        env.update(self.env)
        return env

    async def run(
        self, registration: HookRegistration, context: InvocationContext
    ) -> ExecutionResult:
        """Run one hook. Never raises; failures are reported in the result."""
        if registration.kind == HookKind.PROMPT:
            return await self._run_prompt(registration, context)
        return await self._run_command(registration, context)

    async def _run_command(
        self, registration: HookRegistration, context: InvocationContext
    ) -> ExecutionResult:
        start_time = time.perf_counter()
        command = expand_variables(
            registration.body, self._variables(registration, context)
        )
        cwd = context.cwd if context.cwd and Path(context.cwd).is_dir() else None

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=self.build_env(registration, context),
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            logger.error(f"Cannot start hook '{registration.label}': {e}")
            return ExecutionResult(
                exit_code=EXIT_CODE_SENTINEL,
                stderr=str(e),
                duration_ms=_elapsed_ms(start_time),
            )

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(input=context.to_json().encode()),
                timeout=registration.timeout,
            )
        except TimeoutError:
            await _terminate(process)
            logger.warning(
                f"Hook '{registration.label}' timed out after {registration.timeout:g}s"
            )
            return ExecutionResult(
                exit_code=EXIT_CODE_SENTINEL,
                timed_out=True,
                duration_ms=_elapsed_ms(start_time),
            )
        except asyncio.CancelledError:
            await _terminate(process)
            raise

        result = ExecutionResult(
            exit_code=process.returncode if process.returncode is not None else 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace").strip(),
            stderr=stderr_bytes.decode("utf-8", errors="replace").strip(),
            duration_ms=_elapsed_ms(start_time),
        )
        logger.debug(
            f"Hook '{registration.label}' exited {result.exit_code} "
            f"in {result.duration_ms}ms"
        )
        return result

    async def _run_prompt(
        self, registration: HookRegistration, context: InvocationContext
    ) -> ExecutionResult:
        start_time = time.perf_counter()
        if self.prompt_evaluator is None:
            return ExecutionResult(
                exit_code=1,
                stderr="No prompt evaluator configured for prompt hooks",
            )

        prompt = render_prompt(registration.body, context)
        try:
            async with asyncio.timeout(registration.timeout):
                text = await self.prompt_evaluator.evaluate(prompt)
        except (TimeoutError, httpx.TimeoutException):
            logger.warning(
                f"Prompt hook '{registration.label}' timed out after "
                f"{registration.timeout:g}s"
            )
            return ExecutionResult(
                exit_code=EXIT_CODE_SENTINEL,
                timed_out=True,
                duration_ms=_elapsed_ms(start_time),
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Prompt hook '{registration.label}' failed: {e}")
            return ExecutionResult(
                exit_code=1, stderr=str(e), duration_ms=_elapsed_ms(start_time)
            )

        return ExecutionResult(
            exit_code=0, stdout=text.strip(), duration_ms=_elapsed_ms(start_time)
        )

    async def _run_guarded(
        self, registration: HookRegistration, context: InvocationContext
    ) -> ExecutionResult:
        try:
            return await self.run(registration, context)
        except Exception as e:
            logger.error(f"Error executing hook '{registration.label}': {e}")
            return ExecutionResult(exit_code=EXIT_CODE_SENTINEL, stderr=str(e))

    async def run_all(
        self, registrations: list[HookRegistration], context: InvocationContext
    ) -> list[ExecutionResult]:
        """Run hooks concurrently and wait for every one of them.

        Results are returned in the order of `registrations`. A failing or
        slow hook never cancels its siblings; only its own timeout applies.
        """
        if not registrations:
            return []

        async with asyncio.TaskGroup() as group:
            tasks = [
                group.create_task(self._run_guarded(registration, context))
                for registration in registrations
            ]
        return [task.result() for task in tasks]
