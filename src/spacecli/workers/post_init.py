"""Post-Init Executor - Runs setup commands inside a new worktree."""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from spacecli.logging import truncate_output
from spacecli.workers.models import CommandResult, PostInitResult, PostInitTask

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("spacecli.workers.post_init")

DEFAULT_TIMEOUT = 180.0


def _kill_group(process: subprocess.Popen[str]) -> None:
    """Kill the shell and everything it started."""
    # the group is gone once every member has exited
    with contextlib.suppress(ProcessLookupError):
        os.killpg(process.pid, signal.SIGKILL)


@dataclass
class StreamingResult:
    """Result from streaming subprocess execution."""

    returncode: int | None
    output: str
    timed_out: bool = False


class PostInitExecutor:
    """Runs a repository's post-init commands through the shell.

    Commands run in order with the worktree as working directory. Output
    is streamed line by line to ``log_callback``. The first failing command
    stops the task; there is no retry. The timeout covers the whole task,
    not each command.
    """

    def __init__(self, timeout: float | None = DEFAULT_TIMEOUT) -> None:
        """Initialize the executor.

        Args:
            timeout: Seconds allowed for all commands of one task.
                     None means no timeout.
        """
        self.timeout = timeout
        self.log_callback: Callable[[str], None] | None = None
        self._process: subprocess.Popen[str] | None = None
        self._cancelled = threading.Event()

    def execute(self, task: PostInitTask, dry_run: bool = False) -> PostInitResult:
        """Run all commands of a task.

        Args:
            task: The commands and the worktree to run them in.
            dry_run: List the commands as skipped without running them.

        Returns:
            PostInitResult with per-command results.
        """
        if dry_run:
            for command in task.commands:
                logger.info("[DRY RUN] Would run in %s: %s", task.worktree, command)
            return PostInitResult(
                repository=task.repository, success=True, skipped=list(task.commands)
            )

        self._cancelled.clear()
        result = PostInitResult(repository=task.repository, success=True)
        started = time.monotonic()

        for index, command in enumerate(task.commands):
            if self._cancelled.is_set():
                result.success = False
                result.error = "cancelled"
                result.skipped = list(task.commands[index:])
                break

            remaining = None
            if self.timeout is not None:
                remaining = max(0.0, self.timeout - (time.monotonic() - started))

            logger.info("Running post-init for %s: %s", task.repository, command)
            try:
                streamed = self._run_command(command, task, remaining)
            except OSError as e:
                logger.error("Failed to execute '%s': %s", command, e)
                result.commands.append(CommandResult(command, None, ""))
                result.success = False
                result.error = f"Failed to execute '{command}': {e}"
                result.skipped = list(task.commands[index + 1 :])
                break

            command_result = CommandResult(
                command=command,
                returncode=streamed.returncode,
                output=streamed.output,
                timed_out=streamed.timed_out,
            )
            result.commands.append(command_result)
            logger.debug(
                "Output (%d chars): %s",
                len(streamed.output),
                truncate_output(streamed.output, 500) if streamed.output else "(empty)",
            )

            if command_result.success:
                continue

            result.success = False
            result.skipped = list(task.commands[index + 1 :])
            if streamed.timed_out:
                result.timed_out = True
                result.error = f"'{command}' timed out after {self.timeout} seconds"
            elif self._cancelled.is_set():
                result.error = "cancelled"
            else:
                result.error = f"'{command}' exited with code {streamed.returncode}"
            logger.error("Post-init for %s failed: %s", task.repository, result.error)
            break

        if result.success:
            logger.info("Post-init for %s completed", task.repository)
        return result

    def cancel(self) -> None:
        """Kill the running command and skip the rest."""
        self._cancelled.set()
        process = self._process
        if process is not None and process.poll() is None:
            logger.warning("Killing post-init command (pid %d)", process.pid)
            _kill_group(process)

    def _run_command(
        self, command: str, task: PostInitTask, timeout: float | None
    ) -> StreamingResult:
        """Run one shell command with streaming output.

        Returns:
            StreamingResult with return code and collected output.
        """
        env = {**os.environ, **task.env} if task.env else None
        process = subprocess.Popen(
            command,
            shell=True,
            cwd=task.worktree,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
            start_new_session=True,
        )
        self._process = process

        output_lines: list[str] = []

        def pump() -> None:
            if process.stdout is None:
                return
            for raw_line in process.stdout:
                stripped_line = raw_line.rstrip("\n")
                output_lines.append(stripped_line)
                if self.log_callback:
                    self.log_callback(stripped_line)

        reader = threading.Thread(target=pump, name="space-post-init-output", daemon=True)
        reader.start()

        timed_out = False
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after %s seconds: %s", timeout, command)
            _kill_group(process)
            process.wait()
            timed_out = True
        except KeyboardInterrupt:
            _kill_group(process)
            process.wait()
            raise
        finally:
            reader.join(timeout=1.0)
            self._process = None

        return StreamingResult(
            returncode=process.returncode,
            output="\n".join(output_lines),
            timed_out=timed_out,
        )
