"""Abstract base class for tool adapters and the subprocess machinery they share."""

import asyncio
import logging
import os
import signal
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field, replace
from pathlib import Path

from boostsec.scan_pipeline.cancellation import CancellationToken
from boostsec.scan_pipeline.errors import ToolCancelledError, ToolError
from boostsec.scan_pipeline.models.stage import StageDescriptor
from boostsec.scan_pipeline.models.stage_result import StageResult, StageStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionContext:
    """Everything a stage needs from the run it belongs to.

    The checkout is shared read/write by all stages of a run; stages never
    run at the same time so no locking is needed around it.
    """

    checkout_path: Path
    cancel_token: CancellationToken
    env: Mapping[str, str] = field(default_factory=dict)
    log_dir: Path | None = None
    grace_period: float = 5.0

    def for_stage(self, token: CancellationToken) -> "ExecutionContext":
        """Return a copy bound to a stage-level cancellation token."""
        return replace(self, cancel_token=token)


@dataclass(frozen=True)
class ProcessOutput:
    """Exit code and decoded output of a finished process."""

    exit_code: int
    stdout: str
    stderr: str


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


def _signal_group(pid: int, sig: signal.Signals) -> None:
    """Send a signal to a process group, ignoring groups that are already gone."""
    with suppress(ProcessLookupError, PermissionError):
        os.killpg(pid, sig)


async def _drain(stream: asyncio.StreamReader | None, chunks: list[bytes]) -> None:
    """Read a stream to EOF, keeping every chunk read so far."""
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        chunks.append(chunk)


async def _terminate_group(
    process: asyncio.subprocess.Process, grace_period: float
) -> None:
    """SIGTERM the process group, escalating to SIGKILL after the grace period."""
    _signal_group(process.pid, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_period)
    except asyncio.TimeoutError:
        logger.warning(
            f"Process group {process.pid} ignored SIGTERM for {grace_period}s, "
            "sending SIGKILL"
        )
        _signal_group(process.pid, signal.SIGKILL)
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(process.wait(), timeout=grace_period)


async def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    token: CancellationToken,
    grace_period: float,
) -> ProcessOutput:
    """Run a command in its own process group until it exits or is cancelled.

    Args:
        argv: Command and arguments
        cwd: Working directory
        env: Full environment of the child
        token: Cancellation signal; when set, the whole group is terminated
        grace_period: Seconds between SIGTERM and SIGKILL

    Returns:
        Exit code and output of the process

    Raises:
        ToolError: If the command cannot be started
        ToolCancelledError: If the token was cancelled before the command
            finished; carries the output collected so far

    """
    if not cwd.is_dir():
        raise ToolError(f"Working directory not found: {cwd}")

    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=dict(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except FileNotFoundError as e:
        raise ToolError(f"Tool not found: {argv[0]}") from e
    except OSError as e:
        raise ToolError(f"Failed to start {argv[0]}: {e}") from e

    logger.debug(f"Started {argv[0]} (pid {process.pid})")

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    finished = asyncio.ensure_future(
        asyncio.gather(
            process.wait(),
            _drain(process.stdout, stdout_chunks),
            _drain(process.stderr, stderr_chunks),
        )
    )
    cancelled = asyncio.ensure_future(token.wait())

    try:
        await asyncio.wait({finished, cancelled}, return_when=asyncio.FIRST_COMPLETED)

        if not finished.done():
            logger.info(f"Cancelling {argv[0]} (pid {process.pid}): {token.reason}")
            await _terminate_group(process, grace_period)
            # Pipes close once the group is gone; let the readers catch up.
            await asyncio.wait({finished}, timeout=grace_period)
            raise ToolCancelledError(
                f"{argv[0]} cancelled: {token.reason}",
                stdout=_decode(stdout_chunks),
                stderr=_decode(stderr_chunks),
            )

        finished.result()
    finally:
        cancelled.cancel()
        finished.cancel()
        # Reclaim anything left in the group, including background children
        # of a tool that already exited.
        _signal_group(process.pid, signal.SIGKILL)
        if process.returncode is None:
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(process.wait(), timeout=grace_period)

    return ProcessOutput(
        exit_code=process.returncode if process.returncode is not None else -1,
        stdout=_decode(stdout_chunks),
        stderr=_decode(stderr_chunks),
    )


class ToolAdapter(ABC):
    """Abstract base for tool adapters.

    An adapter knows how to invoke one kind of tool and how to turn its
    output into categorized finding counts.
    """

    tool_type: str = "command"

    @abstractmethod
    def parse_findings(self, stdout: str, stderr: str) -> dict[str, int]:
        """Extract finding counts from tool output.

        Must accept truncated output: it is also used to recover partial
        findings from a tool that was cut off.

        Args:
            stdout: Tool standard output
            stderr: Tool standard error

        Returns:
            Mapping from finding category to count

        """

    def classify(self, exit_code: int, findings: Mapping[str, int]) -> StageStatus:
        """Decide the stage status of a tool that ran to completion."""
        return "success" if exit_code == 0 else "failure"

    def build_argv(self, descriptor: StageDescriptor) -> list[str]:
        """Build the command line for a stage."""
        return [descriptor.command, *descriptor.args]

    def build_env(
        self, descriptor: StageDescriptor, context: ExecutionContext
    ) -> dict[str, str]:
        """Build the child environment: process env, run env, stage env."""
        return {**os.environ, **context.env, **descriptor.env}

    def working_dir(
        self, descriptor: StageDescriptor, context: ExecutionContext
    ) -> Path:
        """Resolve the stage working directory against the checkout."""
        return context.checkout_path / descriptor.working_dir

    def recover_partial(self, error: ToolCancelledError) -> dict[str, int]:
        """Parse whatever output a cancelled tool produced."""
        return self.parse_findings(error.stdout, error.stderr)

    def store_output(
        self,
        descriptor: StageDescriptor,
        context: ExecutionContext,
        stdout: str,
        stderr: str,
    ) -> str | None:
        """Write raw tool output to the log directory, if one is configured.

        Returns:
            Path of the written log file, or None

        """
        if context.log_dir is None:
            return None

        context.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = context.log_dir / f"{descriptor.name}.log"
        log_file.write_text(
            f"$ {' '.join(self.build_argv(descriptor))}\n"
            f"--- stdout ---\n{stdout}\n--- stderr ---\n{stderr}\n"
        )
        return str(log_file)

    async def run(
        self, descriptor: StageDescriptor, context: ExecutionContext
    ) -> StageResult:
        """Invoke the tool for a stage and normalize its output.

        Args:
            descriptor: Stage to run
            context: Run context carrying checkout, environment and
                cancellation signal

        Returns:
            Normalized stage result

        Raises:
            ToolError: If the tool cannot be invoked
            ToolCancelledError: If the run was cancelled

        """
        started = time.monotonic()
        try:
            output = await run_process(
                self.build_argv(descriptor),
                cwd=self.working_dir(descriptor, context),
                env=self.build_env(descriptor, context),
                token=context.cancel_token,
                grace_period=context.grace_period,
            )
        except ToolCancelledError as e:
            e.output_path = self.store_output(
                descriptor, context, e.stdout, e.stderr
            )
            raise

        return self.build_result(descriptor, context, output, started)

    def build_result(
        self,
        descriptor: StageDescriptor,
        context: ExecutionContext,
        output: ProcessOutput,
        started: float,
    ) -> StageResult:
        """Turn finished process output into a stage result."""
        findings = self.parse_findings(output.stdout, output.stderr)
        status = self.classify(output.exit_code, findings)
        message = None
        if status != "success":
            message = (
                f"{descriptor.command} reported a failure "
                f"(exit code {output.exit_code})"
            )

        return StageResult(
            stage=descriptor.name,
            status=status,
            required=descriptor.required,
            findings=findings,
            duration=time.monotonic() - started,
            exit_code=output.exit_code,
            message=message,
            output_path=self.store_output(
                descriptor, context, output.stdout, output.stderr
            ),
        )
