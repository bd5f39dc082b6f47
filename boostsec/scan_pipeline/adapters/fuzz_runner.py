"""Fuzz runner adapter running several libFuzzer targets concurrently."""

import asyncio
import logging
import re
import time
from collections.abc import Mapping
from pathlib import PurePath

from boostsec.scan_pipeline.adapters.base import (
    ExecutionContext,
    ProcessOutput,
    ToolAdapter,
    run_process,
)
from boostsec.scan_pipeline.errors import ToolCancelledError, ToolError
from boostsec.scan_pipeline.models.stage import StageDescriptor
from boostsec.scan_pipeline.models.stage_result import StageResult, StageStatus

logger = logging.getLogger(__name__)

_ARTIFACT = re.compile(r"Test unit written to (?P<path>\S+)")
_SANITIZER_ERROR = re.compile(r"^==\d+==\s*ERROR: ", re.MULTILINE)

_ARTIFACT_CATEGORIES = {
    "crash": "crashes-found",
    "leak": "crashes-found",
    "oom": "fuzz-ooms",
    "timeout": "fuzz-timeouts",
    "slow-unit": "fuzz-slow-units",
}


class FuzzRunnerAdapter(ToolAdapter):
    """Adapter for fuzzers; one process per target, ``jobs`` at a time.

    Targets run concurrently but each gets its own process group. They share
    the checkout and are expected to write only to their own corpus and
    artifact directories.
    """

    tool_type = "fuzz-runner"

    def parse_findings(self, stdout: str, stderr: str) -> dict[str, int]:
        """Count crash artifacts, falling back to sanitizer error reports."""
        output = f"{stdout}\n{stderr}"
        findings: dict[str, int] = {}

        for match in _ARTIFACT.finditer(output):
            name = PurePath(match["path"]).name
            for prefix, category in _ARTIFACT_CATEGORIES.items():
                if name.startswith(f"{prefix}-"):
                    findings[category] = findings.get(category, 0) + 1
                    break

        if "crashes-found" not in findings:
            errors = len(_SANITIZER_ERROR.findall(output))
            if errors:
                findings["crashes-found"] = errors

        findings.setdefault("crashes-found", 0)
        return findings

    def classify(self, exit_code: int, findings: Mapping[str, int]) -> StageStatus:
        """Fail when anything crashed or a target exited abnormally."""
        if findings.get("crashes-found", 0) or findings.get("fuzz-ooms", 0):
            return "failure"
        return "success" if exit_code == 0 else "failure"

    def build_target_argv(self, descriptor: StageDescriptor, target: str) -> list[str]:
        """Build the command line for one target."""
        return [descriptor.command, *descriptor.args, target]

    async def run(
        self, descriptor: StageDescriptor, context: ExecutionContext
    ) -> StageResult:
        """Fuzz every target and merge their findings into one result."""
        started = time.monotonic()
        semaphore = asyncio.Semaphore(descriptor.jobs)
        cwd = self.working_dir(descriptor, context)
        env = self.build_env(descriptor, context)

        async def fuzz(target: str) -> ProcessOutput:
            async with semaphore:
                if context.cancel_token.cancelled:
                    raise ToolCancelledError(f"{target} not started: cancelled")
                logger.info(f"Fuzzing target {target}")
                return await run_process(
                    self.build_target_argv(descriptor, target),
                    cwd=cwd,
                    env=env,
                    token=context.cancel_token,
                    grace_period=context.grace_period,
                )

        outcomes = await asyncio.gather(
            *(fuzz(target) for target in descriptor.targets), return_exceptions=True
        )

        findings: dict[str, int] = {}
        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        exit_code = 0
        cancelled = False
        for target, outcome in zip(descriptor.targets, outcomes):
            if isinstance(outcome, ToolCancelledError):
                cancelled = True
                stdout_parts.append(outcome.stdout)
                stderr_parts.append(outcome.stderr)
                continue
            if isinstance(outcome, BaseException):
                raise ToolError(
                    f"Fuzz target {target} failed to run: {outcome}"
                ) from outcome

            stdout_parts.append(outcome.stdout)
            stderr_parts.append(outcome.stderr)
            target_findings = self.parse_findings(outcome.stdout, outcome.stderr)
            crashes = target_findings.get("crashes-found", 0)
            if crashes:
                findings[f"crashes-found:{target}"] = crashes
            if exit_code == 0 and outcome.exit_code != 0:
                exit_code = outcome.exit_code

        stdout = "\n".join(stdout_parts)
        stderr = "\n".join(stderr_parts)

        if cancelled:
            error = ToolCancelledError(
                f"Fuzzing cancelled: {context.cancel_token.reason}",
                stdout=stdout,
                stderr=stderr,
            )
            error.output_path = self.store_output(
                descriptor, context, stdout, stderr
            )
            raise error

        result = self.build_result(
            descriptor, context, ProcessOutput(exit_code, stdout, stderr), started
        )
        findings.update(result.findings)
        if result.status == "failure" and result.findings.get("crashes-found"):
            message = f"{result.findings['crashes-found']} crash(es) found"
        else:
            message = result.message
        return result.model_copy(update={"findings": findings, "message": message})
