"""Tests for the run controller."""

import asyncio
import os
import sys
import time
from pathlib import Path

import pytest

from boostsec.scan_pipeline.controller import RunController
from boostsec.scan_pipeline.errors import ConfigError
from boostsec.scan_pipeline.models.definition import (
    BranchFilter,
    PipelineDefinition,
    TriggerPredicate,
)
from boostsec.scan_pipeline.models.engine_config import EngineConfig
from boostsec.scan_pipeline.models.stage import StageDescriptor

FAKE_FUZZER = """
import sys
target = sys.argv[1]
print("==7== ERROR: AddressSanitizer: heap-buffer-overflow", file=sys.stderr)
print(f"Test unit written to fuzz/artifacts/{target}/crash-0a1b", file=sys.stderr)
print(f"Test unit written to fuzz/artifacts/{target}/crash-2c3d", file=sys.stderr)
sys.exit(77)
"""

CARGO_TEST_OK = (
    "print('test result: ok. 12 passed; 0 failed; 1 ignored; 0 measured')"
)
CARGO_TEST_FAILED = (
    "import sys\n"
    "print('test result: FAILED. 10 passed; 2 failed; 0 ignored; 0 measured')\n"
    "sys.exit(101)"
)


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

    try:
        stat = Path(f"/proc/{pid}/stat").read_text()
    except OSError:
        return True
    return stat.rsplit(")", 1)[1].split()[0] != "Z"


async def _wait_until_dead(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _is_alive(pid):
            return True
        await asyncio.sleep(0.05)
    return False


def _python(name: str, code: str, **kwargs: object) -> StageDescriptor:
    return StageDescriptor(
        name=name,
        command=sys.executable,
        args=("-c", code),
        **{"timeout_seconds": 30, **kwargs},  # type: ignore[arg-type]
    )


def _fuzz_stage(tmp_path: Path) -> StageDescriptor:
    fuzzer = tmp_path / "fake_fuzzer.py"
    fuzzer.write_text(FAKE_FUZZER)
    return StageDescriptor(
        name="fuzz",
        tool="fuzz-runner",
        command=sys.executable,
        args=(str(fuzzer),),
        targets=("parse_header",),
        timeout_seconds=30,
        required=False,
        on_failure="continue",
    )


def _controller(
    tmp_path: Path,
    stages: list[StageDescriptor],
    global_timeout: float = 60,
    grace: float = 0.5,
) -> RunController:
    definition = PipelineDefinition(
        name="ci", global_timeout_seconds=global_timeout, stages=tuple(stages)
    )
    return RunController(
        definition, tmp_path, EngineConfig(grace_period_seconds=grace)
    )


async def test_run_passes_with_advisory_crashes(tmp_path: Path) -> None:
    """Fuzz crashes in an advisory stage are reported but don't fail the run."""
    controller = _controller(
        tmp_path,
        [
            _python("lint", "print('clean')"),
            _python("test", CARGO_TEST_OK, tool="test-runner"),
            _fuzz_stage(tmp_path),
        ],
    )

    report = await controller.run()

    assert report.status == "pass"
    assert [r.stage for r in report.stages] == ["lint", "test", "fuzz"]
    assert [r.status for r in report.stages] == ["success", "success", "failure"]
    assert report.result_for("test").findings["tests-passed"] == 12
    fuzz = report.result_for("fuzz")
    assert fuzz.findings["crashes-found"] == 2
    assert fuzz.findings["crashes-found:parse_header"] == 2
    assert fuzz.message == "2 crash(es) found"
    assert report.started_at is not None


async def test_run_fails_on_required_failure(tmp_path: Path) -> None:
    """A failing required stage aborts the run before later stages start."""
    marker = tmp_path / "fuzz-ran"
    controller = _controller(
        tmp_path,
        [
            _python("lint", "print('clean')"),
            _python("test", CARGO_TEST_FAILED, tool="test-runner"),
            _python(
                "fuzz",
                f"import pathlib; pathlib.Path({str(marker)!r}).touch()",
                required=False,
                on_failure="continue",
            ),
        ],
    )

    report = await controller.run()

    assert report.status == "fail"
    assert len(report.stages) == 2
    test = report.result_for("test")
    assert test.status == "failure"
    assert test.exit_code == 101
    assert test.findings["test-failures"] == 2
    assert report.result_for("fuzz") is None
    assert not marker.exists()


async def test_global_timeout_reclaims_processes(tmp_path: Path) -> None:
    """Exhausting the run budget kills the running tool and skips the rest."""
    pid_file = tmp_path / "grandchild.pid"
    stuck = (
        "import pathlib, subprocess, sys, time\n"
        "child = subprocess.Popen([sys.executable, '-c', "
        "'import signal, time; signal.signal(signal.SIGTERM, signal.SIG_IGN); "
        "time.sleep(60)'])\n"
        f"pathlib.Path({str(pid_file)!r}).write_text(str(child.pid))\n"
        "time.sleep(60)\n"
    )
    controller = _controller(
        tmp_path,
        [
            _python("lint", "print('clean')"),
            _python("test", stuck, tool="test-runner"),
            _fuzz_stage(tmp_path),
        ],
        global_timeout=2,
        grace=0.3,
    )

    started = time.monotonic()
    report = await controller.run()

    assert time.monotonic() - started < 10
    assert report.status == "timed-out"
    assert controller.timed_out
    assert [(r.stage, r.status) for r in report.stages] == [
        ("lint", "success"),
        ("test", "timeout"),
        ("fuzz", "skipped"),
    ]
    assert report.result_for("fuzz").findings == {}
    assert await _wait_until_dead(int(pid_file.read_text()))


async def test_stage_timeout_uses_stage_budget(tmp_path: Path) -> None:
    """A stage over its own budget times out the run while the global one holds."""
    controller = _controller(
        tmp_path,
        [
            _python("test", "import time; time.sleep(60)", timeout_seconds=0.5),
            _python("report", "print('done')"),
        ],
        grace=0.3,
    )

    report = await controller.run()

    assert report.status == "timed-out"
    assert not controller.timed_out
    assert [r.stage for r in report.stages] == ["test"]
    assert report.stages[0].status == "timeout"


async def test_cancel_aborts_run(tmp_path: Path) -> None:
    """Cancelling from outside stops the running stage and aborts the run."""
    controller = _controller(
        tmp_path,
        [
            _python("lint", "import time; time.sleep(60)", required=False),
            _python("test", "print('ok')"),
        ],
        grace=0.3,
    )

    async def cancel_soon() -> None:
        await asyncio.sleep(0.5)
        assert controller.cancel()
        assert not controller.cancel()

    canceller = asyncio.create_task(cancel_soon())
    report = await controller.run()
    await canceller

    assert report.status == "aborted"
    assert [(r.stage, r.status) for r in report.stages] == [
        ("lint", "tool-error"),
        ("test", "skipped"),
    ]
    assert "cancelled by user" in (report.stages[0].message or "")


async def test_cancel_during_required_stage_aborts(tmp_path: Path) -> None:
    """Cancelling while a required stage runs aborts rather than fails the run."""
    controller = _controller(
        tmp_path,
        [
            _python("lint", "import time; time.sleep(60)"),
            _python("test", "print('ok')"),
        ],
        grace=0.3,
    )

    async def cancel_soon() -> None:
        await asyncio.sleep(0.5)
        controller.cancel()

    canceller = asyncio.create_task(cancel_soon())
    report = await controller.run()
    await canceller

    assert report.status == "aborted"
    lint = report.result_for("lint")
    assert lint.required
    assert lint.status == "tool-error"
    assert lint.interrupted
    assert report.result_for("test").status == "skipped"


async def test_raw_output_is_stored(tmp_path: Path) -> None:
    """Stage output lands in the log directory, relative to the workdir."""
    definition = PipelineDefinition(
        global_timeout_seconds=60,
        stages=(_python("lint", "print('no issues')"),),
    )
    controller = RunController(
        definition, tmp_path, EngineConfig(log_dir=Path("logs"))
    )

    report = await controller.run()

    log = tmp_path / "logs" / "lint.log"
    assert report.stages[0].output_path == str(log)
    assert "no issues" in log.read_text()


def test_unknown_tool_is_config_error(tmp_path: Path) -> None:
    """Definitions naming an unknown tool type are rejected up front."""
    definition = PipelineDefinition.model_construct(
        name="ci",
        global_timeout_seconds=60,
        trigger=TriggerPredicate(),
        stages=(
            StageDescriptor.model_construct(
                name="scan",
                tool="dast",
                command="zap",
                args=(),
                working_dir=".",
                timeout_seconds=60,
                on_failure="abort",
                required=True,
                env={},
                targets=(),
                jobs=1,
            ),
        ),
    )

    with pytest.raises(ConfigError, match="No adapter registered for tool type"):
        RunController(definition, tmp_path)


def test_invalid_definition_is_config_error(tmp_path: Path) -> None:
    """Invariant violations surface when the controller is built."""
    definition = PipelineDefinition(
        global_timeout_seconds=60,
        stages=(
            StageDescriptor(name="lint", command="cargo", timeout_seconds=10),
            StageDescriptor(name="lint", command="cargo", timeout_seconds=10),
        ),
    )

    with pytest.raises(ConfigError, match="Duplicate stage name: lint"):
        RunController(definition, tmp_path)


def test_plan_lists_stages_in_order(tmp_path: Path) -> None:
    """plan describes every stage without running anything."""
    definition = PipelineDefinition(
        global_timeout_seconds=3600,
        stages=(
            StageDescriptor(
                name="lint",
                tool="static-analysis",
                command="cargo",
                args=("clippy",),
                timeout_seconds=600,
            ),
            StageDescriptor(
                name="fuzz",
                tool="fuzz-runner",
                command="cargo",
                args=("fuzz", "run"),
                working_dir="fuzz",
                targets=("parse", "decode"),
                timeout_seconds=900,
                required=False,
                on_failure="continue",
            ),
        ),
    )

    plan = RunController(definition, tmp_path).plan()

    assert plan == [
        "1. lint [static-analysis, required, on_failure=abort, timeout=600.0s] "
        "cargo clippy (in .)",
        "2. fuzz [fuzz-runner, advisory, on_failure=continue, timeout=900.0s] "
        "cargo fuzz run (in fuzz) targets=parse,decode",
    ]


def test_should_run_checks_trigger(tmp_path: Path) -> None:
    """should_run applies the definition's trigger predicate."""
    definition = PipelineDefinition(
        global_timeout_seconds=60,
        trigger=TriggerPredicate(push=BranchFilter(branches=("main", "release/*"))),
        stages=(StageDescriptor(name="lint", command="cargo", timeout_seconds=10),),
    )
    controller = RunController(definition, tmp_path)

    assert controller.should_run("push", "release/1.2")
    assert not controller.should_run("push", "feature/x")
    assert not controller.should_run("pull_request", "main")


def test_from_file(tmp_path: Path) -> None:
    """from_file loads and validates a definition file."""
    definition_file = tmp_path / "pipeline.yaml"
    definition_file.write_text(
        "name: ci\n"
        "globalTimeoutSeconds: 120\n"
        "stages:\n"
        "  lint:\n"
        "    tool: static-analysis\n"
        "    command: cargo\n"
        "    args: [clippy, --message-format=json]\n"
        "    timeoutSeconds: 60\n"
    )

    controller = RunController.from_file(definition_file, tmp_path)

    assert controller.definition.name == "ci"
    assert controller.definition.stage_names() == ["lint"]
    assert controller.adapters["lint"].tool_type == "static-analysis"
