"""
Unit tests for the agent runner.

The agent is stood in for by the running Python interpreter.
"""

import asyncio
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from uuid import uuid4

import pytest

from extraction_queue.constants import JobType, ProgressStage
from extraction_queue.errors import HandlerError
from extraction_queue.types.job import ClaudeExtractionPayload, JobContext
from extraction_queue.worker.agent import MAX_LINE_CHARS, AgentRunner
from extraction_queue.worker.handlers import ExtractionHandler

PYTHON = shlex.quote(sys.executable)


def python_agent(code: str) -> str:
    return f'{PYTHON} -c "{code}" {{prompt}}'


def process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


def git(cwd: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    ).stdout.strip()


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

# Prints its pid, floods stdout with one unterminated line, then hangs
HANGING_AGENT = python_agent(
    "import os, sys, time; print(os.getpid(), flush=True); "
    "sys.stdout.write('x' * 2000000); sys.stdout.flush(); time.sleep(30)"
)


class RecordingContext:
    """Builds a JobContext whose progress notes are kept in a list."""

    def __init__(self, payload: dict):
        self.notes: list[tuple[ProgressStage, str | None, dict | None]] = []
        self.context = JobContext(
            job_id=uuid4(),
            job_type=JobType.CLAUDE_EXTRACTION,
            attempt=1,
            payload=payload,
            worker_id="test-worker",
            reporter=self._record,
        )

    async def _record(self, stage, message=None, data=None) -> None:
        self.notes.append((stage, message, data))


class TestBuildCommand:
    """Tests for AgentRunner.build_command."""

    def test_substitutes_per_argument(self):
        runner = AgentRunner("agent --model {model} -p {prompt}", model="fast")

        argv = runner.build_command("extract the 'parser'; rm -rf /")

        assert argv == ["agent", "--model", "fast", "-p", "extract the 'parser'; rm -rf /"]

    def test_requires_prompt_placeholder(self):
        with pytest.raises(HandlerError, match="must include"):
            AgentRunner("agent --model {model}", model="fast").build_command("x")

    def test_rejects_unbalanced_quotes(self):
        with pytest.raises(HandlerError, match="Invalid agent command template"):
            AgentRunner('agent "{prompt}', model="fast").build_command("x")


class TestAgentRun:
    """Tests for AgentRunner.run without a branch."""

    async def test_streams_output_as_progress(self, tmp_path: Path):
        runner = AgentRunner(
            python_agent("import sys; print('reading'); print(sys.argv[1])"),
            model="fast",
            cwd=str(tmp_path),
        )
        recorder = RecordingContext({"prompt": "hello agent"})

        output = await runner.run(ClaudeExtractionPayload(prompt="hello agent"), recorder.context)

        assert output["exit_code"] == 0
        assert output["output"] == "reading\nhello agent"
        assert [message for _, message, _ in recorder.notes] == ["reading", "hello agent"]
        assert recorder.notes[-1][2] == {"lines": 2}
        assert all(stage == ProgressStage.RUNNING for stage, _, _ in recorder.notes)

    async def test_nonzero_exit(self, tmp_path: Path):
        runner = AgentRunner(
            python_agent("import sys; sys.stderr.write('quota exceeded'); sys.exit(3)"),
            model="fast",
            cwd=str(tmp_path),
        )
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="exited with code 3: quota exceeded"):
            await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

    async def test_timeout(self, tmp_path: Path):
        runner = AgentRunner(
            python_agent("import time; time.sleep(10)"),
            model="fast",
            cwd=str(tmp_path),
            timeout_seconds=0.2,
        )
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="timed out"):
            await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

    async def test_missing_command(self, tmp_path: Path):
        runner = AgentRunner("no-such-agent-binary-xyz {prompt}", model="fast", cwd=str(tmp_path))
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="not found"):
            await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

    async def test_overlong_line_is_truncated(self, tmp_path: Path):
        runner = AgentRunner(
            python_agent("import sys; sys.stdout.write('x' * 2000000 + chr(10)); print('done')"),
            model="fast",
            cwd=str(tmp_path),
        )
        recorder = RecordingContext({"prompt": "x"})

        output = await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

        long_line, last = output["output"].split("\n")
        assert last == "done"
        assert long_line.startswith("x" * MAX_LINE_CHARS)
        assert long_line.endswith("more chars]")
        assert recorder.notes[-1][2] == {"lines": 2}

    async def test_timeout_after_overlong_output_kills_agent(self, tmp_path: Path):
        runner = AgentRunner(HANGING_AGENT, model="fast", cwd=str(tmp_path), timeout_seconds=1.0)
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="timed out"):
            await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

        assert process_gone(int(recorder.notes[0][1]))

    async def test_progress_failure_kills_agent(self, tmp_path: Path):
        runner = AgentRunner(HANGING_AGENT, model="fast", cwd=str(tmp_path))
        recorder = RecordingContext({"prompt": "x"})
        pids: list[int] = []

        async def failing_reporter(stage, message=None, data=None) -> None:
            pids.append(int(message))
            raise RuntimeError("progress sink unavailable")

        recorder.context.reporter = failing_reporter

        with pytest.raises(RuntimeError, match="progress sink unavailable"):
            await runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context)

        assert process_gone(pids[0])

    async def test_cancellation_kills_agent(self, tmp_path: Path):
        runner = AgentRunner(HANGING_AGENT, model="fast", cwd=str(tmp_path))
        recorder = RecordingContext({"prompt": "x"})

        task = asyncio.create_task(runner.run(ClaudeExtractionPayload(prompt="x"), recorder.context))
        for _ in range(100):
            if recorder.notes:
                break
            await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert process_gone(int(recorder.notes[0][1]))


@requires_git
class TestAgentBranches:
    """Tests for AgentRunner.run with a branch."""

    @pytest.fixture
    def repo_dir(self, tmp_path: Path) -> Path:
        git(tmp_path, "init", "-q", "-b", "main")
        git(tmp_path, "config", "user.email", "worker@example.com")
        git(tmp_path, "config", "user.name", "Worker")
        git(tmp_path, "config", "commit.gpgsign", "false")
        (tmp_path / "notes.txt").write_text("base\n")
        git(tmp_path, "add", "-A")
        git(tmp_path, "commit", "-q", "-m", "init")
        return tmp_path

    async def test_creates_branch_and_commits_leftovers(self, repo_dir: Path):
        runner = AgentRunner(
            python_agent("open('out.txt', 'w').write('hi')"),
            model="fast",
            cwd=str(repo_dir),
        )
        recorder = RecordingContext({"prompt": "x"})

        output = await runner.run(
            ClaudeExtractionPayload(prompt="x", branch="feat/parser"), recorder.context
        )

        assert output["branch"] == "feat/parser"
        assert output["auto_committed"] is True
        assert git(repo_dir, "branch", "--show-current") == "main"
        assert git(repo_dir, "log", "-1", "--format=%s", "feat/parser") == (
            "feat: feat/parser (auto-commit by worker)"
        )

    async def test_checks_out_existing_branch(self, repo_dir: Path):
        git(repo_dir, "branch", "feat/existing")
        runner = AgentRunner(
            python_agent(
                "import subprocess; "
                "print(subprocess.check_output(['git', 'branch', '--show-current'], text=True))"
            ),
            model="fast",
            cwd=str(repo_dir),
        )
        recorder = RecordingContext({"prompt": "x"})

        output = await runner.run(
            ClaudeExtractionPayload(prompt="x", branch="feat/existing"), recorder.context
        )

        assert output["output"] == "feat/existing"
        assert output["auto_committed"] is False

    async def test_checkout_error_is_reported(self, repo_dir: Path):
        """A dirty tree blocking the checkout is not mistaken for a missing branch."""
        git(repo_dir, "checkout", "-q", "-b", "feat/dirty")
        (repo_dir / "notes.txt").write_text("branch\n")
        git(repo_dir, "commit", "-q", "-am", "branch change")
        git(repo_dir, "checkout", "-q", "main")
        (repo_dir / "notes.txt").write_text("local edit\n")

        runner = AgentRunner(
            python_agent("open('ran.txt', 'w').write('x')"),
            model="fast",
            cwd=str(repo_dir),
        )
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="git checkout feat/dirty failed") as excinfo:
            await runner.run(
                ClaudeExtractionPayload(prompt="x", branch="feat/dirty"), recorder.context
            )

        assert "already exists" not in str(excinfo.value)
        assert not (repo_dir / "ran.txt").exists()

    async def test_base_checkout_failure_keeps_agent_error(self, repo_dir: Path):
        runner = AgentRunner(
            python_agent("import sys; sys.stderr.write('quota exceeded'); sys.exit(3)"),
            model="fast",
            cwd=str(repo_dir),
            base_branch="no-such-base",
        )
        recorder = RecordingContext({"prompt": "x"})

        with pytest.raises(HandlerError, match="exited with code 3: quota exceeded"):
            await runner.run(
                ClaudeExtractionPayload(prompt="x", branch="feat/parser"), recorder.context
            )

        assert git(repo_dir, "branch", "--show-current") == "feat/parser"


class TestExtractionHandler:
    """Tests for ExtractionHandler."""

    async def test_result_carries_tracking_fields(self, tmp_path: Path):
        handler = ExtractionHandler(
            AgentRunner(python_agent("print('done')"), model="fast", cwd=str(tmp_path))
        )
        payload = {
            "prompt": "extract module",
            "name": "parser-extraction",
            "prompt_hash": "abc123def456",
            "requirement_id": "REQ-7",
        }
        recorder = RecordingContext(payload)

        result = await handler(recorder.context)

        assert result.success is True
        assert result.output["name"] == "parser-extraction"
        assert result.output["prompt_hash"] == "abc123def456"
        assert result.output["requirement_id"] == "REQ-7"
        assert result.output["output"] == "done"
        assert recorder.notes[0][1] == "Starting agent"
