"""
External code-generation agent runner.

Runs the configured agent command as a subprocess in the project directory.
The queue enforces no execution deadline, so the runner owns its timeout.
"""

import asyncio
import logging
import shlex
from collections import deque
from typing import Any

from extraction_queue.config import Settings, get_settings
from extraction_queue.errors import HandlerError
from extraction_queue.types.job import ClaudeExtractionPayload, JobContext

logger = logging.getLogger(__name__)

# Lines of agent output kept for the job result and error messages
OUTPUT_TAIL_LINES = 50
# Longest unterminated stdout line buffered before the rest of it is dropped
STREAM_LIMIT_BYTES = 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024
MAX_LINE_CHARS = 4000
STDERR_TAIL_BYTES = 64 * 1024

COMMIT_INSTRUCTION = (
    "IMPORTANT: When you are completely finished, you MUST run "
    '`git add -A && git commit -m "feat: {branch}"` to commit all your changes. '
    "Do NOT skip this step."
)


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.strip().splitlines()[-lines:])


async def _read_tail(stream: asyncio.StreamReader, max_bytes: int) -> bytes:
    """Drain a stream, keeping only its last ``max_bytes``."""
    tail = b""
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return tail
        tail = (tail + chunk)[-max_bytes:]


async def _terminate(proc: asyncio.subprocess.Process, stderr_task: asyncio.Task) -> None:
    """Kill the agent if it is still running and reap it."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            # Exited between the returncode check and the kill
            pass
        await proc.wait()
    stderr_task.cancel()


class AgentRunner:
    """
    Runs one prompt through the agent command.

    The command template is split like a shell command line; ``{prompt}`` and
    ``{model}`` are substituted per argument, so the prompt is never parsed
    by a shell.
    """

    def __init__(
        self,
        command_template: str,
        model: str,
        cwd: str = ".",
        timeout_seconds: float = 3600.0,
        base_branch: str = "main",
    ):
        self.command_template = command_template
        self.model = model
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds
        self.base_branch = base_branch

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "AgentRunner":
        settings = settings or get_settings()
        return cls(
            command_template=settings.agent_command,
            model=settings.agent_model,
            cwd=settings.agent_cwd,
            timeout_seconds=settings.agent_timeout_seconds,
            base_branch=settings.agent_base_branch,
        )

    def build_command(self, prompt: str) -> list[str]:
        """
        Render the command template into an argument list.

        Raises:
            HandlerError: If the template is empty or has no ``{prompt}`` placeholder.
        """
        template = self.command_template.strip()
        if "{prompt}" not in template:
            raise HandlerError("Agent command template must include {prompt}")
        try:
            argv = shlex.split(template)
        except ValueError as e:
            raise HandlerError(f"Invalid agent command template: {e}") from e
        return [arg.replace("{model}", self.model).replace("{prompt}", prompt) for arg in argv]

    async def run(self, payload: ClaudeExtractionPayload, context: JobContext) -> dict[str, Any]:
        """
        Run the agent for an extraction payload.

        When the payload names a branch, the agent works on that branch (created
        if missing), leftover changes are committed afterwards, and the base
        branch is checked out again whatever the outcome.

        Returns:
            Output summary stored as the job result.

        Raises:
            HandlerError: If git or the agent fails, or the agent times out.
        """
        branch = payload.branch
        prompt = payload.prompt

        if branch:
            await self._checkout(branch)
            prompt = f"{prompt}\n\n{COMMIT_INSTRUCTION.format(branch=branch)}"

        try:
            output = await self._run_agent(prompt, context)
            if branch:
                output["auto_committed"] = await self._commit_leftovers(branch)
                output["branch"] = branch
        finally:
            if branch:
                await self._return_to_base(context)

        return output

    async def _run_agent(self, prompt: str, context: JobContext) -> dict[str, Any]:
        argv = self.build_command(prompt)
        logger.info(
            "Starting agent",
            extra={
                "job_id": str(context.job_id),
                "command": argv[0],
                "cwd": self.cwd,
                "model": self.model,
            },
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise HandlerError(f"Agent command not found: {argv[0]}") from e
        except OSError as e:
            raise HandlerError(f"Agent failed to start: {e}") from e

        stdout_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)
        stderr_task = asyncio.create_task(_read_tail(proc.stderr, STDERR_TAIL_BYTES))

        async def report(raw: bytes, line_count: int) -> int:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                return line_count
            if len(line) > MAX_LINE_CHARS:
                line = f"{line[:MAX_LINE_CHARS]}... [{len(line) - MAX_LINE_CHARS} more chars]"
            stdout_tail.append(line)
            await context.report_progress(line, {"lines": line_count + 1})
            return line_count + 1

        async def stream_stdout() -> None:
            # Read in chunks so a single overlong line cannot overrun the reader
            line_count = 0
            pending = b""
            while True:
                chunk = await proc.stdout.read(READ_CHUNK_BYTES)
                if not chunk:
                    break
                *lines, pending = (pending + chunk).split(b"\n")
                pending = pending[:STREAM_LIMIT_BYTES]
                for raw in lines:
                    line_count = await report(raw, line_count)
            await report(pending, line_count)
            await proc.wait()

        try:
            await asyncio.wait_for(stream_stdout(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            await _terminate(proc, stderr_task)
            raise HandlerError(f"Agent timed out after {self.timeout_seconds:g}s") from None
        except BaseException:
            await _terminate(proc, stderr_task)
            raise

        stderr = (await stderr_task).decode("utf-8", errors="replace")
        if proc.returncode != 0:
            detail = _tail(stderr) or "\n".join(stdout_tail)
            raise HandlerError(f"Agent exited with code {proc.returncode}: {detail}")

        logger.info(
            "Agent finished",
            extra={"job_id": str(context.job_id), "output_lines": len(stdout_tail)},
        )
        return {"exit_code": proc.returncode, "output": "\n".join(stdout_tail)}

    async def _git(self, *args: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=self.cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise HandlerError(
                f"git {' '.join(args)} failed: {_tail(stderr.decode('utf-8', errors='replace'))}"
            )
        return stdout.decode("utf-8", errors="replace").strip()

    async def _branch_exists(self, branch: str) -> bool:
        try:
            await self._git("rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
        except HandlerError:
            return False
        return True

    async def _checkout(self, branch: str) -> None:
        if await self._branch_exists(branch):
            await self._git("checkout", branch)
        else:
            logger.info("Branch does not exist, creating it", extra={"branch": branch})
            await self._git("checkout", "-b", branch)

    async def _return_to_base(self, context: JobContext) -> None:
        """
        Check out the base branch again.

        A failure is logged rather than raised so it cannot replace the
        outcome of the agent run.
        """
        try:
            await self._git("checkout", self.base_branch)
        except HandlerError as e:
            logger.error(
                "Failed to return to base branch",
                extra={
                    "job_id": str(context.job_id),
                    "branch": self.base_branch,
                    "error": str(e),
                },
            )
            return
        logger.info(
            "Returned to base branch",
            extra={"job_id": str(context.job_id), "branch": self.base_branch},
        )

    async def _commit_leftovers(self, branch: str) -> bool:
        """Commit changes the agent left uncommitted. Returns True if a commit was made."""
        if not await self._git("status", "--porcelain"):
            return False
        logger.info("Uncommitted changes detected, committing", extra={"branch": branch})
        await self._git("add", "-A")
        await self._git("commit", "-m", f"feat: {branch} (auto-commit by worker)")
        return True
