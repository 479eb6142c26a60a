"""
Helpers for building claude_extraction jobs.

Callers enqueue an extraction with a payload built here and an idempotency
key derived from the prompt hash (or the resubmitted job id) plus a
millisecond timestamp.
"""

import hashlib
import re
import time
from typing import Any

from extraction_queue.constants import JobType

PROMPT_HASH_LENGTH = 12
SLUG_MAX_LENGTH = 50


def prompt_hash(prompt: str) -> str:
    """Short, stable content hash of a prompt, used for dedup keys and display."""
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:PROMPT_HASH_LENGTH]


def slugify(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"\s+", "-", text)
    text = re.sub(r"-+", "-", text)
    return text[:SLUG_MAX_LENGTH]


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def job_name(prompt: str, ts: int) -> str:
    """Default job name: slug of the prompt head plus the timestamp."""
    return f"{slugify(prompt[:SLUG_MAX_LENGTH])}-{ts}"


def build_extraction_payload(
    prompt: str,
    name: str | None = None,
    branch: str | None = None,
    origin_url: str | None = None,
    target_path: str | None = None,
    requirement_id: str | None = None,
    ts: int | None = None,
) -> dict[str, Any]:
    """
    Build the payload of a claude_extraction job.

    Args:
        prompt: The agent prompt.
        name: Job name; defaults to a slug of the prompt plus a timestamp.
        branch: Optional git branch the agent works on.
        origin_url: URL of the source the prompt was derived from.
        target_path: Optional output location hint for the agent.
        requirement_id: Id of the requirement that produced the prompt.
        ts: Millisecond timestamp used for the default name.

    Returns:
        The JSON payload.
    """
    ts = ts if ts is not None else timestamp_ms()
    return {
        "type": JobType.CLAUDE_EXTRACTION.value,
        "name": name or job_name(prompt, ts),
        "prompt": prompt,
        "branch": branch,
        "target_path": target_path,
        "origin_url": origin_url,
        "requirement_id": requirement_id,
        "prompt_hash": prompt_hash(prompt),
    }


def extraction_idempotency_key(hash_: str, ts: int) -> str:
    return f"enqueue-{hash_}-{ts}"


def requeue_idempotency_key(original_job_id: Any, ts: int) -> str:
    return f"requeue-{original_job_id}-{ts}"
