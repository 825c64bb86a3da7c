"""File protocol for sub-agent runs: each run lives in a work directory of plain files."""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = [
    "ROUND_END_MARKER",
    "SubagentSpec",
    "SubagentHandle",
    "SubagentStatus",
    "SubagentSnapshot",
    "SubagentRun",
    "allocate_workdir",
    "write_input",
    "write_context",
    "read_context",
    "append_round_end",
    "append_output",
    "write_reply",
    "intervene",
    "stop",
    "scan_runs",
    "load_run",
    "snapshot",
]

ROUND_END_MARKER = "[ROUND END]"

_SCAN_TIMEOUT_SECS = 60 * 10
_PREVIEW_LINES = 40


@dataclass
class SubagentSpec:
    agent: str
    input: str
    verbose: bool = False
    parallel: bool = False
    key_info: str | None = None


@dataclass
class SubagentHandle:
    run_id: str
    agent: str
    workdir: Path

    def input_path(self) -> Path:
        return Path(self.workdir) / "input.txt"

    def output_path(self) -> Path:
        return Path(self.workdir) / "output.txt"

    def reply_path(self) -> Path:
        return Path(self.workdir) / "reply.txt"

    def stop_path(self) -> Path:
        return Path(self.workdir) / "_stop"

    def keyinfo_path(self) -> Path:
        return Path(self.workdir) / "_keyinfo"

    def intervene_path(self) -> Path:
        return Path(self.workdir) / "_intervene"

    def context_path(self) -> Path:
        """Optional structured context for multi-step sub-agents."""
        return Path(self.workdir) / "context.json"


class SubagentStatus(str, Enum):
    RUNNING = "running"
    REPLIED = "replied"
    STOPPED = "stopped"
    TIMED_OUT = "timed_out"


@dataclass
class SubagentSnapshot:
    run_id: str
    agent: str
    status: SubagentStatus
    reply: str | None
    output_preview: str


@dataclass
class SubagentRun:
    run_id: str
    agent: str
    workdir: Path
    status: SubagentStatus
    created_at: str
    updated_at: str
    last_reply: str | None


def allocate_workdir(tasks_root: Path | str, agent: str) -> SubagentHandle:
    """Create ``tasks_root/<run_id>/<agent>`` with a fresh run id."""
    run_id = uuid.uuid4().hex
    workdir = Path(tasks_root) / run_id / agent
    try:
        workdir.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        raise OSError(f"mkdir {workdir}: {err}") from err
    return SubagentHandle(run_id=run_id, agent=agent, workdir=workdir)


def write_input(handle: SubagentHandle, input_text: str, key_info: str | None = None) -> None:
    handle.input_path().write_text(input_text, encoding="utf-8")
    if key_info is not None:
        handle.keyinfo_path().write_text(key_info, encoding="utf-8")


def write_context(handle: SubagentHandle, context: Any) -> None:
    """Write ``context.json`` pretty-printed."""
    handle.context_path().write_text(
        json.dumps(context, indent=2, ensure_ascii=False), encoding="utf-8"
    )


def read_context(handle: SubagentHandle) -> Any | None:
    """Return the parsed ``context.json``, or ``None`` when it is missing."""
    path = handle.context_path()
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _append_line(path: Path, line: str) -> None:
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def append_round_end(handle: SubagentHandle) -> None:
    """Mark the end of a round in ``output.txt``."""
    _append_line(handle.output_path(), ROUND_END_MARKER)


def append_output(handle: SubagentHandle, text: str) -> None:
    _append_line(handle.output_path(), f"[{_utc_stamp()}] {text}")


def write_reply(handle: SubagentHandle, text: str) -> None:
    handle.reply_path().write_text(text, encoding="utf-8")


def intervene(handle: SubagentHandle, message: str) -> None:
    _append_line(handle.intervene_path(), f"[{_utc_stamp()}] {message}")


def stop(handle: SubagentHandle, reason: str) -> None:
    handle.stop_path().write_text(reason, encoding="utf-8")


def _read_optional(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def _elapsed(path: Path) -> float:
    try:
        age = time.time() - os.stat(path).st_mtime
    except OSError:
        return 0.0
    return max(age, 0.0)


def _local_rfc3339(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).astimezone().isoformat()


def _times(path: Path) -> tuple[str, str]:
    try:
        st = os.stat(path)
    except OSError:
        return "", ""
    created = getattr(st, "st_birthtime", st.st_ctime)
    return _local_rfc3339(created), _local_rfc3339(st.st_mtime)


def _run_for(
    run_id: str, agent_dir: Path, timeout: float | None
) -> SubagentRun:
    handle = SubagentHandle(run_id=run_id, agent=agent_dir.name, workdir=agent_dir)
    last_reply = _read_optional(handle.reply_path())
    if last_reply is not None:
        status = SubagentStatus.REPLIED
    elif handle.stop_path().exists():
        status = SubagentStatus.STOPPED
    elif timeout is not None and _elapsed(agent_dir) > timeout:
        status = SubagentStatus.TIMED_OUT
    else:
        status = SubagentStatus.RUNNING
    created_at, updated_at = _times(agent_dir)
    return SubagentRun(
        run_id=run_id,
        agent=handle.agent,
        workdir=agent_dir,
        status=status,
        created_at=created_at,
        updated_at=updated_at,
        last_reply=last_reply,
    )


def _subdirs(path: Path) -> list[Path]:
    try:
        return [p for p in path.iterdir() if p.is_dir()]
    except OSError:
        return []


def scan_runs(tasks_root: Path | str) -> list[SubagentRun]:
    """List every agent run under ``tasks_root``, most recently updated first."""
    runs = [
        _run_for(run_dir.name, agent_dir, _SCAN_TIMEOUT_SECS)
        for run_dir in _subdirs(Path(tasks_root))
        for agent_dir in _subdirs(run_dir)
    ]
    runs.sort(key=lambda r: r.updated_at, reverse=True)
    return runs


def load_run(tasks_root: Path | str, run_id: str) -> SubagentRun | None:
    """Return the first agent run found for ``run_id``, or ``None``."""
    for agent_dir in _subdirs(Path(tasks_root) / run_id):
        return _run_for(run_id, agent_dir, None)
    return None


def snapshot(handle: SubagentHandle, timeout: float) -> SubagentSnapshot:
    """Report the run's status and the last lines of its output.

    ``timeout`` is in seconds since the work directory was last modified.
    """
    reply_path = handle.reply_path()
    reply = (_read_optional(reply_path) or "") if reply_path.exists() else None
    output = _read_optional(handle.output_path()) or ""
    preview = "\n".join(output.splitlines()[-_PREVIEW_LINES:])
    if reply is not None:
        status = SubagentStatus.REPLIED
    elif handle.stop_path().exists():
        status = SubagentStatus.STOPPED
    elif _elapsed(Path(handle.workdir)) > timeout:
        status = SubagentStatus.TIMED_OUT
    else:
        status = SubagentStatus.RUNNING
    return SubagentSnapshot(
        run_id=handle.run_id,
        agent=handle.agent,
        status=status,
        reply=reply,
        output_preview=preview,
    )