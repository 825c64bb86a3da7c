"""Session archival: strip system prompts from raw transcripts and summarise them."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

__all__ = [
    "ArchiveConfig",
    "CompressStats",
    "incoming_dir",
    "archived_dir",
    "ensure_dirs",
    "compress_session",
    "compress_text",
    "compute_stem",
    "summarize",
]

_SYSTEM_PREFIXES = ("=== SYSTEM", "[SYSTEM]")
_USER_PREFIXES = ("=== Prompt", "[USER]", "=== USER")
_ASSISTANT_PREFIXES = ("=== Response", "[Agent]", "=== ASSISTANT")
_TOOL_RESULT_LIMIT = 2000
_TRUNCATED_TOOL_RESULT = "<tool_result>... (truncated) ...</tool_result>\n"

_TIMESTAMP_RE = re.compile(
    r"(\d{4})[-/](\d{2})[-/](\d{2})[ T_](\d{2})[:](\d{2})", re.ASCII
)
_STEM_FORMAT = "%m%d_%H%M"

_SUMMARY_MAX_LINES = 6
_SUMMARY_FALLBACK_LINES = 4
_SUMMARY_FALLBACK_CHARS = 400


@dataclass
class ArchiveConfig:
    auto: bool = True
    idle_secs: int = 1800
    min_bytes: int = 4600


@dataclass
class CompressStats:
    source: Path
    destination: Path
    original: int
    compressed: int
    skipped: bool
    reason: str | None = None


def incoming_dir(raw_sessions: Path | str) -> Path:
    """Directory where new raw session transcripts are dropped."""
    return Path(raw_sessions) / "incoming"


def archived_dir(raw_sessions: Path | str) -> Path:
    """Directory that holds compressed transcripts."""
    return Path(raw_sessions) / "archived"


def ensure_dirs(raw_sessions: Path | str) -> None:
    incoming_dir(raw_sessions).mkdir(parents=True, exist_ok=True)
    archived_dir(raw_sessions).mkdir(parents=True, exist_ok=True)


def _lines(text: str) -> list[str]:
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def compress_session(src: Path | str, dst_dir: Path | str, min_bytes: int) -> CompressStats:
    """Compress ``src`` into ``dst_dir``; skip it if the result is under ``min_bytes``."""
    src = Path(src)
    dst_dir = Path(dst_dir)
    try:
        content = src.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as err:
        raise OSError(f"read {src}: {err}") from err
    original = len(content.encode("utf-8"))
    compressed = compress_text(content)
    compressed_len = len(compressed.encode("utf-8"))
    if compressed_len < min_bytes:
        return CompressStats(
            source=src,
            destination=Path(""),
            original=original,
            compressed=compressed_len,
            skipped=True,
            reason=f"below minimum {min_bytes} bytes after compression",
        )
    stem = compute_stem(compressed, src)
    dst_dir.mkdir(parents=True, exist_ok=True)
    dst = dst_dir / f"{stem}.txt"
    dst.write_text(compressed, encoding="utf-8")
    return CompressStats(
        source=src,
        destination=dst,
        original=original,
        compressed=compressed_len,
        skipped=False,
        reason=None,
    )


def compress_text(content: str) -> str:
    """Drop system blocks, oversized tool results and blank assistant lines."""
    out: list[str] = []
    skip_block = False
    last_role = ""
    for line in _lines(content):
        trimmed = line.strip()
        if trimmed.startswith(_SYSTEM_PREFIXES):
            skip_block = True
            last_role = "system"
            continue
        if trimmed.startswith(_USER_PREFIXES):
            skip_block = False
            last_role = "user"
            out.append(trimmed + "\n")
            continue
        if trimmed.startswith(_ASSISTANT_PREFIXES):
            skip_block = False
            last_role = "assistant"
            out.append(trimmed + "\n")
            continue
        if skip_block:
            continue
        if (
            trimmed.startswith("<tool_result>")
            and len(trimmed.encode("utf-8")) > _TOOL_RESULT_LIMIT
        ):
            out.append(_TRUNCATED_TOOL_RESULT)
            continue
        if last_role == "assistant" and not trimmed:
            continue
        out.append(line + "\n")
    return "".join(out)


def compute_stem(content: str, fallback: Path | str) -> str:
    """Name an archive after the first and last timestamps found in ``content``.

    Without timestamps, the current UTC time and the stem of ``fallback`` are used.
    """
    times: list[datetime] = []
    for match in _TIMESTAMP_RE.finditer(content):
        text = "{}-{}-{} {}:{}".format(*match.groups())
        try:
            times.append(datetime.strptime(text, "%Y-%m-%d %H:%M"))
        except ValueError:
            continue
    if times:
        return f"{min(times).strftime(_STEM_FORMAT)}-{max(times).strftime(_STEM_FORMAT)}"
    stamp = datetime.now(timezone.utc).strftime(_STEM_FORMAT)
    stem = Path(fallback).stem or "session"
    return f"{stamp}_{stem}"


def summarize(content: str) -> str:
    """Summarise a transcript by its first user prompts, or its opening lines."""
    prompts: list[str] = []
    for line in _lines(content):
        if line.startswith("[USER]") or line.startswith("=== Prompt"):
            prompts.append(line)
            if len(prompts) >= _SUMMARY_MAX_LINES:
                break
    if not prompts:
        first = " \n ".join(_lines(content)[:_SUMMARY_FALLBACK_LINES])
        return first[:_SUMMARY_FALLBACK_CHARS]
    return " | ".join(prompts)