"""Markdown plan files: a title and a list of steps with status markers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["PlanStep", "PlanFile", "normalize_marker"]

_DONE = frozenset({"[✓]", "[x]", "[X]"})
_FAILED = frozenset({"[✗]", "[!]"})

_ALIASES: dict[str, str] = {}
for _canonical, _names in (
    ("[ ]", ("", "[ ]", "pending", "todo", "open")),
    ("[✓]", ("[✓]", "[x]", "x", "done", "complete", "completed")),
    ("[✗]", ("[✗]", "[!]", "failed", "fail")),
    ("[D]", ("[d]", "d", "delegate")),
    ("[P]", ("[p]", "p", "parallel")),
    ("[?]", ("[?]", "?", "question", "conditional")),
    ("[FIX]", ("[fix]", "fix", "remediation")),
    ("[SKIP]", ("[skip]", "skip", "skipped")),
):
    for _name in _names:
        _ALIASES[_name] = _canonical


def _ascii_lower(text: str) -> str:
    return "".join(c.lower() if c.isascii() else c for c in text)


def normalize_marker(marker: str) -> str:
    """Map a marker, status word or one-letter alias to its canonical marker.

    Anything unrecognised is returned trimmed, as a custom marker.
    """
    value = marker.strip()
    return _ALIASES.get(_ascii_lower(value), value)


@dataclass
class PlanStep:
    idx: int
    title: str
    marker: str = "[ ]"
    note: str | None = None

    def is_done(self) -> bool:
        return self.marker in _DONE

    def is_failed(self) -> bool:
        return self.marker in _FAILED

    def is_pending(self) -> bool:
        return self.marker in ("", "[ ]")


@dataclass
class PlanFile:
    path: Path
    title: str
    steps: list[PlanStep] = field(default_factory=list)

    @classmethod
    def open_or_create(cls, path: Path | str, title: str) -> PlanFile:
        """Load the plan at ``path``, or create an empty one with ``title``."""
        path = Path(path)
        if path.exists():
            return cls.load(path)
        plan = cls(path=path, title=title)
        plan.save()
        return plan

    @classmethod
    def load(cls, path: Path | str) -> PlanFile:
        path = Path(path)
        return _parse(path.read_text(encoding="utf-8"), path)

    def set_steps(self, titles: list[str]) -> None:
        self.steps = [PlanStep(idx=i, title=t) for i, t in enumerate(titles, start=1)]
        self.save()

    def mark(self, idx: int, marker: str, note: str | None = None) -> None:
        """Set the marker (or alias) and note of step ``idx`` and save."""
        step = next((s for s in self.steps if s.idx == idx), None)
        if step is None:
            raise LookupError(f"step {idx} not found")
        step.marker = normalize_marker(marker)
        step.note = note
        self.save()

    def status_summary(self) -> tuple[int, int, int]:
        """Return ``(done, failed, total)``."""
        done = sum(1 for s in self.steps if s.is_done())
        failed = sum(1 for s in self.steps if not s.is_done() and s.is_failed())
        return done, failed, len(self.steps)

    def render(self) -> str:
        out = [f"# Plan: {self.title}\n\n"]
        for step in self.steps:
            out.append(f"- {step.marker} {step.idx}. {step.title}")
            if step.note is not None and step.note.strip():
                out.append(f"\n    note: {step.note}")
            out.append("\n")
        return "".join(out)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(self.render(), encoding="utf-8")


def _lines(text: str) -> list[str]:
    parts = text.split("\n")
    if parts and parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def _split_marker(rest: str) -> tuple[str, str] | None:
    if not rest.startswith("["):
        return None
    end = rest.find("]")
    if end < 0:
        return None
    return rest[: end + 1], rest[end + 1 :]


def _parse_index(text: str) -> int | None:
    digits = text[1:] if text.startswith("+") else text
    if digits and digits.isascii() and digits.isdigit():
        return int(digits)
    return None


def _parse(content: str, path: Path) -> PlanFile:
    title = path.stem or "plan"
    steps: list[PlanStep] = []
    current: PlanStep | None = None
    for line in _lines(content):
        trimmed = line.lstrip()
        if trimmed.startswith("# Plan:"):
            title = trimmed[len("# Plan:") :].strip()
            continue
        if trimmed.startswith("- "):
            if current is not None:
                steps.append(current)
                current = None
            split = _split_marker(trimmed[2:])
            if split is None:
                continue
            marker, after = split
            after = after.lstrip()
            head, sep, tail = after.partition(".")
            step_title = (tail if sep else after).strip()
            idx = _parse_index(head.strip())
            current = PlanStep(
                idx=idx if idx is not None else len(steps) + 1,
                title=step_title,
                marker=marker,
            )
        elif trimmed.startswith("note:") and current is not None:
            current.note = trimmed[len("note:") :].strip()
    if current is not None:
        steps.append(current)
    return PlanFile(path=path, title=title, steps=steps)