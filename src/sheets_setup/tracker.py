"""Step model, runner and tree rendering for the provisioning workflow."""

import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from rich.tree import Tree

_STATUS_SYMBOLS = {
    "done": "[green]●[/green]",
    "pending": "[green dim]○[/green dim]",
    "running": "[cyan]○[/cyan]",
    "error": "[red]●[/red]",
    "skipped": "[yellow]○[/yellow]",
}


class StepError(Exception):
    """A provisioning step could not complete."""


@dataclass
class StepResult:
    ok: bool = True
    detail: str = ""
    skipped: bool = False
    warnings: list = field(default_factory=list)

    @classmethod
    def done(cls, detail: str = "", warnings: Optional[list] = None) -> "StepResult":
        return cls(ok=True, detail=detail, warnings=list(warnings or []))

    @classmethod
    def skip(cls, detail: str = "", warnings: Optional[list] = None) -> "StepResult":
        return cls(ok=True, detail=detail, skipped=True, warnings=list(warnings or []))

    @classmethod
    def fail(cls, detail: str) -> "StepResult":
        return cls(ok=False, detail=detail)


@dataclass(frozen=True)
class Step:
    key: str
    label: str
    action: Callable[[Any], StepResult]
    # Child process needs the terminal (e.g. browser login prompt)
    interactive: bool = False


@dataclass
class RunReport:
    results: dict = field(default_factory=dict)
    failed_step: Optional[Step] = None

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    @property
    def error(self) -> str:
        if self.failed_step is None:
            return ""
        return self.results[self.failed_step.key].detail

    @property
    def warnings(self) -> list:
        collected = []
        for result in self.results.values():
            collected.extend(result.warnings)
        return collected


class StepTracker:
    """Status tree shared by `init` (one entry per provisioning step) and
    `check` (one entry per tool).

    `run_steps` drives the statuses; the CLI attaches a refresh callback that
    redraws the tree inside its rich `Live` display.
    """
    def __init__(self, title: str):
        self.title = title
        self.steps = []  # list of dicts: {key, label, status, detail}
        self._refresh_cb = None

    def attach_refresh(self, cb):
        self._refresh_cb = cb

    def add(self, key: str, label: str):
        if key not in [s["key"] for s in self.steps]:
            self.steps.append({"key": key, "label": label, "status": "pending", "detail": ""})
            self._maybe_refresh()

    def start(self, key: str, detail: str = ""):
        self._update(key, status="running", detail=detail)

    def complete(self, key: str, detail: str = ""):
        self._update(key, status="done", detail=detail)

    def error(self, key: str, detail: str = ""):
        self._update(key, status="error", detail=detail)

    def skip(self, key: str, detail: str = ""):
        self._update(key, status="skipped", detail=detail)

    def status_of(self, key: str) -> Optional[str]:
        for s in self.steps:
            if s["key"] == key:
                return s["status"]
        return None

    def _update(self, key: str, status: str, detail: str):
        for s in self.steps:
            if s["key"] == key:
                s["status"] = status
                if detail:
                    s["detail"] = detail
                self._maybe_refresh()
                return
        self.steps.append({"key": key, "label": key, "status": status, "detail": detail})
        self._maybe_refresh()

    def _maybe_refresh(self):
        if self._refresh_cb:
            try:
                self._refresh_cb()
            except Exception:
                # Rendering must never abort provisioning
                pass

    def render(self):
        tree = Tree(f"[cyan]{self.title}[/cyan]", guide_style="grey50")
        for step in self.steps:
            status = step["status"]
            symbol = _STATUS_SYMBOLS.get(status, " ")
            detail = (step["detail"] or "").strip()
            if status == "pending":
                text = f"{step['label']} ({detail})" if detail else step["label"]
                line = f"{symbol} [bright_black]{text}[/bright_black]"
            else:
                line = f"{symbol} [white]{step['label']}[/white]"
                if detail:
                    # Multi-line failure output keeps only its first line in the tree
                    line += f" [bright_black]({detail.splitlines()[0]})[/bright_black]"
            tree.add(line)
        return tree


def _run_one(step: Step, ctx) -> StepResult:
    try:
        result = step.action(ctx)
    except StepError as e:
        return StepResult.fail(str(e))
    except subprocess.CalledProcessError as e:
        return StepResult.fail(f"{' '.join(map(str, e.cmd))} exited with {e.returncode}")
    except OSError as e:
        return StepResult.fail(str(e))
    except ValueError as e:
        return StepResult.fail(str(e))
    if result is None:
        return StepResult.done()
    return result


def run_steps(steps: list, ctx, tracker: Optional[StepTracker] = None, live=None) -> RunReport:
    """Run ``steps`` in order, stopping at the first failure.

    ``live`` is an optional rich ``Live``; it is stopped while interactive
    steps run so the child process owns the terminal.
    """
    report = RunReport()
    if tracker:
        for step in steps:
            tracker.add(step.key, step.label)

    for step in steps:
        if tracker:
            tracker.start(step.key)
        paused = step.interactive and live is not None
        if paused:
            live.stop()
        try:
            result = _run_one(step, ctx)
        finally:
            if paused:
                live.start()
        report.results[step.key] = result

        if not result.ok:
            report.failed_step = step
            if tracker:
                tracker.error(step.key, result.detail)
            break
        if tracker:
            if result.skipped:
                tracker.skip(step.key, result.detail)
            else:
                tracker.complete(step.key, result.detail)
    return report
