"""Tests for the step runner and StepTracker."""

import subprocess
from unittest.mock import MagicMock

from sheets_setup.tracker import Step, StepError, StepResult, StepTracker, run_steps


def _ok(ctx):
    ctx.append("ok")


def _skip(ctx):
    ctx.append("skip")
    return StepResult.skip("nothing to do", warnings=["heads up"])


def _boom(ctx):
    ctx.append("boom")
    raise StepError("it broke")


def _never(ctx):
    ctx.append("never")


class TestRunSteps:

    def test_all_steps_run_in_order(self):
        ctx = []
        report = run_steps([Step("a", "A", _ok), Step("b", "B", _skip)], ctx)
        assert ctx == ["ok", "skip"]
        assert report.ok
        assert report.error == ""
        assert report.warnings == ["heads up"]

    def test_stops_at_first_failure(self):
        ctx = []
        steps = [Step("a", "A", _ok), Step("b", "B", _boom), Step("c", "C", _never)]
        report = run_steps(steps, ctx)
        assert ctx == ["ok", "boom"]
        assert not report.ok
        assert report.failed_step.key == "b"
        assert report.error == "it broke"
        assert "c" not in report.results

    def test_process_and_os_errors_become_failures(self):
        def called(ctx):
            raise subprocess.CalledProcessError(2, ["composer", "install"])

        def missing(ctx):
            raise FileNotFoundError("no such file: php.ini")

        report = run_steps([Step("x", "X", called)], None)
        assert report.error == "composer install exited with 2"
        report = run_steps([Step("y", "Y", missing)], None)
        assert "php.ini" in report.error

    def test_value_errors_become_failures(self):
        def undecodable(ctx):
            b"\xe9".decode("utf-8")

        steps = [Step("d", "D", undecodable), Step("e", "E", _never)]
        ctx = []
        report = run_steps(steps, ctx)
        assert report.failed_step.key == "d"
        assert "utf-8" in report.error
        assert ctx == []

    def test_tracker_reflects_outcomes(self):
        tracker = StepTracker("Test")
        steps = [Step("a", "A", _ok), Step("b", "B", _skip), Step("c", "C", _boom), Step("d", "D", _never)]
        run_steps(steps, [], tracker=tracker)
        assert [tracker.status_of(k) for k in "abcd"] == ["done", "skipped", "error", "pending"]

    def test_live_paused_around_interactive_step(self):
        live = MagicMock()
        seen = []

        def interactive(ctx):
            seen.append(live.stop.call_count)

        run_steps([Step("a", "A", _ok), Step("i", "I", interactive, interactive=True)], [], live=live)
        assert seen == [1]
        assert live.stop.call_count == 1
        assert live.start.call_count == 1

    def test_live_restarted_after_interactive_failure(self):
        live = MagicMock()
        report = run_steps([Step("i", "I", _boom, interactive=True)], [], live=live)
        assert not report.ok
        live.start.assert_called_once()


class TestStepTracker:

    def test_add_is_idempotent(self):
        tracker = StepTracker("T")
        tracker.add("a", "A")
        tracker.add("a", "A again")
        assert len(tracker.steps) == 1

    def test_refresh_errors_are_ignored(self):
        tracker = StepTracker("T")
        tracker.attach_refresh(MagicMock(side_effect=RuntimeError("render")))
        tracker.add("a", "A")
        tracker.complete("a", "fine")
        assert tracker.status_of("a") == "done"

    def test_unknown_key_is_added_on_update(self):
        tracker = StepTracker("T")
        tracker.error("late", "oops")
        assert tracker.status_of("late") == "error"

    def test_render_includes_labels(self):
        tracker = StepTracker("Provision")
        tracker.add("a", "Clone repository")
        tracker.complete("a", "done here")
        tree = tracker.render()
        assert "Clone repository" in str(tree.children[0].label)
        assert "done here" in str(tree.children[0].label)

    def test_render_keeps_first_line_of_multiline_detail(self):
        tracker = StepTracker("Provision")
        tracker.add("deps", "Install dependencies")
        tracker.error("deps", "npm install exited with 1\nE401 Unauthorized")
        label = str(tracker.render().children[0].label)
        assert "[red]●[/red]" in label
        assert "npm install exited with 1" in label
        assert "E401" not in label
