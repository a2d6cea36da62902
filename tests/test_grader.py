"""
Tests for the grader.

Covers:
- Validation before compilation
- Judging of execution outcomes (mocked runner)
- Workspace cleanup on every exit path
- Practice run and final submission call shapes
- End-to-end scenarios with a real C compiler
"""

import pytest
import shutil
from unittest.mock import Mock, patch
from pathlib import Path

# Add parent directory to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from labgrader.errors import ValidationError, GradingEnvironmentError
from labgrader.grader import Grader, outputs_match
from labgrader.models import (
    SourceUnit, TestCase, Exercise, ExecutionOutcome, CompilationOutcome, GraderConfig,
)


requires_gcc = pytest.mark.skipif(shutil.which("gcc") is None, reason="gcc not installed")

INCREMENT_SOURCE = """#include <stdio.h>

int main(void)
{
    int n;
    if (scanf("%d", &n) != 1) {
        return 1;
    }
    printf("%d\\n", n + 1);
    return 0;
}
"""


def make_grader(tmp_path, **overrides) -> Grader:
    data = {"workspace_root": str(tmp_path), "run_timeout_ms": 5000}
    data.update(overrides)
    return Grader(GraderConfig.from_dict(data))


def fake_build(source, workspace):
    workspace.artifact_path.write_bytes(b"binary")
    return CompilationOutcome.built(workspace.artifact_path)


def run_by_input(outcomes):
    """Fake runner answering by test input."""
    def runner(artifact_path, input_str, timeout_ms, memory_limit_mb=None, cwd=None):
        return outcomes[input_str]
    return runner


class TestOutputsMatch:
    """Test output comparison."""

    def test_trailing_whitespace_ignored(self):
        assert outputs_match("5\n", "5")
        assert outputs_match("  5 \r\n", "5\n")

    def test_internal_whitespace_matters(self):
        assert not outputs_match("1  2", "1 2")
        assert not outputs_match("1\n2", "1 2")


class TestValidation:
    """Test rejection before compiling."""

    def test_empty_source(self, tmp_path):
        grader = make_grader(tmp_path)

        with pytest.raises(ValidationError, match="Code is required"):
            grader.evaluate("   \n", [TestCase(expected_output="")])

    def test_no_test_cases(self, tmp_path):
        grader = make_grader(tmp_path)

        with pytest.raises(ValidationError, match="No test cases"):
            grader.evaluate("int main(){return 0;}", [])

    def test_raw_dicts_are_rejected(self, tmp_path):
        """Test cases must be normalized before they reach the engine."""
        grader = make_grader(tmp_path)

        with pytest.raises(ValidationError):
            grader.evaluate("int main(){return 0;}", [{"input": "", "expected_output": ""}])

    def test_unsupported_language(self, tmp_path):
        grader = make_grader(tmp_path)

        with pytest.raises(ValidationError, match="Unsupported language"):
            grader.evaluate(SourceUnit(text="print(1)", language="python"), [TestCase(expected_output="1")])

    def test_unencodable_source(self, tmp_path):
        """Text with lone surrogates cannot be written as a C file."""
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock()

        with pytest.raises(ValidationError, match="UTF-8"):
            grader.evaluate("int main(){return 0;}\ud800", [TestCase(expected_output="")])

        grader.compiler.build.assert_not_called()
        assert list(tmp_path.iterdir()) == []

    def test_validation_happens_before_workspace(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock()

        with pytest.raises(ValidationError):
            grader.evaluate("", [TestCase(expected_output="")])

        grader.compiler.build.assert_not_called()
        assert list(tmp_path.iterdir()) == []


class TestEvaluateMocked:
    """Test evaluation flow with compiler and runner mocked."""

    def test_compile_failure_runs_nothing(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(return_value=CompilationOutcome.failed("main.c:1:1: error: nope"))

        with patch('labgrader.grader.run_once') as mock_run:
            result = grader.evaluate("garbage", [TestCase(expected_output="1"), TestCase(expected_output="2")])

        mock_run.assert_not_called()
        assert result.compilation_success is False
        assert result.compilation_error == "main.c:1:1: error: nope"
        assert result.results == []
        assert result.score == 0
        assert list(tmp_path.iterdir()) == []

    def test_results_keep_order_and_score(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)
        outcomes = {
            "1": ExecutionOutcome(status="success", stdout="2\n", exit_code=0, duration_ms=3),
            "2": ExecutionOutcome(status="success", stdout="4\n", exit_code=0, duration_ms=4),
            "3": ExecutionOutcome(status="success", stdout="4\n", exit_code=0, duration_ms=5),
        }
        cases = [
            TestCase(input="1", expected_output="2"),
            TestCase(input="2", expected_output="3"),
            TestCase(input="3", expected_output="4\n"),
        ]

        with patch('labgrader.grader.run_once', side_effect=run_by_input(outcomes)):
            result = grader.evaluate("int main(){}", cases)

        assert [r.index for r in result.results] == [0, 1, 2]
        assert [r.passed for r in result.results] == [True, False, True]
        assert result.results[1].actual == "4"
        assert result.results[1].status == "failed"
        assert result.results[0].execution_time_ms == 3
        assert result.passed_count == 2
        assert result.total_count == 3
        assert result.score == 67

    def test_timeout_fails_only_that_case(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)
        outcomes = {
            "slow": ExecutionOutcome(status="timeout", duration_ms=5000,
                                     message="Program execution timed out after 5000ms"),
            "fast": ExecutionOutcome(status="success", stdout="ok", exit_code=0),
        }
        cases = [TestCase(input="slow", expected_output="ok"), TestCase(input="fast", expected_output="ok")]

        with patch('labgrader.grader.run_once', side_effect=run_by_input(outcomes)):
            result = grader.evaluate("int main(){}", cases)

        slow, fast = result.results
        assert slow.passed is False
        assert slow.status == "timeout"
        assert slow.actual.startswith("Timeout:")
        assert "timed out" in slow.actual
        assert slow.execution_time_ms is None
        assert fast.passed is True
        assert result.score == 50

    def test_runtime_error_is_failed_case(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)
        outcomes = {
            "": ExecutionOutcome(status="runtime_error", stdout="", stderr="segv", exit_code=-11,
                                 message="Program terminated by signal SIGSEGV"),
        }

        with patch('labgrader.grader.run_once', side_effect=run_by_input(outcomes)):
            result = grader.evaluate("int main(){}", [TestCase(expected_output="")])

        case = result.results[0]
        assert case.passed is False
        assert case.status == "runtime_error"
        assert case.actual == "Runtime error: Program terminated by signal SIGSEGV"
        assert result.score == 0

    def test_runner_gets_config_limits(self, tmp_path):
        grader = make_grader(tmp_path, run_timeout_ms=1234, memory_limit_mb=64)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once',
                   return_value=ExecutionOutcome(status="success", stdout="", exit_code=0)) as mock_run:
            grader.evaluate("int main(){}", [TestCase(input="7", expected_output="")])

        args, kwargs = mock_run.call_args
        assert args[1] == "7"
        assert args[2] == 1234
        assert kwargs["memory_limit_mb"] == 64

    def test_environment_error_propagates_and_cleans_up(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=GradingEnvironmentError("toolchain broken"))

        with pytest.raises(GradingEnvironmentError):
            grader.evaluate("int main(){}", [TestCase(expected_output="")])

        assert list(tmp_path.iterdir()) == []

    def test_unexpected_error_still_cleans_up(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once', side_effect=KeyboardInterrupt):
            with pytest.raises(KeyboardInterrupt):
                grader.evaluate("int main(){}", [TestCase(expected_output="")])

        assert list(tmp_path.iterdir()) == []

    def test_events_are_logged(self, tmp_path):
        logger = Mock()
        grader = Grader(GraderConfig.from_dict({"workspace_root": str(tmp_path)}), event_logger=logger)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once',
                   return_value=ExecutionOutcome(status="success", stdout="", exit_code=0)):
            grader.evaluate("int main(){}", [TestCase(expected_output="")])

        events = [c.args[0] for c in logger.call_args_list]
        assert events[0] == "WORKSPACE_ACQUIRED"
        assert "EVALUATION_START" in events
        assert "TEST_CASE_RESULT" in events
        assert "EVALUATION_DONE" in events
        assert events[-1] == "WORKSPACE_RELEASED"


class TestCallShapes:
    """Test practice run and final submission."""

    def make_exercise(self):
        return Exercise.from_dict({
            "id": "ex1",
            "title": "Echo",
            "test_cases": [{"input": v, "expected_output": v} for v in ("a", "b", "c")],
            "hidden_test_cases": [{"input": v, "expected_output": v} for v in ("d", "e")],
        })

    def echo_except(self, wrong):
        def runner(artifact_path, input_str, timeout_ms, memory_limit_mb=None, cwd=None):
            stdout = "WRONG" if input_str in wrong else input_str
            return ExecutionOutcome(status="success", stdout=stdout, exit_code=0)
        return runner

    def test_practice_run_uses_visible_only(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once', side_effect=self.echo_except(set())) as mock_run:
            result = grader.practice_run("int main(){}", self.make_exercise())

        assert mock_run.call_count == 3
        assert result.total_count == 3
        assert result.score == 100
        assert grader.practice_message(result) == "All visible test cases passed!"

    def test_submit_hidden_failure(self, tmp_path):
        """Score covers all tests; only visible results are surfaced."""
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once', side_effect=self.echo_except({"e"})):
            report = grader.submit("int main(){}", self.make_exercise())

        assert report.score == 80
        assert report.passed is False
        assert report.status == "failed"
        assert len(report.visible_results) == 3
        assert all(r.passed for r in report.visible_results)
        assert report.hidden_passed == 1
        assert report.hidden_total == 2
        assert "1 hidden test case(s) failed" in report.message

        data = report.to_dict()
        assert len(data["results"]) == 3
        assert data["totalTests"] == 5

    def test_submit_all_pass(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once', side_effect=self.echo_except(set())):
            report = grader.submit("int main(){}", self.make_exercise())

        assert report.passed is True
        assert report.status == "passed"
        assert report.score == 100
        assert report.message == "Congratulations! All test cases passed!"

    def test_submit_visible_failure(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once', side_effect=self.echo_except({"a"})):
            report = grader.submit("int main(){}", self.make_exercise())

        assert report.status == "failed"
        assert report.message == "Some visible test cases failed. Please review your solution."

    def test_submit_compile_error(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(return_value=CompilationOutcome.failed("main.c:1: error: x"))

        report = grader.submit("oops", self.make_exercise())

        assert report.status == "compilation_error"
        assert report.passed is False
        assert report.score == 0
        assert report.visible_results == []
        assert report.evaluation.total_count == 5


class TestFormatResults:
    """Test terminal formatting."""

    def test_compile_error_report(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(return_value=CompilationOutcome.failed("main.c:1:1: error: x"))

        result = grader.evaluate("x", [TestCase(expected_output="")])
        text = grader.format_results(result)

        assert "[COMPILATION ERROR]" in text
        assert "main.c:1:1: error: x" in text

    def test_details_shown_on_request(self, tmp_path):
        grader = make_grader(tmp_path)
        grader.compiler.build = Mock(side_effect=fake_build)

        with patch('labgrader.grader.run_once',
                   return_value=ExecutionOutcome(status="success", stdout="41", exit_code=0)):
            result = grader.evaluate("int main(){}", [TestCase(input="x", expected_output="42")])

        plain = grader.format_results(result)
        detailed = grader.format_results(result, show_details=True)

        assert "Test 1: FAILED (wrong answer)" in plain
        assert "Expected" not in plain
        assert "Expected: '42'" in detailed
        assert "Actual: '41'" in detailed
        assert "Result: 0/1 passed, score 0/100" in plain


@requires_gcc
class TestScenarios:
    """End-to-end evaluations with a real C compiler."""

    def test_trivial_program_passes(self, tmp_path):
        grader = make_grader(tmp_path)

        result = grader.evaluate("int main(){return 0;}", [TestCase(input="", expected_output="")])

        assert result.compilation_success
        assert result.results[0].passed
        assert result.score == 100
        assert list(tmp_path.iterdir()) == []

    def test_missing_main_is_compile_error(self, tmp_path):
        grader = make_grader(tmp_path)

        result = grader.evaluate("int helper(void) { return 1; }\n", [TestCase(expected_output="")])

        assert result.compilation_success is False
        assert "error" in result.compilation_error
        assert result.results == []
        assert result.score == 0
        assert list(tmp_path.iterdir()) == []

    def test_increment_program(self, tmp_path):
        grader = make_grader(tmp_path)
        cases = [TestCase(input="4", expected_output="5"), TestCase(input="4", expected_output="6")]

        result = grader.evaluate(INCREMENT_SOURCE, cases)

        assert [r.passed for r in result.results] == [True, False]
        assert result.results[1].actual == "5"
        assert result.score == 50

    def test_infinite_loop_times_out(self, tmp_path):
        grader = make_grader(tmp_path)
        source = "int main(void){ volatile int x = 0; for (;;) { x++; } return 0; }\n"

        result = grader.evaluate(source, [TestCase(expected_output="")], timeout_ms=1000)

        case = result.results[0]
        assert case.passed is False
        assert case.status == "timeout"
        assert "timed out" in case.actual
        assert list(tmp_path.iterdir()) == []

    def test_crash_is_runtime_error(self, tmp_path):
        grader = make_grader(tmp_path)
        source = "int main(void){ return 3; }\n"

        result = grader.evaluate(source, [TestCase(expected_output="")])

        assert result.results[0].status == "runtime_error"
        assert "exited with code 3" in result.results[0].actual

    def test_submission_with_hidden_failure(self, tmp_path):
        grader = make_grader(tmp_path)
        exercise = Exercise.from_dict({
            "test_cases": [
                {"input": "1", "expected_output": "2"},
                {"input": "2", "expected_output": "3"},
                {"input": "3", "expected_output": "4"},
            ],
            "hidden_test_cases": [
                {"input": "10", "expected_output": "11"},
                {"input": "20", "expected_output": "22"},
            ],
        })

        report = grader.submit(INCREMENT_SOURCE, exercise)

        assert report.score == 80
        assert report.passed is False
        assert len(report.visible_results) == 3
        assert all(r.passed for r in report.visible_results)

    def test_repeat_evaluation_is_stable(self, tmp_path):
        grader = make_grader(tmp_path)
        cases = [TestCase(input="1", expected_output="2"), TestCase(input="1", expected_output="3")]

        first = grader.evaluate(INCREMENT_SOURCE, cases)
        second = grader.evaluate(INCREMENT_SOURCE, cases)

        assert [r.passed for r in first.results] == [r.passed for r in second.results]
