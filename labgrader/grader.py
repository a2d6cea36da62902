"""
Grader module for compiling submissions and running their test cases.

Provides the Grader class which orchestrates one evaluation: workspace,
compilation, sequential test execution and scoring. It also exposes the two
platform call shapes (practice run over visible tests, final submission over
visible + hidden tests) and a terminal formatter for results.
"""

from typing import List, Optional, Sequence, Union

from .compiler import Compiler
from .errors import ValidationError
from .models import (
    SourceUnit, TestCase, TestCaseResult, EvaluationResult, Exercise,
    SubmissionReport, ExecutionOutcome, GraderConfig, SUPPORTED_LANGUAGE,
)
from .sandbox import run_once
from .session_log import EventLogger
from .workspace import WorkspaceManager


MESSAGES = {
    "practice_all_passed": "All visible test cases passed!",
    "practice_some_failed": "Some visible test cases failed",
    "submit_all_passed": "Congratulations! All test cases passed!",
    "submit_hidden_failed": "All visible test cases passed, but {count} hidden test case(s) failed. Keep improving!",
    "submit_visible_failed": "Some visible test cases failed. Please review your solution.",
    "submit_some_failed": "Some test cases failed. Keep trying!",
    "submit_compile_error": "Compilation failed. Fix the errors and submit again.",
    "report_compile_error": "[COMPILATION ERROR]",
    "report_running_tests": "Running {total} test case(s)...",
    "report_test_passed": "  Test {num}: PASSED ({ms} ms)",
    "report_test_failed_wrong": "  Test {num}: FAILED (wrong answer)",
    "report_test_failed_timeout": "  Test {num}: FAILED (time limit exceeded)",
    "report_test_failed_runtime": "  Test {num}: FAILED (runtime error)",
    "report_input": "    Input: {text}",
    "report_expected": "    Expected: {text}",
    "report_actual": "    Actual: {text}",
    "report_summary": "Result: {passed}/{total} passed, score {score}/100",
}


def outputs_match(actual: str, expected: str) -> bool:
    """Compare program output, ignoring surrounding whitespace only."""
    return actual.strip() == expected.strip()


class Grader:
    """Runs one submission against an ordered list of test cases."""

    def __init__(self, config: Optional[GraderConfig] = None, event_logger: Optional[EventLogger] = None):
        self.config = config or GraderConfig.default()
        self.event_logger = event_logger
        self.workspaces = WorkspaceManager(
            base_dir=self.config.workspace_root,
            prefix=self.config.workspace_prefix,
            event_logger=event_logger
        )
        self.compiler = Compiler(self.config, event_logger=event_logger)

    # ===== HELPER FUNCTIONS =====

    def _log(self, event: str, details: str = ""):
        if self.event_logger:
            self.event_logger(event, details)

    def _validate(self, source: SourceUnit, test_cases: Sequence[TestCase]) -> List[TestCase]:
        """Reject submissions that must not reach the compiler."""
        if source.language.lower() != SUPPORTED_LANGUAGE:
            raise ValidationError(f"Unsupported language: {source.language}")

        if not source.text or not source.text.strip():
            raise ValidationError("Code is required")

        try:
            source.text.encode('utf-8')
        except UnicodeEncodeError:
            raise ValidationError("Code must be valid UTF-8 text")

        cases = list(test_cases or [])
        if not cases:
            raise ValidationError("No test cases available")

        for i, case in enumerate(cases, start=1):
            if not isinstance(case, TestCase):
                raise ValidationError(f"Test case {i} is not a TestCase (normalize it with TestCase.from_dict)")
            if case.expected_output is None:
                raise ValidationError(f"Test case {i} has no expected output")
        return cases

    # ===== TEST EXECUTION =====

    def _judge(self, index: int, case: TestCase, outcome: ExecutionOutcome) -> TestCaseResult:
        """Turn one execution outcome into a test case result."""
        if outcome.ok:
            passed = outputs_match(outcome.stdout, case.expected_output)
            return TestCaseResult(
                index=index,
                input=case.input,
                expected=case.expected_output,
                actual=outcome.stdout.strip(),
                passed=passed,
                execution_time_ms=outcome.duration_ms,
                visible=case.visible,
                status="passed" if passed else "failed"
            )

        if outcome.timed_out:
            actual = f"Timeout: {outcome.message}"
            status = "timeout"
        else:
            actual = f"Runtime error: {outcome.message}"
            status = "runtime_error"

        return TestCaseResult(
            index=index,
            input=case.input,
            expected=case.expected_output,
            actual=actual,
            passed=False,
            execution_time_ms=None,
            visible=case.visible,
            status=status
        )

    def evaluate(
        self,
        source: Union[SourceUnit, str],
        test_cases: Sequence[TestCase],
        timeout_ms: Optional[int] = None
    ) -> EvaluationResult:
        """
        Compile a submission and run every test case in order.

        Args:
            source: Submitted program (plain text is taken as C)
            test_cases: Ordered test cases; order is kept in the results
            timeout_ms: Per test case limit (defaults to config.run_timeout_ms)

        Returns:
            EvaluationResult. Compile errors, timeouts and runtime errors are
            reported inside it.

        Raises:
            ValidationError: Empty source or no test cases
            GradingEnvironmentError: Toolchain or workspace failure
        """
        if isinstance(source, str):
            source = SourceUnit(text=source)
        cases = self._validate(source, test_cases)
        timeout_ms = timeout_ms or self.config.run_timeout_ms

        with self.workspaces.scoped() as workspace:
            self._log("EVALUATION_START", f"Workspace: {workspace.id}, Test cases: {len(cases)}")

            compilation = self.compiler.build(source, workspace)
            if not compilation.success:
                # Nothing runs against code that did not build
                self._log("EVALUATION_DONE", f"Workspace: {workspace.id}, Compilation failed")
                return EvaluationResult.compilation_failed(compilation.diagnostic, len(cases))

            # One test case at a time, in submission order
            results = []
            for index, case in enumerate(cases):
                outcome = run_once(
                    compilation.artifact_path,
                    case.input,
                    timeout_ms,
                    memory_limit_mb=self.config.memory_limit_mb,
                    cwd=workspace.root
                )
                result = self._judge(index, case, outcome)
                results.append(result)
                self._log(
                    "TEST_CASE_RESULT",
                    f"Workspace: {workspace.id}, Test: {index + 1}, Status: {result.status}, Time: {outcome.duration_ms}ms"
                )

            evaluation = EvaluationResult.from_results(results)
            self._log(
                "EVALUATION_DONE",
                f"Workspace: {workspace.id}, Passed: {evaluation.passed_count}/{evaluation.total_count}, Score: {evaluation.score}"
            )
            return evaluation

    # ===== PLATFORM CALL SHAPES =====

    def practice_run(self, source: Union[SourceUnit, str], exercise: Exercise) -> EvaluationResult:
        """Evaluate against the visible test cases only; every field may be shown."""
        return self.evaluate(source, exercise.visible_tests)

    def submit(self, source: Union[SourceUnit, str], exercise: Exercise) -> SubmissionReport:
        """
        Final submission: evaluate against visible + hidden test cases.

        Score and verdict cover the full set; the report's visible_results is
        the only per-test detail meant for the student. A submission passes
        only when every test case passes.
        """
        evaluation = self.evaluate(source, exercise.all_tests())
        hidden_total = len(exercise.hidden_tests)

        if not evaluation.compilation_success:
            return SubmissionReport(
                evaluation=evaluation,
                visible_results=[],
                hidden_passed=0,
                hidden_total=hidden_total,
                status="compilation_error",
                message=MESSAGES["submit_compile_error"]
            )

        visible, hidden = evaluation.partition()
        visible_passed = sum(1 for r in visible if r.passed)
        hidden_passed = sum(1 for r in hidden if r.passed)

        if evaluation.all_passed:
            message = MESSAGES["submit_all_passed"]
        elif visible_passed == len(visible) and hidden_passed < hidden_total:
            message = MESSAGES["submit_hidden_failed"].format(count=hidden_total - hidden_passed)
        elif visible_passed < len(visible):
            message = MESSAGES["submit_visible_failed"]
        else:
            message = MESSAGES["submit_some_failed"]

        return SubmissionReport(
            evaluation=evaluation,
            visible_results=visible,
            hidden_passed=hidden_passed,
            hidden_total=hidden_total,
            status="passed" if evaluation.all_passed else "failed",
            message=message
        )

    @staticmethod
    def practice_message(evaluation: EvaluationResult) -> str:
        """Summary line shown after a practice run."""
        if evaluation.compilation_success and evaluation.passed_count == evaluation.total_count:
            return MESSAGES["practice_all_passed"]
        return MESSAGES["practice_some_failed"]

    # ===== UTILITY METHODS =====

    def format_results(
        self,
        evaluation: EvaluationResult,
        results: Optional[List[TestCaseResult]] = None,
        show_details: bool = False
    ) -> str:
        """
        Format results for terminal display.

        Args:
            evaluation: Result from evaluate()
            results: Subset of results to list (e.g. visible only); defaults to all
            show_details: If True, show input, expected and actual output for failed tests

        Returns:
            Formatted string for terminal display
        """
        lines: List[str] = []
        if not evaluation.compilation_success:
            lines.append(MESSAGES["report_compile_error"])
            lines.append(evaluation.compilation_error or "")
            return "\n".join(lines)

        shown = evaluation.results if results is None else results
        lines.append(MESSAGES["report_running_tests"].format(total=len(shown)))

        for result in shown:
            num = result.index + 1
            if result.passed:
                lines.append(MESSAGES["report_test_passed"].format(num=num, ms=result.execution_time_ms))
                continue

            if result.status == "timeout":
                lines.append(MESSAGES["report_test_failed_timeout"].format(num=num))
            elif result.status == "runtime_error":
                lines.append(MESSAGES["report_test_failed_runtime"].format(num=num))
            else:
                lines.append(MESSAGES["report_test_failed_wrong"].format(num=num))

            if show_details:
                lines.append(MESSAGES["report_input"].format(text=repr(result.input)[:100]))
                lines.append(MESSAGES["report_expected"].format(text=repr(result.expected)[:100]))
                lines.append(MESSAGES["report_actual"].format(text=repr(result.actual)[:200]))

        lines.append("")
        lines.append(MESSAGES["report_summary"].format(
            passed=evaluation.passed_count, total=evaluation.total_count, score=evaluation.score
        ))
        return "\n".join(lines)

