"""
Data models for the grading engine.

Provides type-safe structures for submissions, test cases, exercises,
compilation/execution outcomes and evaluation results, plus the engine
configuration.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

from .errors import ValidationError


SUPPORTED_LANGUAGE = "c"

# Platform policy: every exercise exposes exactly this many visible test cases
VISIBLE_TEST_COUNT = 3

# Accepted spellings for the expected output of a test case, in priority order
EXPECTED_OUTPUT_KEYS = ("expected_output", "expectedOutput", "output", "expected")


@dataclass(frozen=True)
class SourceUnit:
    """Submitted program text and its declared language."""
    text: str
    language: str = SUPPORTED_LANGUAGE


@dataclass(frozen=True)
class TestCase:
    """A single stdin/stdout test case."""
    __test__ = False  # not a pytest class

    input: str = ""
    expected_output: str = ""
    visible: bool = True

    @staticmethod
    def from_dict(data: dict, visible: bool = True) -> 'TestCase':
        """
        Create a TestCase from a raw dictionary.

        Normalizes the different field spellings used for the expected output
        so the rest of the engine only sees the canonical shape.

        Raises:
            ValidationError: If no expected output field is present
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Test case must be an object, got {type(data).__name__}")

        expected = None
        for key in EXPECTED_OUTPUT_KEYS:
            if data.get(key) is not None:
                expected = data[key]
                break
        if expected is None:
            raise ValidationError("Test case is missing its expected output")

        raw_input = data.get('input')
        return TestCase(
            input="" if raw_input is None else str(raw_input),
            expected_output=str(expected),
            visible=bool(data.get('visible', visible))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "expected_output": self.expected_output,
            "visible": self.visible,
        }


@dataclass
class Exercise:
    """An exercise record: ordered visible and hidden test cases."""
    id: str
    title: str
    visible_tests: List[TestCase]
    hidden_tests: List[TestCase] = field(default_factory=list)

    @staticmethod
    def from_dict(data: dict) -> 'Exercise':
        """
        Create an Exercise from a dictionary (``test_cases`` / ``hidden_test_cases``).

        Raises:
            ValidationError: If a test case list is not a list or holds an invalid case
        """
        raw_lists = {}
        for key in ('test_cases', 'hidden_test_cases'):
            raw = data.get(key) or []
            if not isinstance(raw, list):
                raise ValidationError(f"'{key}' must be a list, got {type(raw).__name__}")
            raw_lists[key] = raw

        # The list a case comes from decides its visibility, not a flag inside the case
        visible = [replace(TestCase.from_dict(t), visible=True) for t in raw_lists['test_cases']]
        hidden = [replace(TestCase.from_dict(t), visible=False) for t in raw_lists['hidden_test_cases']]

        return Exercise(
            id=str(data.get('id', '')),
            title=data.get('title', ''),
            visible_tests=visible,
            hidden_tests=hidden
        )

    def all_tests(self) -> List[TestCase]:
        """Visible test cases followed by hidden ones, original order kept."""
        return list(self.visible_tests) + list(self.hidden_tests)

    def validate(self) -> Tuple[bool, str]:
        """
        Validate the exercise structure.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not self.visible_tests:
            return False, "Exercise has no visible test cases"
        return True, ""

    def follows_visible_policy(self) -> bool:
        """True when the exercise exposes the platform's fixed number of visible tests."""
        return len(self.visible_tests) == VISIBLE_TEST_COUNT


@dataclass
class CompilationOutcome:
    """Result of building a SourceUnit: an artifact or a diagnostic."""
    success: bool
    artifact_path: Optional[Path] = None
    diagnostic: Optional[str] = None

    @staticmethod
    def built(artifact_path: Path) -> 'CompilationOutcome':
        return CompilationOutcome(success=True, artifact_path=artifact_path)

    @staticmethod
    def failed(diagnostic: str) -> 'CompilationOutcome':
        return CompilationOutcome(success=False, diagnostic=diagnostic)


@dataclass
class ExecutionOutcome:
    """
    Result of running an artifact once.

    status is one of "success", "timeout", "runtime_error" (nonzero exit)
    or "start_error" (the process could not be spawned).
    """
    status: str
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: int = 0
    message: str = ""

    @property
    def timed_out(self) -> bool:
        return self.status == "timeout"

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass
class TestCaseResult:
    """Outcome of one test case; index is the position in the submitted list."""
    __test__ = False  # not a pytest class

    index: int
    input: str
    expected: str
    actual: str
    passed: bool
    execution_time_ms: Optional[int]
    visible: bool = True
    status: str = "passed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "expected": self.expected,
            "actual": self.actual,
            "passed": self.passed,
            "execution_time": self.execution_time_ms,
        }


def compute_score(passed_count: int, total_count: int) -> int:
    """Percentage of passed tests, rounded half up; 0 for an empty set."""
    if total_count <= 0:
        return 0
    return (passed_count * 200 + total_count) // (2 * total_count)


@dataclass
class EvaluationResult:
    """Full result of one evaluation over an ordered test case list."""
    compilation_success: bool
    compilation_error: Optional[str]
    results: List[TestCaseResult]
    passed_count: int
    total_count: int
    score: int

    @staticmethod
    def compilation_failed(error: str, total_count: int) -> 'EvaluationResult':
        return EvaluationResult(
            compilation_success=False,
            compilation_error=error,
            results=[],
            passed_count=0,
            total_count=total_count,
            score=0
        )

    @staticmethod
    def from_results(results: List[TestCaseResult]) -> 'EvaluationResult':
        passed_count = sum(1 for r in results if r.passed)
        return EvaluationResult(
            compilation_success=True,
            compilation_error=None,
            results=results,
            passed_count=passed_count,
            total_count=len(results),
            score=compute_score(passed_count, len(results))
        )

    @property
    def all_passed(self) -> bool:
        return self.compilation_success and self.total_count > 0 and self.passed_count == self.total_count

    def partition(self) -> Tuple[List[TestCaseResult], List[TestCaseResult]]:
        """Split results into (visible, hidden), keeping the original order within each."""
        ordered = sorted(self.results, key=lambda r: r.index)
        visible = [r for r in ordered if r.visible]
        hidden = [r for r in ordered if not r.visible]
        return visible, hidden

    def visible_results(self) -> List[TestCaseResult]:
        return self.partition()[0]

    def to_dict(self, visible_only: bool = False) -> Dict[str, Any]:
        results = self.visible_results() if visible_only else self.results
        return {
            "compilationSuccess": self.compilation_success,
            "compilationError": self.compilation_error,
            "results": [r.to_dict() for r in results],
            "passedCount": self.passed_count,
            "totalCount": self.total_count,
            "score": self.score,
        }


@dataclass
class SubmissionReport:
    """
    Final submission verdict.

    Score and pass/fail come from the full test set; only the visible
    results are meant to be shown to the student.
    """
    evaluation: EvaluationResult
    visible_results: List[TestCaseResult]
    hidden_passed: int
    hidden_total: int
    status: str
    message: str

    @property
    def passed(self) -> bool:
        return self.status == "passed"

    @property
    def score(self) -> int:
        return self.evaluation.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compilationSuccess": self.evaluation.compilation_success,
            "compilationError": self.evaluation.compilation_error,
            "results": [r.to_dict() for r in self.visible_results],
            "score": self.evaluation.score,
            "passed": self.passed,
            "status": self.status,
            "testsPassed": self.evaluation.passed_count,
            "totalTests": self.evaluation.total_count,
            "hiddenPassed": self.hidden_passed,
            "hiddenTotal": self.hidden_total,
            "message": self.message,
        }


@dataclass
class GraderConfig:
    """
    Engine configuration.

    Attributes:
        compiler: C compiler executable (name on PATH or absolute path)
        compiler_flags: Flags passed before the source file
        compile_timeout_sec: Wall-clock limit for one compiler run
        run_timeout_ms: Wall-clock limit for one test case run
        memory_limit_mb: Address space limit for programs under test (Unix only)
        workspace_root: Directory that holds scratch workspaces (None = system temp)
        workspace_prefix: Name prefix of every scratch workspace
        language: Accepted submission language
    """
    compiler: str
    compiler_flags: List[str]
    compile_timeout_sec: float
    run_timeout_ms: int
    memory_limit_mb: Optional[int]
    workspace_root: Optional[str]
    workspace_prefix: str
    language: str

    @staticmethod
    def from_dict(data: dict) -> 'GraderConfig':
        """Create GraderConfig from dictionary, filling defaults for missing keys."""
        default = GraderConfig.default()
        flags = data.get('compiler_flags', default.compiler_flags)
        return GraderConfig(
            compiler=data.get('compiler', default.compiler),
            compiler_flags=list(flags),
            compile_timeout_sec=float(data.get('compile_timeout_sec', default.compile_timeout_sec)),
            run_timeout_ms=int(data.get('run_timeout_ms', default.run_timeout_ms)),
            memory_limit_mb=data.get('memory_limit_mb', default.memory_limit_mb),
            workspace_root=data.get('workspace_root', default.workspace_root),
            workspace_prefix=data.get('workspace_prefix', default.workspace_prefix),
            language=str(data.get('language', default.language)).lower()
        )

    def validate(self) -> Tuple[bool, str]:
        """
        Validate configuration values.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not self.compiler or not str(self.compiler).strip():
            return False, "Compiler must not be empty"

        if not isinstance(self.compiler_flags, list) or not all(isinstance(f, str) for f in self.compiler_flags):
            return False, "compiler_flags must be a list of strings"

        if self.compile_timeout_sec <= 0:
            return False, "compile_timeout_sec must be positive"

        if self.run_timeout_ms <= 0:
            return False, "run_timeout_ms must be positive"

        if self.memory_limit_mb is not None and self.memory_limit_mb <= 0:
            return False, "memory_limit_mb must be positive (or null for no limit)"

        if self.language != SUPPORTED_LANGUAGE:
            return False, f"Unsupported language '{self.language}' (only '{SUPPORTED_LANGUAGE}' is supported)"

        if not self.workspace_prefix or any(sep in self.workspace_prefix for sep in ('/', '\\')):
            return False, "workspace_prefix must be a plain, non-empty name"

        if self.workspace_root is not None and not Path(self.workspace_root).is_dir():
            return False, f"workspace_root '{self.workspace_root}' is not an existing directory"

        return True, ""

    @staticmethod
    def default() -> 'GraderConfig':
        """Return the default configuration (gcc, C99, 30 s compile, 5 s per test)."""
        return GraderConfig(
            compiler="gcc",
            compiler_flags=["-std=c99", "-Wall", "-Wextra"],
            compile_timeout_sec=30.0,
            run_timeout_ms=5000,
            memory_limit_mb=256,
            workspace_root=None,
            workspace_prefix="labgrader",
            language=SUPPORTED_LANGUAGE
        )
