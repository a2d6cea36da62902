"""
C Lab Grader - Engine Package

This package contains the core components for compiling and grading student
C submissions:
- models: Data structures for submissions, test cases, exercises and results
- workspace: Per-evaluation scratch directories
- compiler: C compilation with cleaned diagnostics
- sandbox: Time-bounded program execution
- grader: Test case execution, scoring and visible/hidden partitioning
"""

from .errors import GraderError, ValidationError, GradingEnvironmentError, ExerciseLoadError
from .grader import Grader
from .models import (
    SourceUnit, TestCase, Exercise, EvaluationResult, TestCaseResult,
    SubmissionReport, GraderConfig,
)

__version__ = "1.0.0"
