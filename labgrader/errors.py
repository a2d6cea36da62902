"""
Exception types raised by the grading engine.

Only GradingEnvironmentError is expected to escape an evaluation; compile
failures, timeouts and runtime errors are reported inside the result objects.
"""


class GraderError(Exception):
    """Base class for all grading engine errors."""


class ValidationError(GraderError, ValueError):
    """Submission or test case list rejected before compilation."""


class GradingEnvironmentError(GraderError, RuntimeError):
    """Toolchain or workspace failure; reflects platform health, not the submission."""


class ExerciseLoadError(GraderError):
    """Exercise file could not be read, decrypted or parsed."""
