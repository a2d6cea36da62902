#!/usr/bin/env python3
"""
verify_exercise.py - Validate an exercise file and check it against a reference solution.

Usage with plaintext:
    python tools/verify_exercise.py --exercise sum.json

Usage with key file and a reference solution:
    python tools/verify_exercise.py --exercise exercises/sum.enc --key-file SUM.key --solution sum_ref.c

Usage with password:
    python tools/verify_exercise.py --exercise exercises/sum.enc --password
"""

import argparse
import getpass
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
from labgrader.config_loader import load_config
from labgrader.errors import ExerciseLoadError, GradingEnvironmentError, ValidationError
from labgrader.exercise_loader import load_exercise
from labgrader.grader import Grader
from labgrader.models import VISIBLE_TEST_COUNT


def verify_exercise(
    exercise_file: str,
    key_file: str = None,
    use_password: bool = False,
    solution_file: str = None,
    config_file: str = None,
    verbose: bool = False
) -> bool:
    """
    Verify an exercise file (encrypted or plaintext).
    Returns True if valid, False otherwise.
    """
    secret = {}
    if use_password:
        secret["password"] = getpass.getpass("Enter decryption password: ")
    elif key_file:
        try:
            with open(key_file, 'rb') as f:
                secret["key"] = f.read()
        except OSError as e:
            print(f"[ERROR] Cannot read key file: {e}", file=sys.stderr)
            return False

    try:
        exercise = load_exercise(Path(exercise_file), **secret)
    except ExerciseLoadError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return False

    print(f"\n[SCHEMA] Exercise Validation")
    print(f"{'='*60}")
    print(f"[OK] Id: {exercise.id or '?'}")
    print(f"[OK] Title: {exercise.title or '?'}")

    warnings = []
    if not exercise.follows_visible_policy():
        warnings.append(f"Expected {VISIBLE_TEST_COUNT} visible tests, found {len(exercise.visible_tests)}")

    for idx, case in enumerate(exercise.all_tests(), start=1):
        kind = "visible" if case.visible else "hidden"
        if not case.expected_output.strip():
            warnings.append(f"Test {idx} ({kind}): expected output is empty")
        if verbose:
            print(f"  [OK] Test {idx} ({kind}): input={case.input!r:.40} expected={case.expected_output!r:.40}")

    print(f"\n{'='*60}")
    print(f"[SUMMARY]")
    print(f"  Visible test cases: {len(exercise.visible_tests)}")
    print(f"  Hidden test cases: {len(exercise.hidden_tests)}")

    if warnings:
        print(f"\n[WARNING] ({len(warnings)}):")
        for warn in warnings[:10]:
            print(f"  - {warn}")
        if len(warnings) > 10:
            print(f"  ... and {len(warnings) - 10} more")

    if solution_file:
        print(f"\n[SOLUTION] Grading reference solution: {solution_file}")
        try:
            config = load_config(Path(config_file) if config_file else None)
            with open(solution_file, 'r', encoding='utf-8') as f:
                report = Grader(config).submit(f.read(), exercise)
        except (OSError, ValueError, ValidationError) as e:
            print(f"[ERROR] Cannot grade solution: {e}", file=sys.stderr)
            return False
        except GradingEnvironmentError as e:
            print(f"[ERROR] Grading environment problem: {e}", file=sys.stderr)
            return False

        if not report.evaluation.compilation_success:
            print(f"[ERROR] Reference solution does not compile:\n{report.evaluation.compilation_error}")
            return False

        failing = [r.index + 1 for r in report.evaluation.results if not r.passed]
        if failing:
            print(f"[ERROR] Reference solution fails test(s): {', '.join(str(n) for n in failing)}")
            return False
        print(f"[OK] Reference solution passes all {report.evaluation.total_count} test cases")

    print(f"\n[OK] Exercise validation PASSED")
    return True


def main():
    parser = argparse.ArgumentParser(
        description="Validate an exercise file and optionally grade a reference solution.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Verify plaintext exercise (during authoring)
  python tools/verify_exercise.py --exercise sum.json --verbose

  # Verify encrypted exercise and its reference solution
  python tools/verify_exercise.py --exercise exercises/sum.enc --key-file SUM.key --solution sum_ref.c
        """
    )
    parser.add_argument("--exercise", required=True, help="Path to exercise file (.enc or .json)")
    parser.add_argument("--key-file", help="Encryption key file (for key-file encrypted exercises)")
    parser.add_argument("--password", action="store_true", help="Use password to decrypt")
    parser.add_argument("--solution", help="Reference C solution that must pass every test case")
    parser.add_argument("--config", help="Grader configuration file (JSON)")
    parser.add_argument("--verbose", action="store_true", help="Show every test case")

    args = parser.parse_args()

    success = verify_exercise(
        args.exercise, args.key_file, args.password, args.solution, args.config, args.verbose
    )
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
