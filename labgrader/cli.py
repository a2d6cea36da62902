"""
Command line front end for the grading engine.

    labgrader run solution.c exercise.json          practice run (visible tests)
    labgrader submit solution.c exercise.enc --key-file EX1.key
    labgrader init-config grader_config.json
"""

import argparse
import getpass
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config_loader import load_config, create_sample_config
from .errors import ValidationError, GradingEnvironmentError, ExerciseLoadError
from .exercise_loader import load_exercise
from .grader import Grader
from .models import SourceUnit
from .session_log import EventLog


EXIT_OK = 0
EXIT_INPUT_ERROR = 1
EXIT_ENVIRONMENT_ERROR = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="labgrader",
        description="Compile a C submission and grade it against an exercise's test cases.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  labgrader run solution.c exercises/sum.json
  labgrader submit solution.c exercises/sum.enc --key-file SUM.key
  labgrader submit solution.c exercises/sum.enc --password --json
        """
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("run", "Practice run against the visible test cases"),
        ("submit", "Final submission against visible and hidden test cases"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("source", help="C source file to grade")
        sub.add_argument("exercise", help="Exercise file (.json or encrypted .enc)")
        sub.add_argument("--config", help="Grader configuration file (JSON)")
        sub.add_argument("--key-file", help="Key file for key-encrypted exercises")
        sub.add_argument("--password", action="store_true", help="Prompt for the exercise password")
        sub.add_argument("--log", help="Append grading events to this log file")
        sub.add_argument("--details", action="store_true", help="Show input/expected/actual for failed tests")
        sub.add_argument("--json", action="store_true", help="Print the result as JSON")

    init = subparsers.add_parser("init-config", help="Write a sample grader configuration")
    init.add_argument("output", help="Where to write the sample config")

    return parser


def _load_secret(args) -> dict:
    if args.password:
        return {"password": getpass.getpass("Enter exercise password: ")}
    if args.key_file:
        with open(args.key_file, 'rb') as f:
            return {"key": f.read()}
    return {}


def _grade(args) -> int:
    config = load_config(Path(args.config) if args.config else None)
    event_log = EventLog(Path(args.log)) if args.log else None
    grader = Grader(config, event_logger=event_log)

    source_path = Path(args.source)
    try:
        with open(source_path, 'r', encoding='utf-8') as f:
            source = SourceUnit(text=f.read())
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: Cannot read source file '{source_path}': {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR

    exercise = load_exercise(Path(args.exercise), **_load_secret(args))
    show_details = args.details or os.environ.get('LABGRADER_DEBUG', '').lower() in ['1', 'true', 'yes']

    if args.command == "run":
        evaluation = grader.practice_run(source, exercise)
        if event_log:
            event_log("PRACTICE_RUN", f"Exercise: {exercise.id}, Passed: {evaluation.passed_count}/{evaluation.total_count}")
        if args.json:
            payload = evaluation.to_dict()
            payload["message"] = grader.practice_message(evaluation)
            print(json.dumps(payload, indent=2))
        else:
            print(grader.format_results(evaluation, show_details=show_details))
            if evaluation.compilation_success:
                print(grader.practice_message(evaluation))
        return EXIT_OK

    report = grader.submit(source, exercise)
    if event_log:
        event_log(
            "SUBMISSION",
            f"Exercise: {exercise.id}, Status: {report.status}, Score: {report.score}, "
            f"Passed: {report.evaluation.passed_count}/{report.evaluation.total_count}"
        )
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(grader.format_results(report.evaluation, results=report.visible_results, show_details=show_details))
        if report.evaluation.compilation_success and report.hidden_total:
            print(f"Hidden tests: {report.hidden_passed}/{report.hidden_total} passed")
        print(report.message)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the labgrader command."""
    args = _build_parser().parse_args(argv)

    if args.command == "init-config":
        create_sample_config(Path(args.output))
        return EXIT_OK

    try:
        return _grade(args)
    except (ValidationError, ExerciseLoadError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except (ValueError, OSError) as e:
        # Invalid grader configuration or unreadable key file
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_INPUT_ERROR
    except GradingEnvironmentError as e:
        print("Error: Grading service unavailable.", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        return EXIT_ENVIRONMENT_ERROR


if __name__ == "__main__":
    sys.exit(main())
