"""
Configuration loader for the grading engine.

Handles loading and validating grader configuration files.
"""

import json
import sys
from pathlib import Path
from typing import Optional

from .models import GraderConfig


CONFIG_FILE_NAME = "grader_config.json"


def load_config(config_path: Optional[Path] = None) -> GraderConfig:
    """
    Load grader configuration from a JSON file.

    Args:
        config_path: Path to the configuration file. If None, looks for
                    'grader_config.json' next to the executable/package.

    Returns:
        GraderConfig object with validated configuration

    Raises:
        ValueError: If config is invalid
    """
    if config_path is None:
        if getattr(sys, 'frozen', False):
            base_dir = Path(sys.executable).parent
        else:
            base_dir = Path(__file__).parent.parent

        config_path = base_dir / CONFIG_FILE_NAME

    config_path = Path(config_path)
    if not config_path.exists():
        print(f"Warning: Config file '{config_path}' not found. Using default configuration.")
        return GraderConfig.default()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}")
    except OSError as e:
        raise ValueError(f"Error reading config file: {e}")

    if not isinstance(data, dict):
        raise ValueError("Invalid configuration: top-level value must be an object")

    try:
        config = GraderConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid configuration: {e}")

    is_valid, error_message = config.validate()
    if not is_valid:
        raise ValueError(f"Invalid configuration: {error_message}")

    return config


def create_sample_config(output_path: Path):
    """
    Create a sample configuration file for administrators.

    Args:
        output_path: Path where to save the sample config
    """
    default = GraderConfig.default()
    sample_config = {
        "compiler": default.compiler,
        "compiler_flags": default.compiler_flags,
        "compile_timeout_sec": default.compile_timeout_sec,
        "run_timeout_ms": default.run_timeout_ms,
        "memory_limit_mb": default.memory_limit_mb,
        "workspace_root": default.workspace_root,
        "workspace_prefix": default.workspace_prefix,
        "language": default.language,
        "_comment": "This is a sample grader configuration. Adjust values as needed.",
        "_instructions": {
            "compiler": "C compiler executable, on PATH or as an absolute path",
            "compiler_flags": "Flags passed to the compiler before the source file",
            "compile_timeout_sec": "Maximum time allowed for one compilation",
            "run_timeout_ms": "Maximum time allowed for one test case run",
            "memory_limit_mb": "Address space limit for programs under test (Unix only, null for none)",
            "workspace_root": "Directory for scratch workspaces (null for the system temp directory)",
            "workspace_prefix": "Name prefix of every scratch workspace directory",
            "language": "Submission language; only 'c' is supported"
        }
    }

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(sample_config, f, indent=2)

    print(f"Sample configuration created at: {output_path}")
