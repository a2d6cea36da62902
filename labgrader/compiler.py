"""
C compilation of untrusted submissions.

Writes the submission into its workspace, checks the write, invokes the C
toolchain with strict flags under a timeout and turns compiler stderr into a
short diagnostic for the student.
"""

import re
import subprocess
from pathlib import Path
from typing import List, Optional

from .errors import GradingEnvironmentError
from .models import SourceUnit, CompilationOutcome, GraderConfig
from .sandbox import kill_process, IS_WINDOWS
from .session_log import EventLogger
from .workspace import Workspace


# Preprocessor line markers such as '# 1 "main.c"'
LINE_MARKER_RE = re.compile(r'^#.*$', re.MULTILINE)


def clean_diagnostic(stderr: str, exit_code: int, source_path: Optional[Path] = None) -> str:
    """
    Reduce compiler stderr to the part worth showing a student.

    Keeps only lines reporting errors; falls back to the whole stderr minus
    preprocessor line markers, then to a generic message when stderr is empty.
    The scratch source path is replaced by the plain file name.
    """
    if source_path is not None:
        stderr = stderr.replace(str(source_path), source_path.name)

    error_lines = [
        line for line in stderr.splitlines()
        if 'error:' in line or 'fatal error:' in line
    ]
    if error_lines:
        return "\n".join(error_lines)

    cleaned = LINE_MARKER_RE.sub('', stderr).strip()
    if cleaned:
        return cleaned

    return f"compilation failed with exit code {exit_code}"


class Compiler:
    """Builds a SourceUnit into an executable inside a workspace."""

    def __init__(self, config: GraderConfig, event_logger: Optional[EventLogger] = None):
        self.config = config
        self.event_logger = event_logger

    def _log(self, event: str, details: str = ""):
        if self.event_logger:
            self.event_logger(event, details)

    def command(self, workspace: Workspace) -> List[str]:
        """Full compiler command line for a workspace."""
        return [
            self.config.compiler,
            *self.config.compiler_flags,
            str(workspace.source_path),
            "-o",
            str(workspace.artifact_path),
        ]

    def write_source(self, source: SourceUnit, workspace: Workspace):
        """
        Persist the submission and read it back.

        Raises:
            GradingEnvironmentError: If the file cannot be written or its
                content differs from the submission
        """
        try:
            # newline='' keeps the submission byte-for-byte on every platform
            with open(workspace.source_path, 'w', encoding='utf-8', newline='') as f:
                f.write(source.text)
            with open(workspace.source_path, 'r', encoding='utf-8', newline='') as f:
                written = f.read()
        except OSError as e:
            raise GradingEnvironmentError(f"Failed to write source file: {e}")

        if written != source.text:
            raise GradingEnvironmentError("Source file content mismatch after writing")

    def build(self, source: SourceUnit, workspace: Workspace) -> CompilationOutcome:
        """
        Compile the submission.

        Returns:
            CompilationOutcome.built(artifact) or CompilationOutcome.failed(diagnostic)

        Raises:
            GradingEnvironmentError: If the toolchain is missing or reports
                success without producing an executable
        """
        self.write_source(source, workspace)

        cmd = self.command(workspace)
        self._log("COMPILE_START", f"Workspace: {workspace.id}, Command: {' '.join(cmd)}")

        popen_kwargs = {}
        if not IS_WINDOWS:
            popen_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(workspace.root),
                **popen_kwargs
            )
        except FileNotFoundError:
            raise GradingEnvironmentError(
                f"C compiler '{self.config.compiler}' not found. Install it or set 'compiler' in the config."
            )
        except OSError as e:
            raise GradingEnvironmentError(f"Failed to start C compiler: {e}")

        try:
            _, stderr_raw = proc.communicate(timeout=self.config.compile_timeout_sec)
        except subprocess.TimeoutExpired:
            kill_process(proc)
            proc.communicate()
            self._log("COMPILE_TIMEOUT", f"Workspace: {workspace.id}, Limit: {self.config.compile_timeout_sec}s")
            return CompilationOutcome.failed("compilation timed out")
        except BaseException:
            kill_process(proc)
            proc.communicate()
            raise

        stderr = stderr_raw.decode('utf-8', errors='replace')

        if proc.returncode != 0:
            diagnostic = clean_diagnostic(stderr, proc.returncode, workspace.source_path)
            self._log("COMPILE_FAILED", f"Workspace: {workspace.id}, Exit code: {proc.returncode}")
            return CompilationOutcome.failed(diagnostic)

        if not workspace.artifact_path.exists():
            raise GradingEnvironmentError("Compilation reported success but executable was not created")

        self._log("COMPILE_OK", f"Workspace: {workspace.id}")
        return CompilationOutcome.built(workspace.artifact_path)
