"""
Time-bounded execution of compiled submissions.

Runs an artifact once per test case with stdin/stdout redirection.
Unix: the program runs in its own process group with CPU time and memory
limits applied through the resource module; on timeout the whole group is
killed with SIGKILL.
Windows: wall-clock timeout only, the process is killed directly.

The runner keeps no state between calls, so independent submissions may run
it concurrently.
"""

import os
import platform
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional, Tuple

from .models import ExecutionOutcome

try:
    import resource
except ImportError:  # Windows
    resource = None


IS_WINDOWS = platform.system() == "Windows"

# How long to wait for pipes to drain after a forced kill
KILL_DRAIN_SEC = 2.0


def _limit_setter(timeout_sec: float, memory_limit_mb: Optional[int]):
    """Build the preexec_fn that applies resource limits in the child (Unix only)."""
    cpu_limit = int(timeout_sec) + 1

    def set_limits():
        try:
            resource.setrlimit(resource.RLIMIT_CPU, (cpu_limit, cpu_limit))
        except (ValueError, OSError):
            pass

        if memory_limit_mb:
            try:
                memory_bytes = memory_limit_mb * 1024 * 1024
                resource.setrlimit(resource.RLIMIT_AS, (memory_bytes, memory_bytes))
            except (ValueError, OSError):
                pass

    return set_limits


def prepare_input(input_str: str) -> bytes:
    """
    Encode test input for the program's stdin.

    Non-empty input gets a trailing newline when it lacks one, since
    line-oriented C programs usually expect it. Empty input sends nothing.
    """
    if not input_str:
        return b""
    if not input_str.endswith("\n"):
        input_str += "\n"
    return input_str.encode('utf-8')


def kill_process(proc: subprocess.Popen):
    """Forcefully kill a running program and everything it spawned."""
    if IS_WINDOWS:
        try:
            proc.kill()
        except OSError:
            pass
        return

    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        # Group already gone; make sure the direct child is dead too
        try:
            proc.kill()
        except OSError:
            pass


def _drain(proc: subprocess.Popen) -> Tuple[bytes, bytes]:
    """Collect whatever output is left after a kill without waiting forever."""
    try:
        return proc.communicate(timeout=KILL_DRAIN_SEC)
    except subprocess.TimeoutExpired:
        for stream in (proc.stdin, proc.stdout, proc.stderr):
            if stream:
                stream.close()
        proc.wait()
        return b"", b""


def describe_exit(exit_code: int) -> str:
    """Human-readable description of a nonzero exit status."""
    if exit_code < 0:
        try:
            return f"terminated by signal {signal.Signals(-exit_code).name}"
        except ValueError:
            return f"terminated by signal {-exit_code}"
    return f"exited with code {exit_code}"


def run_once(
    artifact_path: Path,
    input_str: str,
    timeout_ms: int,
    memory_limit_mb: Optional[int] = None,
    cwd: Optional[Path] = None
) -> ExecutionOutcome:
    """
    Run a compiled program once with the given stdin.

    Args:
        artifact_path: Path to the executable
        input_str: Text fed to stdin (stream is closed afterwards)
        timeout_ms: Wall-clock limit in milliseconds
        memory_limit_mb: Address space limit in MB (Unix only, None = unlimited)
        cwd: Working directory (defaults to the artifact's directory)

    Returns:
        ExecutionOutcome with status "success", "timeout", "runtime_error"
        or "start_error". Never raises for problems caused by the program.
    """
    artifact_path = Path(artifact_path)
    timeout_sec = timeout_ms / 1000.0
    workdir = Path(cwd) if cwd else artifact_path.parent

    popen_kwargs = {
        "stdin": subprocess.PIPE,
        "stdout": subprocess.PIPE,
        "stderr": subprocess.PIPE,
        "cwd": str(workdir),
    }
    if not IS_WINDOWS:
        popen_kwargs["start_new_session"] = True
        if resource is not None:
            popen_kwargs["preexec_fn"] = _limit_setter(timeout_sec, memory_limit_mb)

    start_time = time.monotonic()
    try:
        proc = subprocess.Popen([str(artifact_path)], **popen_kwargs)
    except OSError as e:
        return ExecutionOutcome(
            status="start_error",
            message=f"Failed to run program: {e}"
        )

    try:
        stdout_raw, stderr_raw = proc.communicate(input=prepare_input(input_str), timeout=timeout_sec)
    except subprocess.TimeoutExpired:
        # No grace period: a program over its budget is killed outright
        kill_process(proc)
        stdout_raw, stderr_raw = _drain(proc)
        return ExecutionOutcome(
            status="timeout",
            stdout=stdout_raw.decode('utf-8', errors='replace'),
            stderr=stderr_raw.decode('utf-8', errors='replace'),
            exit_code=proc.returncode,
            duration_ms=int((time.monotonic() - start_time) * 1000),
            message=f"Program execution timed out after {timeout_ms}ms"
        )
    except BaseException:
        # Never leave an orphaned program behind, whatever interrupted us
        kill_process(proc)
        _drain(proc)
        raise

    duration_ms = int((time.monotonic() - start_time) * 1000)
    stdout = stdout_raw.decode('utf-8', errors='replace')
    stderr = stderr_raw.decode('utf-8', errors='replace')

    if proc.returncode == 0:
        return ExecutionOutcome(
            status="success",
            stdout=stdout,
            stderr=stderr,
            exit_code=0,
            duration_ms=duration_ms
        )

    message = f"Program {describe_exit(proc.returncode)}"
    if stderr.strip():
        message += f": {stderr.strip()}"
    return ExecutionOutcome(
        status="runtime_error",
        stdout=stdout,
        stderr=stderr,
        exit_code=proc.returncode,
        duration_ms=duration_ms,
        message=message
    )
