"""
Scratch workspace allocation for evaluations.

Each evaluation owns a uniquely named directory holding at most one source
file and one compiled artifact. Names combine a nanosecond timestamp with a
random token, so concurrent evaluations never share paths and no locking is
needed.
"""

import os
import platform
import secrets
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from .errors import GradingEnvironmentError
from .session_log import EventLogger


SOURCE_NAME = "main.c"
ARTIFACT_NAME = "main.exe" if platform.system() == "Windows" else "main"


def generate_workspace_id() -> str:
    """Return a collision-resistant identifier: timestamp plus random token."""
    return f"{time.time_ns()}_{secrets.token_hex(8)}"


@dataclass(frozen=True)
class Workspace:
    """A scratch directory with its source and artifact paths."""
    id: str
    root: Path
    source_path: Path
    artifact_path: Path


class WorkspaceManager:
    """Allocates and removes per-evaluation workspaces."""

    def __init__(
        self,
        base_dir: Optional[str] = None,
        prefix: str = "labgrader",
        event_logger: Optional[EventLogger] = None
    ):
        self.base_dir = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
        self.prefix = prefix
        self.event_logger = event_logger

    def _log(self, event: str, details: str = ""):
        if self.event_logger:
            self.event_logger(event, details)

    def acquire(self) -> Workspace:
        """
        Create a fresh workspace directory.

        Returns:
            Workspace with source and artifact paths inside a new directory

        Raises:
            GradingEnvironmentError: If the directory cannot be created, or the
                generated name already exists
        """
        workspace_id = generate_workspace_id()
        root = self.base_dir / f"{self.prefix}_{workspace_id}"

        try:
            # exist_ok=False: an existing directory means an identifier collision
            root.mkdir(parents=False, exist_ok=False)
        except FileExistsError:
            raise GradingEnvironmentError(f"Workspace identifier collision: {root}")
        except OSError as e:
            raise GradingEnvironmentError(f"Cannot create workspace in '{self.base_dir}': {e}")

        workspace = Workspace(
            id=workspace_id,
            root=root,
            source_path=root / SOURCE_NAME,
            artifact_path=root / ARTIFACT_NAME
        )
        self._log("WORKSPACE_ACQUIRED", f"Workspace: {workspace.id}")
        return workspace

    def release(self, workspace: Workspace) -> bool:
        """
        Remove the workspace's files and directory.

        Missing paths are ignored; any other deletion failure is logged and
        does not raise.

        Returns:
            True if everything was removed, False if something was left behind
        """
        clean = True
        for path in (workspace.source_path, workspace.artifact_path):
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                clean = False
                self._log("WORKSPACE_CLEANUP_FAILED", f"Workspace: {workspace.id}, Path: {path.name}, Error: {e}")

        try:
            os.rmdir(workspace.root)
        except FileNotFoundError:
            pass
        except OSError:
            # Programs under test may leave their own files behind
            try:
                shutil.rmtree(workspace.root)
            except FileNotFoundError:
                pass
            except OSError as e:
                clean = False
                self._log("WORKSPACE_CLEANUP_FAILED", f"Workspace: {workspace.id}, Path: {workspace.root}, Error: {e}")

        if clean:
            self._log("WORKSPACE_RELEASED", f"Workspace: {workspace.id}")
        return clean

    @contextmanager
    def scoped(self) -> Iterator[Workspace]:
        """Acquire a workspace that is released on every exit path."""
        workspace = self.acquire()
        try:
            yield workspace
        finally:
            self.release(workspace)
