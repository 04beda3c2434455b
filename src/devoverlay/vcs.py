"""Version-control port used by the undo coordinator.

The coordinator only talks to ``VcsPort``; ``GitVcs`` implements it by
shelling out to the ``git`` binary.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_SHOW_BYTES = 10 * 1024 * 1024


class VcsError(Exception):
    """A version-control command failed."""


class VcsPort(ABC):
    """Minimal set of version-control operations needed for undo."""

    @abstractmethod
    async def is_repository(self, cwd: Path) -> bool:
        ...

    @abstractmethod
    async def snapshot_baseline(self, cwd: Path) -> str:
        """Return a ref capturing the working tree without modifying it."""
        ...

    @abstractmethod
    async def list_untracked(self, cwd: Path) -> set[str]:
        ...

    @abstractmethod
    async def diff_names(self, cwd: Path, ref: str) -> list[str]:
        """Tracked paths that differ between ``ref`` and the working tree."""
        ...

    @abstractmethod
    async def read_file_at_ref(self, cwd: Path, ref: str, rel_path: str) -> str | None:
        """Return file content at ``ref``, or None if it did not exist there.

        Raises ``VcsError`` when the content cannot be read.
        """
        ...


class GitVcs(VcsPort):
    """``VcsPort`` backed by the git command line."""

    def __init__(self, git: str = "git") -> None:
        self.git = git

    async def _run(self, cwd: Path, *args: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.git, *args,
                cwd=str(cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise VcsError(f"Cannot run {self.git}: {e}") from e

        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise VcsError(f"git {args[0]} failed ({proc.returncode}): {message}")
        if len(stdout) > MAX_SHOW_BYTES:
            raise VcsError(f"git {args[0]} output exceeds {MAX_SHOW_BYTES} bytes")
        return stdout.decode("utf-8", errors="replace")

    async def is_repository(self, cwd: Path) -> bool:
        try:
            await self._run(cwd, "rev-parse", "--git-dir")
        except VcsError:
            return False
        return True

    async def snapshot_baseline(self, cwd: Path) -> str:
        # `git stash create` builds a commit object for the dirty tree without
        # touching it; it prints nothing when the tree is clean.
        stash_ref = (await self._run(cwd, "stash", "create")).strip()
        if stash_ref:
            return stash_ref
        return (await self._run(cwd, "rev-parse", "HEAD")).strip()

    async def list_untracked(self, cwd: Path) -> set[str]:
        # -z keeps non-ASCII paths verbatim instead of C-quoting them.
        output = await self._run(cwd, "ls-files", "-z", "--others", "--exclude-standard")
        return {path for path in output.split("\0") if path}

    async def diff_names(self, cwd: Path, ref: str) -> list[str]:
        output = await self._run(cwd, "diff", "-z", "--name-only", "--relative", ref)
        return [path for path in output.split("\0") if path]

    async def read_file_at_ref(self, cwd: Path, ref: str, rel_path: str) -> str | None:
        listing = await self._run(cwd, "ls-tree", "-z", "--name-only", ref, "--", rel_path)
        if not listing.strip("\0"):
            return None
        return await self._run(cwd, "show", f"{ref}:./{rel_path}")
