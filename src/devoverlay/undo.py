"""Session-based undo for agent runs.

Each run opens an undo session that records a version-control baseline and
the untracked files present at start. When the run ends, the files that
changed since the baseline are resolved; sessions with changes are pushed on
a LIFO stack so the most recent agent turn can be reverted as a unit.
"""

import logging
import secrets
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .config import STATE_DIR_NAME
from .core import FileStat
from .vcs import GitVcs, VcsError, VcsPort

logger = logging.getLogger(__name__)


@dataclass
class UndoSession:
    """Baseline captured at the start of a run."""

    session_id: str
    project_dir: Path
    baseline: Optional[str] = None  # None when the project is not under version control
    untracked_at_start: set[str] = field(default_factory=set)
    changed_files: Optional[list[str]] = None  # resolved when the session ends


@dataclass
class FileDiff:
    """Baseline vs. on-disk content of one changed file."""

    relative_path: str
    original_content: str
    current_content: str
    existed: bool
    exists_now: bool

    def to_dict(self) -> dict:
        return {
            "relativePath": self.relative_path,
            "originalContent": self.original_content,
            "currentContent": self.current_content,
            "existed": self.existed,
            "existsNow": self.exists_now,
        }


def count_line_stats(original: str, current: str) -> tuple[int, int]:
    """Return ``(additions, deletions)`` using order-insensitive line matching.

    Every line of ``current`` consumes one matching line from a bag of the
    ``original`` lines; unmatched lines on either side count as changes.
    """
    old_lines = original.split("\n")
    new_lines = current.split("\n")

    bag = Counter(old_lines)
    matched = 0
    for line in new_lines:
        if bag[line] > 0:
            bag[line] -= 1
            matched += 1

    return len(new_lines) - matched, len(old_lines) - matched


def _generate_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def _read_current(path: Path) -> tuple[str, bool]:
    if not path.is_file():
        return "", False
    try:
        return path.read_text(encoding="utf-8"), True
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Failed to read %s: %s", path, e)
        return "", True


class UndoCoordinator:
    """Owns the open undo session and the stack of closed ones."""

    def __init__(self, vcs: VcsPort | None = None, excluded_dirs: tuple[str, ...] = (STATE_DIR_NAME,)) -> None:
        self.vcs = vcs or GitVcs()
        self.excluded_dirs = excluded_dirs
        self._current: Optional[UndoSession] = None
        self._stack: list[UndoSession] = []

    @property
    def current(self) -> Optional[UndoSession]:
        return self._current

    # ── Lifecycle ────────────────────────────────────────────────

    async def start(self, project_dir: Path) -> UndoSession:
        """Open a new session for ``project_dir``.

        Outside a repository the session is a no-op and is always discarded
        by ``end()``.
        """
        session = UndoSession(session_id=_generate_session_id(), project_dir=Path(project_dir))
        self._current = session

        if not await self.vcs.is_repository(session.project_dir):
            logger.debug("%s is not under version control; undo disabled for this run", project_dir)
            return session

        try:
            session.baseline = await self.vcs.snapshot_baseline(session.project_dir)
            session.untracked_at_start = await self.vcs.list_untracked(session.project_dir)
        except VcsError as e:
            logger.warning("Failed to capture undo baseline in %s: %s", project_dir, e)
            session.baseline = None
            session.untracked_at_start = set()

        return session

    async def end(self) -> Optional[UndoSession]:
        """Close the open session; push it if anything changed.

        Returns the pushed session, or None when nothing was recorded.
        """
        session, self._current = self._current, None
        if session is None or session.baseline is None:
            return None

        changed = await self._changed_files(session)
        if not changed:
            return None

        session.changed_files = changed
        self._stack.append(session)
        logger.info("Undo session %s recorded %d changed file(s)", session.session_id, len(changed))
        return session

    async def pop_and_restore_session(self) -> Optional[list[Path]]:
        """Revert the most recent session.

        Files that existed at the baseline are rewritten with their baseline
        content; files created during the session are deleted. Returns the
        absolute paths restored, or None when the stack is empty.
        """
        if not self._stack:
            return None
        session = self._stack.pop()
        if not session.changed_files:
            return None

        restored: list[Path] = []
        for rel_path in session.changed_files:
            full_path = session.project_dir / rel_path
            try:
                original = await self.vcs.read_file_at_ref(session.project_dir, session.baseline, rel_path)
                if original is None:
                    if full_path.exists():
                        full_path.unlink()
                else:
                    full_path.parent.mkdir(parents=True, exist_ok=True)
                    full_path.write_text(original, encoding="utf-8")
                restored.append(full_path)
            except (OSError, VcsError) as e:
                logger.error("Failed to restore %s: %s", rel_path, e)

        return restored

    # ── Inspection ───────────────────────────────────────────────

    def stack(self) -> list[UndoSession]:
        """Closed sessions, oldest first."""
        return list(self._stack)

    async def get_latest_session_diffs(self, project_dir: Path) -> Optional[list[FileDiff]]:
        """Pair baseline and current content for the top of the stack, without popping."""
        if not self._stack:
            return None
        session = self._stack[-1]

        files = session.changed_files or await self._changed_files(session)
        if not files:
            return None

        diffs = []
        for rel_path in files:
            try:
                original = await self.vcs.read_file_at_ref(session.project_dir, session.baseline, rel_path)
            except VcsError as e:
                logger.warning("Cannot read baseline of %s: %s", rel_path, e)
                continue
            current, exists_now = _read_current(session.project_dir / rel_path)
            diffs.append(FileDiff(
                relative_path=rel_path,
                original_content=original or "",
                current_content=current,
                existed=original is not None,
                exists_now=exists_now,
            ))
        return diffs

    async def get_current_session_stats(self, project_dir: Path) -> Optional[list[FileStat]]:
        """Line stats for the still-open session; call before ``end()``."""
        session = self._current
        if session is None or session.baseline is None:
            return None

        files = await self._changed_files(session)
        if not files:
            return None

        stats = []
        for rel_path in files:
            try:
                original = await self.vcs.read_file_at_ref(session.project_dir, session.baseline, rel_path)
            except VcsError as e:
                logger.warning("Cannot read baseline of %s: %s", rel_path, e)
                continue
            current, exists_now = _read_current(session.project_dir / rel_path)
            additions, deletions = count_line_stats(original or "", current)
            stats.append(FileStat(
                relative_path=rel_path,
                additions=additions,
                deletions=deletions,
                is_new=original is None and exists_now,
            ))
        return stats

    # ── Private helpers ──────────────────────────────────────────

    async def _changed_files(self, session: UndoSession) -> list[str]:
        """Tracked diffs against the baseline plus newly created untracked files."""
        try:
            tracked = await self.vcs.diff_names(session.project_dir, session.baseline)
        except VcsError as e:
            logger.warning("git diff failed in %s: %s", session.project_dir, e)
            tracked = []

        try:
            untracked = await self.vcs.list_untracked(session.project_dir)
        except VcsError as e:
            logger.warning("Listing untracked files failed in %s: %s", session.project_dir, e)
            untracked = set()

        new_files = sorted(untracked - session.untracked_at_start)
        return [path for path in dict.fromkeys([*tracked, *new_files]) if not self._excluded(path)]

    def _excluded(self, rel_path: str) -> bool:
        # Our own state files change during every run.
        return rel_path.split("/", 1)[0] in self.excluded_dirs
