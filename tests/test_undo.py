"""Tests for session-based undo."""

import logging

import pytest

from devoverlay import vcs as vcs_module
from devoverlay.undo import UndoCoordinator, count_line_stats
from devoverlay.vcs import GitVcs, VcsError, VcsPort

from conftest import NotARepoVcs, git


class FailingReadVcs(VcsPort):
    """Reports three edited files; reading the baseline of one of them fails."""

    def __init__(self, broken: str) -> None:
        self.broken = broken

    async def is_repository(self, cwd):
        return True

    async def snapshot_baseline(self, cwd):
        return "base"

    async def list_untracked(self, cwd):
        return set()

    async def diff_names(self, cwd, ref):
        return ["a.txt", "broken.txt", "c.txt"]

    async def read_file_at_ref(self, cwd, ref, rel_path):
        if rel_path == self.broken:
            raise VcsError("git show failed (128): object too large")
        return "original\n"


class TestCountLineStats:
    """Order-insensitive line statistics."""

    def test_identical(self):
        assert count_line_stats("a\nb\nc", "a\nb\nc") == (0, 0)

    def test_pure_additions(self):
        assert count_line_stats("line1\nline2", "line1\nline2\nline3\nline4") == (2, 0)

    def test_pure_deletions(self):
        assert count_line_stats("line1\nline2\nline3\nline4", "line1\nline2") == (0, 2)

    def test_mixed(self):
        assert count_line_stats("a\nb\nc", "a\nc\nd") == (1, 1)

    def test_empty(self):
        assert count_line_stats("", "") == (0, 0)

    def test_complete_replacement(self):
        assert count_line_stats("a\nb\nc", "x\ny\nz") == (3, 3)

    def test_duplicate_lines_use_bag_matching(self):
        # One "a" and "b" match; the second "a" is deleted and "c" added.
        assert count_line_stats("a\na\nb", "a\nb\nc") == (1, 1)


class TestUndoCoordinator:
    """Lifecycle against a real git repository."""

    @pytest.mark.asyncio
    async def test_non_repository_session_is_discarded(self, tmp_path):
        undo = UndoCoordinator(vcs=NotARepoVcs())

        session = await undo.start(tmp_path)
        assert session.baseline is None
        (tmp_path / "new.txt").write_text("hello", encoding="utf-8")

        assert await undo.end() is None
        assert undo.stack() == []
        assert undo.current is None

    @pytest.mark.asyncio
    async def test_unchanged_session_is_discarded(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        assert await undo.end() is None
        assert undo.stack() == []

    @pytest.mark.asyncio
    async def test_pop_on_empty_stack(self):
        undo = UndoCoordinator(vcs=NotARepoVcs())

        assert await undo.pop_and_restore_session() is None
        assert await undo.pop_and_restore_session() is None

    @pytest.mark.asyncio
    async def test_restore_reverts_edits_and_deletes_new_files(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "app.js").write_text("rewritten\n", encoding="utf-8")
        (git_repo / "src").mkdir()
        (git_repo / "src" / "login.js").write_text("export {}\n", encoding="utf-8")
        session = await undo.end()

        assert session is not None
        assert session.changed_files == ["app.js", "src/login.js"]

        restored = await undo.pop_and_restore_session()

        assert sorted(restored) == sorted([git_repo / "app.js", git_repo / "src" / "login.js"])
        assert (git_repo / "app.js").read_text(encoding="utf-8") == "line1\nline2\nline3\n"
        assert not (git_repo / "src" / "login.js").exists()
        assert undo.stack() == []

    @pytest.mark.asyncio
    async def test_restore_keeps_uncommitted_work_from_before_the_run(self, git_repo):
        (git_repo / "README.md").write_text("# Demo\nwork in progress\n", encoding="utf-8")
        (git_repo / "notes.txt").write_text("todo\n", encoding="utf-8")
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "README.md").write_text("# Agent was here\n", encoding="utf-8")
        await undo.end()
        await undo.pop_and_restore_session()

        assert (git_repo / "README.md").read_text(encoding="utf-8") == "# Demo\nwork in progress\n"
        assert (git_repo / "notes.txt").read_text(encoding="utf-8") == "todo\n"

    @pytest.mark.asyncio
    async def test_sessions_are_undone_newest_first(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "first.txt").write_text("1\n", encoding="utf-8")
        await undo.end()

        await undo.start(git_repo)
        (git_repo / "second.txt").write_text("2\n", encoding="utf-8")
        await undo.end()

        # first.txt was already untracked when the second run started.
        assert [s.changed_files for s in undo.stack()] == [["first.txt"], ["second.txt"]]

        await undo.pop_and_restore_session()
        assert not (git_repo / "second.txt").exists()
        assert len(undo.stack()) == 1

    @pytest.mark.asyncio
    async def test_latest_session_diffs(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "app.js").write_text("line1\nline3\n", encoding="utf-8")
        (git_repo / "README.md").unlink()
        await undo.end()

        diffs = {d.relative_path: d for d in await undo.get_latest_session_diffs(git_repo)}

        assert diffs["app.js"].original_content == "line1\nline2\nline3\n"
        assert diffs["app.js"].current_content == "line1\nline3\n"
        assert diffs["app.js"].existed and diffs["app.js"].exists_now
        assert diffs["README.md"].existed is True
        assert diffs["README.md"].exists_now is False
        assert diffs["README.md"].to_dict()["existsNow"] is False
        # Diffing does not pop the session.
        assert len(undo.stack()) == 1

    @pytest.mark.asyncio
    async def test_latest_session_diffs_empty_stack(self, tmp_path):
        undo = UndoCoordinator(vcs=NotARepoVcs())
        assert await undo.get_latest_session_diffs(tmp_path) is None

    @pytest.mark.asyncio
    async def test_current_session_stats(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "app.js").write_text("line1\nline2 changed\nline3\nline4\n", encoding="utf-8")
        (git_repo / "new.js").write_text("a\nb\n", encoding="utf-8")

        stats = {s.relative_path: s for s in await undo.get_current_session_stats(git_repo)}

        assert (stats["app.js"].additions, stats["app.js"].deletions) == (2, 1)
        assert stats["app.js"].is_new is False
        assert stats["new.js"].is_new is True
        await undo.end()

    @pytest.mark.asyncio
    async def test_restore_non_ascii_paths(self, git_repo):
        (git_repo / "café.txt").write_text("bonjour\n", encoding="utf-8")
        git(git_repo, "add", "café.txt")
        git(git_repo, "commit", "-q", "-m", "add café")
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / "café.txt").write_text("agent edit\n", encoding="utf-8")
        (git_repo / "新文件.js").write_text("export {}\n", encoding="utf-8")
        session = await undo.end()

        assert session.changed_files == ["café.txt", "新文件.js"]

        restored = await undo.pop_and_restore_session()

        assert sorted(restored) == sorted([git_repo / "café.txt", git_repo / "新文件.js"])
        assert (git_repo / "café.txt").read_text(encoding="utf-8") == "bonjour\n"
        assert not (git_repo / "新文件.js").exists()

    @pytest.mark.asyncio
    async def test_unreadable_baseline_keeps_the_file(self, git_repo, monkeypatch):
        monkeypatch.setattr(vcs_module, "MAX_SHOW_BYTES", 200)
        data = git_repo / "data.txt"
        data.write_text("x" * 1000 + "\n", encoding="utf-8")
        git(git_repo, "add", "data.txt")
        git(git_repo, "commit", "-q", "-m", "add data")
        undo = UndoCoordinator()

        await undo.start(git_repo)
        with data.open("a", encoding="utf-8") as f:
            f.write("appended\n")
        await undo.end()

        assert await undo.pop_and_restore_session() == []
        assert data.exists()
        assert data.read_text(encoding="utf-8").endswith("appended\n")

    @pytest.mark.asyncio
    async def test_restore_continues_past_a_failing_file(self, tmp_path, caplog):
        for name in ("a.txt", "broken.txt", "c.txt"):
            (tmp_path / name).write_text("edited\n", encoding="utf-8")
        undo = UndoCoordinator(vcs=FailingReadVcs("broken.txt"))

        await undo.start(tmp_path)
        await undo.end()
        with caplog.at_level(logging.ERROR, logger="devoverlay.undo"):
            restored = await undo.pop_and_restore_session()

        assert restored == [tmp_path / "a.txt", tmp_path / "c.txt"]
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "original\n"
        assert (tmp_path / "broken.txt").read_text(encoding="utf-8") == "edited\n"
        assert (tmp_path / "c.txt").read_text(encoding="utf-8") == "original\n"
        assert "broken.txt" in caplog.text

    @pytest.mark.asyncio
    async def test_state_directory_is_not_tracked(self, git_repo):
        undo = UndoCoordinator()

        await undo.start(git_repo)
        (git_repo / ".devoverlay").mkdir()
        (git_repo / ".devoverlay" / "history.json").write_text("[]", encoding="utf-8")

        assert await undo.get_current_session_stats(git_repo) is None
        assert await undo.end() is None


class TestGitVcs:
    """The git command-line port."""

    @pytest.mark.asyncio
    async def test_baseline_is_head_for_clean_tree(self, git_repo):
        vcs = GitVcs()
        head = git(git_repo, "rev-parse", "HEAD").strip()
        assert await vcs.snapshot_baseline(git_repo) == head

    @pytest.mark.asyncio
    async def test_baseline_captures_dirty_tree(self, git_repo):
        vcs = GitVcs()
        (git_repo / "app.js").write_text("dirty\n", encoding="utf-8")

        ref = await vcs.snapshot_baseline(git_repo)

        assert ref != git(git_repo, "rev-parse", "HEAD").strip()
        assert await vcs.read_file_at_ref(git_repo, ref, "app.js") == "dirty\n"
        # The working tree is left untouched.
        assert (git_repo / "app.js").read_text(encoding="utf-8") == "dirty\n"

    @pytest.mark.asyncio
    async def test_read_missing_file(self, git_repo):
        vcs = GitVcs()
        assert await vcs.read_file_at_ref(git_repo, "HEAD", "missing.txt") is None

    @pytest.mark.asyncio
    async def test_is_repository(self, git_repo, tmp_path):
        vcs = GitVcs()
        outside = tmp_path / "elsewhere"
        outside.mkdir()
        assert await vcs.is_repository(git_repo) is True
        assert await vcs.is_repository(outside) is False

    @pytest.mark.asyncio
    async def test_read_with_unknown_ref_raises(self, git_repo):
        with pytest.raises(VcsError):
            await GitVcs().read_file_at_ref(git_repo, "0" * 40, "app.js")
