"""Tests for agentspace.vcs.jj_cli.

Parsers are exercised against captured jj output. JujutsuCli methods run
against a mocked ``_run_jj`` so no jj binary is needed.
"""

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from agentspace.vcs.errors import (
    BackendUnavailableError,
    InvalidChangeIdError,
    RepositoryNotFoundError,
)
from agentspace.vcs.jj_cli import (
    JujutsuCli,
    parse_bookmarks,
    parse_change_id_from_new,
    parse_conflict_list,
    parse_diff_summary,
    parse_log,
    parse_remotes,
    parse_status,
)


# --- Fixtures ---


@pytest.fixture
def cli() -> JujutsuCli:
    """A JujutsuCli that believes jj is installed."""
    jj = JujutsuCli()
    jj._available = True
    return jj


def _ok(stdout: str = "", stderr: str = "") -> tuple[int, str, str]:
    return 0, stdout, stderr


# --- Parsers ---


class TestParseNew:
    """Tests for parse_change_id_from_new()."""

    def test_working_copy_line(self) -> None:
        output = (
            "Working copy now at: kmkuslsw 3d0c8c7e (empty) Agent session s-1\n"
            "Parent commit      : qpvuntsm 230dd059 main | Initial"
        )
        assert parse_change_id_from_new(output) == "kmkuslsw"

    def test_newer_wording(self) -> None:
        assert parse_change_id_from_new("Working copy  (@) now at: zzyxwvut 1234abcd (empty)") == "zzyxwvut"

    def test_missing(self) -> None:
        assert parse_change_id_from_new("Nothing changed.") is None


class TestParseDiffSummary:
    """Tests for parse_diff_summary()."""

    def test_basic_kinds(self) -> None:
        entries = parse_diff_summary("M src/lib.rs\nA new.txt\nD old.txt\n")
        assert [(e.change_type, e.path) for e in entries] == [
            ("M", "src/lib.rs"),
            ("A", "new.txt"),
            ("D", "old.txt"),
        ]

    def test_plain_rename(self) -> None:
        [entry] = parse_diff_summary("R a.txt => b.txt")
        assert entry.change_type == "R"
        assert entry.old_path == "a.txt"
        assert entry.path == "b.txt"

    def test_brace_rename(self) -> None:
        [entry] = parse_diff_summary("R src/{old.rs => new.rs}")
        assert entry.old_path == "src/old.rs"
        assert entry.path == "src/new.rs"

    def test_garbage_lines_skipped(self) -> None:
        assert parse_diff_summary("\nxx\nM\n") == []


class TestParseStatus:
    """Tests for parse_status()."""

    def test_changes_and_working_copy(self) -> None:
        output = (
            "Working copy changes:\n"
            "M README.md\n"
            "A docs/new.md\n"
            "D gone.txt\n"
            "R {a.txt => b.txt}\n"
            "Working copy : kmkuslsw 3d0c8c7e Agent session s-1\n"
            "Parent commit: qpvuntsm 230dd059 main | Initial\n"
        )
        status = parse_status(output)
        assert status.has_changes
        assert not status.has_conflicts
        assert status.working_copy_change_id == "kmkuslsw"
        assert status.modified_files == ["README.md"]
        assert status.added_files == ["docs/new.md"]
        assert status.deleted_files == ["gone.txt"]
        assert status.renamed_files == [("a.txt", "b.txt")]

    def test_conflicts_section(self) -> None:
        output = (
            "There are unresolved conflicts at these paths:\n"
            "src/lib.rs    2-sided conflict\n"
            "Cargo.toml    2-sided conflict including 1 deletion\n"
            "Working copy : kmkuslsw 3d0c8c7e (conflict) Agent session\n"
            "Parent commit: qpvuntsm 230dd059 main\n"
        )
        status = parse_status(output)
        assert status.has_conflicts
        assert status.conflicted_files == ["src/lib.rs", "Cargo.toml"]

    def test_clean(self) -> None:
        status = parse_status(
            "The working copy has no changes.\n"
            "Working copy : kmkuslsw 3d0c8c7e (empty) (no description set)\n"
        )
        assert not status.has_changes
        assert status.working_copy_change_id == "kmkuslsw"


class TestOtherParsers:
    """Tests for the log, bookmark, remote and conflict list parsers."""

    def test_parse_log(self) -> None:
        line = (
            "kmkuslsw\t3d0c8c7e11\tTest User\t2024-05-01T10:00:00+0000\t0\t1\t"
            "qpvuntsm,rlvkpnrz\tAgent session s-1\n"
        )
        [change] = parse_log(line)
        assert change.change_id == "kmkuslsw"
        assert change.commit_id == "3d0c8c7e11"
        assert change.author == "Test User"
        assert change.timestamp.year == 2024
        assert change.is_empty is False
        assert change.has_conflict is True
        assert change.parent_ids == ("qpvuntsm", "rlvkpnrz")
        assert change.description == "Agent session s-1"

    def test_parse_log_skips_short_lines(self) -> None:
        assert parse_log("only\ttwo\n") == []

    def test_parse_bookmarks_skips_git_mirror(self) -> None:
        output = "main\t\tqpvuntsm\nmain\tgit\tqpvuntsm\nmain\torigin\tqpvuntsm\nstale\t\t\n"
        bookmarks = parse_bookmarks(output)
        assert [(b.name, b.remote, b.change_id) for b in bookmarks] == [
            ("main", None, "qpvuntsm"),
            ("main", "origin", "qpvuntsm"),
            ("stale", None, None),
        ]

    def test_parse_remotes(self) -> None:
        output = "origin https://github.com/acme/api.git\nupstream git@github.com:x/y.git\n"
        assert parse_remotes(output) == {
            "origin": "https://github.com/acme/api.git",
            "upstream": "git@github.com:x/y.git",
        }

    def test_parse_conflict_list(self) -> None:
        assert parse_conflict_list("a.txt    2-sided conflict\n\nb.txt  2-sided conflict\n") == [
            "a.txt",
            "b.txt",
        ]


# --- JujutsuCli ---


class TestAvailability:
    """Tests for executable detection."""

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        cli = JujutsuCli(executable="definitely-not-jj-xyz")
        assert await cli.is_available() is False
        with pytest.raises(BackendUnavailableError):
            await cli.run(Path("."), "status")

    @pytest.mark.asyncio
    async def test_availability_cached(self) -> None:
        cli = JujutsuCli()
        with patch("agentspace.vcs.jj_cli.shutil.which", return_value="/usr/bin/jj"), patch.object(
            cli, "_run_jj", AsyncMock(return_value=_ok("jj 0.20.0"))
        ) as run:
            assert await cli.is_available()
            assert await cli.is_available()
        run.assert_awaited_once_with("--version", check=False)

    @pytest.mark.asyncio
    async def test_spawn_failure_is_unavailable(self, tmp_path: Path) -> None:
        cli = JujutsuCli(executable=str(tmp_path / "no-such-jj"))
        with pytest.raises(BackendUnavailableError):
            await cli._run_jj("status", cwd=tmp_path)


class TestCommands:
    """Tests for JujutsuCli command construction and result handling."""

    @pytest.mark.asyncio
    async def test_new_change_parses_id(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(return_value=_ok(stderr="Working copy now at: vruxwmqv abc12345 (empty) d"))
        with patch.object(cli, "_run_jj", run):
            change_id = await cli.new_change(tmp_path, "Agent session s-1", ("main",))
        assert change_id == "vruxwmqv"
        run.assert_awaited_once_with("new", "main", "-m", "Agent session s-1", cwd=tmp_path)

    @pytest.mark.asyncio
    async def test_new_change_falls_back_to_log(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(side_effect=[_ok(), _ok("zzzzzzzz\n")])
        with patch.object(cli, "_run_jj", run):
            assert await cli.new_change(tmp_path) == "zzzzzzzz"
        assert run.await_args_list[1].args[:3] == ("log", "-r", "@")

    @pytest.mark.asyncio
    async def test_conflicted_files_none(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(return_value=(2, "", "Error: No conflicts found at this revision"))
        with patch.object(cli, "_run_jj", run):
            assert await cli.conflicted_files(tmp_path) == []

    @pytest.mark.asyncio
    async def test_conflicted_files_error_classified(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(return_value=(1, "", "Error: There is no jj repo in \".\""))
        with patch.object(cli, "_run_jj", run):
            with pytest.raises(RepositoryNotFoundError):
                await cli.conflicted_files(tmp_path)

    @pytest.mark.asyncio
    async def test_push_arguments(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(return_value=_ok())
        with patch.object(cli, "_run_jj", run):
            await cli.git_push(tmp_path, bookmark="main", remote="origin")
        run.assert_awaited_once_with(
            "git", "push", "--bookmark", "main", "--remote", "origin", cwd=tmp_path
        )

    @pytest.mark.asyncio
    async def test_bookmark_set_backwards(self, cli: JujutsuCli, tmp_path: Path) -> None:
        run = AsyncMock(return_value=_ok())
        with patch.object(cli, "_run_jj", run):
            await cli.bookmark_set(tmp_path, "main", "@", allow_backwards=True)
        run.assert_awaited_once_with(
            "bookmark", "set", "main", "-r", "@", "--allow-backwards", cwd=tmp_path
        )

    @pytest.mark.asyncio
    async def test_failed_command_is_classified(self, tmp_path: Path) -> None:
        """A real subprocess failure goes through classify_backend_error."""
        script = tmp_path / "fake-jj"
        script.write_text("#!/bin/sh\necho \"Error: Revision nope doesn't exist\" >&2\nexit 1\n")
        script.chmod(0o755)
        cli = JujutsuCli(executable=str(script))
        cli._available = True
        with pytest.raises(InvalidChangeIdError):
            await cli.abandon(tmp_path, "nope")
