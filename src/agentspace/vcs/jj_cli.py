"""Async wrapper around the ``jj`` (Jujutsu) executable.

Every command runs through ``asyncio.create_subprocess_exec`` without shell
interpolation. Failed commands are turned into typed errors by
``classify_backend_error``. Output parsing lives in module-level pure
functions so it can be tested against captured output without a jj binary.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from agentspace.core.logging import get_logger
from agentspace.vcs.errors import BackendError, BackendUnavailableError, classify_backend_error

_logger = get_logger("vcs.jj_cli")

# One change per line, tab separated; description is reduced to its first line
LOG_TEMPLATE = (
    r'change_id ++ "\t" ++ commit_id ++ "\t" ++ author.name() ++ "\t"'
    r' ++ author.timestamp().format("%Y-%m-%dT%H:%M:%S%z") ++ "\t"'
    r' ++ if(empty, "1", "0") ++ "\t" ++ if(conflict, "1", "0") ++ "\t"'
    r' ++ parents.map(|c| c.change_id()).join(",") ++ "\t"'
    r' ++ description.first_line() ++ "\n"'
)

BOOKMARK_TEMPLATE = (
    r'name ++ "\t" ++ if(remote, remote, "") ++ "\t"'
    r' ++ if(normal_target, normal_target.change_id(), "") ++ "\n"'
)

LOCAL_BOOKMARKS_TEMPLATE = r'local_bookmarks.map(|b| b.name()).join(",")'

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# "R src/{old.txt => new.txt}" or "R old.txt => new.txt"
_BRACE_RENAME = re.compile(r"^(?P<prefix>.*)\{(?P<old>.*) => (?P<new>.*)\}(?P<suffix>.*)$")


@dataclass(frozen=True)
class JjChange:
    change_id: str
    commit_id: str
    author: str
    timestamp: datetime
    is_empty: bool
    has_conflict: bool
    parent_ids: tuple[str, ...]
    description: str


@dataclass
class JjStatus:
    working_copy_change_id: str | None = None
    has_changes: bool = False
    has_conflicts: bool = False
    conflicted_files: list[str] = field(default_factory=list)
    modified_files: list[str] = field(default_factory=list)
    added_files: list[str] = field(default_factory=list)
    deleted_files: list[str] = field(default_factory=list)
    renamed_files: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class JjDiffSummary:
    change_type: str
    path: str
    old_path: str | None = None


@dataclass(frozen=True)
class JjBookmark:
    name: str
    remote: str | None
    change_id: str | None


# --- Parsers ---


def parse_change_id_from_new(output: str) -> str | None:
    """Extract the change id from ``jj new`` output.

    jj reports ``Working copy now at: kmkuslsw 3d0c8c7e (empty) ...``; the
    first token after the colon is the change id.
    """
    for line in output.splitlines():
        if "Working copy now at:" in line or "Working copy  (@) now at:" in line:
            tail = line.split(":", 1)[1].split()
            if tail:
                return tail[0]
    return None


def _split_rename(text: str) -> tuple[str, str]:
    brace = _BRACE_RENAME.match(text)
    if brace:
        prefix, suffix = brace.group("prefix"), brace.group("suffix")
        old = f"{prefix}{brace.group('old')}{suffix}".replace("//", "/")
        new = f"{prefix}{brace.group('new')}{suffix}".replace("//", "/")
        return old, new
    old, _, new = text.partition(" => ")
    return old.strip(), new.strip()


def parse_diff_summary(output: str) -> list[JjDiffSummary]:
    """Parse ``jj diff --summary`` (``M file``, ``A file``, ``D file``, ``R old => new``)."""
    entries: list[JjDiffSummary] = []
    for raw in output.splitlines():
        line = raw.strip()
        if len(line) < 3 or line[1] != " ":
            continue
        change_type, rest = line[0], line[2:].strip()
        if change_type in ("R", "C") and "=>" in rest:
            old, new = _split_rename(rest)
            entries.append(JjDiffSummary(change_type=change_type, path=new, old_path=old))
        else:
            entries.append(JjDiffSummary(change_type=change_type, path=rest))
    return entries


def _conflict_path(line: str) -> str:
    # "src/lib.rs    2-sided conflict"
    return re.split(r"\s{2,}", line.strip(), maxsplit=1)[0]


def parse_conflict_list(output: str) -> list[str]:
    """Parse ``jj resolve --list`` output into conflicted paths."""
    return [_conflict_path(line) for line in output.splitlines() if line.strip()]


def parse_status(output: str) -> JjStatus:
    """Parse ``jj status`` into a JjStatus."""
    status = JjStatus()
    section: str | None = None
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            section = None
            continue
        if line.startswith("Working copy changes:"):
            status.has_changes = True
            section = "changes"
            continue
        if "unresolved conflicts" in line:
            status.has_conflicts = True
            section = "conflicts"
            continue
        if line.startswith("Working copy") and ":" in line:
            section = None
            tail = line.split(":", 1)[1].split()
            if tail and status.working_copy_change_id is None:
                status.working_copy_change_id = tail[0]
            continue
        if line.startswith(("Parent commit", "Hint:", "Warning:", "The working copy")):
            section = None
            continue
        if section == "changes" and len(line) > 2 and line[1] == " ":
            kind, path = line[0], line[2:].strip()
            if kind == "M":
                status.modified_files.append(path)
            elif kind == "A":
                status.added_files.append(path)
            elif kind == "D":
                status.deleted_files.append(path)
            elif kind == "R":
                status.renamed_files.append(_split_rename(path))
        elif section == "conflicts":
            status.conflicted_files.append(_conflict_path(line))
    return status


def parse_log(output: str) -> list[JjChange]:
    """Parse output rendered with LOG_TEMPLATE."""
    changes: list[JjChange] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t", 7)
        if len(parts) < 8:
            _logger.debug("jj_log_line_skipped", line=line[:200])
            continue
        change_id, commit_id, author, stamp, empty, conflict, parents, description = parts
        changes.append(
            JjChange(
                change_id=change_id,
                commit_id=commit_id,
                author=author,
                timestamp=datetime.strptime(stamp, _TIMESTAMP_FORMAT),
                is_empty=empty == "1",
                has_conflict=conflict == "1",
                parent_ids=tuple(p for p in parents.split(",") if p),
                description=description,
            )
        )
    return changes


def parse_bookmarks(output: str) -> list[JjBookmark]:
    """Parse output rendered with BOOKMARK_TEMPLATE."""
    bookmarks: list[JjBookmark] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        name, remote, change_id = (line.split("\t") + ["", ""])[:3]
        if remote == "git":
            # colocated repos mirror every bookmark as name@git
            continue
        bookmarks.append(
            JjBookmark(name=name, remote=remote or None, change_id=change_id or None)
        )
    return bookmarks


def parse_remotes(output: str) -> dict[str, str]:
    """Parse ``jj git remote list`` (``name url`` per line)."""
    remotes: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split(None, 1)
        if len(parts) == 2:
            remotes[parts[0]] = parts[1].strip()
    return remotes


# --- Executable wrapper ---


class JujutsuCli:
    """Thin async interface to the ``jj`` executable.

    Availability is probed once (``jj --version``) and cached for the
    lifetime of the instance.
    """

    def __init__(self, executable: str = "jj") -> None:
        self._executable = executable
        self._available: bool | None = None

    async def is_available(self) -> bool:
        if self._available is None:
            if shutil.which(self._executable) is None:
                self._available = False
            else:
                try:
                    code, stdout, _ = await self._run_jj("--version", check=False)
                except BackendUnavailableError:
                    code, stdout = 1, ""
                self._available = code == 0
                _logger.debug("jj_availability_checked", available=self._available, version=stdout)
        return self._available

    async def _ensure_available(self) -> None:
        if not await self.is_available():
            raise BackendUnavailableError(
                f"'{self._executable}' executable not found or not working"
            )

    async def _run_jj(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = True,
    ) -> tuple[int, str, str]:
        """Run a jj command asynchronously.

        Args:
            *args: jj command arguments (without the executable).
            cwd: Working directory for the command.
            check: If True, raise a classified VcsError on non-zero exit.

        Returns:
            Tuple of (exit_code, stdout, stderr).
        """
        cmd = [self._executable, "--no-pager", "--color", "never", *args]
        _logger.debug("jj_command", args=args, cwd=str(cwd) if cwd else None)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError(f"'{self._executable}' executable not found") from e
        stdout_bytes, stderr_bytes = await proc.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace").strip()
        stderr = stderr_bytes.decode("utf-8", errors="replace").strip()
        exit_code = proc.returncode or 0

        if check and exit_code != 0:
            _logger.warning(
                "jj_command_failed",
                args=args,
                exit_code=exit_code,
                stderr=stderr[:500],
            )
            raise classify_backend_error(stderr or stdout, path=cwd or ".")

        return exit_code, stdout, stderr

    async def run(self, repo_path: Path, *args: str) -> str:
        """Run a jj command in ``repo_path`` and return its stdout."""
        await self._ensure_available()
        _, stdout, _ = await self._run_jj(*args, cwd=repo_path)
        return stdout

    # -- repository ----------------------------------------------------------

    async def init(self, repo_path: Path, *, colocate: bool = True) -> None:
        await self._ensure_available()
        repo_path.mkdir(parents=True, exist_ok=True)
        args = ["git", "init"]
        if colocate:
            args.append("--colocate")
        await self._run_jj(*args, cwd=repo_path)

    async def git_clone(self, url: str, dest: Path) -> None:
        await self._ensure_available()
        dest.parent.mkdir(parents=True, exist_ok=True)
        await self._run_jj("git", "clone", url, str(dest), cwd=dest.parent)

    async def root(self, path: Path) -> Path | None:
        """Workspace root containing ``path``, or None when it is not a jj repo."""
        await self._ensure_available()
        code, stdout, _ = await self._run_jj("root", cwd=path, check=False)
        if code != 0 or not stdout:
            return None
        return Path(stdout)

    # -- changes -------------------------------------------------------------

    async def new_change(
        self,
        repo_path: Path,
        description: str | None = None,
        parents: tuple[str, ...] = (),
    ) -> str:
        """Create a new change (child of ``parents``, default @) and return its change id."""
        await self._ensure_available()
        args = ["new", *parents]
        if description:
            args.extend(["-m", description])
        _, stdout, stderr = await self._run_jj(*args, cwd=repo_path)
        # jj reports the new working copy on stderr
        change_id = parse_change_id_from_new(f"{stderr}\n{stdout}")
        if change_id is None:
            change_id = await self.current_change_id(repo_path)
        return change_id

    async def describe(self, repo_path: Path, message: str, revision: str = "@") -> None:
        await self.run(repo_path, "describe", revision, "-m", message)

    async def commit(self, repo_path: Path, message: str) -> None:
        await self.run(repo_path, "commit", "-m", message)

    async def edit(self, repo_path: Path, revision: str) -> None:
        await self.run(repo_path, "edit", revision)

    async def abandon(self, repo_path: Path, revision: str) -> None:
        await self.run(repo_path, "abandon", revision)

    async def current_change_id(self, repo_path: Path) -> str:
        stdout = await self.run(repo_path, "log", "-r", "@", "--no-graph", "-T", "change_id")
        if not stdout:
            raise BackendError("jj did not report a working-copy change id")
        return stdout.splitlines()[0].strip()

    async def log(
        self,
        repo_path: Path,
        revset: str | None = None,
        limit: int | None = None,
    ) -> list[JjChange]:
        args = ["log", "--no-graph", "-T", LOG_TEMPLATE]
        if revset:
            args.extend(["-r", revset])
        if limit is not None:
            args.extend(["-n", str(limit)])
        return parse_log(await self.run(repo_path, *args))

    async def local_bookmarks_at(self, repo_path: Path, revision: str = "@") -> list[str]:
        stdout = await self.run(
            repo_path, "log", "-r", revision, "--no-graph", "-T", LOCAL_BOOKMARKS_TEMPLATE
        )
        return [name for name in stdout.strip().split(",") if name]

    # -- status / diff -------------------------------------------------------

    async def status(self, repo_path: Path) -> JjStatus:
        status = parse_status(await self.run(repo_path, "status"))
        if status.working_copy_change_id is None:
            status.working_copy_change_id = await self.current_change_id(repo_path)
        return status

    async def diff_summary(
        self,
        repo_path: Path,
        from_rev: str | None = None,
        to_rev: str | None = None,
    ) -> list[JjDiffSummary]:
        args = ["diff", "--summary"]
        if from_rev:
            args.extend(["--from", from_rev])
        if to_rev:
            args.extend(["--to", to_rev])
        return parse_diff_summary(await self.run(repo_path, *args))

    async def conflicted_files(self, repo_path: Path, revision: str = "@") -> list[str]:
        await self._ensure_available()
        code, stdout, stderr = await self._run_jj(
            "resolve", "--list", "-r", revision, cwd=repo_path, check=False
        )
        if code != 0:
            if "no conflicts" in stderr.lower():
                return []
            raise classify_backend_error(stderr, path=repo_path)
        return parse_conflict_list(stdout)

    async def rebase(self, repo_path: Path, destination: str, branch: str = "@") -> None:
        """Rebase the whole branch containing ``branch`` onto ``destination``."""
        await self.run(repo_path, "rebase", "-b", branch, "-d", destination)

    # -- remotes / bookmarks -------------------------------------------------

    async def git_fetch(self, repo_path: Path, remote: str | None = None) -> None:
        args = ["git", "fetch"]
        if remote:
            args.extend(["--remote", remote])
        await self.run(repo_path, *args)

    async def git_push(
        self,
        repo_path: Path,
        bookmark: str | None = None,
        remote: str | None = None,
    ) -> None:
        args = ["git", "push"]
        if bookmark:
            args.extend(["--bookmark", bookmark])
        if remote:
            args.extend(["--remote", remote])
        await self.run(repo_path, *args)

    async def git_remote_list(self, repo_path: Path) -> dict[str, str]:
        return parse_remotes(await self.run(repo_path, "git", "remote", "list"))

    async def git_remote_set_url(self, repo_path: Path, name: str, url: str) -> None:
        await self.run(repo_path, "git", "remote", "set-url", name, url)

    async def bookmark_create(self, repo_path: Path, name: str, revision: str = "@") -> None:
        await self.run(repo_path, "bookmark", "create", name, "-r", revision)

    async def bookmark_set(
        self,
        repo_path: Path,
        name: str,
        revision: str = "@",
        *,
        allow_backwards: bool = False,
    ) -> None:
        args = ["bookmark", "set", name, "-r", revision]
        if allow_backwards:
            args.append("--allow-backwards")
        await self.run(repo_path, *args)

    async def bookmark_delete(self, repo_path: Path, name: str) -> None:
        await self.run(repo_path, "bookmark", "delete", name)

    async def bookmark_rename(self, repo_path: Path, old: str, new: str) -> None:
        await self.run(repo_path, "bookmark", "rename", old, new)

    async def bookmark_list(self, repo_path: Path) -> list[JjBookmark]:
        return parse_bookmarks(
            await self.run(repo_path, "bookmark", "list", "--all-remotes", "-T", BOOKMARK_TEMPLATE)
        )


__all__ = [
    "JjBookmark",
    "JjChange",
    "JjDiffSummary",
    "JjStatus",
    "JujutsuCli",
    "parse_bookmarks",
    "parse_change_id_from_new",
    "parse_conflict_list",
    "parse_diff_summary",
    "parse_log",
    "parse_remotes",
    "parse_status",
]
