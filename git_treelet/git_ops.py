"""
Git operations for git_treelet.

Provides a wrapper around the git object store using GitPython. Everything
the engines need (fetching into private refs, building trees in a scratch
index, creating commits and moving refs) goes through plumbing commands, so
the working copy is only ever touched by an explicit reset.
"""

import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from git import Commit, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .errors import NotAGitRepoError, TreeletError


def _commit_datetime(epoch: int, tz_offset: int) -> datetime:
    """Build an aware datetime from GitPython's epoch + seconds-west offset."""
    return datetime.fromtimestamp(epoch, tz=timezone(timedelta(seconds=-tz_offset)))


def git_date(value: datetime) -> str:
    """Format a datetime in git's internal '<epoch> <+hhmm>' form."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return f"{int(value.timestamp())} {value.strftime('%z')}"


@dataclass(frozen=True)
class Identity:
    """Name, email and date of an author or committer."""

    name: str
    email: str
    date: datetime

    def as_env(self, role: str) -> dict[str, str]:
        """Environment variables that make git use this identity."""
        prefix = f"GIT_{role.upper()}_"
        return {
            prefix + "NAME": self.name,
            prefix + "EMAIL": self.email,
            prefix + "DATE": git_date(self.date),
        }


@dataclass
class CommitInfo:
    """Information about a git commit."""

    hash: str
    short_hash: str
    message: str
    tree: str
    parents: list[str]
    author: Identity
    committer: Identity

    @property
    def summary(self) -> str:
        return self.message.split("\n", 1)[0]

    @classmethod
    def from_commit(cls, commit: Commit) -> "CommitInfo":
        """Create CommitInfo from a GitPython Commit object."""
        return cls(
            hash=commit.hexsha,
            short_hash=commit.hexsha[:8],
            message=commit.message,
            tree=commit.tree.hexsha,
            parents=[p.hexsha for p in commit.parents],
            author=Identity(
                name=commit.author.name,
                email=commit.author.email,
                date=_commit_datetime(commit.authored_date, commit.author_tz_offset),
            ),
            committer=Identity(
                name=commit.committer.name,
                email=commit.committer.email,
                date=_commit_datetime(commit.committed_date, commit.committer_tz_offset),
            ),
        )


def open_repository(location: Path) -> "GitRepository":
    """Open the repository enclosing a location, walking up to its root."""
    try:
        repo = Repo(Path(location), search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise NotAGitRepoError(f"Not inside a git repository: {location}") from e
    if repo.working_tree_dir is None:
        raise NotAGitRepoError(f"Repository has no working tree: {repo.git_dir}")
    return GitRepository(Path(repo.working_tree_dir))


class GitRepository:
    """Wrapper around a git repository for treelet operations."""

    def __init__(self, path: Path):
        """Initialize repository wrapper."""
        self.path = Path(path).resolve()
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotAGitRepoError(f"Not a valid git repository: {self.path}") from e

    def get_current_branch(self) -> str | None:
        """Get the current branch name, or None when HEAD is detached."""
        if self.repo.head.is_detached:
            return None
        return self.repo.active_branch.name

    def get_head_commit(self) -> str | None:
        """Get the HEAD commit hash, or None on an unborn branch."""
        return self.resolve_ref("HEAD")

    def get_commit(self, commit_hash: str) -> CommitInfo:
        """Get information about a specific commit."""
        return CommitInfo.from_commit(self.repo.commit(commit_hash))

    def has_uncommitted_changes(self) -> bool:
        """Check for staged or unstaged changes to tracked files."""
        if self.get_head_commit() is None:
            return bool(self.repo.git.ls_files())
        return self.repo.is_dirty(index=True, working_tree=True, untracked_files=False)

    def untracked_files(self, path: str) -> list[str]:
        """Untracked files under a path, ignored ones included."""
        output = self.repo.git.ls_files("--others", "--", path)
        return output.splitlines() if output else []

    def tree_files(self, tree: str, path: str) -> list[str]:
        """Files a tree holds under a path."""
        output = self.repo.git.ls_tree("-r", "--name-only", tree, "--", path)
        return output.splitlines() if output else []

    def resolve_ref(self, ref: str) -> str | None:
        """Resolve a ref to a commit hash, or None when it does not exist."""
        try:
            return self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
        except GitCommandError:
            return None

    def object_exists(self, sha: str) -> bool:
        try:
            self.repo.git.cat_file("-e", f"{sha}^{{commit}}")
            return True
        except GitCommandError:
            return False

    def tree_at(self, commit_hash: str, path: str | None = None) -> str | None:
        """Tree hash of a commit's root or of a subdirectory inside it."""
        tree = self.repo.commit(commit_hash).tree
        if not path:
            return tree.hexsha
        try:
            entry = tree / path
        except KeyError:
            return None
        return entry.hexsha if entry.type == "tree" else None

    def path_exists_at(self, commit_hash: str, path: str) -> bool:
        """Check if a file or directory exists at a specific commit."""
        try:
            _ = self.repo.commit(commit_hash).tree / path
            return True
        except KeyError:
            return False

    def fetch_into(self, remote: str, ref: str, dest_ref: str) -> str:
        """Fetch a ref from a remote into a local ref and return its commit."""
        self.repo.git.fetch("--no-tags", "--quiet", remote, f"+{ref}:{dest_ref}")
        sha = self.resolve_ref(dest_ref)
        if sha is None:
            raise TreeletError(f"Fetched ref {dest_ref} does not point to a commit")
        return sha

    def build_tree_with_subtree(
        self, base_commit: str | None, path: str, source_commit: str
    ) -> str:
        """
        Write a tree equal to base_commit's tree with `path` replaced by the
        root tree of source_commit.

        Works in a private index file, so neither the real index nor the
        working copy is modified.
        """
        with tempfile.TemporaryDirectory(prefix="git-treelet-index-") as tmpdir:
            env = {"GIT_INDEX_FILE": str(Path(tmpdir) / "index")}
            if base_commit:
                self.repo.git.read_tree(base_commit, env=env)
                self.repo.git.rm(
                    "--cached", "-r", "-f", "-q", "--ignore-unmatch", "--", path, env=env
                )
            self.repo.git.read_tree(f"--prefix={path}/", source_commit, env=env)
            return self.repo.git.write_tree(env=env)

    def commit_tree(
        self,
        tree: str,
        parents: list[str],
        message: str,
        author: Identity | None = None,
        committer: Identity | None = None,
    ) -> str:
        """Create a commit object without touching any ref."""
        args = ["--no-gpg-sign"]
        for parent in parents:
            args.extend(["-p", parent])
        args.extend(["-m", message, tree])

        env: dict[str, str] = {}
        if author:
            env.update(author.as_env("author"))
        if committer:
            env.update(committer.as_env("committer"))
        return self.repo.git.commit_tree(*args, env=env)

    def update_ref(self, ref: str, new: str, old: str | None = None, reason: str = "git-treelet") -> None:
        """Move a ref; when `old` is given the update only happens if it still matches."""
        args = ["-m", reason, ref, new]
        if old:
            args.append(old)
        self.repo.git.update_ref(*args)

    def delete_ref(self, ref: str) -> None:
        self.repo.git.update_ref("-d", ref)

    def reset_hard(self) -> None:
        """Make the index and working copy match HEAD."""
        self.repo.git.reset("--hard", "--quiet", "HEAD")

    def rev_list(self, tip: str, exclude: str | None = None) -> list[str]:
        """Commits reachable from tip (and not from exclude), oldest first."""
        args = ["--reverse", "--topo-order", tip]
        if exclude:
            args.append(f"^{exclude}")
        output = self.repo.git.rev_list(*args)
        return output.split() if output else []

    def push(self, remote: str, commit_hash: str, dest_ref: str) -> None:
        """Push a commit to a ref on a remote."""
        self.repo.git.push("--quiet", remote, f"{commit_hash}:{dest_ref}")

    def fetch_from_path(self, source: Path, ref: str, dest_ref: str) -> str:
        """Fetch a ref from another local repository into a local ref."""
        return self.fetch_into(str(source), ref, dest_ref)

    @contextmanager
    def temporary_clone(self, branch: str) -> Iterator["GitRepository"]:
        """
        Clone one branch of this repository into a temporary directory.

        The directory is removed when the context exits, whatever the reason.
        """
        tmpdir = Path(tempfile.mkdtemp(prefix="git-treelet-clone-"))
        try:
            clone_path = tmpdir / "repo"
            Repo.clone_from(
                str(self.path),
                clone_path,
                no_local=True,
                single_branch=True,
                branch=branch,
                quiet=True,
            )
            yield GitRepository(clone_path)
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)
