"""Pytest configuration and fixtures for git_treelet tests."""

import tempfile
from pathlib import Path

import pytest
from git import Repo

from git_treelet.history_filter import FilterRepoTool
from git_treelet.syncer import TreeletSyncer


class FilterBranchTool:
    """HistoryFilter built on `git filter-branch`, for machines without git-filter-repo."""

    def is_available(self) -> bool:
        return True

    def extract_subdirectory(self, repo_path: Path, path: str) -> None:
        repo = Repo(repo_path)
        branch = repo.active_branch.name
        repo.git.filter_branch(
            "-f",
            "--subdirectory-filter",
            path,
            "--",
            f"refs/heads/{branch}",
            env={"FILTER_BRANCH_SQUELCH_WARNING": "1"},
        )


class UnavailableFilter:
    """HistoryFilter that is never installed."""

    def __init__(self):
        self.calls = 0

    def is_available(self) -> bool:
        return False

    def extract_subdirectory(self, repo_path: Path, path: str) -> None:
        self.calls += 1


def init_repo(path: Path, readme: str) -> Repo:
    """Create a repository with one commit on 'main'."""
    path.mkdir(parents=True)
    repo = Repo.init(path, initial_branch="main")

    # Configure git user
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")

    (path / "README.md").write_text(readme)
    repo.git.add("README.md")
    repo.git.commit("-q", "-m", "Initial commit")
    return repo


def write_and_commit(repo_path: Path, rel_path: str, content: str, message: str) -> str:
    """Write a file, commit it, and return the new commit hash."""
    target = repo_path / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    repo = Repo(repo_path)
    repo.git.add(rel_path)
    repo.git.commit("-q", "-m", message)
    return repo.head.commit.hexsha


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def commit_file():
    return write_and_commit


@pytest.fixture
def upstream_repo(temp_dir: Path):
    """An external library repository that accepts pushes to its checked-out branch."""
    repo_path = temp_dir / "remote-lib"
    repo = init_repo(repo_path, "# Library\n")
    repo.config_writer().set_value("receive", "denyCurrentBranch", "updateInstead").release()
    write_and_commit(repo_path, "src/lib.js", "library code\n", "Add library")
    yield repo_path


@pytest.fixture
def monorepo(temp_dir: Path):
    """The monorepo that hosts treelets."""
    repo_path = temp_dir / "monorepo"
    init_repo(repo_path, "# Monorepo\n")
    yield repo_path


@pytest.fixture
def history_filter():
    """The real git-filter-repo when installed, filter-branch otherwise."""
    tool = FilterRepoTool()
    if tool.is_available():
        return tool
    return FilterBranchTool()


@pytest.fixture
def syncer(monorepo: Path, history_filter):
    return TreeletSyncer(monorepo, history_filter=history_filter)


@pytest.fixture
def added_treelet(syncer: TreeletSyncer, upstream_repo: Path):
    """Treelet 'mylib' imported from the upstream repo."""
    syncer.add(str(upstream_repo), "main", "mylib")
    return syncer.store.load("mylib")


@pytest.fixture
def unavailable_filter():
    return UnavailableFilter()


@pytest.fixture
def make_world(history_filter):
    """Factory for an upstream + monorepo pair with treelet 'mylib' and two local commits."""

    def _make(root: Path) -> tuple[TreeletSyncer, Path, str]:
        upstream = root / "remote-lib"
        repo = init_repo(upstream, "# Library\n")
        repo.config_writer().set_value("receive", "denyCurrentBranch", "updateInstead").release()
        base = write_and_commit(upstream, "src/lib.js", "library code\n", "Add library")

        monorepo = root / "monorepo"
        init_repo(monorepo, "# Monorepo\n")
        syncer = TreeletSyncer(monorepo, history_filter=history_filter)
        syncer.add(str(upstream), "main", "mylib")
        write_and_commit(monorepo, "mylib/src/lib.js", "library code\nfirst\n", "First change")
        write_and_commit(monorepo, "mylib/docs/guide.md", "guide\n", "Add guide")
        return syncer, upstream, base

    return _make
