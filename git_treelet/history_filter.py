"""
History rewriting for push.

The extraction engine needs a history reduced to one subdirectory, with that
subdirectory promoted to the root. That work is delegated to git-filter-repo,
run as an external process inside a throwaway clone.
"""

import shutil
from pathlib import Path
from typing import Protocol

from git import Repo


class HistoryFilter(Protocol):
    """Rewrites a repository's history down to a single subdirectory."""

    def is_available(self) -> bool: ...

    def extract_subdirectory(self, repo_path: Path, path: str) -> None: ...


class FilterRepoTool:
    """HistoryFilter backed by `git filter-repo`."""

    executable = "git-filter-repo"

    def is_available(self) -> bool:
        return shutil.which(self.executable) is not None

    def extract_subdirectory(self, repo_path: Path, path: str) -> None:
        # --force: the clone is ours to destroy, skip the fresh-clone check
        Repo(repo_path).git.filter_repo("--force", "--subdirectory-filter", path)
