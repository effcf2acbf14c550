"""
Tree merge engine: imports an upstream ref into a treelet (add) and
refreshes it (pull).

The new commit is assembled from object-store primitives. Refs move only
after the commit exists, and the working copy is reset to HEAD as the very
last step.
"""

from dataclasses import dataclass
from typing import Literal

from git.exc import GitCommandError
from rich.console import Console

from .config import ConfigStore, RunOptions, TreeletConfig, paths_overlap
from .errors import DirtyWorkingTreeError, FetchFailedError, PathExistsError
from .git_ops import GitRepository
from .refs import RefTracker
from .trailers import format_bookkeeping_message

console = Console()

MergeStatus = Literal["synced", "up-to-date"]


@dataclass
class MergeResult:
    """Result of an add or pull."""

    status: MergeStatus
    upstream: str
    commit: str | None = None


class TreeMergeEngine:
    """Brings upstream content into the monorepo branch."""

    def __init__(self, repo: GitRepository, store: ConfigStore, refs: RefTracker):
        self.repo = repo
        self.store = store
        self.refs = refs

    def _require_clean(self) -> None:
        if self.repo.has_uncommitted_changes():
            raise DirtyWorkingTreeError(
                "Working tree has uncommitted changes; commit or stash them first"
            )

    def _require_no_clobber(self, config: TreeletConfig, tree: str) -> None:
        """Refuse to let the final reset overwrite untracked files."""
        untracked = self.repo.untracked_files(config.path)
        if not untracked:
            return
        incoming = self.repo.tree_files(tree, config.path)
        blocked = [path for path in untracked if any(paths_overlap(path, new) for new in incoming)]
        if blocked:
            raise DirtyWorkingTreeError(
                f"Untracked files in '{config.path}' would be overwritten: "
                f"{', '.join(sorted(blocked))}; move or commit them first"
            )

    def _check_add_target(self, config: TreeletConfig) -> None:
        if self.store.exists(config.name):
            raise PathExistsError(f"Treelet '{config.name}' is already configured")

        self.store.require_path_free(config.path)

        head = self.repo.get_head_commit()
        if (head and self.repo.path_exists_at(head, config.path)) or (
            self.repo.path / config.path
        ).exists():
            raise PathExistsError(f"Path '{config.path}' already exists")

    def add(self, config: TreeletConfig, options: RunOptions) -> MergeResult:
        """Import the upstream ref into a new subdirectory and save the config."""
        self._check_add_target(config)
        self._require_clean()
        return self._merge(config, options, initial=True)

    def pull(self, config: TreeletConfig, options: RunOptions) -> MergeResult:
        """Replace the treelet's subdirectory with the latest upstream tree."""
        self._require_clean()
        return self._merge(config, options, initial=False)

    def _fetch(self, config: TreeletConfig, options: RunOptions) -> str:
        temp_ref = self.refs.namespace(config.name).temp
        if options.verbose:
            console.print(
                f"[dim]Fetching {config.remote_ref} from {config.remote} into {temp_ref}[/dim]"
            )
        try:
            upstream = self.repo.fetch_into(config.remote, config.remote_ref, temp_ref)
        except GitCommandError as e:
            raise FetchFailedError(
                f"Could not fetch {config.remote_ref} from {config.remote}: "
                f"{e.stderr.strip() if e.stderr else e}"
            ) from e
        if options.verbose:
            console.print(f"[dim]Upstream is at {upstream[:8]}[/dim]")
        return upstream

    def _merge(self, config: TreeletConfig, options: RunOptions, initial: bool) -> MergeResult:
        upstream = self._fetch(config, options)

        previous = self.refs.get(config.name, "remote")
        if not initial and upstream == previous:
            return MergeResult(status="up-to-date", upstream=upstream)

        head = self.repo.get_head_commit()
        tree = self.repo.build_tree_with_subtree(head, config.path, upstream)
        if options.verbose:
            console.print(f"[dim]Built tree {tree[:8]} with '{config.path}' from {upstream[:8]}[/dim]")

        if not initial and head and tree == self.repo.tree_at(head):
            # Content already matches (e.g. right after a push); only the
            # tracking state moves.
            self.refs.set(config.name, "remote", upstream)
            self.store.set_last_sync(config.name, upstream)
            return MergeResult(status="up-to-date", upstream=upstream)

        self._require_no_clobber(config, tree)
        message = format_bookkeeping_message(
            config.name, config.remote, config.remote_ref, upstream, initial=initial
        )
        commit = self.repo.commit_tree(tree, [head] if head else [], message)
        if options.verbose:
            console.print(f"[dim]Created commit {commit[:8]}[/dim]")

        self.repo.update_ref(
            "HEAD", commit, head, reason=f"git-treelet: {'add' if initial else 'pull'} {config.name}"
        )
        self.refs.set(config.name, "remote", upstream)
        if initial:
            self.store.save(config.model_copy(update={"last_sync": upstream}))
        else:
            self.store.set_last_sync(config.name, upstream)

        self.repo.reset_hard()
        return MergeResult(status="synced", upstream=upstream, commit=commit)
