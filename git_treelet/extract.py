"""
History extraction engine: publishes a treelet's history upstream (push).

The branch is cloned into a throwaway directory, reduced to the treelet's
subdirectory by the history filter, and then rebuilt commit by commit:

* bookkeeping commits (``Treelet-Add``/``Treelet-Sync``) are replaced by the
  upstream commit they imported, so the result descends from upstream;
* a commit whose tree equals the last-sync tree is already upstream and maps
  onto the last-sync commit;
* everything else is re-created with the same tree, message, identities and
  dates, which makes the rebuild deterministic across pushes.
"""

from dataclasses import dataclass
from typing import Literal

from git.exc import GitCommandError
from rich.console import Console

from .config import ConfigStore, RunOptions, TreeletConfig
from .errors import (
    FilterToolMissingError,
    PathMissingError,
    PushRejectedError,
    TreeletError,
)
from .git_ops import CommitInfo, GitRepository, Identity
from .history_filter import HistoryFilter
from .refs import RefTracker
from .trailers import bookkeeping_upstream

console = Console()

# Refs used inside the temporary clone
CLONE_BASE_REF = "refs/treelet-base"
CLONE_SPLIT_REF = "refs/heads/treelet-split"

PushStatus = Literal["pushed", "nothing-to-push"]


@dataclass
class PushResult:
    """Result of a push."""

    status: PushStatus
    tip: str | None = None
    commits_pushed: int = 0


@dataclass(frozen=True)
class AuthorOverride:
    """Identity stamped on every pushed commit; unset parts are kept."""

    name: str | None = None
    email: str | None = None

    def __bool__(self) -> bool:
        return bool(self.name or self.email)

    def apply(self, identity: Identity) -> Identity:
        if not self:
            return identity
        return Identity(
            name=self.name or identity.name,
            email=self.email or identity.email,
            date=identity.date,
        )


def remote_dest_ref(remote_ref: str) -> str:
    """Full ref name on the remote for a configured branch or ref."""
    if remote_ref.startswith("refs/"):
        return remote_ref
    return f"refs/heads/{remote_ref}"


def squash_message(messages: list[str]) -> str:
    """Join commit messages, oldest first, into one."""
    return "\n\n".join(message.strip() for message in messages) + "\n"


class HistoryExtractionEngine:
    """Extracts a treelet's history and pushes it to the treelet's remote."""

    def __init__(
        self,
        repo: GitRepository,
        store: ConfigStore,
        refs: RefTracker,
        history_filter: HistoryFilter,
    ):
        self.repo = repo
        self.store = store
        self.refs = refs
        self.history_filter = history_filter

    def _last_sync_tree(self, config: TreeletConfig) -> str | None:
        if not config.last_sync or not self.repo.object_exists(config.last_sync):
            return None
        return self.repo.tree_at(config.last_sync)

    def push(self, config: TreeletConfig, options: RunOptions) -> PushResult:
        """Push the treelet's local history to its remote."""
        head = self.repo.get_head_commit()
        current_tree = self.repo.tree_at(head, config.path) if head else None
        if current_tree is None:
            raise PathMissingError(f"Path '{config.path}' does not exist in HEAD")

        last_sync_tree = self._last_sync_tree(config)
        if current_tree == last_sync_tree:
            return PushResult(status="nothing-to-push")

        if not self.history_filter.is_available():
            raise FilterToolMissingError(
                "git-filter-repo is required for push; install it with 'pip install git-filter-repo'"
            )

        branch = self.repo.get_current_branch()
        if branch is None:
            raise TreeletError("HEAD is detached; check out a branch before pushing")

        override = AuthorOverride(
            name=options.force_author_name or config.force_author_name,
            email=options.force_author_email or config.force_author_email,
        )
        tracking = self.refs.namespace(config.name)
        upstream_base = self.refs.get(config.name, "remote")

        with self.repo.temporary_clone(branch) as clone:
            if options.verbose:
                console.print(f"[dim]Extracting '{config.path}' in {clone.path}[/dim]")
            try:
                self.history_filter.extract_subdirectory(clone.path, config.path)
            except GitCommandError as e:
                raise TreeletError(f"History rewrite failed: {e}") from e

            if upstream_base:
                clone.fetch_from_path(self.repo.path, tracking.remote, CLONE_BASE_REF)

            tip = self._rebuild(clone, clone.get_head_commit(), config.last_sync, last_sync_tree, override)
            outgoing = clone.rev_list(tip, exclude=upstream_base) if tip else []
            if not outgoing:
                return PushResult(status="nothing-to-push")

            if options.squash:
                tip = self._squash(clone, tip, outgoing, upstream_base)
                count = 1
            else:
                count = len(outgoing)

            if options.verbose:
                console.print(f"[dim]Rebuilt history: {count} commit(s), tip {tip[:8]}[/dim]")
            clone.update_ref(CLONE_SPLIT_REF, tip)
            pushed = self.repo.fetch_from_path(clone.path, CLONE_SPLIT_REF, tracking.temp)

        dest = remote_dest_ref(config.remote_ref)
        if options.verbose:
            console.print(f"[dim]Pushing {pushed[:8]} to {config.remote} {dest}[/dim]")
        try:
            self.repo.push(config.remote, pushed, dest)
        except GitCommandError as e:
            raise PushRejectedError(
                f"Push to {config.remote} {dest} was rejected: "
                f"{e.stderr.strip() if e.stderr else e}"
            ) from e

        self.refs.set(config.name, "split", pushed)
        self.refs.set(config.name, "remote", pushed)
        self.store.set_last_sync(config.name, pushed)
        return PushResult(status="pushed", tip=pushed, commits_pushed=count)

    def _rebuild(
        self,
        clone: GitRepository,
        rewritten_tip: str | None,
        last_sync: str | None,
        last_sync_tree: str | None,
        override: AuthorOverride,
    ) -> str | None:
        """Re-create the rewritten history without bookkeeping commits."""
        if rewritten_tip is None:
            return None
        if last_sync and not clone.object_exists(last_sync):
            last_sync = None

        # rewritten commit -> the commits standing in for it
        mapping: dict[str, list[str]] = {}
        for sha in clone.rev_list(rewritten_tip):
            info = clone.get_commit(sha)
            parents = self._mapped_parents(info, mapping)

            upstream = bookkeeping_upstream(info.message)
            if upstream is not None:
                mapping[sha] = [upstream] if clone.object_exists(upstream) else parents
                continue

            if last_sync and info.tree == last_sync_tree:
                mapping[sha] = [last_sync]
                continue

            mapping[sha] = [
                clone.commit_tree(
                    info.tree,
                    parents,
                    info.message,
                    author=override.apply(info.author),
                    committer=override.apply(info.committer),
                )
            ]

        tip = mapping.get(rewritten_tip) or []
        return tip[0] if tip else None

    @staticmethod
    def _mapped_parents(info: CommitInfo, mapping: dict[str, list[str]]) -> list[str]:
        parents: list[str] = []
        for parent in info.parents:
            for mapped in mapping.get(parent, []):
                if mapped not in parents:
                    parents.append(mapped)
        return parents

    def _squash(
        self, clone: GitRepository, tip: str, outgoing: list[str], upstream_base: str | None
    ) -> str:
        """Collapse the outgoing commits into one on top of upstream."""
        tip_info = clone.get_commit(tip)
        message = squash_message([clone.get_commit(sha).message for sha in outgoing])
        return clone.commit_tree(
            tip_info.tree,
            [upstream_base] if upstream_base else [],
            message,
            author=tip_info.author,
            committer=tip_info.committer,
        )
