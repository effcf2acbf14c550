"""
Command orchestration for git_treelet.

Wires the resolver, config store, ref tracker and the two engines together
for each command, and reports the outcome on the console.
"""

import os
import posixpath
from pathlib import Path, PurePosixPath

from rich.console import Console
from rich.table import Table

from .config import (
    ConfigStore,
    RunOptions,
    TreeletConfig,
    normalize_path,
    validate_treelet_name,
)
from .errors import TreeletError
from .extract import HistoryExtractionEngine, PushResult
from .git_ops import open_repository
from .history_filter import FilterRepoTool, HistoryFilter
from .merge import MergeResult, TreeMergeEngine
from .refs import RefTracker
from .resolver import TreeletResolver

console = Console()


class TreeletSyncer:
    """Runs treelet commands against the repository enclosing a location."""

    def __init__(self, location: Path, history_filter: HistoryFilter | None = None):
        self.location = Path(location).resolve()
        self.repo = open_repository(self.location)
        self.store = ConfigStore(self.repo.repo)
        self.refs = RefTracker(self.repo)
        self.resolver = TreeletResolver(self.repo, self.store)
        self.merger = TreeMergeEngine(self.repo, self.store, self.refs)
        self.extractor = HistoryExtractionEngine(
            self.repo, self.store, self.refs, history_filter or FilterRepoTool()
        )

    def _repo_relative(self, path: str) -> str:
        """Interpret a path given on the command line relative to the location."""
        base = self.resolver.relative_location(self.location)
        joined = posixpath.normpath(posixpath.join(base, path.replace("\\", "/"))) if base else path
        try:
            return normalize_path(joined)
        except ValueError as e:
            raise TreeletError(str(e)) from e

    def _localize_remote(self, remote: str) -> str:
        """Make a local-path remote given from a subdirectory relative to the root."""
        candidate = self.location / remote
        if self.location == self.repo.path or "://" in remote or not candidate.exists():
            return remote
        return os.path.relpath(candidate.resolve(), self.repo.path)

    def add(
        self,
        remote: str,
        remote_ref: str,
        path: str,
        name: str | None = None,
        options: RunOptions | None = None,
    ) -> MergeResult:
        """Import an external repository into a new treelet."""
        options = options or RunOptions()
        rel_path = self._repo_relative(path)
        name = validate_treelet_name(name or PurePosixPath(rel_path).name)
        config = TreeletConfig(
            name=name,
            remote=self._localize_remote(remote),
            remote_ref=remote_ref,
            path=rel_path,
        )

        console.print(f"Adding treelet [cyan]{name}[/cyan] at {rel_path} from {remote} {remote_ref}")
        result = self.merger.add(config, options)
        console.print(
            f"[green]✓ Added treelet {name} "
            f"(upstream {result.upstream[:8]}, commit {result.commit[:8]})[/green]"
        )
        return result

    def pull(self, name: str | None = None, options: RunOptions | None = None) -> MergeResult:
        """Refresh a treelet from its upstream."""
        options = options or RunOptions()
        config = self.resolver.resolve(name, self.location)

        console.print(f"Pulling treelet [cyan]{config.name}[/cyan] from {config.remote} {config.remote_ref}")
        result = self.merger.pull(config, options)
        if result.status == "up-to-date":
            console.print("[green]Already up to date.[/green]")
        else:
            console.print(
                f"[green]✓ Synced {config.name} to upstream {result.upstream[:8]} "
                f"(commit {result.commit[:8]})[/green]"
            )
        return result

    def push(self, name: str | None = None, options: RunOptions | None = None) -> PushResult:
        """Publish a treelet's local history upstream."""
        options = options or RunOptions()
        config = self.resolver.resolve(name, self.location)

        console.print(f"Pushing treelet [cyan]{config.name}[/cyan] to {config.remote} {config.remote_ref}")
        result = self.extractor.push(config, options)
        if result.status == "nothing-to-push":
            console.print("[green]Nothing to push.[/green]")
        else:
            console.print(
                f"[green]✓ Pushed {result.commits_pushed} commit(s) to "
                f"{config.remote} {config.remote_ref} ({result.tip[:8]})[/green]"
            )
        return result

    def sync(
        self, name: str | None = None, options: RunOptions | None = None
    ) -> tuple[MergeResult, PushResult]:
        """Pull, then push."""
        config = self.resolver.resolve(name, self.location)
        pulled = self.pull(config.name, options)
        pushed = self.push(config.name, options)
        return pulled, pushed

    def list_treelets(self) -> list[TreeletConfig]:
        return self.store.load_all()

    def print_list(self, configs: list[TreeletConfig]) -> None:
        if not configs:
            console.print("[yellow]No treelets configured.[/yellow]")
            return

        table = Table(title=f"Treelets ({len(configs)})")
        table.add_column("Name", style="cyan")
        table.add_column("Path", style="green")
        table.add_column("Remote", style="white")
        table.add_column("Ref", style="yellow")
        table.add_column("Last sync", style="dim")
        for config in configs:
            table.add_row(
                config.name,
                config.path,
                config.remote,
                config.remote_ref,
                config.last_sync[:8] if config.last_sync else "never",
            )
        console.print(table)

    def config_get(self, name: str, key: str) -> str | None:
        return self.store.get(name, key)

    def config_set(self, name: str, key: str, value: str) -> TreeletConfig:
        return self.store.set(name, key, value)

    def remove(self, name: str) -> None:
        """Forget a treelet: its config and tracking refs go, its files stay."""
        self.store.remove(name)
        self.refs.delete_all(name)
        console.print(f"[green]Removed treelet {name}[/green] (files left in place)")
