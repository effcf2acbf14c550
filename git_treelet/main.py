"""
CLI entry point for git_treelet.

Installed as ``git-treelet``, so git runs it as ``git treelet <command>``.
"""

import signal
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click
import yaml
from git.exc import GitCommandError
from rich.console import Console
from rich.markup import escape

from .config import RunOptions
from .errors import TreeletError
from .syncer import TreeletSyncer

err_console = Console(stderr=True)


def _terminate(signum, frame):
    # Turn SIGTERM into SystemExit so temporary clones are cleaned up
    sys.exit(128 + signum)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Report treelet and git errors on stderr and exit non-zero."""
    try:
        yield
    except TreeletError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)
    except GitCommandError as e:
        detail = e.stderr.strip() if e.stderr else str(e)
        err_console.print(f"[red]Error:[/red] git command failed: {escape(detail)}")
        raise SystemExit(1)


def _syncer() -> TreeletSyncer:
    return TreeletSyncer(Path.cwd())


def push_options(func):
    """Options shared by push and sync."""
    func = click.option(
        "--force-author-email",
        default=None,
        help="Rewrite author and committer email of every pushed commit",
    )(func)
    func = click.option(
        "--force-author-name",
        default=None,
        help="Rewrite author and committer name of every pushed commit",
    )(func)
    func = click.option(
        "--squash", is_flag=True, help="Push all outgoing changes as a single commit"
    )(func)
    return func


verbose_option = click.option("--verbose", "-v", is_flag=True, help="Show what is being done")


@click.group()
@click.version_option(package_name="git-treelet")
def cli():
    """git-treelet - keep monorepo subdirectories in sync with external repositories."""
    signal.signal(signal.SIGTERM, _terminate)


@cli.command()
@click.argument("remote")
@click.argument("ref")
@click.argument("path")
@click.argument("name", required=False)
@verbose_option
def add(remote: str, ref: str, path: str, name: str | None, verbose: bool):
    """Import REF of REMOTE into the new subdirectory PATH."""
    with handle_errors():
        _syncer().add(remote, ref, path, name, RunOptions(verbose=verbose))


@cli.command()
@click.argument("name", required=False)
@verbose_option
def pull(name: str | None, verbose: bool):
    """Replace a treelet's content with its latest upstream state."""
    with handle_errors():
        _syncer().pull(name, RunOptions(verbose=verbose))


@cli.command()
@click.argument("name", required=False)
@verbose_option
@push_options
def push(
    name: str | None,
    verbose: bool,
    squash: bool,
    force_author_name: str | None,
    force_author_email: str | None,
):
    """Push a treelet's history to its upstream."""
    options = RunOptions(
        verbose=verbose,
        squash=squash,
        force_author_name=force_author_name,
        force_author_email=force_author_email,
    )
    with handle_errors():
        _syncer().push(name, options)


@cli.command()
@click.argument("name", required=False)
@verbose_option
@push_options
def sync(
    name: str | None,
    verbose: bool,
    squash: bool,
    force_author_name: str | None,
    force_author_email: str | None,
):
    """Pull a treelet, then push it."""
    options = RunOptions(
        verbose=verbose,
        squash=squash,
        force_author_name=force_author_name,
        force_author_email=force_author_email,
    )
    with handle_errors():
        _syncer().sync(name, options)


@cli.command(name="list")
@click.option("--yaml", "as_yaml", is_flag=True, help="Print the configuration as YAML")
def list_treelets(as_yaml: bool):
    """List configured treelets."""
    with handle_errors():
        syncer = _syncer()
        configs = syncer.list_treelets()
        if as_yaml:
            data = {
                config.name: config.model_dump(exclude={"name"}, exclude_none=True)
                for config in configs
            }
            click.echo(yaml.safe_dump(data, default_flow_style=False, sort_keys=True), nl=False)
        else:
            syncer.print_list(configs)


@cli.group()
def config():
    """Read or change a treelet's settings."""


@config.command("get")
@click.argument("name")
@click.argument("key")
def config_get(name: str, key: str):
    """Print the value of KEY for treelet NAME."""
    with handle_errors():
        value = _syncer().config_get(name, key)
    if value is None:
        raise SystemExit(1)
    click.echo(value)


@config.command("set")
@click.argument("name")
@click.argument("key")
@click.argument("value")
def config_set(name: str, key: str, value: str):
    """Set KEY to VALUE for treelet NAME."""
    with handle_errors():
        _syncer().config_set(name, key, value)


@cli.command()
@click.argument("name")
def remove(name: str):
    """Forget treelet NAME; its files are kept."""
    with handle_errors():
        _syncer().remove(name)


if __name__ == "__main__":
    cli()
