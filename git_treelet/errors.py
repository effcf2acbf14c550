"""
Error types for git_treelet.

Every failure that aborts a command is a TreeletError subclass, so the CLI
can turn it into a message on stderr and a non-zero exit code.
"""


class TreeletError(Exception):
    """Base class for all treelet errors."""


class NotAGitRepoError(TreeletError):
    """The location is not inside a git repository."""


class DirtyWorkingTreeError(TreeletError):
    """The working tree has uncommitted changes to tracked files."""


class PathExistsError(TreeletError):
    """The treelet path (or name) is already in use."""


class PathMissingError(TreeletError):
    """The treelet path does not exist in the current commit."""


class NotConfiguredError(TreeletError):
    """No configuration exists for the treelet name."""


class InvalidTreeletNameError(TreeletError):
    """The treelet name cannot be used as a config subsection or ref name."""


class InvalidConfigKeyError(TreeletError):
    """Unknown or read-only configuration key."""


class FetchFailedError(TreeletError):
    """Fetching from the treelet's remote failed."""


class FilterToolMissingError(TreeletError):
    """The history-rewriting tool is not installed."""


class PushRejectedError(TreeletError):
    """The remote rejected the push."""


class AmbiguousTreeletError(TreeletError):
    """Auto-detection could not pick a single treelet."""
