"""Maps a filesystem location to the treelet that encloses it."""

from pathlib import Path, PurePosixPath

from .config import ConfigStore, TreeletConfig
from .errors import AmbiguousTreeletError, NotAGitRepoError
from .git_ops import GitRepository, open_repository


class TreeletResolver:
    """Finds which configured treelet a command should act on."""

    def __init__(self, repo: GitRepository, store: ConfigStore):
        self.repo = repo
        self.store = store

    @staticmethod
    def find_root(location: Path) -> Path:
        """Walk upward from a location to the enclosing repository root."""
        return open_repository(location).path

    def relative_location(self, location: Path) -> str:
        """Location relative to the repository root, POSIX style ('' for the root)."""
        resolved = Path(location).resolve()
        try:
            rel = resolved.relative_to(self.repo.path)
        except ValueError as e:
            raise NotAGitRepoError(f"{location} is outside the repository {self.repo.path}") from e
        return PurePosixPath(*rel.parts).as_posix() if rel.parts else ""

    def detect(self, location: Path) -> TreeletConfig | None:
        """
        Return the treelet whose path is the location or one of its parents.

        The longest matching path wins. None when no treelet encloses the
        location.
        """
        rel = self.relative_location(location)
        matches = [
            config
            for config in self.store.load_all()
            if rel == config.path or rel.startswith(config.path + "/")
        ]
        if not matches:
            return None

        longest = max(len(config.path) for config in matches)
        best = [config for config in matches if len(config.path) == longest]
        if len(best) > 1:
            names = ", ".join(config.name for config in best)
            raise AmbiguousTreeletError(
                f"Treelets {names} share the path '{best[0].path}'; specify a name"
            )
        return best[0]

    def resolve(self, name: str | None, location: Path) -> TreeletConfig:
        """Load the named treelet, or detect it from the location."""
        if name:
            return self.store.load(name)

        config = self.detect(location)
        if config is None:
            raise AmbiguousTreeletError(
                "Not inside a configured treelet; specify the treelet name explicitly"
            )
        return config
