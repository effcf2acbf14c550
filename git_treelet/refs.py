"""Private tracking refs kept for each treelet."""

from dataclasses import dataclass
from typing import Literal

from .config import validate_treelet_name
from .git_ops import GitRepository

REF_PREFIX = "refs/treelet"

RefKind = Literal["remote", "split", "temp"]
REF_KINDS: tuple[RefKind, ...] = ("remote", "split", "temp")


@dataclass(frozen=True)
class TrackingRefs:
    """Full ref names of one treelet's tracking refs."""

    remote: str  # last fetched upstream snapshot
    split: str  # last pushed extracted history
    temp: str  # landing target for fetches, overwritten every time


class RefTracker:
    """Reads and moves the refs under refs/treelet/<name>/."""

    def __init__(self, repo: GitRepository):
        self.repo = repo

    @staticmethod
    def namespace(treelet: str) -> TrackingRefs:
        validate_treelet_name(treelet)
        base = f"{REF_PREFIX}/{treelet}"
        return TrackingRefs(remote=f"{base}/remote", split=f"{base}/split", temp=f"{base}/temp")

    def ref_name(self, treelet: str, kind: RefKind) -> str:
        return getattr(self.namespace(treelet), kind)

    def get(self, treelet: str, kind: RefKind) -> str | None:
        return self.repo.resolve_ref(self.ref_name(treelet, kind))

    def set(self, treelet: str, kind: RefKind, commit_sha: str) -> None:
        self.repo.update_ref(
            self.ref_name(treelet, kind), commit_sha, reason=f"git-treelet: {treelet} {kind}"
        )

    def delete_all(self, treelet: str) -> list[str]:
        """Delete every tracking ref of a treelet; returns the ones that existed."""
        deleted = []
        for kind in REF_KINDS:
            if self.get(treelet, kind) is not None:
                self.repo.delete_ref(self.ref_name(treelet, kind))
                deleted.append(kind)
        return deleted
