"""
Bookkeeping trailers.

Commits created by `add` and `pull` end with a trailer paragraph holding
``Treelet-Add: <sha>`` or ``Treelet-Sync: <sha>``. These commits record
synchronization with upstream and are never pushed back. The trailer is
only recognized in the final paragraph of the message, one trailer per line.
"""

import re

ADD_TRAILER = "Treelet-Add"
SYNC_TRAILER = "Treelet-Sync"

_TRAILER_RE = re.compile(rf"^({ADD_TRAILER}|{SYNC_TRAILER}): ([0-9a-f]{{7,64}})$")


def _trailer_block(message: str) -> list[str]:
    paragraphs = re.split(r"\n\s*\n", message.strip())
    if len(paragraphs) < 2:
        return []
    return [line.strip() for line in paragraphs[-1].splitlines()]


def parse_bookkeeping_trailer(message: str) -> tuple[str, str] | None:
    """Return (trailer key, upstream sha) when the message is bookkeeping."""
    for line in _trailer_block(message):
        match = _TRAILER_RE.match(line)
        if match:
            return match.group(1), match.group(2)
    return None


def is_bookkeeping_commit(message: str) -> bool:
    return parse_bookkeeping_trailer(message) is not None


def bookkeeping_upstream(message: str) -> str | None:
    """The upstream commit a bookkeeping commit was created from."""
    parsed = parse_bookkeeping_trailer(message)
    return parsed[1] if parsed else None


def format_bookkeeping_message(
    name: str, remote: str, remote_ref: str, upstream_sha: str, initial: bool
) -> str:
    """Commit message for a commit made by `add` (initial) or `pull`."""
    if initial:
        subject = f"Add treelet '{name}' from {remote} {remote_ref}"
        trailer = ADD_TRAILER
    else:
        subject = f"Sync treelet '{name}' from {remote} {remote_ref}"
        trailer = SYNC_TRAILER
    return f"{subject}\n\n{trailer}: {upstream_sha}\n"
