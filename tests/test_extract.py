"""Tests for push (history extraction)."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from git import Repo

from git_treelet.config import RunOptions
from git_treelet.errors import FilterToolMissingError, PathMissingError, PushRejectedError
from git_treelet.extract import AuthorOverride, remote_dest_ref, squash_message
from git_treelet.git_ops import Identity
from git_treelet.syncer import TreeletSyncer
from git_treelet.trailers import is_bookkeeping_commit


def upstream_commits_since(upstream_repo: Path, base: str) -> list:
    repo = Repo(upstream_repo)
    return list(repo.iter_commits(f"{base}..main"))


class TestPushNoop:
    """Cases where push has nothing to do."""

    def test_push_right_after_add(self, syncer: TreeletSyncer, upstream_repo: Path, added_treelet):
        """Test that nothing is pushed when the treelet is unchanged."""
        upstream_head = Repo(upstream_repo).head.commit.hexsha

        result = syncer.push("mylib")

        assert result.status == "nothing-to-push"
        assert Repo(upstream_repo).head.commit.hexsha == upstream_head
        assert syncer.refs.get("mylib", "split") is None

    def test_noop_does_not_need_filter_tool(self, monorepo: Path, unavailable_filter, added_treelet):
        """Test that a no-op push works without git-filter-repo."""
        syncer = TreeletSyncer(monorepo, history_filter=unavailable_filter)
        assert syncer.push("mylib").status == "nothing-to-push"

    def test_missing_path(self, syncer: TreeletSyncer, monorepo: Path, added_treelet):
        """Test pushing a treelet whose directory was deleted."""
        repo = Repo(monorepo)
        repo.git.rm("-r", "-q", "mylib")
        repo.git.commit("-q", "-m", "Drop treelet content")
        with pytest.raises(PathMissingError):
            syncer.push("mylib")


class TestPush:
    """Tests for pushing local changes upstream."""

    def test_push_sends_local_change(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test pushing one local commit on top of upstream."""
        c1 = added_treelet.last_sync
        commit_file(monorepo, "mylib/src/lib.js", "library code\nlocal change\n", "Update treelet")

        result = syncer.push("mylib")

        assert result.status == "pushed"
        assert result.commits_pushed == 1
        upstream = Repo(upstream_repo)
        assert upstream.head.commit.hexsha == result.tip
        assert upstream.head.commit.message == "Update treelet\n"
        assert [p.hexsha for p in upstream.head.commit.parents] == [c1]
        blob = upstream.head.commit.tree / "src/lib.js"
        assert b"local change" in blob.data_stream.read()

        assert syncer.refs.get("mylib", "split") == result.tip
        assert syncer.refs.get("mylib", "remote") == result.tip
        assert syncer.store.load("mylib").last_sync == result.tip

    def test_pushed_tree_matches_treelet(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test that upstream ends with the treelet's exact tree."""
        commit_file(monorepo, "mylib/new/file.txt", "new\n", "Add file")
        syncer.push("mylib")

        mono_tree = Repo(monorepo).head.commit.tree["mylib"].hexsha
        assert Repo(upstream_repo).head.commit.tree.hexsha == mono_tree

    def test_push_excludes_bookkeeping_commits(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test that add and pull commits never reach upstream."""
        c1 = added_treelet.last_sync
        commit_file(upstream_repo, "CHANGELOG.md", "v2\n", "Upstream changelog")
        syncer.pull("mylib")
        commit_file(monorepo, "mylib/src/lib.js", "library code\nafter sync\n", "Local work")
        commit_file(monorepo, "unrelated.txt", "x\n", "Unrelated monorepo change")

        result = syncer.push("mylib")

        assert result.commits_pushed == 1
        for commit in upstream_commits_since(upstream_repo, c1):
            assert not is_bookkeeping_commit(commit.message)
            assert "Treelet-" not in commit.message
        messages = [c.summary for c in upstream_commits_since(upstream_repo, c1)]
        assert messages == ["Local work", "Upstream changelog"]

    def test_push_only_new_commits_on_second_push(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test that a second push sends only the new commit."""
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")
        first = syncer.push("mylib")
        commit_file(monorepo, "mylib/b.txt", "b\n", "Add b")

        second = syncer.push("mylib")

        assert second.commits_pushed == 1
        tip = Repo(upstream_repo).head.commit
        assert tip.hexsha == second.tip
        assert [p.hexsha for p in tip.parents] == [first.tip]

    def test_pull_after_push_is_up_to_date(
        self, syncer: TreeletSyncer, monorepo: Path, commit_file, added_treelet
    ):
        """Test that pull and push are no-ops right after a push."""
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")
        syncer.push("mylib")
        head = Repo(monorepo).head.commit.hexsha

        assert syncer.pull("mylib").status == "up-to-date"
        assert Repo(monorepo).head.commit.hexsha == head
        assert syncer.push("mylib").status == "nothing-to-push"

    def test_sync_pulls_then_pushes(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test sync with local changes and an unchanged upstream."""
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")

        pulled, pushed = syncer.sync("mylib")

        assert pulled.status == "up-to-date"
        assert pushed.status == "pushed"
        assert Repo(upstream_repo).head.commit.hexsha == pushed.tip
        assert Repo(upstream_repo).head.commit.summary == "Add a"

    def test_author_override(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test rewriting author and committer names on push."""
        c1 = added_treelet.last_sync
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")
        commit_file(monorepo, "mylib/b.txt", "b\n", "Add b")
        mono_tree = Repo(monorepo).head.commit.tree["mylib"].hexsha

        syncer.push("mylib", RunOptions(force_author_name="Bot"))

        pushed = upstream_commits_since(upstream_repo, c1)
        assert len(pushed) == 2
        for commit in pushed:
            assert commit.author.name == "Bot"
            assert commit.committer.name == "Bot"
            assert commit.author.email == "test@example.com"
        assert Repo(upstream_repo).head.commit.tree.hexsha == mono_tree

    def test_author_override_from_config(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test the author override stored in config."""
        syncer.store.set("mylib", "force-author-email", "bot@example.com")
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")

        syncer.push("mylib")

        tip = Repo(upstream_repo).head.commit
        assert tip.author.email == "bot@example.com"
        assert tip.author.name == "Test User"

    def test_squash(self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet):
        """Test collapsing outgoing commits into one."""
        c1 = added_treelet.last_sync
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")
        commit_file(monorepo, "mylib/b.txt", "b\n", "Add b")

        result = syncer.push("mylib", RunOptions(squash=True))

        assert result.commits_pushed == 1
        tip = Repo(upstream_repo).head.commit
        assert [p.hexsha for p in tip.parents] == [c1]
        assert tip.message == "Add a\n\nAdd b\n"

    def test_push_after_squash_fast_forwards(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test that a push after a squashed push fast-forwards."""
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")
        commit_file(monorepo, "mylib/b.txt", "b\n", "Add b")
        squashed = syncer.push("mylib", RunOptions(squash=True))
        commit_file(monorepo, "mylib/c.txt", "c\n", "Add c")

        result = syncer.push("mylib")

        assert result.commits_pushed == 1
        tip = Repo(upstream_repo).head.commit
        assert [p.hexsha for p in tip.parents] == [squashed.tip]

    def test_squash_tree_equivalence(self, temp_dir: Path, make_world):
        """Test that squashed and plain pushes produce the same tree."""
        plain_syncer, plain_upstream, plain_base = make_world(temp_dir / "plain")
        squash_syncer, squash_upstream, squash_base = make_world(temp_dir / "squash")

        plain_syncer.push("mylib")
        squash_syncer.push("mylib", RunOptions(squash=True))

        plain_tip = Repo(plain_upstream).head.commit
        squash_tip = Repo(squash_upstream).head.commit
        assert plain_tip.tree.hexsha == squash_tip.tree.hexsha
        assert len(upstream_commits_since(plain_upstream, plain_base)) == 2
        assert len(upstream_commits_since(squash_upstream, squash_base)) == 1


class TestPushFailures:
    """Failure modes of push."""

    def test_filter_tool_missing(self, monorepo: Path, commit_file, unavailable_filter, added_treelet):
        """Test pushing without git-filter-repo installed."""
        syncer = TreeletSyncer(monorepo, history_filter=unavailable_filter)
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")

        with pytest.raises(FilterToolMissingError):
            syncer.push("mylib")

        assert unavailable_filter.calls == 0
        assert syncer.refs.get("mylib", "split") is None
        assert syncer.store.load("mylib").last_sync == added_treelet.last_sync

    def test_rejected_push_leaves_state(
        self, syncer: TreeletSyncer, monorepo: Path, upstream_repo: Path, commit_file, added_treelet
    ):
        """Test that a rejected push changes no tracking state."""
        upstream_head = commit_file(upstream_repo, "src/other.js", "other\n", "Upstream moved on")
        commit_file(monorepo, "mylib/a.txt", "a\n", "Add a")

        with pytest.raises(PushRejectedError):
            syncer.push("mylib")

        assert Repo(upstream_repo).head.commit.hexsha == upstream_head
        assert syncer.refs.get("mylib", "split") is None
        assert syncer.refs.get("mylib", "remote") == added_treelet.last_sync
        assert syncer.store.load("mylib").last_sync == added_treelet.last_sync


class TestHelpers:
    """Tests for push helpers."""

    def test_remote_dest_ref(self):
        """Test expanding branch names to full refs."""
        assert remote_dest_ref("main") == "refs/heads/main"
        assert remote_dest_ref("refs/heads/release") == "refs/heads/release"

    def test_squash_message(self):
        """Test joining commit messages."""
        assert squash_message(["One\n", "Two\n\nBody\n"]) == "One\n\nTwo\n\nBody\n"

    def test_author_override_apply(self):
        """Test applying a partial identity override."""
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        original = Identity(name="Alice", email="alice@example.com", date=when)

        assert AuthorOverride().apply(original) is original
        renamed = AuthorOverride(name="Bot").apply(original)
        assert renamed == Identity(name="Bot", email="alice@example.com", date=when)
