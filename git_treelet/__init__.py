"""
git-treelet - keep monorepo subdirectories in sync with external repositories.

A treelet is a subdirectory of a monorepo that mirrors another repository.
This package imports upstream content into treelets, refreshes them, and
extracts their history to push changes back upstream.
"""

__version__ = "1.0.0"
