"""
gh-notes-sync: Sync GitHub issues and pull requests to Markdown notes.

Each tracked issue or pull request becomes one Markdown document with a
YAML header. Repeated runs update, append to or trash documents according
to per-repository settings, and content inside persist blocks survives
regeneration.
"""

__version__ = "1.0.0"
