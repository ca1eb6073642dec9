"""Todo Sync: live to-do lists over a document store."""

__version__ = "0.1.0"
