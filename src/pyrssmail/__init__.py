"""pyrssmail: poll RSS/Atom feeds into SQLite and mail the unread backlog."""

__version__ = "0.1.0"
