"""SQLPanel: a small REST backend for browsing and editing a MySQL server."""

__version__ = "0.4.0"
