"""Shared infrastructure: settings files, SQLite helpers and JSON logging."""
