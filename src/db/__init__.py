"""Persistence layer: SQLAlchemy engine/session helpers and key-value store adapters."""
