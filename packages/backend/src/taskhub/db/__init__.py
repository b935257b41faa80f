"""Persistence: async engine, ORM models, Alembic migrations."""
