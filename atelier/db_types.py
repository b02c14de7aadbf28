"""Database-agnostic type definitions for SQLAlchemy models.

Tenant tables must create identically on PostgreSQL (production) and SQLite (tests).
"""
from sqlalchemy import JSON, Numeric, Uuid
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Native UUID on PostgreSQL, CHAR(32) elsewhere
UUIDType = Uuid(as_uuid=True)

# Amounts are whole CFA francs in practice but stored with two decimals
Money = Numeric(12, 2)
