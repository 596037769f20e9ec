"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric, Uuid

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money and measures
MoneyType = Numeric(14, 2)
RateType = Numeric(14, 4)
QuantityType = Numeric(14, 4)
