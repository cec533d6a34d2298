from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base shared by every service model."""


# Portable JSON column: JSONB on Postgres, plain JSON elsewhere (SQLite dev/test).
JSONVariant = JSON().with_variant(JSONB(), "postgresql")
