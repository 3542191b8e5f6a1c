"""Shared SQLAlchemy declarative base for all models."""

from typing import Any

from pydantic.alias_generators import to_camel
from sqlalchemy import inspect
from sqlalchemy.orm import declarative_base

# Single Base for all models to ensure metadata consistency
# and allow foreign key relationships across model modules
Base = declarative_base()


def as_dict(instance: Any, exclude: tuple[str, ...] = ()) -> dict:
    """Serialize an ORM row to a camelCase dict for API responses.

    Args:
        instance: Mapped ORM instance
        exclude: Attribute names (snake_case) to leave out

    Returns:
        Dict keyed by camelCase column names
    """
    mapper = inspect(instance).mapper
    return {
        to_camel(attr.key): getattr(instance, attr.key)
        for attr in mapper.column_attrs
        if attr.key not in exclude
    }
