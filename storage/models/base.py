"""
Base ORM Model.

============================================================
PURPOSE
============================================================
Provides the declarative base used by the metric tables.

============================================================
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Its metadata is what RelationalRepository creates at start-up.
    """
