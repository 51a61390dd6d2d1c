"""Declarative base shared by the catalog, order and status log models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for kitchen-pos ORM models."""


# Import model modules so metadata is populated before create_all.
from app.models import campaign as _campaign  # noqa: E402,F401
from app.models import menu as _menu  # noqa: E402,F401
from app.models import order as _order  # noqa: E402,F401
from app.models import status_event as _status_event  # noqa: E402,F401
