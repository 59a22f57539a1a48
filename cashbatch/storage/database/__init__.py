"""Database configuration and declarative base."""

from .base import Base, get_session, init_db

__all__ = ["Base", "get_session", "init_db"]
