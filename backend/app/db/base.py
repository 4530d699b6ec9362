"""Import all models so table metadata is complete before create_all."""

from app.models.alarm import Alarm

__all__ = ["Alarm"]
