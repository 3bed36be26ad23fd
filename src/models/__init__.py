"""SQLAlchemy models."""
from models.base import Base, TimestampMixin
from models.fidelity_member import FidelityMember

__all__ = ["Base", "FidelityMember", "TimestampMixin"]
