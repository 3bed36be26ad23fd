"""Local record of a submitted fidelity card registration."""
from datetime import date

from sqlalchemy import Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class FidelityMember(Base, TimestampMixin):
    """
    A member registration as submitted by the client.

    The central registry stays the system of record; this table keeps a local
    copy of what was submitted so registrations can be audited and replayed.
    """

    __tablename__ = "fidelity_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity_code: Mapped[str | None] = mapped_column(
        String(20),
        index=True,
        nullable=True,
        comment="Code assigned by the central registry",
    )
    store: Mapped[str] = mapped_column(
        String(6),
        comment="Point-of-sale code the member registered at",
    )
    email: Mapped[str] = mapped_column(String(100), index=True)
    name: Mapped[str] = mapped_column(String(50))
    surname: Mapped[str] = mapped_column(String(50))
    birth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    sex: Mapped[str] = mapped_column(String(1))
    address: Mapped[str] = mapped_column(String(100))
    city: Mapped[str] = mapped_column(String(100))
    postal_code: Mapped[str] = mapped_column(String(10))
    province: Mapped[str] = mapped_column(String(2))
    country: Mapped[str] = mapped_column(String(2))
    phone: Mapped[str] = mapped_column(String(20))
