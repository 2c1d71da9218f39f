"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Table and column names follow the queue schema that
kiosks, admin consoles and display boards already speak:

  categories(id, name, prefix, color_code)
  queues(id, category_id, ticket_number, formatted_code, status,
         counter_number, service_date, created_at, updated_at)
  display_settings(id=1, video_url, title, subtitle, updated_at)

Key concepts:
- service_date pins a ticket to the local day its number was issued on.
  Numbers restart at 1 every day, per category.
- (category_id, service_date, ticket_number) is UNIQUE — the database is the
  last line of defence against two kiosks printing the same number.
"""

from datetime import date, datetime, timezone

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Ticket statuses ─────────────────────────────────────

WAITING = "waiting"
CALLING = "calling"
SERVING = "serving"
SKIPPED = "skipped"
FINISHED = "finished"

TICKET_STATUSES = (WAITING, CALLING, SERVING, SKIPPED, FINISHED)


def format_ticket_code(prefix: str, number: int) -> str:
    """A-007 style code. Numbers past 999 simply widen (A-1000)."""
    return f"{prefix}-{number:03d}"


class Category(Base):
    """A service line with its own letter prefix and daily number sequence.

    Seeded at bootstrap and never edited by the queue engine.
    """

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    prefix: Mapped[str] = mapped_column(String(1), nullable=False)
    color_code: Mapped[str] = mapped_column(String(7), nullable=False, default="#2563eb")

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="category")


class Ticket(Base):
    """One customer's place in a category's line.

    Learn: Tickets flow through a small state machine:
      waiting → calling → serving → finished
    with skipped as a side exit. formatted_code is written once at insert
    and never recomputed; counter_number stays 0 until the ticket is called.
    """

    __tablename__ = "queues"
    __table_args__ = (
        UniqueConstraint(
            "category_id", "service_date", "ticket_number",
            name="uq_queues_category_day_number",
        ),
        Index("idx_queues_day_status", "service_date", "status"),
        Index("idx_queues_counter_status", "counter_number", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id"), nullable=False
    )
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)
    formatted_code: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=WAITING
    )  # waiting, calling, serving, skipped, finished
    counter_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    category: Mapped["Category"] = relationship(back_populates="tickets")


class DisplaySettings(Base):
    """Singleton row (id=1) driving the public display's video and captions."""

    __tablename__ = "display_settings"

    SINGLETON_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_ID)
    video_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    subtitle: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
