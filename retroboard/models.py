from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _now() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class Retro(Base):
    __tablename__ = "retro"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class Section(Base):
    __tablename__ = "sections"
    __table_args__ = (UniqueConstraint("retro_id", "name", name="uq_sections_retro_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    retro_id: Mapped[int] = mapped_column(Integer, ForeignKey("retro.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)  # category tag, e.g. "went_well"


class Item(Base):
    __tablename__ = "items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    section_id: Mapped[int] = mapped_column(Integer, ForeignKey("sections.id"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


class Upvote(Base):
    __tablename__ = "upvotes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    item_id: Mapped[int] = mapped_column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False)


class ActionItem(Base):
    __tablename__ = "action_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    section_id: Mapped[int] = mapped_column(Integer, ForeignKey("sections.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    assigned_owner: Mapped[str] = mapped_column(String(200), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="Medium")  # High | Medium | Low
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_now)


# Table name -> ORM class, used by the SQL store to address rows by table name.
TABLES: dict[str, type[Base]] = {
    model.__tablename__: model for model in (Retro, Section, Item, Upvote, ActionItem)
}
