from __future__ import annotations
import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger, Column, Integer, String, DateTime, ForeignKey, Index, SmallInteger
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class StatusEnum(int, enum.Enum):
    enabled = 1
    disabled = 2
    deleted = 3


def _now() -> datetime:
    # периоды статистики считаются в локальном времени, храним так же
    return datetime.now()


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    telegram_id = Column(BigInteger, nullable=False, unique=True)
    username = Column(String(64), nullable=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    status_id = Column(SmallInteger, nullable=False, default=StatusEnum.enabled.value)
    created_at = Column(DateTime, nullable=False, default=_now)

    categories = relationship("Category", back_populates="user", cascade="all, delete-orphan")
    expenses = relationship("Expense", back_populates="user", cascade="all, delete-orphan")


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(64), nullable=False)
    emoji = Column(String(16), nullable=True)
    status_id = Column(SmallInteger, nullable=False, default=StatusEnum.enabled.value)
    created_at = Column(DateTime, nullable=False, default=_now)

    user = relationship("User", back_populates="categories")

    __table_args__ = (
        Index("ix_category_user_title", "user_id", "title"),
    )


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    amount = Column(BigInteger, nullable=False)  # в минорных единицах (копейки/центы)
    currency = Column(String(3), nullable=False)
    description = Column(String(512), nullable=False, default="")
    status_id = Column(SmallInteger, nullable=False, default=StatusEnum.enabled.value)
    created_at = Column(DateTime, nullable=False, default=_now)

    user = relationship("User", back_populates="expenses")
    category = relationship("Category", lazy="joined")

    __table_args__ = (
        Index("ix_expense_user_created_at", "user_id", "created_at"),
    )
