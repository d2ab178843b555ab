from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional

from sqlalchemy import select, func, update, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voicespend.db.models import User, Category, Expense, StatusEnum
from voicespend.errors import NotFoundError, PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY_EMOJI = "📁"


class Repository:
    """Доступ к пользователям, категориям и расходам.

    Одиночные выборки возвращают None, если запись не найдена; любые сбои
    базы превращаются в PersistenceError. Удаление мягкое: запись получает
    статус deleted и перестаёт попадать в выборки.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        session = self._session_factory()
        try:
            yield session
        # OverflowError бросает драйвер sqlite при привязке слишком большого целого
        except (SQLAlchemyError, OverflowError) as e:
            await session.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            await session.close()

    async def ping(self) -> None:
        async with self._session() as session:
            await session.execute(text("SELECT 1"))

    # users
    async def get_user_by_external_id(self, telegram_id: int) -> Optional[User]:
        async with self._session() as session:
            return (await session.execute(
                select(User).where(User.telegram_id == telegram_id, User.status_id != StatusEnum.deleted.value)
            )).scalar_one_or_none()

    async def require_user_by_external_id(self, telegram_id: int) -> User:
        user = await self.get_user_by_external_id(telegram_id)
        if user is None:
            raise NotFoundError(f"user with telegram_id={telegram_id} not found")
        return user

    async def get_or_create_user_by_external_id(
        self,
        telegram_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        async with self._session() as session:
            u = (await session.execute(
                select(User).where(User.telegram_id == telegram_id)
            )).scalar_one_or_none()
            if u is not None:
                return u
            u = User(telegram_id=telegram_id, username=username, first_name=first_name, last_name=last_name)
            session.add(u)
            await session.commit()
            logger.info("new user created: id=%s telegram_id=%s username=%s", u.id, telegram_id, username)
            return u

    async def list_user_external_ids(self) -> List[int]:
        async with self._session() as session:
            rows = (await session.execute(
                select(User.telegram_id).where(User.status_id != StatusEnum.deleted.value)
            )).scalars().all()
            return list(rows)

    # categories
    async def list_categories_for_user(self, user_id: int) -> List[Category]:
        async with self._session() as session:
            rows = (await session.execute(
                select(Category)
                .where(Category.user_id == user_id, Category.status_id != StatusEnum.deleted.value)
                .order_by(Category.created_at.desc(), Category.id.desc())
            )).scalars().all()
            return list(rows)

    async def find_category_by_title(self, user_id: int, title: str) -> Optional[Category]:
        async with self._session() as session:
            return (await session.execute(
                select(Category)
                .where(
                    Category.user_id == user_id,
                    Category.title == title,
                    Category.status_id != StatusEnum.deleted.value,
                )
                .order_by(Category.id)
                .limit(1)
            )).scalar_one_or_none()

    async def create_category(self, user_id: int, title: str, emoji: Optional[str] = DEFAULT_CATEGORY_EMOJI) -> Category:
        async with self._session() as session:
            cat = Category(user_id=user_id, title=title, emoji=emoji)
            session.add(cat)
            await session.commit()
            logger.info("category created: id=%s user_id=%s title=%s", cat.id, user_id, title)
            return cat

    async def delete_category(self, category_id: int) -> bool:
        async with self._session() as session:
            res = await session.execute(
                update(Category).where(Category.id == category_id).values(status_id=StatusEnum.deleted.value)
            )
            await session.commit()
            return res.rowcount > 0

    async def count_categories(self) -> int:
        async with self._session() as session:
            return (await session.execute(
                select(func.count(Category.id)).where(Category.status_id != StatusEnum.deleted.value)
            )).scalar_one()

    # expenses
    async def create_expense(
        self,
        user_id: int,
        amount: int,
        currency: str,
        category_id: Optional[int] = None,
        description: str = "",
        created_at: Optional[datetime] = None,
    ) -> Expense:
        async with self._session() as session:
            entry = Expense(
                user_id=user_id,
                category_id=category_id,
                amount=amount,
                currency=currency,
                description=description or "",
            )
            if created_at is not None:
                entry.created_at = created_at
            session.add(entry)
            await session.commit()
            logger.info(
                "expense created: id=%s user_id=%s amount=%s currency=%s", entry.id, user_id, amount, currency
            )
            return entry

    async def list_expenses_for_user(
        self,
        user_id: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Expense]:
        """Расходы пользователя, новые сначала.

        `since`/`until`: предварительный фильтр по времени создания (включительно);
        точные границы периода применяет агрегатор статистики.
        """
        query = (
            select(Expense)
            .where(Expense.user_id == user_id, Expense.status_id != StatusEnum.deleted.value)
            .order_by(Expense.created_at.desc(), Expense.id.desc())
        )
        if since is not None:
            query = query.where(Expense.created_at >= since)
        if until is not None:
            query = query.where(Expense.created_at <= until)
        if offset:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as session:
            rows = (await session.execute(query)).scalars().all()
            return list(rows)

    async def delete_expense(self, expense_id: int) -> bool:
        async with self._session() as session:
            res = await session.execute(
                update(Expense).where(Expense.id == expense_id).values(status_id=StatusEnum.deleted.value)
            )
            await session.commit()
            return res.rowcount > 0

    async def count_expenses(self) -> int:
        async with self._session() as session:
            return (await session.execute(
                select(func.count(Expense.id)).where(Expense.status_id != StatusEnum.deleted.value)
            )).scalar_one()
