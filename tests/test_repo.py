import asyncio
from datetime import datetime

import pytest

from voicespend.errors import NotFoundError, PersistenceError
from voicespend.repo.repo import Repository


def test_users_are_created_once(repo_ctx):
    async def scenario():
        async with repo_ctx() as repo:
            first = await repo.get_or_create_user_by_external_id(42, "ivan", "Иван", "Иванов")
            second = await repo.get_or_create_user_by_external_id(42, "other")
            assert first.id == second.id
            assert second.username == "ivan"
            assert await repo.list_user_external_ids() == [42]
            assert (await repo.require_user_by_external_id(42)).first_name == "Иван"
            assert await repo.get_user_by_external_id(7) is None
            with pytest.raises(NotFoundError):
                await repo.require_user_by_external_id(7)

    asyncio.run(scenario())


def test_categories_soft_delete(repo_ctx):
    async def scenario():
        async with repo_ctx() as repo:
            user = await repo.get_or_create_user_by_external_id(1)
            food = await repo.create_category(user.id, "Еда")
            await repo.create_category(user.id, "Транспорт", "🚕")
            assert food.emoji == "📁"
            assert (await repo.find_category_by_title(user.id, "Еда")).id == food.id
            assert await repo.find_category_by_title(user.id, "еда") is None

            assert await repo.delete_category(food.id) is True
            assert [c.title for c in await repo.list_categories_for_user(user.id)] == ["Транспорт"]
            assert await repo.find_category_by_title(user.id, "Еда") is None
            assert await repo.count_categories() == 1

    asyncio.run(scenario())


def test_expenses_window_order_and_pagination(repo_ctx):
    async def scenario():
        async with repo_ctx() as repo:
            user = await repo.get_or_create_user_by_external_id(1)
            other = await repo.get_or_create_user_by_external_id(2)
            food = await repo.create_category(user.id, "Еда")
            for day in (1, 3, 5, 7):
                await repo.create_expense(
                    user.id, day * 100, "RUB", food.id, f"день {day}", created_at=datetime(2025, 4, day, 12)
                )
            await repo.create_expense(other.id, 999, "USD", created_at=datetime(2025, 4, 3, 12))

            all_rows = await repo.list_expenses_for_user(user.id)
            assert [e.amount for e in all_rows] == [700, 500, 300, 100]
            assert all_rows[0].category.title == "Еда"

            window = await repo.list_expenses_for_user(
                user.id, since=datetime(2025, 4, 3), until=datetime(2025, 4, 5, 23, 59, 59)
            )
            assert [e.amount for e in window] == [500, 300]

            page = await repo.list_expenses_for_user(user.id, limit=2, offset=1)
            assert [e.amount for e in page] == [500, 300]

            assert await repo.delete_expense(all_rows[0].id) is True
            assert await repo.count_expenses() == 4
            assert [e.amount for e in await repo.list_expenses_for_user(user.id)] == [500, 300, 100]

    asyncio.run(scenario())


def test_database_failures_become_persistence_errors(repo_ctx):
    async def scenario():
        async with repo_ctx() as repo:
            await repo.ping()
            with pytest.raises(PersistenceError):
                # внешний ключ на несуществующего пользователя
                await repo.create_expense(user_id=999, amount=100, currency="RUB")

    asyncio.run(scenario())


def test_amount_out_of_integer_range_becomes_persistence_error(repo_ctx):
    async def scenario():
        async with repo_ctx() as repo:
            user = await repo.get_or_create_user_by_external_id(1)
            with pytest.raises(PersistenceError):
                await repo.create_expense(user_id=user.id, amount=10**20, currency="RUB")
            # после отката сессии хранилище продолжает работать
            await repo.create_expense(user_id=user.id, amount=100, currency="RUB")
            assert await repo.count_expenses() == 1

    asyncio.run(scenario())
