import asyncio

from voicespend.errors import ExtractionError, PersistenceError, TranscriptionError
from voicespend.keyboards import menus
from voicespend.repo.repo import Repository
from voicespend.states.dialog import DialogState, ExpenseDraft, StatsKind

BREAD = ExpenseDraft(amount=50000, currency="RUB", category="Еда", description="хлеб")


async def register(env):
    await env.service.handle_start(env.sender)
    return await env.repo.get_user_by_external_id(env.sender.user_id)


async def press(env, *buttons):
    for text in buttons:
        await env.service.handle_text(env.sender, text)


def test_start_registers_user_and_shows_main_menu(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            user = await register(env)
            assert user is not None and user.username == "ivan"
            assert env.messenger.last_text.startswith("👋 Привет, Иван!")
            assert env.store.get(env.sender.user_id).state == DialogState.idle
            assert env.metrics.value("telegram_commands_processed_total", {"command": "start"}) == 1

    asyncio.run(scenario())


def test_unknown_user_is_asked_to_start(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            assert "/start" in env.messenger.last_text
            assert env.extractor.calls == []
            assert env.metrics.value("telegram_errors_total", {"type": "user_not_found"}) == 1

            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)
            assert env.messenger.callbacks[-1][2] is True

    asyncio.run(scenario())


def test_bread_expense_is_confirmed_into_existing_category(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            user = await register(env)
            food = await env.repo.create_category(user.id, "Еда")

            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            assert env.extractor.calls == [("500 рублей на хлеб", ["Еда"])]
            assert "Подтвердите расходы" in env.messenger.last_text
            assert "500 RUB — Еда (хлеб)" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).pending_expenses == (BREAD,)

            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)

            expenses = await env.repo.list_expenses_for_user(user.id)
            assert len(expenses) == 1
            assert expenses[0].amount == 50000
            assert expenses[0].currency == "RUB"
            assert expenses[0].category_id == food.id
            assert expenses[0].description == "хлеб"
            assert await env.repo.count_categories() == 1
            assert env.store.get(env.sender.user_id).pending_expenses is None
            assert env.messenger.last_text.startswith("✅ Расходы добавлены!")
            assert env.metrics.value("telegram_expenses_created_total") == 1
            assert env.metrics.value("telegram_categories_created_total") == 0

    asyncio.run(scenario())


def test_unknown_category_is_created_with_default_emoji(dialog_ctx):
    taxi = ExpenseDraft(amount=35050, currency="RUB", category="Транспорт", description="такси")

    async def scenario():
        async with dialog_ctx(drafts=[taxi, BREAD]) as env:
            user = await register(env)
            await env.service.handle_text(env.sender, "такси 350.50 и хлеб 500")
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)

            categories = {c.title: c for c in await env.repo.list_categories_for_user(user.id)}
            assert set(categories) == {"Транспорт", "Еда"}
            assert categories["Транспорт"].emoji == "📁"
            assert await env.repo.count_expenses() == 2
            assert env.metrics.value("telegram_categories_created_total") == 2

    asyncio.run(scenario())


def test_confirm_without_pending_batch_never_persists(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)
            assert env.messenger.callbacks[-1] == ("cb1", "Ошибка: нет данных расхода", True)
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_double_confirm_persists_batch_once(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            await asyncio.gather(
                env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM),
                env.service.handle_callback(env.sender, "cb2", menus.CB_EXPENSE_CONFIRM),
            )
            assert await env.repo.count_expenses() == 1
            answers = [text for _, text, _ in env.messenger.callbacks]
            assert answers.count("Ошибка: нет данных расхода") == 1

    asyncio.run(scenario())


def test_new_input_replaces_pending_batch(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            milk = ExpenseDraft(amount=9900, currency="RUB", category="Еда", description="молоко")
            env.extractor.drafts = [milk]
            await env.service.handle_text(env.sender, "молоко 99")
            assert env.store.get(env.sender.user_id).pending_expenses == (milk,)

    asyncio.run(scenario())


def test_message_without_expenses_drops_previous_batch(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            env.extractor.drafts = []
            await env.service.handle_text(env.sender, "привет")
            assert env.store.get(env.sender.user_id).pending_expenses is None

            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)
            assert env.messenger.callbacks[-1] == ("cb1", "Ошибка: нет данных расхода", True)
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_failed_extraction_drops_previous_batch(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await press(env, menus.BTN_STATISTICS)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            env.extractor.error = ExtractionError("api error 500")
            await env.service.handle_text(env.sender, "молоко 99")

            assert env.store.get(env.sender.user_id).pending_expenses is None
            assert env.store.get(env.sender.user_id).state == DialogState.idle
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_unrecognised_voice_drops_previous_batch(dialog_ctx):
    async def download(dest):
        dest.write_bytes(b"OggS")

    async def scenario():
        async with dialog_ctx(drafts=[BREAD], transcriber_error=TranscriptionError("ffmpeg timed out")) as env:
            await register(env)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            await env.service.handle_voice(env.sender, download)

            assert env.messenger.last_text.startswith("Ошибка распознавания голоса")
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_amount_too_large_for_database_is_reported(dialog_ctx):
    huge = ExpenseDraft(amount=10**20, currency="RUB", category="Еда", description="яхта")

    async def scenario():
        async with dialog_ctx(drafts=[huge]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "яхта")
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)

            assert env.messenger.callbacks[-1] == ("cb1", "Ошибка сохранения", True)
            assert "Ошибка сохранения расхода" in env.messenger.last_text
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_unknown_slash_command_is_not_parsed_as_expense(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "/stats")

            assert env.extractor.calls == []
            assert env.messenger.last_text.startswith("Неизвестная команда")
            assert env.metrics.value("telegram_messages_processed_total", {"type": "other"}) == 1
            assert env.store.get(env.sender.user_id).pending_expenses is None

    asyncio.run(scenario())


def test_cancel_discards_pending_batch(dialog_ctx):
    async def scenario():
        async with dialog_ctx(drafts=[BREAD]) as env:
            await register(env)
            await env.service.handle_text(env.sender, "500 рублей на хлеб")
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CANCEL)
            assert env.messenger.last_text == "Отменено."
            assert env.store.get(env.sender.user_id).pending_expenses is None

            await env.service.handle_callback(env.sender, "cb2", menus.CB_EXPENSE_CONFIRM)
            assert await env.repo.count_expenses() == 0

    asyncio.run(scenario())


def test_persistence_failure_stops_batch_and_keeps_remainder(dialog_ctx):
    class FlakyRepository(Repository):
        calls = 0

        async def create_expense(self, *args, **kwargs):
            self.calls += 1
            if self.calls == 2:
                raise PersistenceError("database is locked")
            return await super().create_expense(*args, **kwargs)

    milk = ExpenseDraft(amount=9900, currency="RUB", category="Еда", description="молоко")

    async def scenario():
        async with dialog_ctx(drafts=[BREAD, milk], repo_cls=FlakyRepository) as env:
            await register(env)
            await env.service.handle_text(env.sender, "хлеб 500 и молоко 99")
            await env.service.handle_callback(env.sender, "cb1", menus.CB_EXPENSE_CONFIRM)

            assert await env.repo.count_expenses() == 1
            assert "Ошибка сохранения расхода" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).pending_expenses == (milk,)
            assert env.metrics.value("telegram_errors_total", {"type": "database"}) == 1

            await env.service.handle_callback(env.sender, "cb2", menus.CB_EXPENSE_CONFIRM)
            assert await env.repo.count_expenses() == 2

    asyncio.run(scenario())


def test_extraction_error_and_empty_result(dialog_ctx):
    async def scenario():
        async with dialog_ctx(extractor_error=ExtractionError("api error 500")) as env:
            await register(env)
            await env.service.handle_text(env.sender, "что-то")
            assert env.messenger.last_text.startswith("Ошибка обработки текста")
            assert env.metrics.value("telegram_errors_total", {"type": "llm_parse"}) == 1

            env.extractor.error = None
            await env.service.handle_text(env.sender, "привет")
            assert "Не получилось найти расходы" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).pending_expenses is None

    asyncio.run(scenario())


def test_voice_is_downloaded_transcribed_and_parsed(dialog_ctx):
    async def download(dest):
        dest.write_bytes(b"OggS")

    async def scenario():
        async with dialog_ctx(drafts=[BREAD], transcript="пятьсот рублей на хлеб") as env:
            await register(env)
            await env.service.handle_voice(env.sender, download)

            assert env.transcriber.seen_files == [b"OggS"]
            assert not env.transcriber.calls[0].exists()
            assert env.extractor.calls[0][0] == "пятьсот рублей на хлеб"
            assert env.store.get(env.sender.user_id).pending_expenses == (BREAD,)
            assert env.metrics.value("telegram_messages_processed_total", {"type": "voice"}) == 1
            assert env.metrics.value("telegram_transcription_duration_seconds_count") == 1

    asyncio.run(scenario())


def test_voice_while_awaiting_custom_period_is_not_transcribed(dialog_ctx):
    async def download(dest):
        dest.write_bytes(b"OggS")

    async def scenario():
        async with dialog_ctx(transcript="01.04 07.04") as env:
            await register(env)
            await press(env, menus.BTN_STATISTICS, menus.BTN_BY_CATEGORIES, menus.BTN_CUSTOM)
            await env.service.handle_voice(env.sender, download)

            assert env.transcriber.calls == []
            assert "введите период текстом" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).state == DialogState.awaiting_custom_period

    asyncio.run(scenario())


def test_transcription_failure_is_reported(dialog_ctx):
    async def download(dest):
        dest.write_bytes(b"OggS")

    async def scenario():
        async with dialog_ctx(transcriber_error=TranscriptionError("ffmpeg timed out")) as env:
            await register(env)
            await env.service.handle_voice(env.sender, download)
            assert env.messenger.last_text.startswith("Ошибка распознавания голоса")
            assert env.extractor.calls == []
            assert env.metrics.value("telegram_errors_total", {"type": "transcription"}) == 1

    asyncio.run(scenario())


def test_custom_period_longer_than_month_is_rejected_for_expense_stats(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await press(env, menus.BTN_STATISTICS, menus.BTN_BY_EXPENSES, menus.BTN_CUSTOM)
            assert env.store.get(env.sender.user_id).state == DialogState.awaiting_custom_period

            await env.service.handle_text(env.sender, "01.01.25 15.02.25")
            assert "не может быть больше месяца" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).state == DialogState.awaiting_custom_period

            await env.service.handle_text(env.sender, "01.01.25 - 10.01.25")
            assert "Статистика по тратам" in env.messenger.last_text
            assert "01.01.25 - 10.01.25" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).state == DialogState.in_period_selection
            assert env.extractor.calls == []

    asyncio.run(scenario())


def test_invalid_custom_period_keeps_waiting(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await press(env, menus.BTN_STATISTICS, menus.BTN_BY_CATEGORIES, menus.BTN_CUSTOM)
            await env.service.handle_text(env.sender, "вчера")
            assert env.messenger.last_text.startswith("❌ Ошибка: неверный формат даты")
            assert env.store.get(env.sender.user_id).state == DialogState.awaiting_custom_period
            assert env.extractor.calls == []

    asyncio.run(scenario())


def test_statistics_by_category_for_today(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            user = await register(env)
            food = await env.repo.create_category(user.id, "Еда")
            await env.repo.create_expense(user.id, 50000, "RUB", food.id, "хлеб")
            await env.repo.create_expense(user.id, 1000, "USD", None, "кофе")

            await press(env, menus.BTN_STATISTICS, menus.BTN_BY_CATEGORIES, menus.BTN_TODAY)
            text = env.messenger.last_text
            assert text.startswith("📊 <b>Статистика по категориям:</b>")
            assert "📁 <b>Еда:</b> 500 RUB" in text
            assert "❓ <b>Без категории:</b> 10 USD" in text
            assert "💰 <b>Всего:</b> 10 USD🇺🇸 / 500 RUB🇷🇺" in text
            st = env.store.get(env.sender.user_id)
            assert st.state == DialogState.in_period_selection
            assert st.stats_kind == StatsKind.by_category

    asyncio.run(scenario())


def test_week_expenses_shortcut(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            user = await register(env)
            food = await env.repo.create_category(user.id, "Еда")
            await env.repo.create_expense(user.id, 50050, "RUB", food.id, "хлеб")

            await press(env, menus.BTN_STATISTICS, menus.BTN_WEEK_EXPENSES)
            assert "<b>Хлеб</b> (📁Еда): 500.50 RUB" in env.messenger.last_text
            assert env.store.get(env.sender.user_id).state == DialogState.in_stats_menu

    asyncio.run(scenario())


def test_back_navigation(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await press(env, menus.BTN_STATISTICS, menus.BTN_BY_CATEGORIES, menus.BTN_BACK)
            assert env.store.get(env.sender.user_id).state == DialogState.in_stats_menu
            assert env.messenger.last_text == "📊 <b>Выберите тип статистики:</b>"

            await press(env, menus.BTN_BACK)
            assert env.store.get(env.sender.user_id).state == DialogState.idle
            assert env.messenger.last_text == "Главное меню:"

    asyncio.run(scenario())


def test_unknown_and_malformed_callbacks(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await env.service.handle_callback(env.sender, "cb1", "stats:refresh")
            assert env.messenger.callbacks[-1] == ("cb1", "Неизвестное действие", False)
            await env.service.handle_callback(env.sender, "cb2", "noop")
            assert env.messenger.callbacks[-1] == ("cb2", None, False)

    asyncio.run(scenario())


def test_add_category_button_is_not_implemented_yet(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            await register(env)
            await press(env, menus.BTN_ADD_CATEGORY)
            assert "ещё не реализованы" in env.messenger.last_text
            assert env.extractor.calls == []

    asyncio.run(scenario())


def test_weekly_digest(dialog_ctx):
    async def scenario():
        async with dialog_ctx() as env:
            user = await register(env)
            assert await env.service.weekly_digest(env.sender.user_id) is None

            await env.repo.create_expense(user.id, 50000, "RUB", None, "хлеб")
            digest = await env.service.weekly_digest(env.sender.user_id)
            assert digest is not None and "Без категории" in digest
            assert await env.service.weekly_digest(424242) is None

    asyncio.run(scenario())
