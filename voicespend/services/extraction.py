"""
Извлечение расходов из свободного текста через OpenAI-совместимый
chat completions API (по умолчанию Groq).

Один запрос на вызов, без повторов. Пустой список означает ответ
«расходов не найдено», любые сбои транспорта или формата дают ExtractionError.
"""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Protocol

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError as PydanticValidationError

from voicespend.config import Settings
from voicespend.errors import ConfigurationError, ExtractionError
from voicespend.services.prompts import EXPENSE_SYSTEM_PROMPT, build_expense_prompt
from voicespend.states.dialog import ExpenseDraft
from voicespend.utils.formatting import to_minor_units

logger = logging.getLogger(__name__)

# верхняя граница колонки BigInteger для суммы в минорных единицах
MAX_AMOUNT_MINOR = 2**63 - 1


class ExpenseExtractor(Protocol):
    async def extract(self, text: str, categories: list[str]) -> list[ExpenseDraft]:
        ...


class ExtractedExpense(BaseModel):
    amount: Decimal | None = None
    currency: str | None = None
    category: str | None = None
    description: str | None = None


_expenses_adapter = TypeAdapter(list[ExtractedExpense])


def _strip_code_fence(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        lines = [line for line in raw.split("\n") if not line.startswith("```")]
        raw = "\n".join(lines)
    return raw.strip()


def parse_expenses_content(content: str, base_currency: str = "RUB") -> list[ExpenseDraft]:
    """Разбирает JSON-массив расходов из ответа модели в черновики."""
    try:
        data = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise ExtractionError(f"response is not valid JSON: {e}; content: {content!r}") from e
    if not isinstance(data, list):
        raise ExtractionError(f"expected JSON array, got {type(data).__name__}")
    try:
        items = _expenses_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ExtractionError(f"malformed expense item: {e}") from e

    drafts: list[ExpenseDraft] = []
    for item in items:
        if item.amount is None or item.amount <= 0:
            logger.warning("skipping expense without positive amount: %s", item)
            continue
        amount = to_minor_units(item.amount)
        if amount > MAX_AMOUNT_MINOR:
            logger.warning("skipping expense with amount out of range: %s", item)
            continue
        drafts.append(ExpenseDraft(
            amount=amount,
            currency=(item.currency or base_currency).strip().upper() or base_currency,
            category=(item.category or "").strip(),
            description=(item.description or "").strip(),
        ))
    return drafts


class ChatCompletionExtractor:
    """Клиент сервиса извлечения расходов с bearer-авторизацией."""

    def __init__(
        self,
        api_key: str,
        url: str,
        model: str,
        base_currency: str = "RUB",
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("LLM_API_KEY is not set")
        self._api_key = api_key
        self._url = url
        self._model = model
        self._base_currency = base_currency
        self._timeout = timeout
        self._transport = transport

    async def _call_chat(self, user_prompt: str) -> str:
        payload = {
            "model": self._model,
            "temperature": 0,
            "messages": [
                {"role": "system", "content": EXPENSE_SYSTEM_PROMPT.format(base_currency=self._base_currency)},
                {"role": "user", "content": user_prompt},
            ],
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise ExtractionError(f"completion request failed: {e}") from e

        if resp.status_code != httpx.codes.OK:
            raise ExtractionError(f"api error {resp.status_code}: {resp.text}")
        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"unexpected completion response: {resp.text}") from e
        if not isinstance(content, str):
            raise ExtractionError(f"completion content is not a string: {resp.text}")
        return content

    async def extract(self, text: str, categories: list[str]) -> list[ExpenseDraft]:
        content = await self._call_chat(build_expense_prompt(text, categories))
        logger.debug("completion raw response: %s", content)
        return parse_expenses_content(content, self._base_currency)


class DisabledExtractor:
    """Заглушка на случай, если ключ не настроен: каждый вызов — ошибка."""

    def __init__(self, reason: str):
        self._reason = reason

    async def extract(self, text: str, categories: list[str]) -> list[ExpenseDraft]:
        raise ExtractionError(f"extraction is disabled: {self._reason}")


def build_extractor(settings: Settings) -> ExpenseExtractor:
    return ChatCompletionExtractor(
        api_key=settings.LLM_API_KEY or "",
        url=settings.LLM_API_URL,
        model=settings.LLM_MODEL,
        base_currency=settings.BASE_CURRENCY,
        timeout=settings.LLM_TIMEOUT,
    )
