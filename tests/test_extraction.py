import asyncio
import json

import httpx
import pytest

from voicespend.errors import ConfigurationError, ExtractionError
from voicespend.services.extraction import ChatCompletionExtractor, DisabledExtractor, parse_expenses_content
from voicespend.states.dialog import ExpenseDraft

URL = "https://llm.test/v1/chat/completions"


def completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_extractor(handler, base_currency="RUB"):
    return ChatCompletionExtractor(
        api_key="secret",
        url=URL,
        model="test-model",
        base_currency=base_currency,
        transport=httpx.MockTransport(handler),
    )


def test_bread_message_becomes_draft():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        content = '[{"amount": 500, "currency": "RUB", "category": "Еда", "description": "хлеб"}]'
        return httpx.Response(200, json=completion(content))

    drafts = asyncio.run(make_extractor(handler).extract("500 рублей на хлеб", ["Еда", "Транспорт"]))

    assert drafts == [ExpenseDraft(amount=50000, currency="RUB", category="Еда", description="хлеб")]
    assert requests[0].headers["Authorization"] == "Bearer secret"
    body = json.loads(requests[0].content)
    assert body["model"] == "test-model"
    assert body["temperature"] == 0
    assert body["messages"][0]["role"] == "system"
    assert "RUB" in body["messages"][0]["content"]
    assert "Еда, Транспорт" in body["messages"][1]["content"]
    assert "500 рублей на хлеб" in body["messages"][1]["content"]


def test_code_fence_and_defaults():
    content = '```json\n[{"amount": "12.5", "currency": "usd", "category": "Кофе"}, {"amount": 3}]\n```'
    drafts = parse_expenses_content(content, "EUR")
    assert drafts == [
        ExpenseDraft(amount=1250, currency="USD", category="Кофе"),
        ExpenseDraft(amount=300, currency="EUR", category=""),
    ]


def test_non_positive_amounts_are_dropped():
    content = '[{"amount": 0, "category": "Еда"}, {"amount": -5}, {"category": "Еда"}, {"amount": 10}]'
    assert [d.amount for d in parse_expenses_content(content)] == [1000]


def test_amounts_beyond_database_range_are_dropped():
    content = '[{"amount": 1e20, "category": "Еда"}, {"amount": 99}]'
    assert [d.amount for d in parse_expenses_content(content)] == [9900]


def test_empty_array_means_nothing_found():
    assert parse_expenses_content("[]") == []


@pytest.mark.parametrize("content", [
    "Ничего не нашёл",
    '{"amount": 500}',
    '[{"amount": "пятьсот"}]',
])
def test_malformed_content_raises(content):
    with pytest.raises(ExtractionError):
        parse_expenses_content(content)


def test_api_error_raises():
    def handler(request):
        return httpx.Response(500, text="internal error")

    with pytest.raises(ExtractionError, match="api error 500"):
        asyncio.run(make_extractor(handler).extract("хлеб 500", []))


def test_unexpected_response_shape_raises():
    def handler(request):
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(ExtractionError):
        asyncio.run(make_extractor(handler).extract("хлеб 500", []))


def test_null_content_raises():
    def handler(request):
        return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": None}}]})

    with pytest.raises(ExtractionError, match="not a string"):
        asyncio.run(make_extractor(handler).extract("хлеб 500", []))


def test_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExtractionError, match="completion request failed"):
        asyncio.run(make_extractor(handler).extract("хлеб 500", []))


def test_missing_key_is_configuration_error():
    with pytest.raises(ConfigurationError):
        ChatCompletionExtractor(api_key="", url=URL, model="m")
    with pytest.raises(ExtractionError, match="disabled"):
        asyncio.run(DisabledExtractor("LLM_API_KEY is not set").extract("хлеб", []))
