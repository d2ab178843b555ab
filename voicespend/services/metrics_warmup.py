"""
Восстановление счётчиков после рестарта процесса.

Счётчики созданных расходов и категорий берутся из количества строк в базе,
остальные (команды, сообщения, кнопки, колбэки, ошибки) берутся последним значением
из Prometheus. Если Prometheus недоступен, фоновая задача повторяет попытку
с фиксированным интервалом, пока не получится или не кончатся попытки.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass

import httpx

from voicespend.services.metrics import BotMetrics

logger = logging.getLogger(__name__)

# метрика в Prometheus -> (атрибут BotMetrics, имя лейбла)
RESTORED_COUNTERS: dict[str, tuple[str, str]] = {
    "telegram_commands_processed_total": ("commands_processed", "command"),
    "telegram_messages_processed_total": ("messages_processed", "type"),
    "telegram_buttons_pressed_total": ("buttons_pressed", "button"),
    "telegram_callbacks_processed_total": ("callbacks_processed", "action"),
    "telegram_errors_total": ("errors_total", "type"),
}


class WarmupPhase(str, enum.Enum):
    uninitialized = "uninitialized"
    retrying = "retrying"
    initialized = "initialized"
    failed = "failed"


@dataclass
class WarmupStatus:
    phase: WarmupPhase = WarmupPhase.uninitialized
    attempts: int = 0


class PrometheusQueryClient:
    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def snapshot(self) -> dict[str, dict[str, float]]:
        """Последние значения счётчиков: {метрика: {значение лейбла: count}}."""
        result: dict[str, dict[str, float]] = {}
        async with httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout, transport=self._transport) as client:
            health = await client.get("/-/healthy")
            health.raise_for_status()
            for metric, (_, label) in RESTORED_COUNTERS.items():
                resp = await client.get("/api/v1/query", params={"query": metric})
                resp.raise_for_status()
                body = resp.json()
                if body.get("status") != "success":
                    raise ValueError(f"prometheus query {metric} failed: {body}")
                values: dict[str, float] = {}
                for sample in body.get("data", {}).get("result", []):
                    key = sample.get("metric", {}).get(label)
                    if key is None:
                        continue
                    values[key] = values.get(key, 0.0) + float(sample["value"][1])
                result[metric] = values
        return result


class MetricsWarmup:
    def __init__(
        self,
        metrics: BotMetrics,
        repo,
        prometheus: PrometheusQueryClient | None,
        retry_interval: float = 30.0,
        max_retries: int = 20,
    ):
        self.metrics = metrics
        self.repo = repo
        self.prometheus = prometheus
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self.status = WarmupStatus()
        self._task: asyncio.Task | None = None

    async def seed_from_database(self) -> None:
        expenses = await self.repo.count_expenses()
        categories = await self.repo.count_categories()
        self.metrics.expenses_created.inc(expenses)
        self.metrics.categories_created.inc(categories)
        logger.info("metrics initialized from database: expenses=%s categories=%s", expenses, categories)

    async def restore_from_prometheus(self) -> None:
        if self.prometheus is None:
            raise RuntimeError("prometheus client is not configured")
        snapshot = await self.prometheus.snapshot()
        # применяем только полностью полученный снимок, чтобы не задвоить частично
        for metric, values in snapshot.items():
            counter = getattr(self.metrics, RESTORED_COUNTERS[metric][0])
            label = RESTORED_COUNTERS[metric][1]
            for key, count in values.items():
                if count > 0:
                    counter.labels(**{label: key}).inc(count)
        logger.info("metrics restored from prometheus: %s", {m: len(v) for m, v in snapshot.items()})

    async def start(self) -> None:
        try:
            await self.seed_from_database()
        except Exception:
            logger.exception("failed to initialize metrics from database")

        if self.prometheus is None:
            logger.warning("prometheus url is not configured, counters start from database values only")
            self.status.phase = WarmupPhase.initialized
            return

        try:
            await self.restore_from_prometheus()
        except Exception as e:
            logger.error("failed to initialize metrics from prometheus, will retry periodically: %s", e)
            self.status.phase = WarmupPhase.retrying
            self._task = asyncio.create_task(self._retry_loop())
            return
        self.status.phase = WarmupPhase.initialized

    async def _retry_loop(self) -> None:
        for attempt in range(1, self.max_retries + 1):
            await asyncio.sleep(self.retry_interval)
            self.status.attempts = attempt
            logger.info("retrying metric initialization from prometheus, attempt %s", attempt)
            try:
                await self.restore_from_prometheus()
            except Exception as e:
                logger.error("failed to initialize metrics (attempt %s): %s", attempt, e)
                continue
            self.status.phase = WarmupPhase.initialized
            logger.info("metrics initialized from prometheus after %s attempts", attempt)
            return
        self.status.phase = WarmupPhase.failed
        logger.error("max retries reached, giving up on metric initialization")

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
