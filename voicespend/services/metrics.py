from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

DURATION_BUCKETS = (0.5, 1.5, 2.5, 3.5)


class BotMetrics:
    """Счётчики и гистограммы бота в собственном реестре."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.commands_processed = Counter(
            "telegram_commands_processed", "Total number of processed commands by type",
            ["command"], registry=self.registry,
        )
        self.messages_processed = Counter(
            "telegram_messages_processed", "Total number of processed messages by type",
            ["type"], registry=self.registry,
        )
        self.buttons_pressed = Counter(
            "telegram_buttons_pressed", "Total number of button presses by type",
            ["button"], registry=self.registry,
        )
        self.callbacks_processed = Counter(
            "telegram_callbacks_processed", "Total number of processed callback queries by action",
            ["action"], registry=self.registry,
        )
        self.expenses_created = Counter(
            "telegram_expenses_created", "Total number of expenses created", registry=self.registry,
        )
        self.categories_created = Counter(
            "telegram_categories_created", "Total number of categories created", registry=self.registry,
        )
        self.errors_total = Counter(
            "telegram_errors", "Total number of errors by type",
            ["type"], registry=self.registry,
        )
        self.transcription_duration = Histogram(
            "telegram_transcription_duration_seconds", "Duration of voice transcription in seconds",
            buckets=DURATION_BUCKETS, registry=self.registry,
        )
        self.llm_parse_duration = Histogram(
            "telegram_llm_parse_duration_seconds", "Duration of LLM expense parsing in seconds",
            buckets=DURATION_BUCKETS, registry=self.registry,
        )

    def error(self, kind: str) -> None:
        self.errors_total.labels(type=kind).inc()

    def value(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Текущее значение сэмпла (удобно в тестах и при прогреве)."""
        v = self.registry.get_sample_value(name, labels or {})
        return v or 0.0

    def render(self) -> tuple[bytes, str]:
        return generate_latest(self.registry), CONTENT_TYPE_LATEST
