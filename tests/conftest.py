from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from voicespend.db import create_engine, create_session_factory, init_db
from voicespend.repo.repo import Repository
from voicespend.services.dialog_service import DialogService, Sender
from voicespend.services.metrics import BotMetrics
from voicespend.states.dialog import StateStore


class FakeMessenger:
    def __init__(self):
        self.sent: list[tuple[int, str, object]] = []
        self.callbacks: list[tuple[str, Optional[str], bool]] = []

    async def send(self, chat_id, text, reply_markup=None):
        self.sent.append((chat_id, text, reply_markup))

    async def answer_callback(self, callback_id, text=None, show_alert=False):
        self.callbacks.append((callback_id, text, show_alert))

    @property
    def last_text(self) -> str:
        return self.sent[-1][1]

    @property
    def last_markup(self):
        return self.sent[-1][2]


class FakeExtractor:
    def __init__(self, drafts=None, error: Exception | None = None):
        self.drafts = list(drafts or [])
        self.error = error
        self.calls: list[tuple[str, list[str]]] = []

    async def extract(self, text, categories):
        self.calls.append((text, list(categories)))
        if self.error is not None:
            raise self.error
        return list(self.drafts)


class FakeTranscriber:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.calls: list[Path] = []
        self.seen_files: list[bytes] = []

    async def transcribe(self, audio_path):
        self.calls.append(audio_path)
        self.seen_files.append(Path(audio_path).read_bytes())
        if self.error is not None:
            raise self.error
        return self.text


@dataclass
class DialogEnv:
    repo: Repository
    service: DialogService
    messenger: FakeMessenger
    extractor: FakeExtractor
    transcriber: FakeTranscriber
    store: StateStore
    metrics: BotMetrics
    sender: Sender = field(default_factory=lambda: Sender(user_id=1001, chat_id=1001, username="ivan", first_name="Иван"))


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'voicespend.db'}"


@pytest.fixture
def repo_ctx(db_url):
    @asynccontextmanager
    async def _ctx(repo_cls=Repository):
        engine = create_engine(db_url)
        try:
            await init_db(engine, db_url)
            yield repo_cls(create_session_factory(engine))
        finally:
            await engine.dispose()

    return _ctx


@pytest.fixture
def dialog_ctx(repo_ctx):
    @asynccontextmanager
    async def _ctx(drafts=None, extractor_error=None, transcript="", transcriber_error=None, repo_cls=Repository):
        async with repo_ctx(repo_cls) as repo:
            messenger = FakeMessenger()
            extractor = FakeExtractor(drafts, extractor_error)
            transcriber = FakeTranscriber(transcript, transcriber_error)
            store = StateStore()
            metrics = BotMetrics()
            service = DialogService(
                repo=repo,
                store=store,
                messenger=messenger,
                extractor=extractor,
                transcriber=transcriber,
                metrics=metrics,
            )
            yield DialogEnv(repo, service, messenger, extractor, transcriber, store, metrics)

    return _ctx
