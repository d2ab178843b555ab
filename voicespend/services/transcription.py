"""
Распознавание голосовых сообщений.

Аудио сначала приводится к mono 16 kHz 16-bit PCM (ffmpeg), затем уходит
либо в HTTP API распознавания (multipart), либо в локальный whisper-cli.
Временные файлы живут во временной директории и удаляются на любом выходе.
Каждый внешний вызов ограничен по времени.
"""
from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Protocol

import httpx

from voicespend.config import Settings
from voicespend.errors import ConfigurationError, TranscriptionError

logger = logging.getLogger(__name__)


class Transcriber(Protocol):
    async def transcribe(self, audio_path: Path) -> str:
        ...


async def run_process(timeout: float, *args: str) -> bytes:
    """Запускает внешнюю программу и возвращает её stdout.

    Raises:
        TranscriptionError: ненулевой код выхода, отсутствие бинарника или таймаут.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise TranscriptionError(f"{args[0]} failed to start: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise TranscriptionError(f"{args[0]} timed out after {timeout}s") from None

    if proc.returncode != 0:
        raise TranscriptionError(f"{args[0]} error {proc.returncode}: {stderr.decode(errors='replace')}")
    return stdout


async def convert_to_pcm(ffmpeg: str, src: Path, dst: Path, timeout: float) -> Path:
    await run_process(
        timeout,
        ffmpeg,
        "-y",
        "-i", str(src),
        "-ac", "1",
        "-ar", "16000",
        "-acodec", "pcm_s16le",
        str(dst),
    )
    return dst


class RemoteTranscriber:
    """Распознавание через HTTP API (OpenAI/Groq audio transcriptions)."""

    def __init__(
        self,
        api_key: str,
        url: str,
        model: str,
        language: str = "ru",
        ffmpeg: str = "ffmpeg",
        convert_timeout: float = 10.0,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key:
            raise ConfigurationError("STT_API_KEY is not set")
        self._api_key = api_key
        self._url = url
        self._model = model
        self._language = language
        self._ffmpeg = ffmpeg
        self._convert_timeout = convert_timeout
        self._timeout = timeout
        self._transport = transport

    async def _post_audio(self, wav: Path) -> str:
        data = {"model": self._model, "language": self._language, "temperature": "0"}
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                with wav.open("rb") as f:
                    resp = await client.post(
                        self._url, data=data, files={"file": (wav.name, f, "audio/wav")}, headers=headers
                    )
        except httpx.TimeoutException as e:
            raise TranscriptionError(f"transcription timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TranscriptionError(f"transcription request failed: {e}") from e

        if resp.status_code != httpx.codes.OK:
            raise TranscriptionError(f"api error {resp.status_code}: {resp.text}")
        try:
            return str(resp.json()["text"]).strip()
        except (ValueError, KeyError, TypeError) as e:
            raise TranscriptionError(f"unexpected transcription response: {resp.text}") from e

    async def transcribe(self, audio_path: Path) -> str:
        with tempfile.TemporaryDirectory(prefix="voicespend_stt_") as tmp_dir:
            wav = await convert_to_pcm(
                self._ffmpeg, Path(audio_path), Path(tmp_dir) / "voice.wav", self._convert_timeout
            )
            return await self._post_audio(wav)


class LocalWhisperTranscriber:
    """Распознавание локальным whisper.cpp (whisper-cli), текст читается из stdout."""

    def __init__(
        self,
        cli_path: str = "whisper-cli",
        model_path: str = "models/ggml-base.bin",
        language: str = "ru",
        ffmpeg: str = "ffmpeg",
        convert_timeout: float = 10.0,
        timeout: float = 30.0,
    ):
        self._cli_path = cli_path
        self._model_path = model_path
        self._language = language
        self._ffmpeg = ffmpeg
        self._convert_timeout = convert_timeout
        self._timeout = timeout

    async def transcribe(self, audio_path: Path) -> str:
        with tempfile.TemporaryDirectory(prefix="voicespend_whisper_") as tmp_dir:
            wav = await convert_to_pcm(
                self._ffmpeg, Path(audio_path), Path(tmp_dir) / "voice.wav", self._convert_timeout
            )
            out = await run_process(
                self._timeout,
                self._cli_path,
                "-m", self._model_path,
                "-l", self._language,
                "-f", str(wav),
                "-otxt",
                "-of", "-",
                "-nt",
            )
            return out.decode(errors="replace").strip()


class DisabledTranscriber:
    def __init__(self, reason: str):
        self._reason = reason

    async def transcribe(self, audio_path: Path) -> str:
        raise TranscriptionError(f"transcription is disabled: {self._reason}")


def build_transcriber(settings: Settings) -> Transcriber:
    backend = settings.STT_BACKEND.strip().lower()
    if backend == "local":
        return LocalWhisperTranscriber(
            cli_path=settings.WHISPER_CLI_PATH,
            model_path=settings.WHISPER_MODEL_PATH,
            language=settings.STT_LANGUAGE,
            ffmpeg=settings.FFMPEG_PATH,
            convert_timeout=settings.FFMPEG_TIMEOUT,
            timeout=settings.STT_TIMEOUT,
        )
    if backend == "remote":
        return RemoteTranscriber(
            api_key=settings.stt_api_key or "",
            url=settings.STT_API_URL,
            model=settings.STT_MODEL,
            language=settings.STT_LANGUAGE,
            ffmpeg=settings.FFMPEG_PATH,
            convert_timeout=settings.FFMPEG_TIMEOUT,
            timeout=settings.STT_TIMEOUT,
        )
    raise ConfigurationError(f"unknown STT_BACKEND: {settings.STT_BACKEND!r}")
