"""
Иерархия ошибок VoiceSpend.

Валидационные ошибки и «не найдено» обрабатываются на месте и превращаются
в подсказку пользователю. Ошибки внешних вызовов и хранилища логируются,
считаются в метриках и заканчиваются сообщением с извинением.
"""


class VoiceSpendError(Exception):
    """Базовая ошибка приложения."""


class ValidationError(VoiceSpendError):
    """Некорректный пользовательский ввод (например, период)."""


class NotFoundError(VoiceSpendError):
    """Пользователь или категория не найдены."""


class ExtractionError(VoiceSpendError):
    """Сбой сервиса извлечения расходов или непарсибельный ответ."""


class TranscriptionError(VoiceSpendError):
    """Сбой конвертации аудио или распознавания речи."""


class PersistenceError(VoiceSpendError):
    """Сбой обращения к базе данных."""


class ConfigurationError(VoiceSpendError):
    """Не задан обязательный ключ или путь для внешнего сервиса."""
