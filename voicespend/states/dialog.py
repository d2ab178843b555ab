import enum
import threading
from dataclasses import dataclass, field, replace


class DialogState(str, enum.Enum):
    """Шаги диалога пользователя."""
    idle = "idle"
    awaiting_expense = "awaiting_expense"
    in_stats_menu = "in_stats_menu"
    in_period_selection = "in_period_selection"
    awaiting_custom_period = "awaiting_custom_period"


class StatsKind(str, enum.Enum):
    by_category = "by_category"
    by_expense = "by_expense"


@dataclass(frozen=True)
class ExpenseDraft:
    """Распознанный, но ещё не подтверждённый расход."""
    amount: int                 # в минорных единицах
    currency: str
    category: str
    description: str = ""


@dataclass
class UserStateData:
    """Снимок состояния диалога пользователя (живёт только в памяти процесса)."""
    state: DialogState = DialogState.idle
    pending_expenses: tuple[ExpenseDraft, ...] | None = None
    stats_kind: StatsKind | None = None

    def copy(self) -> "UserStateData":
        return replace(self)


class StateStore:
    """Потокобезопасное хранилище состояний диалога по user_id.

    Отсутствие записи означает idle. `get` всегда отдаёт копию, поэтому
    читатель видит целостный снимок, а изменения проходят только через
    методы хранилища. Блокировка не удерживается во время сетевых вызовов:
    все методы синхронные и короткие.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: dict[int, UserStateData] = {}

    def get(self, user_id: int) -> UserStateData:
        with self._lock:
            existing = self._states.get(user_id)
            return existing.copy() if existing is not None else UserStateData()

    def set_state(self, user_id: int, state: DialogState) -> None:
        with self._lock:
            existing = self._states.get(user_id)
            if existing is None:
                self._states[user_id] = UserStateData(state=state)
            else:
                existing.state = state

    def set_state_data(self, user_id: int, data: UserStateData) -> None:
        with self._lock:
            self._states[user_id] = data.copy()

    def update(self, user_id: int, **changes) -> None:
        """Меняет несколько полей состояния одной операцией."""
        with self._lock:
            existing = self._states.setdefault(user_id, UserStateData())
            for name, value in changes.items():
                if not hasattr(existing, name):
                    raise AttributeError(f"unknown state field: {name}")
                setattr(existing, name, value)

    def set_pending(self, user_id: int, drafts: list[ExpenseDraft]) -> None:
        """Кладёт пачку на подтверждение, заменяя предыдущую."""
        with self._lock:
            existing = self._states.setdefault(user_id, UserStateData())
            existing.pending_expenses = tuple(drafts)

    def take_pending(self, user_id: int) -> tuple[ExpenseDraft, ...] | None:
        """Атомарно забирает пачку и сбрасывает пользователя в idle.

        Повторный (параллельный) вызов получит None.
        """
        with self._lock:
            existing = self._states.get(user_id)
            if existing is None or not existing.pending_expenses:
                return None
            drafts = existing.pending_expenses
            del self._states[user_id]
            return drafts

    def clear(self, user_id: int) -> None:
        with self._lock:
            self._states.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
