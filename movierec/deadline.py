# ------------------------------------------------------------
# deadline.py - 호출자가 넘겨주는 마감 시간/취소 신호
# ------------------------------------------------------------

import threading
import time
from typing import Optional

from .errors import CancelledError, DeadlineExceededError


class Deadline:
    """
    저장소 호출 사이사이에 check()로 확인하는 마감/취소 토큰.

    - timeout=None 이면 마감 없음 (취소 신호만 확인)
    - cancel_event 가 set 되면 다음 check()에서 CancelledError
    """

    def __init__(self, timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        self._expires_at = None if timeout is None else time.monotonic() + timeout
        self._cancel_event = cancel_event or threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        return cls()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        # 남은 시간(초). 마감이 없으면 None
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def check(self, what: str = "operation") -> None:
        if self.cancelled:
            raise CancelledError(f"{what} cancelled")
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            raise DeadlineExceededError(f"{what} exceeded its deadline")
