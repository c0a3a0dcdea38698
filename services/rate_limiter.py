# Per-actor throttle on milestone completion and content publishing.
# In-memory sliding window; one instance is shared by the app process.

from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Optional
import logging
import threading
import time

from config.app_config import RATE_LIMIT_MAX_ACTIONS, RATE_LIMIT_WINDOW_SECONDS
from services.errors import RateLimited

logger = logging.getLogger(__name__)


class ActionRateLimiter:
    def __init__(self, max_actions: int = RATE_LIMIT_MAX_ACTIONS,
                 window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.max_actions = max_actions
        self.window_seconds = window_seconds
        self.clock = clock
        self._actions: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def check(self, actor_id: str, correlation_id: Optional[str] = None) -> None:
        """Record one action for `actor_id`, raising RateLimited past the limit."""
        now = self.clock()
        with self._lock:
            window = self._actions[actor_id]
            while window and now - window[0] >= self.window_seconds:
                window.popleft()
            if len(window) >= self.max_actions:
                retry_after = int(self.window_seconds - (now - window[0])) + 1
                logger.warning(f"[RateLimiter] {actor_id} exceeded {self.max_actions} actions / {self.window_seconds}s")
                raise RateLimited(
                    f"Too many actions; retry in {retry_after}s",
                    correlation_id=correlation_id,
                    details={"retry_after": retry_after},
                )
            window.append(now)

    def reset(self, actor_id: Optional[str] = None) -> None:
        with self._lock:
            if actor_id is None:
                self._actions.clear()
            else:
                self._actions.pop(actor_id, None)


default_rate_limiter = ActionRateLimiter()
