"""Bounded retry with exponential backoff for store writes."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type

from ..exceptions import LoadError

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Retry settings shared by the forward pass, the patcher and the index builder."""
    max_retries: int = 3
    backoff: float = 0.5  # seconds before the first retry, doubled each time
    retry_on: Tuple[Type[BaseException], ...] = (LoadError,)

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based)."""
        return self.backoff * (2 ** (attempt - 1))

    def call(
        self,
        func: Callable[..., Any],
        *args: Any,
        description: str = "operation",
        cancel_event: Optional[threading.Event] = None,
        **kwargs: Any
    ) -> Tuple[Any, int]:
        """
        Call ``func`` until it succeeds or the retries are used up.

        Returns:
            Tuple of (return value, number of retries used)

        Raises:
            The last exception once retries are exhausted, or as soon as the
            run is cancelled during a backoff wait
        """
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs), attempt
            except self.retry_on as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                wait = self.delay(attempt)
                logger.warning(
                    f"{description} failed ({e}); retry {attempt}/{self.max_retries} in {wait:.2f}s"
                )
                if cancel_event is not None:
                    if cancel_event.wait(wait):
                        raise
                elif wait > 0:
                    time.sleep(wait)
