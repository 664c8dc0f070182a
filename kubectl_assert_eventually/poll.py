import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from kubectl_assert_eventually.errors import PollCancelled, PollTimeout

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.5
DEFAULT_TIMEOUT = 300.0

# Float slack when comparing scheduled attempt times against the deadline
_EPSILON = 1e-9


@dataclass(frozen=True)
class PollSettings:
    timeout: float = DEFAULT_TIMEOUT
    interval: float = DEFAULT_INTERVAL
    cancel: threading.Event = field(default_factory=threading.Event, compare=False)
    clock: Callable[[], float] = field(default=time.monotonic, compare=False)
    sleep: Callable[[float], Any] | None = field(default=None, compare=False)

    def with_timeout(self, timeout: float) -> "PollSettings":
        return PollSettings(
            timeout=timeout,
            interval=self.interval,
            cancel=self.cancel,
            clock=self.clock,
            sleep=self.sleep,
        )


def _unpack(result: Any) -> tuple[bool, BaseException | None]:
    if isinstance(result, tuple) and len(result) == 2:
        done, err = result
        return bool(done), err
    return bool(result), None


def poll_until(
    predicate: Callable[[], Any],
    timeout: float,
    *,
    interval: float = DEFAULT_INTERVAL,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Any] | None = None,
    description: str = "condition",
) -> int:
    """
    Re-run `predicate` every `interval` seconds until it reports done.

    The first attempt happens one interval after the call and attempt N at
    N * interval, so a predicate that needs N attempts passes when
    timeout >= N * interval.

    `predicate` returns either a bool or a `(done, err)` tuple. An exception
    raised by the predicate (or a non-None `err`) stops polling immediately
    and propagates. Setting `cancel` aborts the wait promptly with
    PollCancelled.

    Returns the number of attempts made.
    """
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")
    if timeout < 0:
        raise ValueError(f"timeout must not be negative, got {timeout}")

    if cancel is None:
        cancel = threading.Event()
    wait = sleep if sleep is not None else cancel.wait

    start = clock()
    attempts = 0

    while True:
        if cancel.is_set():
            raise PollCancelled(
                f"cancelled while waiting for {description}",
                attempts=attempts,
                timeout=timeout,
            )

        now = clock()
        next_at = max(start + (attempts + 1) * interval, now)

        if next_at - start > timeout + _EPSILON:
            remaining = start + timeout - now
            if remaining > 0:
                wait(remaining)
            if cancel.is_set():
                raise PollCancelled(
                    f"cancelled while waiting for {description}",
                    attempts=attempts,
                    timeout=timeout,
                )
            raise PollTimeout(
                f"timed out after {timeout:g}s waiting for {description} "
                f"({attempts} attempts)",
                attempts=attempts,
                timeout=timeout,
            )

        delay = next_at - now
        if delay > 0:
            wait(delay)
        if cancel.is_set():
            continue

        attempts += 1
        done, err = _unpack(predicate())
        logger.debug("Poll %s attempt %d: done=%s", description, attempts, done)

        if err is not None:
            raise err
        if done:
            return attempts


def poll(predicate: Callable[[], Any], settings: PollSettings, description: str = "condition") -> int:
    return poll_until(
        predicate,
        settings.timeout,
        interval=settings.interval,
        cancel=settings.cancel,
        clock=settings.clock,
        sleep=settings.sleep,
        description=description,
    )
