"""Find the client window opened for a rewritten message and save it.

Window creation after a launch is asynchronous, so the open item windows are
scanned repeatedly under a bounded retry policy until one shows the
correlation token as its subject.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

logger = logging.getLogger(__name__)


class ItemWindow(Protocol):
    def get_subject(self) -> str | None: ...

    def set_subject(self, text: str) -> None: ...

    def save_as(self, path: str, save_format: int) -> None: ...

    def close(self, discard: bool = True) -> None: ...


class MailClient(Protocol):
    def list_item_windows(self) -> Iterable[ItemWindow]: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 100
    delay_seconds: float = 0.0
    backoff_factor: float = 1.0
    max_delay_seconds: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must not be negative")
        if self.backoff_factor < 1:
            raise ValueError(f"backoff_factor must be at least 1, got {self.backoff_factor}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after pass number ``attempt`` (1-based)."""
        if self.delay_seconds <= 0:
            return 0.0
        delay = self.delay_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


class PassOutcome(enum.Enum):
    MATCHED = "matched"
    NO_MATCH = "no_match"
    TRANSIENT_ERROR = "transient_error"


@dataclass(frozen=True)
class PassResult:
    outcome: PassOutcome
    window: ItemWindow | None = None
    error: Exception | None = None
    windows_seen: int = 0


class PollState(enum.Enum):
    LAUNCHED = "launched"
    POLLING = "polling"
    MATCHED = "matched"
    FINALIZING = "finalizing"
    DONE = "done"
    BUDGET_EXHAUSTED = "budget_exhausted"
    FAILED = "failed"


_TRANSITIONS = {
    PollState.LAUNCHED: {PollState.POLLING},
    PollState.POLLING: {PollState.MATCHED, PollState.BUDGET_EXHAUSTED, PollState.FAILED},
    PollState.MATCHED: {PollState.FINALIZING},
    PollState.FINALIZING: {PollState.DONE, PollState.FAILED},
    PollState.BUDGET_EXHAUSTED: {PollState.FAILED},
    PollState.DONE: set(),
    PollState.FAILED: set(),
}


class CorrelationPoller:
    """One poller per conversion attempt; it owns the attempt's state."""

    def __init__(
        self,
        client: MailClient,
        policy: RetryPolicy | None = None,
        *,
        save_format: int = 4,
        sleep: Callable[[float], None] = time.sleep,
        cancel_check: Callable[[], bool] | None = None,
    ):
        self.client = client
        self.policy = policy or RetryPolicy()
        self.save_format = save_format
        self._sleep = sleep
        self._cancel_check = cancel_check
        self.state = PollState.LAUNCHED
        self.attempts = 0
        self.transient_errors = 0

    def _transition(self, new_state: PollState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal poll transition {self.state.value} -> {new_state.value}")
        logger.debug("POLL_STATE from=%s to=%s", self.state.value, new_state.value)
        self.state = new_state

    def scan_once(self, token: str) -> PassResult:
        """Scan every open item window once for a subject equal to ``token``."""
        try:
            windows = list(self.client.list_item_windows())
        except Exception as e:
            return PassResult(PassOutcome.TRANSIENT_ERROR, error=e)

        last_error = None
        for window in windows:
            if window is None:
                continue
            try:
                subject = window.get_subject()
            except Exception as e:
                # Item closed or disposed between enumeration and access.
                last_error = e
                continue
            if subject is not None and subject == token:
                return PassResult(PassOutcome.MATCHED, window=window, windows_seen=len(windows))

        if last_error is not None:
            return PassResult(PassOutcome.TRANSIENT_ERROR, error=last_error, windows_seen=len(windows))
        return PassResult(PassOutcome.NO_MATCH, windows_seen=len(windows))

    def _close_window(self, window: ItemWindow, source_label: str) -> None:
        try:
            window.close(discard=True)
        except Exception as e:
            logger.warning("WINDOW_CLOSE_FAIL src=%s error=%s", source_label, e)

    def _finalize(self, window: ItemWindow, original_subject: str, destination_path: str, source_label: str) -> None:
        window.set_subject(original_subject)
        window.save_as(str(destination_path), self.save_format)
        logger.info("DOCUMENT_SAVED src=%s dst=%s format=%s", source_label, destination_path, self.save_format)

    def await_and_finalize(self, token: str, original_subject: str, destination_path, source_label: str = "") -> bool:
        """Poll for the token window, restore its subject, save it and close it.

        Returns False when the retry budget runs out (or the poll is cancelled).
        Errors raised while finalizing a matched window propagate once the
        window has been closed and the poll marked failed.
        """
        self._transition(PollState.POLLING)
        max_attempts = self.policy.max_attempts
        while self.attempts < max_attempts:
            if self._cancel_check is not None and self._cancel_check():
                logger.warning("POLL_CANCELLED src=%s attempts=%d", source_label, self.attempts)
                self._transition(PollState.FAILED)
                return False

            self.attempts += 1
            result = self.scan_once(token)
            logger.debug(
                "POLL_PASS src=%s attempt=%d outcome=%s windows=%d",
                source_label,
                self.attempts,
                result.outcome.value,
                result.windows_seen,
            )

            if result.outcome is PassOutcome.MATCHED:
                logger.info("MATCH_FOUND src=%s attempt=%d token=%s", source_label, self.attempts, token)
                self._transition(PollState.MATCHED)
                self._transition(PollState.FINALIZING)
                try:
                    self._finalize(result.window, original_subject, destination_path, source_label)
                except Exception as e:
                    logger.error("FINALIZE_FAIL src=%s dst=%s error=%s", source_label, destination_path, e)
                    self._transition(PollState.FAILED)
                    self._close_window(result.window, source_label)
                    raise
                self._transition(PollState.DONE)
                self._close_window(result.window, source_label)
                return True

            if result.outcome is PassOutcome.TRANSIENT_ERROR:
                self.transient_errors += 1
                logger.warning(
                    "POLL_TRANSIENT_ERROR src=%s attempt=%d error=%s",
                    source_label,
                    self.attempts,
                    result.error,
                )

            if self.attempts < max_attempts:
                delay = self.policy.delay_for(self.attempts)
                if delay > 0:
                    self._sleep(delay)

        logger.warning(
            "MAX_ATTEMPTS_EXCEEDED src=%s attempts=%d transient_errors=%d",
            source_label,
            self.attempts,
            self.transient_errors,
        )
        self._transition(PollState.BUDGET_EXHAUSTED)
        self._transition(PollState.FAILED)
        return False
