"""
Push-approval poller.

Watches one two-factor challenge until the server reports approved or
rejected, or until the deadline passes. The outcome is delivered through
a future that resolves exactly once; transport errors go to a separate
listener stream and never end the polling on their own.
"""

import threading
import time
from concurrent.futures import CancelledError, Future
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..models.auth import TwoFactorStatusResponse
from ..utils.exceptions import CityLightsError
from ..utils.logger import get_logger, mask_email

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 2.0
DEFAULT_TIMEOUT_SECONDS = 120.0

StatusChecker = Callable[[str, str], TwoFactorStatusResponse]
ErrorListener = Callable[[str], None]


class PollOutcome(str, Enum):
    """Terminal outcome of a polling session"""
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed-out"
    ABORTED = "aborted"


@dataclass(frozen=True)
class PollResult:
    outcome: PollOutcome
    response: Optional[TwoFactorStatusResponse] = None
    error: Optional[str] = None


class PollingSession:
    """
    One running poll against a push-approval challenge.

    Checks run serially on a worker thread, one interval apart; the
    deadline is an independent timer. Whichever terminal event is
    observed first settles `result`, and nothing is delivered after
    that or after cancel().
    """

    def __init__(
        self,
        check_status: StatusChecker,
        request_id: str,
        email: str,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_consecutive_errors: Optional[int] = None,
    ):
        if interval <= 0 or timeout <= 0:
            raise ValueError("interval and timeout must be positive")
        if interval >= timeout:
            raise ValueError("interval must be smaller than timeout")
        if max_consecutive_errors is not None and max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be at least 1")

        self.request_id = request_id
        self.email = email
        self.interval = interval
        self.timeout = timeout
        self.max_consecutive_errors = max_consecutive_errors
        self.result: "Future[PollResult]" = Future()

        self.checks = 0
        self.consecutive_errors = 0
        self.started_at: Optional[float] = None

        self._check_status = check_status
        self._error_listeners: List[ErrorListener] = []
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._started = False
        self._closed = False
        self._thread: Optional[threading.Thread] = None
        self._deadline: Optional[threading.Timer] = None

    @property
    def active(self) -> bool:
        with self._lock:
            return self._started and not self._closed

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    def remaining(self) -> float:
        """Seconds left before the deadline, for countdown display only"""
        return max(0.0, self.timeout - self.elapsed)

    def add_error_listener(self, listener: ErrorListener) -> None:
        with self._lock:
            self._error_listeners.append(listener)

    def start(self) -> "PollingSession":
        with self._lock:
            if self._started or self._closed:
                return self
            self._started = True
            self.started_at = time.monotonic()
            self._deadline = threading.Timer(self.timeout, self._expire)
            self._deadline.daemon = True
            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name=f"2fa-poller-{self.request_id}",
            )
            self._deadline.start()
            self._thread.start()

        logger.info(
            "Approval polling started",
            request_id=self.request_id,
            email=mask_email(self.email),
            interval=self.interval,
            timeout=self.timeout,
        )
        return self

    def cancel(self) -> bool:
        """
        Stop polling and suppress any late response. Safe to call repeatedly.

        Returns:
            True if this call stopped the session. False if it was already
            cancelled or its outcome was already decided; in the latter case
            the terminal callback for that outcome still runs.
        """
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._stop.set()
            if self._deadline is not None:
                self._deadline.cancel()

        self.result.cancel()
        logger.info("Approval polling cancelled", request_id=self.request_id, checks=self.checks)
        return True

    def wait(self, timeout: Optional[float] = None) -> Optional[PollResult]:
        """Block until settled; None when the session was cancelled"""
        try:
            return self.result.result(timeout=timeout)
        except CancelledError:
            return None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self._check()
            except Exception as e:
                logger.exception("Approval poll check crashed", request_id=self.request_id, error=str(e))
                self._report_error(str(e))

    def _check(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.checks += 1

        try:
            response = self._check_status(self.email, self.request_id)
        except CityLightsError as e:
            logger.warning("Approval poll check failed", request_id=self.request_id, error=str(e))
            self._report_error(str(e))
            return

        if response.status == "approved":
            self._settle(PollResult(PollOutcome.APPROVED, response=response))
        elif response.status == "rejected":
            self._settle(PollResult(PollOutcome.REJECTED, response=response))
        else:
            with self._lock:
                self.consecutive_errors = 0

    def _report_error(self, message: str) -> None:
        abort = False
        with self._lock:
            if self._closed:
                return
            self.consecutive_errors += 1
            for listener in list(self._error_listeners):
                try:
                    listener(message)
                except Exception as e:
                    logger.exception("Approval error listener failed", error=str(e))
            if (
                self.max_consecutive_errors is not None
                and self.consecutive_errors >= self.max_consecutive_errors
            ):
                abort = True

        if abort:
            self._settle(PollResult(PollOutcome.ABORTED, error=message))

    def _expire(self) -> None:
        self._settle(PollResult(PollOutcome.TIMED_OUT))

    def _settle(self, result: PollResult) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            self._stop.set()
            if self._deadline is not None:
                self._deadline.cancel()

        logger.info(
            "Approval polling finished",
            request_id=self.request_id,
            outcome=result.outcome.value,
            checks=self.checks,
        )
        self.result.set_result(result)
        return True


class ApprovalPoller:
    """Starts polling sessions, keeping at most one per challenge"""

    def __init__(
        self,
        check_status: StatusChecker,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_consecutive_errors: Optional[int] = None,
    ):
        self.check_status = check_status
        self.interval = interval
        self.timeout = timeout
        self.max_consecutive_errors = max_consecutive_errors
        self._sessions: Dict[str, PollingSession] = {}
        self._lock = threading.Lock()

    def start(
        self,
        request_id: str,
        email: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        on_approved: Optional[Callable[[PollResult], None]] = None,
        on_rejected: Optional[Callable[[PollResult], None]] = None,
        on_timeout: Optional[Callable[[PollResult], None]] = None,
        on_aborted: Optional[Callable[[PollResult], None]] = None,
        on_error: Optional[ErrorListener] = None,
    ) -> PollingSession:
        """
        Start polling a challenge, cancelling any earlier session for it

        Args:
            request_id: Challenge identifier from the login response
            email: Subject email sent with every status check
            interval: Seconds between checks
            timeout: Absolute deadline in seconds
            on_approved / on_rejected / on_timeout / on_aborted: Terminal callbacks,
                at most one of them runs
            on_error: Called with a message for each failed check

        Returns:
            The running session; call cancel() on it to stop
        """
        session = PollingSession(
            self.check_status,
            request_id,
            email,
            interval=interval or self.interval,
            timeout=timeout or self.timeout,
            max_consecutive_errors=self.max_consecutive_errors,
        )
        if on_error:
            session.add_error_listener(on_error)

        handlers = {
            PollOutcome.APPROVED: on_approved,
            PollOutcome.REJECTED: on_rejected,
            PollOutcome.TIMED_OUT: on_timeout,
            PollOutcome.ABORTED: on_aborted,
        }

        def dispatch(future: "Future[PollResult]") -> None:
            self._forget(session)
            if future.cancelled():
                return
            result = future.result()
            handler = handlers.get(result.outcome)
            if handler:
                handler(result)

        session.result.add_done_callback(dispatch)

        with self._lock:
            prior = self._sessions.get(request_id)
            self._sessions[request_id] = session
        if prior is not None:
            logger.info("Replacing running approval poll", request_id=request_id)
            prior.cancel()

        return session.start()

    def get(self, request_id: str) -> Optional[PollingSession]:
        with self._lock:
            return self._sessions.get(request_id)

    def cancel(self, request_id: str) -> bool:
        with self._lock:
            session = self._sessions.get(request_id)
        return session.cancel() if session else False

    def cancel_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            session.cancel()

    def _forget(self, session: PollingSession) -> None:
        with self._lock:
            if self._sessions.get(session.request_id) is session:
                del self._sessions[session.request_id]
