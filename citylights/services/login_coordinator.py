"""
Login coordinator.

Submits credentials, interprets the login response and drives the
two-factor state machine. It is the only writer of the session store
besides logout and the API client's 401 handling.
"""

import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from ..api.auth_client import AuthClient
from ..core.approval_poller import ApprovalPoller, PollingSession, PollResult
from ..core.resend_throttle import ResendThrottle
from ..core import two_factor as tf
from ..models.auth import ChallengeKind, Session, TwoFactorChallenge
from ..services.session_store import SessionStore
from ..utils.config import TwoFactorSettings
from ..utils.exceptions import (
    ApiError,
    AuthenticationError,
    CityLightsError,
    LoginFailedError,
    TransportError,
    ValidationError,
)
from ..utils.logger import get_logger, mask_email
from ..utils.validators import validate_code, validate_login_form

logger = get_logger(__name__)

StateListener = Callable[[tf.TwoFactorState], None]


class LoginStep(str, Enum):
    """Where a credential submission left the flow"""
    AUTHENTICATED = "authenticated"
    CODE_REQUIRED = "code-required"
    APPROVAL_REQUIRED = "approval-required"


class LoginCoordinator:
    """Orchestrates login, two-factor verification and logout"""

    def __init__(
        self,
        client: AuthClient,
        store: SessionStore,
        settings: Optional[TwoFactorSettings] = None,
        poller: Optional[ApprovalPoller] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.store = store
        self.settings = settings or TwoFactorSettings()
        self.poller = poller or ApprovalPoller(
            client.check_2fa_status,
            interval=self.settings.poll_interval_seconds,
            timeout=self.settings.poll_timeout_seconds,
            max_consecutive_errors=self.settings.max_consecutive_errors,
        )
        self.resend_throttle = ResendThrottle(self.settings.resend_cooldown_seconds, clock=clock)

        self._lock = threading.RLock()
        self._state = tf.TwoFactorState()
        self._session: Optional[Session] = None
        self._polling: Optional[PollingSession] = None
        self._approval_settled = threading.Event()
        self._approval_settled.set()
        self._listeners: List[StateListener] = []

        client.on_session_expired(self._on_session_expired)

    # State access

    @property
    def state(self) -> tf.TwoFactorState:
        with self._lock:
            return self._state

    @property
    def session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change listener; returns an unsubscribe function"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _dispatch(self, event: object) -> tf.TwoFactorState:
        with self._lock:
            previous = self._state
            self._state = tf.transition(previous, event)
            state = self._state
            listeners = list(self._listeners)

        if state is not previous:
            logger.debug(
                "Two-factor state changed",
                event_type=type(event).__name__,
                phase=state.phase.value,
                resolution=state.resolution.value if state.resolution else None,
            )
            for listener in listeners:
                try:
                    listener(state)
                except Exception as e:
                    logger.exception("State listener failed", error=str(e))
        return state

    def _is_current(self, challenge: TwoFactorChallenge) -> bool:
        with self._lock:
            return self._state.awaiting and self._state.challenge is challenge

    def _establish(self, session: Session) -> None:
        with self._lock:
            self.store.set(session)
            self._session = session
        logger.info("Session established", user_id=session.user.id, role=session.user.role_name)

    # Session lifecycle

    def restore_session(self) -> Optional[Session]:
        """Load a persisted session at startup"""
        session = self.store.get()
        with self._lock:
            self._session = session
        if session:
            logger.info("Session restored from storage", user_id=session.user.id)
        return session

    def logout(self) -> None:
        self._stop_polling()
        with self._lock:
            self.store.clear()
            self._session = None
        self.resend_throttle.reset()
        self._dispatch(tf.Reset())
        logger.info("Logged out")

    def _on_session_expired(self) -> None:
        with self._lock:
            self._session = None
            state = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.exception("State listener failed", error=str(e))

    def close(self) -> None:
        """Teardown: make sure no poller outlives the front-end"""
        self._stop_polling()
        self.poller.cancel_all()

    # Credentials

    def submit_credentials(self, email: str, password: str) -> LoginStep:
        """
        Submit credentials and decide the next step

        Raises:
            ValidationError: Email or password rejected locally; nothing was sent
            LoginFailedError: Bad credentials, transport failure or malformed response
        """
        validation = validate_login_form(email, password)
        if not validation.is_valid:
            field, message = next(iter(validation.errors().items()))
            raise ValidationError(message, field=field)

        # A new attempt discards any challenge still in flight
        self._stop_polling()
        self.resend_throttle.reset()
        self._dispatch(tf.Reset())

        logger.info("Submitting credentials", email=mask_email(email))
        try:
            response = self.client.login(email, password)
        except (ApiError, TransportError) as e:
            logger.warning("Login failed", email=mask_email(email), error=str(e))
            raise LoginFailedError(str(e)) from e

        session = response.session()
        if session:
            self._establish(session)
            return LoginStep.AUTHENTICATED

        if response.requires_two_factor:
            if response.use_push_notification:
                if not response.request_id:
                    raise LoginFailedError(response.message or "Login response is missing the approval request id")
                state = self._dispatch(tf.ApprovalRequested(
                    email=email,
                    request_id=response.request_id,
                    message=response.message,
                ))
                self._start_polling(state.challenge)
                return LoginStep.APPROVAL_REQUIRED

            self._dispatch(tf.CodeRequested(email=email))
            return LoginStep.CODE_REQUIRED

        raise LoginFailedError(response.message or "Unexpected response from server")

    # Email-code path

    def submit_two_factor_code(self, code: str) -> Optional[Session]:
        """
        Verify an email code for the current challenge

        Returns:
            The new session, or None when the challenge was abandoned meanwhile

        Raises:
            ValidationError: No code challenge, or code is not six digits; nothing was sent
            AuthenticationError / TransportError: Verification failed; challenge stays pending
        """
        state = self.state
        challenge = state.challenge
        if state.phase != tf.TwoFactorPhase.AWAITING_CODE or challenge is None:
            raise ValidationError("No verification code is expected", field="code")

        result = validate_code(code)
        if not result.is_valid:
            raise ValidationError(result.message or "Invalid code", field="code")

        try:
            response = self.client.verify_2fa(challenge.email, code)
        except (ApiError, TransportError) as e:
            logger.warning("Code verification failed", email=mask_email(challenge.email), error=str(e))
            self._dispatch(tf.CodeRejected(message=str(e)))
            raise

        session = response.session()
        if session is None:
            message = response.message or "Verification did not return a session"
            self._dispatch(tf.CodeRejected(message=message))
            raise AuthenticationError(message)

        with self._lock:
            if not self._is_current(challenge):
                logger.info("Discarding verification for an abandoned challenge")
                return None
            self._establish(session)
            self._dispatch(tf.CodeVerified())
        self.resend_throttle.reset()
        return session

    def resend_code(self) -> Optional[str]:
        """Ask for a new email code; returns the server message"""
        state = self.state
        if state.phase != tf.TwoFactorPhase.AWAITING_CODE or state.challenge is None:
            raise ValidationError("No verification code is expected", field="code")
        if not self.resend_throttle.can_resend():
            raise ValidationError(
                f"Wait {self.resend_throttle.remaining()} seconds before requesting another code",
                field="code",
            )

        self.resend_throttle.start()
        response = self.client.resend_code(state.challenge.email)
        logger.info("Verification code resent", email=mask_email(state.challenge.email))
        return response.get("message")

    def back_to_login(self) -> None:
        self._stop_polling()
        self.resend_throttle.reset()
        self._dispatch(tf.BackToLogin())

    # Push-approval path

    def _start_polling(self, challenge: Optional[TwoFactorChallenge]) -> None:
        if challenge is None or challenge.kind != ChallengeKind.PUSH_APPROVAL:
            return
        self._approval_settled.clear()
        polling = self.poller.start(
            challenge.request_id,
            challenge.email,
            on_approved=lambda result: self._on_approved(challenge, result),
            on_rejected=lambda result: self._finish_approval(
                challenge, tf.ApprovalRejected(request_id=challenge.request_id)
            ),
            on_timeout=lambda result: self._finish_approval(
                challenge, tf.ApprovalTimedOut(request_id=challenge.request_id)
            ),
            on_aborted=lambda result: self._finish_approval(
                challenge,
                tf.ApprovalFailed(
                    message=result.error or "Approval check kept failing",
                    request_id=challenge.request_id,
                ),
            ),
            on_error=lambda message: logger.warning(
                "Approval status check error", request_id=challenge.request_id, error=message
            ),
        )
        with self._lock:
            self._polling = polling

    def _stop_polling(self) -> None:
        with self._lock:
            polling, self._polling = self._polling, None
        if polling is not None:
            polling.cancel()
        self._approval_settled.set()

    def _finish_approval(self, challenge: TwoFactorChallenge, event: object) -> None:
        # Check and apply under one lock so a new login cannot slip in between
        with self._lock:
            if not self._is_current(challenge):
                return
            self._polling = None
            self._dispatch(event)
        self._approval_settled.set()

    def _on_approved(self, challenge: TwoFactorChallenge, result: PollResult) -> None:
        if not self._is_current(challenge):
            return
        # Approval alone may not carry credentials; ask once more for them
        try:
            response = self.client.check_2fa_status(challenge.email, challenge.request_id)
            session = response.session()
        except CityLightsError as e:
            logger.error("Fetching approved session failed", request_id=challenge.request_id, error=str(e))
            self._finish_approval(challenge, tf.ApprovalFailed(message=str(e), request_id=challenge.request_id))
            return

        if session is None and result.response is not None:
            session = result.response.session()
        if session is None:
            self._finish_approval(
                challenge,
                tf.ApprovalFailed(message="Approval did not return a session", request_id=challenge.request_id),
            )
            return

        with self._lock:
            if not self._is_current(challenge):
                return
            self._establish(session)
            self._polling = None
            self._dispatch(tf.ApprovalGranted(request_id=challenge.request_id))
        self._approval_settled.set()

    def cancel_approval(self) -> None:
        """User gave up waiting for the mobile approval"""
        self._stop_polling()
        self._dispatch(tf.ApprovalCancelled())

    def wait_for_approval(self, timeout: Optional[float] = None) -> Optional[Session]:
        """Block until the push-approval flow settles; returns the session if approved"""
        self._approval_settled.wait(timeout)
        return self.session

    def approval_seconds_remaining(self) -> int:
        """Countdown for display; the poller's deadline timer is authoritative"""
        with self._lock:
            polling = self._polling
        return int(polling.remaining()) if polling and polling.active else 0

    def pop_notice(self) -> Optional[str]:
        """Return the one-shot notice (e.g. push rejection) and clear it"""
        notice = self.state.notice
        if notice:
            self._dispatch(tf.NoticeDismissed())
        return notice
