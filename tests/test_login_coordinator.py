"""Scenario tests for the login coordinator"""

import threading
import time

import pytest

from citylights.core.approval_poller import PollOutcome, PollResult
from citylights.core.two_factor import (
    REJECTED_NOTICE,
    ApprovalFailed,
    ApprovalRejected,
    ApprovalTimedOut,
    Resolution,
    TwoFactorPhase,
)
from citylights.models.auth import LoginResponse, Session
from citylights.models.user import User
from citylights.services.login_coordinator import LoginCoordinator, LoginStep
from citylights.services.session_store import InMemorySessionStore
from citylights.utils.config import TwoFactorSettings
from citylights.utils.exceptions import (
    AuthenticationError,
    LoginFailedError,
    TransportError,
    ValidationError,
)

from .conftest import make_user_payload, status

EMAIL = "ana@citylights.test"
PASSWORD = "S3cret!pass"

PUSH_RESPONSE = LoginResponse(
    requiresTwoFactor=True,
    usePushNotification=True,
    requestId="r1",
    message="Check your phone",
)
SECOND_PUSH_RESPONSE = LoginResponse(requiresTwoFactor=True, usePushNotification=True, requestId="r2")
CODE_RESPONSE = LoginResponse(requiresTwoFactor=True, message="Code sent")


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def coordinator(client, store, fast_settings):
    coordinator = LoginCoordinator(client, store, settings=fast_settings)
    yield coordinator
    coordinator.close()


class TestCredentials:
    """Credential submission and direct login"""

    def test_direct_login_persists_session(self, coordinator, client, store):
        client.login.return_value = LoginResponse(access_token="t0", user=make_user_payload())

        step = coordinator.submit_credentials(EMAIL, PASSWORD)

        assert step == LoginStep.AUTHENTICATED
        client.login.assert_called_once_with(EMAIL, PASSWORD)
        assert store.get().token == "t0"
        assert coordinator.session.user.email == EMAIL
        assert coordinator.is_authenticated

    @pytest.mark.parametrize("email,password,field", [
        ("", PASSWORD, "email"),
        ("not-an-email", PASSWORD, "email"),
        (EMAIL, "", "password"),
    ])
    def test_invalid_form_makes_no_request(self, coordinator, client, email, password, field):
        with pytest.raises(ValidationError) as exc_info:
            coordinator.submit_credentials(email, password)

        assert exc_info.value.field == field
        client.login.assert_not_called()

    def test_rejected_credentials(self, coordinator, client, store):
        client.login.side_effect = AuthenticationError("Invalid credentials", status_code=401)

        with pytest.raises(LoginFailedError, match="Invalid credentials"):
            coordinator.submit_credentials(EMAIL, PASSWORD)

        assert store.get() is None
        assert coordinator.state.phase == TwoFactorPhase.NONE

    def test_transport_failure(self, coordinator, client):
        client.login.side_effect = TransportError("Could not reach the server")

        with pytest.raises(LoginFailedError, match="Could not reach the server"):
            coordinator.submit_credentials(EMAIL, PASSWORD)

    def test_malformed_response(self, coordinator, client, store):
        """No token and no two-factor flag is an error, not a login"""
        client.login.return_value = LoginResponse()

        with pytest.raises(LoginFailedError, match="Unexpected response from server"):
            coordinator.submit_credentials(EMAIL, PASSWORD)

        assert store.get() is None

    def test_token_without_user_is_not_a_session(self, coordinator, client, store):
        client.login.return_value = LoginResponse(access_token="t0")

        with pytest.raises(LoginFailedError):
            coordinator.submit_credentials(EMAIL, PASSWORD)

        assert store.get() is None

    def test_push_without_request_id(self, coordinator, client):
        client.login.return_value = LoginResponse(requiresTwoFactor=True, usePushNotification=True)

        with pytest.raises(LoginFailedError):
            coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.state.phase == TwoFactorPhase.NONE
        client.check_2fa_status.assert_not_called()


class TestEmailCode:
    """Email-code second factor"""

    def test_successful_verification(self, coordinator, client, store):
        client.login.return_value = CODE_RESPONSE
        client.verify_2fa.return_value = LoginResponse(access_token="t2", user=make_user_payload())

        assert coordinator.submit_credentials(EMAIL, PASSWORD) == LoginStep.CODE_REQUIRED
        assert coordinator.state.phase == TwoFactorPhase.AWAITING_CODE

        session = coordinator.submit_two_factor_code("123456")

        client.verify_2fa.assert_called_once_with(EMAIL, "123456")
        assert session.token == "t2"
        assert store.get().token == "t2"
        assert coordinator.state.resolution == Resolution.APPROVED
        client.check_2fa_status.assert_not_called()

    @pytest.mark.parametrize("code", ["12a45", "12345", "1234567", ""])
    def test_malformed_code_makes_no_request(self, coordinator, client, code):
        client.login.return_value = CODE_RESPONSE
        coordinator.submit_credentials(EMAIL, PASSWORD)

        with pytest.raises(ValidationError):
            coordinator.submit_two_factor_code(code)

        client.verify_2fa.assert_not_called()
        assert coordinator.state.phase == TwoFactorPhase.AWAITING_CODE

    def test_rejected_code_keeps_challenge(self, coordinator, client, store):
        client.login.return_value = CODE_RESPONSE
        client.verify_2fa.side_effect = AuthenticationError("Invalid or expired code", status_code=400)
        coordinator.submit_credentials(EMAIL, PASSWORD)

        with pytest.raises(AuthenticationError):
            coordinator.submit_two_factor_code("000000")

        assert coordinator.state.phase == TwoFactorPhase.AWAITING_CODE
        assert coordinator.state.error == "Invalid or expired code"
        assert store.get() is None

    def test_verification_without_session(self, coordinator, client, store):
        client.login.return_value = CODE_RESPONSE
        client.verify_2fa.return_value = LoginResponse(message="Nope")
        coordinator.submit_credentials(EMAIL, PASSWORD)

        with pytest.raises(AuthenticationError, match="Nope"):
            coordinator.submit_two_factor_code("123456")

        assert store.get() is None

    def test_code_without_challenge(self, coordinator, client):
        with pytest.raises(ValidationError):
            coordinator.submit_two_factor_code("123456")
        client.verify_2fa.assert_not_called()

    def test_back_to_login(self, coordinator, client):
        client.login.return_value = CODE_RESPONSE
        coordinator.submit_credentials(EMAIL, PASSWORD)

        coordinator.back_to_login()

        assert coordinator.state.phase == TwoFactorPhase.NONE
        assert coordinator.state.resolution == Resolution.CANCELLED
        with pytest.raises(ValidationError):
            coordinator.submit_two_factor_code("123456")

    def test_resend_is_throttled(self, client, store, fast_settings):
        clock = FakeClock()
        coordinator = LoginCoordinator(client, store, settings=fast_settings, clock=clock)
        client.login.return_value = CODE_RESPONSE
        client.resend_code.return_value = {"message": "Code resent"}
        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.resend_code() == "Code resent"

        clock.now += 59.5
        with pytest.raises(ValidationError, match="Wait 1 seconds"):
            coordinator.resend_code()

        clock.now += 0.5
        assert coordinator.resend_code() == "Code resent"
        assert client.resend_code.call_count == 2
        client.resend_code.assert_called_with(EMAIL)

    def test_resend_outside_code_flow(self, coordinator, client):
        with pytest.raises(ValidationError):
            coordinator.resend_code()
        client.resend_code.assert_not_called()


class TestPushApproval:
    """Push-approval second factor"""

    def test_approved_on_third_check(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.side_effect = [
            status("pending"),
            status("pending"),
            status("approved", approved=True),
            status("approved", approved=True, access_token="t1", user=make_user_payload()),
        ]

        assert coordinator.submit_credentials(EMAIL, PASSWORD) == LoginStep.APPROVAL_REQUIRED
        assert coordinator.state.challenge.request_id == "r1"

        session = coordinator.wait_for_approval(timeout=2)

        assert session is not None
        assert session.token == "t1"
        assert store.get().token == "t1"
        assert coordinator.state.resolution == Resolution.APPROVED
        client.check_2fa_status.assert_called_with(EMAIL, "r1")
        time.sleep(0.05)
        assert client.check_2fa_status.call_count == 4

    def test_approval_response_with_session(self, coordinator, client, store):
        """Credentials on the approving poll are used if the follow-up lacks them"""
        approved = status("approved", access_token="t1", user=make_user_payload())
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.side_effect = [approved, status("approved")]

        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.wait_for_approval(timeout=2).token == "t1"

    def test_rejected(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.side_effect = [status("pending"), status("rejected")]

        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.wait_for_approval(timeout=2) is None
        assert store.get() is None
        assert coordinator.state.resolution == Resolution.REJECTED
        assert coordinator.pop_notice() == REJECTED_NOTICE
        assert coordinator.pop_notice() is None

    def test_timeout(self, client, store):
        settings = TwoFactorSettings(poll_interval_seconds=0.01, poll_timeout_seconds=0.15)
        coordinator = LoginCoordinator(client, store, settings=settings)
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.return_value = status("pending")

        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.wait_for_approval(timeout=2) is None
        assert coordinator.state.resolution == Resolution.TIMED_OUT
        assert store.get() is None
        calls = client.check_2fa_status.call_count
        time.sleep(0.1)
        assert client.check_2fa_status.call_count == calls

    def test_final_fetch_failure(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.side_effect = [
            status("approved"),
            TransportError("Could not reach the server"),
        ]

        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert coordinator.wait_for_approval(timeout=2) is None
        assert coordinator.state.resolution == Resolution.FAILED
        assert coordinator.state.error == "Could not reach the server"
        assert store.get() is None

    def test_cancel_stops_polling(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.return_value = status("pending")
        coordinator.submit_credentials(EMAIL, PASSWORD)
        time.sleep(0.05)

        coordinator.cancel_approval()
        coordinator.cancel_approval()

        assert coordinator.state.resolution == Resolution.CANCELLED
        calls = client.check_2fa_status.call_count
        time.sleep(0.1)
        assert client.check_2fa_status.call_count == calls
        assert coordinator.wait_for_approval(timeout=0.1) is None
        assert store.get() is None

    def test_new_login_abandons_pending_approval(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.return_value = status("pending")
        coordinator.submit_credentials(EMAIL, PASSWORD)
        first = coordinator.poller.get("r1")

        client.login.return_value = LoginResponse(access_token="t0", user=make_user_payload())
        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert not first.active
        assert coordinator.session.token == "t0"
        assert coordinator.state.phase == TwoFactorPhase.NONE

    def test_listeners_see_each_change(self, coordinator, client):
        seen = []
        unsubscribe = coordinator.subscribe(lambda state: seen.append(state.phase))
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.side_effect = [status("rejected")]

        coordinator.submit_credentials(EMAIL, PASSWORD)
        coordinator.wait_for_approval(timeout=2)
        unsubscribe()
        coordinator.pop_notice()

        assert TwoFactorPhase.AWAITING_APPROVAL in seen
        assert seen[-1] == TwoFactorPhase.NONE
        count = len(seen)
        coordinator.logout()
        assert len(seen) == count


class TestStaleOutcomes:
    """Late poller outcomes only ever resolve their own challenge"""

    def test_rejection_racing_new_login(self, coordinator, client):
        """A new login submitted while a rejection is being applied keeps its own challenge"""
        client.login.side_effect = [PUSH_RESPONSE, SECOND_PUSH_RESPONSE]
        client.check_2fa_status.side_effect = (
            lambda email, request_id: status("rejected") if request_id == "r1" else status("pending")
        )
        second_login = threading.Thread(target=coordinator.submit_credentials, args=(EMAIL, PASSWORD))
        second_started = threading.Event()
        apply_event = coordinator._dispatch

        def dispatch(event):
            if isinstance(event, ApprovalRejected) and not second_started.is_set():
                second_started.set()
                second_login.start()
                time.sleep(0.05)
            return apply_event(event)

        coordinator._dispatch = dispatch
        coordinator.submit_credentials(EMAIL, PASSWORD)

        assert second_started.wait(2)
        second_login.join(2)
        assert not second_login.is_alive()

        state = coordinator.state
        assert state.phase == TwoFactorPhase.AWAITING_APPROVAL
        assert state.challenge.request_id == "r2"
        assert state.resolution is None
        assert coordinator.poller.get("r2").active

    def test_outcomes_after_new_login_ignored(self, coordinator, client, store):
        client.login.return_value = PUSH_RESPONSE
        client.check_2fa_status.return_value = status("pending")
        coordinator.submit_credentials(EMAIL, PASSWORD)
        stale = coordinator.state.challenge
        coordinator.cancel_approval()

        client.login.return_value = SECOND_PUSH_RESPONSE
        coordinator.submit_credentials(EMAIL, PASSWORD)

        for event in (
            ApprovalRejected(request_id="r1"),
            ApprovalTimedOut(request_id="r1"),
            ApprovalFailed(message="late", request_id="r1"),
        ):
            coordinator._finish_approval(stale, event)
        coordinator._on_approved(stale, PollResult(PollOutcome.APPROVED, response=status("approved")))

        state = coordinator.state
        assert state.phase == TwoFactorPhase.AWAITING_APPROVAL
        assert state.challenge.request_id == "r2"
        assert coordinator.poller.get("r2").active
        assert store.get() is None
        assert coordinator.wait_for_approval(timeout=0.05) is None


class TestSessionLifecycle:
    """Restore, logout and server-side expiry"""

    def test_restore_session(self, client):
        user = User(**make_user_payload())
        store = InMemorySessionStore()
        store.set(Session(token="t9", user=user))

        coordinator = LoginCoordinator(client, store)

        assert coordinator.restore_session().token == "t9"
        assert coordinator.is_authenticated

    def test_restore_partial_session(self, client):
        coordinator = LoginCoordinator(client, InMemorySessionStore({"auth_token": "t9"}))
        assert coordinator.restore_session() is None
        assert not coordinator.is_authenticated

    def test_logout_clears_store(self, coordinator, client, store):
        client.login.return_value = LoginResponse(access_token="t0", user=make_user_payload())
        coordinator.submit_credentials(EMAIL, PASSWORD)

        coordinator.logout()

        assert store.get() is None
        assert not coordinator.is_authenticated
        assert coordinator.state.phase == TwoFactorPhase.NONE

    def test_expiry_hook_drops_session(self, coordinator, client, store):
        client.login.return_value = LoginResponse(access_token="t0", user=make_user_payload())
        coordinator.submit_credentials(EMAIL, PASSWORD)
        hook = client.on_session_expired.call_args[0][0]

        store.clear()
        hook()

        assert not coordinator.is_authenticated
