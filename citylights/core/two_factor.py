"""
Two-factor challenge state machine.

`transition(state, event)` is pure: it never performs I/O and never
mutates its input. Events that do not apply to the current phase leave
the state unchanged, so the first terminal observation for a challenge
wins and later ones are dropped.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from ..models.auth import ChallengeKind, ChallengeStatus, TwoFactorChallenge

REJECTED_NOTICE = (
    "Access was rejected from your mobile device. "
    "If this wasn't you, change your password."
)


class TwoFactorPhase(str, Enum):
    NONE = "none"
    AWAITING_CODE = "awaiting-code"
    AWAITING_APPROVAL = "awaiting-approval"


class Resolution(str, Enum):
    """How the last challenge ended"""
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class TwoFactorState:
    phase: TwoFactorPhase = TwoFactorPhase.NONE
    challenge: Optional[TwoFactorChallenge] = None
    resolution: Optional[Resolution] = None
    notice: Optional[str] = None
    error: Optional[str] = None

    @property
    def awaiting(self) -> bool:
        return self.phase != TwoFactorPhase.NONE


# Events

@dataclass(frozen=True)
class Reset:
    """New login attempt or logout: discard whatever was in flight"""


@dataclass(frozen=True)
class CodeRequested:
    email: str


@dataclass(frozen=True)
class ApprovalRequested:
    email: str
    request_id: str
    message: Optional[str] = None


@dataclass(frozen=True)
class CodeVerified:
    pass


@dataclass(frozen=True)
class CodeRejected:
    message: str


@dataclass(frozen=True)
class BackToLogin:
    pass


# Poller outcomes name the challenge they belong to; None applies to whichever is open

@dataclass(frozen=True)
class ApprovalGranted:
    request_id: Optional[str] = None


@dataclass(frozen=True)
class ApprovalRejected:
    request_id: Optional[str] = None


@dataclass(frozen=True)
class ApprovalTimedOut:
    request_id: Optional[str] = None


@dataclass(frozen=True)
class ApprovalCancelled:
    pass


@dataclass(frozen=True)
class ApprovalFailed:
    message: str
    request_id: Optional[str] = None


@dataclass(frozen=True)
class NoticeDismissed:
    pass


def _resolve(
    state: TwoFactorState,
    resolution: Resolution,
    status: ChallengeStatus,
    notice: Optional[str] = None,
    error: Optional[str] = None,
) -> TwoFactorState:
    return TwoFactorState(
        phase=TwoFactorPhase.NONE,
        challenge=state.challenge.resolve(status) if state.challenge else None,
        resolution=resolution,
        notice=notice,
        error=error,
    )


def transition(state: TwoFactorState, event: object) -> TwoFactorState:
    """Apply one event and return the next state"""
    phase = state.phase

    if isinstance(event, Reset):
        return TwoFactorState()

    if isinstance(event, NoticeDismissed):
        return replace(state, notice=None)

    if phase == TwoFactorPhase.NONE:
        # Only a fresh login response can open a challenge
        if isinstance(event, CodeRequested):
            return TwoFactorState(
                phase=TwoFactorPhase.AWAITING_CODE,
                challenge=TwoFactorChallenge(kind=ChallengeKind.EMAIL_CODE, email=event.email),
            )
        if isinstance(event, ApprovalRequested):
            return TwoFactorState(
                phase=TwoFactorPhase.AWAITING_APPROVAL,
                challenge=TwoFactorChallenge(
                    kind=ChallengeKind.PUSH_APPROVAL,
                    email=event.email,
                    request_id=event.request_id,
                    message=event.message,
                ),
            )
        return state

    if phase == TwoFactorPhase.AWAITING_CODE:
        if isinstance(event, CodeVerified):
            return _resolve(state, Resolution.APPROVED, ChallengeStatus.APPROVED)
        if isinstance(event, BackToLogin):
            return _resolve(state, Resolution.CANCELLED, ChallengeStatus.EXPIRED)
        if isinstance(event, CodeRejected):
            # Challenge stays pending so the user can retry
            return replace(state, error=event.message)
        return state

    if phase == TwoFactorPhase.AWAITING_APPROVAL:
        request_id = getattr(event, "request_id", None)
        if request_id is not None and request_id != state.challenge.request_id:
            return state
        if isinstance(event, ApprovalGranted):
            return _resolve(state, Resolution.APPROVED, ChallengeStatus.APPROVED)
        if isinstance(event, ApprovalRejected):
            return _resolve(state, Resolution.REJECTED, ChallengeStatus.REJECTED, notice=REJECTED_NOTICE)
        if isinstance(event, ApprovalTimedOut):
            return _resolve(state, Resolution.TIMED_OUT, ChallengeStatus.EXPIRED)
        if isinstance(event, (ApprovalCancelled, BackToLogin)):
            return _resolve(state, Resolution.CANCELLED, ChallengeStatus.EXPIRED)
        if isinstance(event, ApprovalFailed):
            return _resolve(state, Resolution.FAILED, ChallengeStatus.EXPIRED, error=event.message)
        return state

    return state
