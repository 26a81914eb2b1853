"""Two-factor login core: poller, state machine and resend throttle"""

from .approval_poller import ApprovalPoller, PollingSession, PollOutcome, PollResult
from .resend_throttle import ResendThrottle
from .two_factor import Resolution, TwoFactorPhase, TwoFactorState, transition

__all__ = [
    "ApprovalPoller",
    "PollingSession",
    "PollOutcome",
    "PollResult",
    "ResendThrottle",
    "Resolution",
    "TwoFactorPhase",
    "TwoFactorState",
    "transition",
]
