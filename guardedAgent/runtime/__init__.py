"""Loop controller, outcomes, post-apply verification and application assembly."""

from .outcomes import AwaitingApproval, AwaitingFeedback, Done, Failed, LoopOutcome, PausedState
from .loop import AgenticLoop
from .verification import OperationVerifier, VerificationResult
from .app import build_application

__all__ = [
    "AgenticLoop",
    "AwaitingApproval",
    "AwaitingFeedback",
    "Done",
    "Failed",
    "LoopOutcome",
    "PausedState",
    "OperationVerifier",
    "VerificationResult",
    "build_application",
]
