from .data_models import (
    AbortReason,
    Challenge,
    ChallengeResult,
    ChallengeSequence,
    ChallengeSession,
    ChallengeStatus,
    ChallengeType,
    Face,
    FeedbackType,
    MatchResult,
    QuickCheckResult,
    ReferenceProfile,
    SessionState,
    VerificationFeedback,
    VerificationOutcome,
)

__all__ = [
    "AbortReason",
    "Challenge",
    "ChallengeResult",
    "ChallengeSequence",
    "ChallengeSession",
    "ChallengeStatus",
    "ChallengeType",
    "Face",
    "FeedbackType",
    "MatchResult",
    "QuickCheckResult",
    "ReferenceProfile",
    "SessionState",
    "VerificationFeedback",
    "VerificationOutcome",
]
