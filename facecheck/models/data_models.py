"""
Data models shared by the detectors, the match scorer and the orchestrator
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np


class ChallengeType(str, Enum):
    """Gestures the subject can be asked to perform"""
    BLINK = "blink"
    SMILE = "smile"


class ChallengeStatus(str, Enum):
    """Lifecycle of a single challenge slot"""
    PENDING = "pending"
    DETECTED = "detected"
    PASSED = "passed"
    FAILED = "failed"


class SessionState(str, Enum):
    """States of a challenge session"""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class AbortReason(str, Enum):
    """Reason codes reported when a session is aborted"""
    TIMEOUT = "timeout"
    BACKEND_ERROR = "backend_error"
    CANCELLED = "cancelled"


class FeedbackType(str, Enum):
    """Message types sent to a verification client"""
    CHALLENGE_ISSUED = "challenge_issued"
    PROGRESS = "progress"
    OUTCOME = "outcome"
    ERROR = "error"


@dataclass
class Face:
    """
    One face detected in one frame.

    Produced fresh by the vision backend for every frame and never persisted.

    Attributes:
        bbox: Bounding box as (x, y, w, h) in pixels
        landmarks: Landmark points, shape (N, 2)
        left_eye: 6-point contour p0..p5 of the left eye, shape (6, 2)
        right_eye: 6-point contour p0..p5 of the right eye, shape (6, 2)
        expressions: Expression label -> probability in [0, 1]
        descriptor: Identity descriptor vector
    """
    bbox: Tuple[int, int, int, int]
    landmarks: np.ndarray
    left_eye: np.ndarray
    right_eye: np.ndarray
    expressions: Dict[str, float]
    descriptor: np.ndarray


@dataclass(frozen=True)
class ReferenceProfile:
    """Descriptor of the enrolled reference face"""
    descriptor: np.ndarray
    created_at: float

    def __post_init__(self):
        descriptor = np.array(self.descriptor, dtype=np.float32).reshape(-1)
        descriptor.setflags(write=False)
        object.__setattr__(self, "descriptor", descriptor)


@dataclass(frozen=True)
class MatchResult:
    """Similarity between a live descriptor and the reference"""
    match_rate: float
    is_match: bool
    distance: float


@dataclass
class Challenge:
    """A gesture the subject must perform, with its budgets"""
    challenge_id: str
    type: ChallengeType
    instruction: str
    timeout_seconds: Optional[float]
    max_attempts: int


@dataclass
class ChallengeSequence:
    """Ordered challenges issued for one session"""
    session_id: str
    challenges: List[Challenge]
    timestamp: float


@dataclass
class ChallengeResult:
    """Progress of one challenge slot, including every scored attempt"""
    challenge_id: str
    type: ChallengeType
    status: ChallengeStatus = ChallengeStatus.PENDING
    attempts: List[MatchResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == ChallengeStatus.PASSED

    @property
    def match_rate(self) -> Optional[float]:
        """Rate of the last scored attempt, if any"""
        if not self.attempts:
            return None
        return self.attempts[-1].match_rate


@dataclass
class ChallengeSession:
    """Mutable state of one liveness check, owned by its orchestrator"""
    session_id: str
    challenges: List[Challenge]
    results: List[ChallengeResult]
    state: SessionState = SessionState.IDLE
    current_index: int = 0
    abort_reason: Optional[AbortReason] = None
    progress: List[str] = field(default_factory=list)
    frames_processed: int = 0

    @property
    def current_challenge(self) -> Optional[Challenge]:
        if self.current_index < len(self.challenges):
            return self.challenges[self.current_index]
        return None

    @property
    def current_result(self) -> Optional[ChallengeResult]:
        if self.current_index < len(self.results):
            return self.results[self.current_index]
        return None

    @property
    def is_terminal(self) -> bool:
        return self.state in (SessionState.COMPLETED, SessionState.ABORTED)


@dataclass
class VerificationOutcome:
    """Terminal result delivered once through the outcome callback"""
    session_id: str
    completed: bool
    state: SessionState
    reason: Optional[AbortReason]
    per_challenge_results: List[ChallengeResult]
    overall_match_rate: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "completed": self.completed,
            "state": self.state.value,
            "reason": self.reason.value if self.reason else None,
            "per_challenge_results": [
                {
                    "challenge_id": r.challenge_id,
                    "type": r.type.value,
                    "status": r.status.value,
                    "attempts": [a.match_rate for a in r.attempts],
                }
                for r in self.per_challenge_results
            ],
            "overall_match_rate": self.overall_match_rate,
        }


@dataclass
class QuickCheckResult:
    """Single-frame liveness and match check"""
    is_live: bool
    is_match: bool
    match_rate: float


@dataclass
class VerificationFeedback:
    """Message sent to a verification client"""
    type: FeedbackType
    message: str
    data: Optional[Dict[str, Any]] = None
