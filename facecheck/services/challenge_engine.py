"""
Challenge Engine for building the ordered liveness challenge sequence
"""
import time
import uuid
from typing import Optional

from ..config import LivenessConfig
from ..models.data_models import Challenge, ChallengeSequence, ChallengeType


class ChallengeEngine:
    """
    Builds the challenge sequence a session has to complete, in the
    configured order.
    """

    # Prompt shown while the gesture has not been performed yet
    CHALLENGE_INSTRUCTIONS = {
        ChallengeType.BLINK: "Please blink.",
        ChallengeType.SMILE: "Please smile.",
    }

    # Label used in progress messages once the gesture is seen
    CHALLENGE_LABELS = {
        ChallengeType.BLINK: "Blink",
        ChallengeType.SMILE: "Smile",
    }

    def __init__(self, config: Optional[LivenessConfig] = None):
        self.config = config or LivenessConfig()

    def generate_session_id(self) -> str:
        return str(uuid.uuid4())

    def generate_challenge_sequence(self, session_id: Optional[str] = None) -> ChallengeSequence:
        """
        Generate the ordered challenges for one session.

        Challenge ids have the form {session_id}_{index}_{type} so results can
        be traced back to their slot.

        Args:
            session_id: Identifier of the session, generated when omitted

        Returns:
            ChallengeSequence: Challenges with their instructions and budgets
        """
        session_id = session_id or self.generate_session_id()

        challenges = []
        for index, challenge_type in enumerate(self.config.challenge_sequence):
            challenges.append(Challenge(
                challenge_id=f"{session_id}_{index}_{challenge_type.value}",
                type=challenge_type,
                instruction=self.CHALLENGE_INSTRUCTIONS[challenge_type],
                timeout_seconds=self.config.challenge_timeout_seconds,
                max_attempts=self.config.max_attempts_per_challenge
            ))

        return ChallengeSequence(
            session_id=session_id,
            challenges=challenges,
            timestamp=time.time()
        )

    def label_for(self, challenge: Challenge) -> str:
        return self.CHALLENGE_LABELS[challenge.type]
