"""
Configuration management for the application
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple

from dotenv import load_dotenv

from .models.data_models import ChallengeType

load_dotenv()


def parse_challenge_sequence(value: str) -> Tuple[ChallengeType, ...]:
    """
    Parse a comma separated challenge list such as "blink,smile".

    Raises:
        ValueError: If a name is not a known challenge type or the list is empty
    """
    names = [name.strip().lower() for name in value.split(",") if name.strip()]
    if not names:
        raise ValueError("Challenge sequence must contain at least one challenge")
    return tuple(ChallengeType(name) for name in names)


@dataclass(frozen=True)
class LivenessConfig:
    """
    Thresholds and budgets handed to the challenge orchestrator.

    Attributes:
        blink_threshold: Eye aspect ratio below which an eye counts as closed
        smile_threshold: "happy" probability above which a smile is detected
        match_threshold: Minimum match rate (percent) for a passing attempt
        challenge_sequence: Ordered challenges to perform
        max_attempts_per_challenge: Scored attempts allowed per challenge
        challenge_timeout_seconds: Time allowed per challenge, None for no limit
        sampling_interval_seconds: Pause between two sampled frames
    """
    blink_threshold: float = 0.2
    smile_threshold: float = 0.7
    match_threshold: float = 80.0
    challenge_sequence: Sequence[ChallengeType] = (ChallengeType.BLINK, ChallengeType.SMILE)
    max_attempts_per_challenge: int = 5
    challenge_timeout_seconds: Optional[float] = 10.0
    sampling_interval_seconds: float = 0.1

    def __post_init__(self):
        object.__setattr__(
            self, "challenge_sequence",
            tuple(ChallengeType(c) for c in self.challenge_sequence)
        )
        if not self.challenge_sequence:
            raise ValueError("challenge_sequence must not be empty")
        if self.blink_threshold <= 0:
            raise ValueError("blink_threshold must be positive")
        if not 0.0 <= self.smile_threshold <= 1.0:
            raise ValueError("smile_threshold must be within [0, 1]")
        if not 0.0 <= self.match_threshold <= 100.0:
            raise ValueError("match_threshold must be within [0, 100]")
        if self.max_attempts_per_challenge < 1:
            raise ValueError("max_attempts_per_challenge must be at least 1")
        if self.challenge_timeout_seconds is not None and self.challenge_timeout_seconds <= 0:
            raise ValueError("challenge_timeout_seconds must be positive or None")
        if self.sampling_interval_seconds < 0:
            raise ValueError("sampling_interval_seconds must not be negative")


class Config:
    """Application configuration"""

    # Liveness thresholds
    BLINK_EAR_THRESHOLD = float(os.getenv('BLINK_EAR_THRESHOLD', '0.2'))
    SMILE_THRESHOLD = float(os.getenv('SMILE_THRESHOLD', '0.7'))
    MATCH_THRESHOLD = float(os.getenv('MATCH_THRESHOLD', '80'))

    # Challenge Configuration
    CHALLENGE_SEQUENCE = os.getenv('CHALLENGE_SEQUENCE', 'blink,smile')
    MAX_ATTEMPTS_PER_CHALLENGE = int(os.getenv('MAX_ATTEMPTS_PER_CHALLENGE', '5'))
    # 0 disables the per-challenge time budget
    CHALLENGE_TIMEOUT_SECONDS = float(os.getenv('CHALLENGE_TIMEOUT_SECONDS', '10'))
    SAMPLING_INTERVAL_SECONDS = float(os.getenv('SAMPLING_INTERVAL_SECONDS', '0.1'))

    # Vision Backend Configuration
    MEDIAPIPE_MODEL_PATH = os.getenv(
        'MEDIAPIPE_MODEL_PATH',
        str(Path.home() / '.mediapipe_models' / 'face_landmarker.task')
    )
    DESCRIPTOR_MODEL = os.getenv('DESCRIPTOR_MODEL', 'Facenet')
    MAX_FACES = int(os.getenv('MAX_FACES', '2'))

    # Server Configuration
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', '8000'))
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

    @classmethod
    def liveness_config(cls) -> LivenessConfig:
        """Build the validated orchestrator configuration from the environment"""
        return LivenessConfig(
            blink_threshold=cls.BLINK_EAR_THRESHOLD,
            smile_threshold=cls.SMILE_THRESHOLD,
            match_threshold=cls.MATCH_THRESHOLD,
            challenge_sequence=parse_challenge_sequence(cls.CHALLENGE_SEQUENCE),
            max_attempts_per_challenge=cls.MAX_ATTEMPTS_PER_CHALLENGE,
            challenge_timeout_seconds=cls.CHALLENGE_TIMEOUT_SECONDS or None,
            sampling_interval_seconds=cls.SAMPLING_INTERVAL_SECONDS,
        )


config = Config()
