from .challenge_engine import ChallengeEngine
from .challenge_orchestrator import ChallengeOrchestrator
from .gesture_detectors import (
    detect_gesture,
    eye_aspect_ratio,
    has_live_expression,
    is_blinking,
    is_smiling,
)
from .match_scorer import score
from .verification_service import VerificationService
from .vision_backend import MediaPipeDeepFaceBackend, VisionBackend, decode_image, detect_faces
from .websocket_handler import WebSocketHandler

__all__ = [
    "ChallengeEngine",
    "ChallengeOrchestrator",
    "MediaPipeDeepFaceBackend",
    "VerificationService",
    "VisionBackend",
    "WebSocketHandler",
    "decode_image",
    "detect_faces",
    "detect_gesture",
    "eye_aspect_ratio",
    "has_live_expression",
    "is_blinking",
    "is_smiling",
    "score",
]
