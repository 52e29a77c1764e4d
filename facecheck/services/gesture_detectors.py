"""
Single-frame gesture detectors for liveness challenges

All detectors are pure functions of one Face and never decide session
progression themselves.
"""
import numpy as np

from ..models.data_models import ChallengeType, Face


def eye_aspect_ratio(eye: np.ndarray) -> float:
    """
    Compute the eye aspect ratio (EAR) of one eye contour.

    The contour holds 6 points p0..p5 where p0 and p3 are the horizontal
    corners, p1 and p2 lie on the upper lid and p5 and p4 below them:

        EAR = (|p1 - p5| + |p2 - p4|) / (2 * |p0 - p3|)

    Args:
        eye: Contour points, shape (6, 2)

    Returns:
        float: EAR, or inf when the eye has no width
    """
    eye = np.asarray(eye, dtype=np.float64)
    if eye.shape[0] != 6:
        raise ValueError(f"Eye contour must have 6 points, got {eye.shape[0]}")

    vertical_a = np.linalg.norm(eye[1] - eye[5])
    vertical_b = np.linalg.norm(eye[2] - eye[4])
    horizontal = np.linalg.norm(eye[0] - eye[3])

    if horizontal <= 0:
        # Degenerate contour never counts as a closed eye
        return float("inf")

    return float((vertical_a + vertical_b) / (2.0 * horizontal))


def is_blinking(face: Face, threshold: float) -> bool:
    """Both eyes must be below the EAR threshold in the same frame"""
    left_ear = eye_aspect_ratio(face.left_eye)
    right_ear = eye_aspect_ratio(face.right_eye)
    return left_ear < threshold and right_ear < threshold


def is_smiling(face: Face, threshold: float) -> bool:
    return face.expressions.get("happy", 0.0) > threshold


def has_live_expression(face: Face, threshold: float) -> bool:
    """Generic single-frame liveness signal: a clear smile or surprise"""
    happy = face.expressions.get("happy", 0.0)
    surprised = face.expressions.get("surprised", 0.0)
    return happy > threshold or surprised > threshold


def detect_gesture(challenge_type: ChallengeType, face: Face, config) -> bool:
    """
    Evaluate the detector for one challenge type.

    Args:
        challenge_type: Gesture to look for
        face: Face from the current frame
        config: LivenessConfig holding the thresholds

    Returns:
        bool: True when the gesture is visible in this frame
    """
    if challenge_type == ChallengeType.BLINK:
        return is_blinking(face, config.blink_threshold)
    if challenge_type == ChallengeType.SMILE:
        return is_smiling(face, config.smile_threshold)
    raise ValueError(f"Unknown challenge type: {challenge_type}")
