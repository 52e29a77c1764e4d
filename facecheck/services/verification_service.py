"""
Verification service owning the reference profile and the active check
"""
import logging
import time
from typing import Any, Callable, Optional

import numpy as np

from ..config import LivenessConfig
from ..exceptions import BackendFailure, EnrollmentFaceMissing, ReferenceProfileMissing
from ..models.data_models import (
    Challenge,
    QuickCheckResult,
    ReferenceProfile,
    VerificationOutcome,
)
from .challenge_orchestrator import ChallengeOrchestrator
from .gesture_detectors import has_live_expression
from .match_scorer import score
from .vision_backend import decode_image, detect_faces

logger = logging.getLogger(__name__)


class VerificationService:
    """
    Holds the enrolled reference profile and at most one active challenge
    session.

    Enrolling a new reference replaces the profile as a whole and cancels
    the active session; a cancelled session never reports an outcome.
    """

    def __init__(self, backend, config: Optional[LivenessConfig] = None):
        self.backend = backend
        self.config = config or LivenessConfig()
        self._reference: Optional[ReferenceProfile] = None
        self._active: Optional[ChallengeOrchestrator] = None

    @property
    def reference(self) -> Optional[ReferenceProfile]:
        return self._reference

    @property
    def has_reference(self) -> bool:
        return self._reference is not None

    @property
    def active_session(self) -> Optional[ChallengeOrchestrator]:
        return self._active

    async def create_reference_profile(self, frame: Optional[np.ndarray]) -> ReferenceProfile:
        """
        Extract a reference profile from a still image.

        Args:
            frame: Decoded BGR image

        Returns:
            ReferenceProfile: Descriptor of the single face in the image

        Raises:
            EnrollmentFaceMissing: If the image holds no face or more than one
            BackendFailure: If the vision backend failed
        """
        if frame is None or frame.size == 0:
            raise EnrollmentFaceMissing("Failed to process the uploaded image.")

        try:
            faces = await detect_faces(self.backend, frame)
        except BackendFailure:
            raise
        except Exception as e:
            raise BackendFailure(f"Vision backend failed during enrollment: {e}") from e

        if not faces:
            raise EnrollmentFaceMissing("No face detected in the uploaded image.")
        if len(faces) > 1:
            raise EnrollmentFaceMissing(
                f"{len(faces)} faces detected in the uploaded image. Exactly one face is required."
            )

        return ReferenceProfile(descriptor=faces[0].descriptor, created_at=time.time())

    async def enroll(self, frame: Optional[np.ndarray]) -> ReferenceProfile:
        """
        Enroll a new reference face.

        On success the previous profile is replaced and any active session is
        cancelled. On failure the previous profile and session are untouched.
        """
        profile = await self.create_reference_profile(frame)

        if self._active is not None:
            logger.info(f"Reference replaced, cancelling session {self._active.session_id}")
            self._active.stop()
            self._active = None
        self._reference = profile

        logger.info(f"Reference profile enrolled ({profile.descriptor.size}-d descriptor)")
        return profile

    async def enroll_image(self, image_bytes: bytes) -> ReferenceProfile:
        """Decode an uploaded image and enroll it"""
        return await self.enroll(decode_image(image_bytes))

    def start_check(
        self,
        frame_source: Optional[Callable[[], Any]] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        on_complete: Optional[Callable[[VerificationOutcome], None]] = None,
        on_challenge: Optional[Callable[[Challenge], None]] = None
    ) -> ChallengeOrchestrator:
        """
        Create the challenge session for the enrolled reference.

        A session that is still active is cancelled first. The returned
        orchestrator is IDLE; drive it with run() or tick().

        Raises:
            ReferenceProfileMissing: If no reference face has been enrolled
        """
        if self._reference is None:
            raise ReferenceProfileMissing("Please upload a reference image before starting the check.")

        if self._active is not None:
            self._active.stop()

        self._active = ChallengeOrchestrator(
            backend=self.backend,
            reference=self._reference,
            config=self.config,
            frame_source=frame_source,
            on_progress=on_progress,
            on_complete=on_complete,
            on_challenge=on_challenge
        )
        return self._active

    def cancel_check(self) -> None:
        if self._active is not None:
            self._active.stop()

    async def quick_check(self, frame: np.ndarray) -> Optional[QuickCheckResult]:
        """
        Single-frame liveness and match check against the reference.

        Liveness here is the expression signal only (a clear smile or
        surprise) and does not replace the challenge session.

        Returns:
            QuickCheckResult: Result for the first face, or None when no face
            is visible

        Raises:
            ReferenceProfileMissing: If no reference face has been enrolled
            BackendFailure: If the vision backend failed
        """
        if self._reference is None:
            raise ReferenceProfileMissing("Please upload a reference image before starting the check.")

        try:
            faces = await detect_faces(self.backend, frame)
        except BackendFailure:
            raise
        except Exception as e:
            raise BackendFailure(f"Vision backend failed: {e}") from e

        if not faces:
            return None

        face = faces[0]
        try:
            match = score(face.descriptor, self._reference.descriptor, self.config.match_threshold)
        except ValueError as e:
            raise BackendFailure(f"Descriptor does not match the reference: {e}") from e
        return QuickCheckResult(
            is_live=has_live_expression(face, self.config.smile_threshold),
            is_match=match.is_match,
            match_rate=match.match_rate
        )
