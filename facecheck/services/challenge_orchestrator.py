"""
Challenge Orchestrator driving the frame-sampling loop of a liveness check
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, List, Optional

from ..config import LivenessConfig
from ..exceptions import BackendFailure, ReferenceProfileMissing
from ..models.data_models import (
    AbortReason,
    Challenge,
    ChallengeResult,
    ChallengeSession,
    ChallengeStatus,
    ChallengeType,
    Face,
    ReferenceProfile,
    SessionState,
    VerificationOutcome,
)
from .challenge_engine import ChallengeEngine
from .gesture_detectors import detect_gesture
from .match_scorer import score
from .vision_backend import detect_faces

logger = logging.getLogger(__name__)


class ChallengeOrchestrator:
    """
    State machine sequencing the liveness challenges of one session.

    Each tick takes one frame, asks the vision backend for faces, evaluates
    the detector of the active challenge only and, when the gesture is seen,
    scores the face against the reference profile. A passing score advances
    to the next challenge; a failing one is recorded and the same challenge is
    prompted again until its attempt or time budget runs out.

    The orchestrator is driven cooperatively: run() awaits the frame source
    and the backend and sleeps between ticks, and tick() can be called
    directly to single-step the loop.
    """

    START_MESSAGE = "Starting liveness and face recognition check..."
    NO_FACE_MESSAGE = "No face detected. Please ensure your face is visible to the camera."
    SUCCESS_MESSAGE = "Liveness and face recognition checks completed successfully!"
    FAILURE_MESSAGE = "Liveness and face recognition checks failed."
    CANCEL_MESSAGE = "Check cancelled."

    REPEAT_INSTRUCTIONS = {
        ChallengeType.BLINK: "Please open your eyes, then blink again.",
        ChallengeType.SMILE: "Please relax your face, then smile again.",
    }

    def __init__(
        self,
        backend,
        reference: Optional[ReferenceProfile],
        config: Optional[LivenessConfig] = None,
        frame_source: Optional[Callable[[], Any]] = None,
        on_progress: Optional[Callable[[str], None]] = None,
        on_complete: Optional[Callable[[VerificationOutcome], None]] = None,
        on_challenge: Optional[Callable[[Challenge], None]] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            backend: Vision backend exposing detect(frame) -> list of Face,
                     either synchronous or returning an awaitable
            reference: Enrolled reference profile
            config: Thresholds, challenge sequence and budgets
            frame_source: Callable returning the next frame, None when there is
                          nothing to process, or an awaitable of either
            on_progress: Called with every progress message, in order
            on_complete: Called once with the outcome of a finished or aborted
                         session; never called for a cancelled one
            on_challenge: Called whenever a challenge becomes active
            session_id: Session identifier, generated when omitted
            clock: Monotonic clock used for the per-challenge time budget

        Raises:
            ReferenceProfileMissing: If no reference profile is given
        """
        if reference is None:
            raise ReferenceProfileMissing("A reference face must be enrolled before starting a check")

        self.backend = backend
        self.reference = reference
        self.config = config or LivenessConfig()
        self.frame_source = frame_source
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_challenge = on_challenge
        self.clock = clock

        self.engine = ChallengeEngine(self.config)
        sequence = self.engine.generate_challenge_sequence(session_id)
        self.session = ChallengeSession(
            session_id=sequence.session_id,
            challenges=sequence.challenges,
            results=[
                ChallengeResult(challenge_id=c.challenge_id, type=c.type)
                for c in sequence.challenges
            ]
        )

        self._outcome: Optional[VerificationOutcome] = None
        self._tick_in_flight = False
        self._armed = True
        self._challenge_started_at: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def progress(self) -> List[str]:
        return self.session.progress

    @property
    def outcome(self) -> Optional[VerificationOutcome]:
        return self._outcome

    @property
    def _running(self) -> bool:
        return self.session.state == SessionState.RUNNING

    def start(self) -> None:
        """
        Move the session from IDLE to RUNNING and activate the first challenge.

        Starting a running session is a no-op.

        Raises:
            RuntimeError: If the session already reached a terminal state
        """
        if self.session.state == SessionState.RUNNING:
            return
        if self.session.is_terminal:
            raise RuntimeError(f"Session {self.session_id} has already finished")

        self.session.state = SessionState.RUNNING
        logger.info(f"Session {self.session_id} started with challenges "
                    f"{[c.type.value for c in self.session.challenges]}")
        self._emit(self.START_MESSAGE)
        if self._running:
            self._activate_challenge(previous=None)

    def stop(self) -> None:
        """
        Cancel the session.

        Idempotent, and a no-op once the session has completed or aborted.
        The outcome callback is never invoked for a cancelled session.
        """
        if self.session.is_terminal:
            return

        self.session.state = SessionState.ABORTED
        self.session.abort_reason = AbortReason.CANCELLED
        logger.info(f"Session {self.session_id} cancelled")
        self._emit(self.CANCEL_MESSAGE)
        self._cancel_task()

    async def tick(self, frame) -> SessionState:
        """
        Process one frame.

        Starts the session if it is still IDLE. Ticks on a terminal session
        are ignored, and a tick arriving while a previous one is still waiting
        for the backend is skipped.

        Args:
            frame: Frame handed to the vision backend

        Returns:
            SessionState: State after processing the frame

        Raises:
            BackendFailure: If the backend failed; the session is aborted first
        """
        if self.session.state == SessionState.IDLE:
            self.start()
        if self.session.state != SessionState.RUNNING:
            return self.session.state

        if self._tick_in_flight:
            logger.warning(f"Session {self.session_id}: previous frame still in progress, skipping tick")
            return self.session.state

        self._tick_in_flight = True
        try:
            if self._check_timeout():
                return self.session.state

            faces = await self._detect(frame)

            # Cancelled while waiting for the backend
            if self.session.state != SessionState.RUNNING:
                return self.session.state

            self.session.frames_processed += 1
            self._evaluate(faces)
        finally:
            self._tick_in_flight = False

        return self.session.state

    async def run(self) -> SessionState:
        """
        Sample frames until the session completes, aborts or is cancelled.

        Returns:
            SessionState: Terminal state of the session

        Raises:
            BackendFailure: If the backend failed during a tick
            RuntimeError: If no frame source was configured
        """
        if self.frame_source is None:
            raise RuntimeError("A frame source is required to run the sampling loop")

        if self.session.state == SessionState.IDLE:
            self.start()

        try:
            while self.session.state == SessionState.RUNNING:
                if self._check_timeout():
                    break

                frame = self.frame_source()
                if inspect.isawaitable(frame):
                    try:
                        # A stalled source must not outlive the challenge's time budget
                        frame = await asyncio.wait_for(frame, self._remaining_time())
                    except asyncio.TimeoutError:
                        self._check_timeout()
                        continue

                if frame is None:
                    self._check_timeout()
                elif self.session.state == SessionState.RUNNING:
                    await self.tick(frame)

                if self.session.state == SessionState.RUNNING:
                    await asyncio.sleep(self.config.sampling_interval_seconds)
        except asyncio.CancelledError:
            self.stop()
            raise

        return self.session.state

    def start_background(self) -> asyncio.Task:
        """Schedule run() on the running event loop; stop() cancels it"""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def _detect(self, frame) -> List[Face]:
        try:
            faces = await detect_faces(self.backend, frame)
        except Exception as e:
            if self.session.state != SessionState.RUNNING:
                logger.debug(f"Session {self.session_id}: discarding backend error after cancellation: {e}")
                return []
            if isinstance(e, BackendFailure):
                self._fail_backend(e)
                raise
            failure = BackendFailure(f"Vision backend failed: {e}")
            self._fail_backend(failure)
            raise failure from e

        return faces

    def _fail_backend(self, failure: BackendFailure) -> None:
        if self.session.state != SessionState.RUNNING:
            return
        logger.error(f"Session {self.session_id}: {failure}")
        self._abort(AbortReason.BACKEND_ERROR, f"An error occurred during the check: {failure}")

    def _evaluate(self, faces: List[Face]) -> None:
        challenge = self.session.current_challenge
        result = self.session.current_result
        label = self.engine.label_for(challenge)

        if not faces:
            self._emit(self.NO_FACE_MESSAGE)
            return

        # Always act on the first detection
        face = faces[0]

        if not detect_gesture(challenge.type, face, self.config):
            self._armed = True
            self._emit(challenge.instruction)
            return

        if not self._armed:
            # Gesture still held over from the previous challenge of the same type
            self._emit(self.REPEAT_INSTRUCTIONS[challenge.type])
            return

        result.status = ChallengeStatus.DETECTED
        self._emit(f"{label} detected! Proceeding to face recognition...")
        # Callbacks may stop the session between any two steps
        if not self._running:
            return

        try:
            match = score(face.descriptor, self.reference.descriptor, self.config.match_threshold)
        except ValueError as e:
            failure = BackendFailure(f"Descriptor does not match the reference: {e}")
            self._fail_backend(failure)
            raise failure from e

        result.attempts.append(match)
        logger.info(f"Session {self.session_id}: {challenge.challenge_id} attempt "
                    f"{len(result.attempts)} match_rate={match.match_rate:.2f} is_match={match.is_match}")

        if match.is_match:
            result.status = ChallengeStatus.PASSED
            self._emit(f"{label} SUCCESS: Match Rate {match.match_rate:.2f}%")
            if self._running:
                self._advance(challenge)
            return

        result.status = ChallengeStatus.FAILED
        self._emit(f"{label} FAILED: Match Rate {match.match_rate:.2f}%")

        if self._running and len(result.attempts) >= challenge.max_attempts:
            self._abort(
                AbortReason.TIMEOUT,
                f"{label} challenge failed after {len(result.attempts)} attempts."
            )

    def _advance(self, previous: Challenge) -> None:
        self.session.current_index += 1
        if self.session.current_index >= len(self.session.challenges):
            self._complete()
            return
        self._activate_challenge(previous=previous)

    def _activate_challenge(self, previous: Optional[Challenge]) -> None:
        challenge = self.session.current_challenge
        self._challenge_started_at = self.clock()
        # The same gesture must be released before it can count again
        self._armed = previous is None or previous.type != challenge.type

        logger.info(f"Session {self.session_id}: challenge {challenge.challenge_id} active")
        if previous is not None:
            self._emit(challenge.instruction)
        if self.on_challenge is not None and self._running:
            self.on_challenge(challenge)

    def _remaining_time(self) -> Optional[float]:
        """Seconds left for the active challenge, None without a time budget"""
        challenge = self.session.current_challenge
        if challenge is None or challenge.timeout_seconds is None or self._challenge_started_at is None:
            return None
        return max(0.0, challenge.timeout_seconds - (self.clock() - self._challenge_started_at))

    def _check_timeout(self) -> bool:
        """Abort the session when the active challenge ran out of time"""
        if self.session.state != SessionState.RUNNING:
            return False

        challenge = self.session.current_challenge
        if challenge.timeout_seconds is None or self._challenge_started_at is None:
            return False

        elapsed = self.clock() - self._challenge_started_at
        if elapsed < challenge.timeout_seconds:
            return False

        label = self.engine.label_for(challenge)
        self._abort(
            AbortReason.TIMEOUT,
            f"{label} challenge timed out after {challenge.timeout_seconds:g} seconds."
        )
        return True

    def _complete(self) -> None:
        if self.session.is_terminal:
            return
        all_pass = all(r.passed for r in self.session.results)
        self.session.state = SessionState.COMPLETED
        logger.info(f"Session {self.session_id} completed, all_pass={all_pass}")
        self._emit(self.SUCCESS_MESSAGE if all_pass else self.FAILURE_MESSAGE)
        self._finish(completed=all_pass)

    def _abort(self, reason: AbortReason, message: str) -> None:
        if self.session.is_terminal:
            return
        self.session.state = SessionState.ABORTED
        self.session.abort_reason = reason
        logger.info(f"Session {self.session_id} aborted: {reason.value}")
        self._emit(message)
        if reason != AbortReason.CANCELLED:
            self._finish(completed=False)

    def _finish(self, completed: bool) -> None:
        if self._outcome is not None or self.session.abort_reason == AbortReason.CANCELLED:
            return

        rates = [r.match_rate for r in self.session.results if r.match_rate is not None]
        overall = round(sum(rates) / len(rates), 2) if rates else None

        self._outcome = VerificationOutcome(
            session_id=self.session_id,
            completed=completed,
            state=self.session.state,
            reason=self.session.abort_reason,
            per_challenge_results=list(self.session.results),
            overall_match_rate=overall
        )
        if self.on_complete is not None:
            self.on_complete(self._outcome)

    def _emit(self, message: str) -> None:
        self.session.progress.append(message)
        logger.debug(f"Session {self.session_id}: {message}")
        if self.on_progress is not None:
            self.on_progress(message)

    def _cancel_task(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
