"""
WebSocket handler for real-time liveness check communication.

This module provides the WebSocketHandler class that manages WebSocket connections,
video frame reception, challenge delivery, and progress/outcome feedback during a check.
"""
import asyncio
import base64
import binascii
import json
import logging
from typing import Optional

import numpy as np
from fastapi import WebSocket, WebSocketDisconnect

from ..models.data_models import (
    Challenge,
    FeedbackType,
    VerificationFeedback,
    VerificationOutcome,
)
from .vision_backend import decode_image

logger = logging.getLogger(__name__)


class WebSocketHandler:
    """
    Manages WebSocket communication for a liveness check.

    This class encapsulates all WebSocket-related functionality including:
    - Connection lifecycle management
    - Video frame reception and decoding
    - Challenge, progress and outcome delivery
    """

    async def handle_connection(
        self,
        websocket: WebSocket,
        session_id: str
    ) -> None:
        """
        Accept the WebSocket connection for a session.

        Args:
            websocket: FastAPI WebSocket connection object
            session_id: Unique session identifier
        """
        await websocket.accept()
        logger.info(f"WebSocket connection established for session {session_id}")

    async def receive_video_frame(self, websocket: WebSocket) -> Optional[np.ndarray]:
        """
        Receive and decode a video frame from the client.

        Expects a JSON message {"type": "video_frame", "frame": <base64>}.

        Args:
            websocket: FastAPI WebSocket connection object

        Returns:
            Decoded BGR frame, or None if the message is not a video frame or
            cannot be decoded

        Raises:
            WebSocketDisconnect: If the client disconnected
        """
        try:
            data = await websocket.receive_text()
            message = json.loads(data)

            if message.get("type") == "video_frame":
                frame_data = message.get("frame")
                if frame_data:
                    return self._decode_frame(frame_data)

            return None

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected while receiving frame")
            raise

        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON received: {e}")
            return None

        except (AttributeError, TypeError):
            logger.error("Frame message must be a JSON object")
            return None

    def challenge_feedback(self, challenge: Challenge) -> VerificationFeedback:
        return VerificationFeedback(
            type=FeedbackType.CHALLENGE_ISSUED,
            message=f"Challenge: {challenge.instruction}",
            data={
                "challenge_id": challenge.challenge_id,
                "instruction": challenge.instruction,
                "timeout_seconds": challenge.timeout_seconds,
                "max_attempts": challenge.max_attempts,
                "type": challenge.type.value
            }
        )

    def progress_feedback(self, message: str) -> VerificationFeedback:
        return VerificationFeedback(type=FeedbackType.PROGRESS, message=message)

    def outcome_feedback(self, outcome: VerificationOutcome) -> VerificationFeedback:
        if outcome.completed:
            message = "Liveness check passed"
        else:
            reason = outcome.reason.value if outcome.reason else "failed"
            message = f"Liveness check failed: {reason}"
        return VerificationFeedback(
            type=FeedbackType.OUTCOME,
            message=message,
            data=outcome.to_dict()
        )

    async def send_challenge(
        self,
        websocket: WebSocket,
        challenge: Challenge
    ) -> None:
        """Send a challenge instruction to the client."""
        await self.send_feedback(websocket, self.challenge_feedback(challenge))
        logger.debug(f"Sent challenge {challenge.challenge_id}: {challenge.instruction}")

    async def send_feedback(
        self,
        websocket: WebSocket,
        feedback: VerificationFeedback
    ) -> None:
        """
        Send feedback to the client as {"type", "message", "data"} JSON.

        Args:
            websocket: FastAPI WebSocket connection object
            feedback: VerificationFeedback object containing message details
        """
        try:
            feedback_dict = {
                "type": feedback.type.value,
                "message": feedback.message,
                "data": feedback.data
            }
            await websocket.send_json(feedback_dict)
            logger.debug(f"Sent feedback: {feedback.type.value}")

        except Exception as e:
            logger.error(f"Error sending feedback: {e}")
            raise

    async def forward_feedback(
        self,
        websocket: WebSocket,
        queue: "asyncio.Queue[Optional[VerificationFeedback]]"
    ) -> int:
        """
        Send queued feedback in order until a None sentinel is received.

        Feedback queued after the client went away is drained and dropped.

        Returns:
            int: Number of messages delivered
        """
        sent = 0
        connected = True
        while True:
            feedback = await queue.get()
            if feedback is None:
                return sent
            if not connected:
                continue
            try:
                await self.send_feedback(websocket, feedback)
                sent += 1
            except (WebSocketDisconnect, RuntimeError, OSError):
                logger.info("Client gone, dropping remaining feedback")
                connected = False

    async def close_connection(
        self,
        websocket: WebSocket,
        code: int = 1000,
        reason: str = "Normal closure"
    ) -> None:
        """
        Close the WebSocket connection gracefully.

        Args:
            websocket: FastAPI WebSocket connection object
            code: WebSocket close code (default: 1000 for normal closure)
            reason: Human-readable reason for closure
        """
        try:
            await websocket.close(code=code, reason=reason)
            logger.info(f"WebSocket closed: {reason} (code: {code})")
        except RuntimeError as e:
            logger.error(f"Error closing WebSocket: {e}")

    def _decode_frame(self, frame_data: str) -> Optional[np.ndarray]:
        """
        Decode a base64-encoded video frame.

        Args:
            frame_data: Base64-encoded image data (may include data URL prefix)

        Returns:
            Decoded frame as numpy array (BGR format), or None if decoding fails
        """
        # Remove data URL prefix if present (e.g., "data:image/jpeg;base64,")
        if "," in frame_data:
            frame_data = frame_data.split(",", 1)[1]

        try:
            img_bytes = base64.b64decode(frame_data)
        except (binascii.Error, ValueError) as e:
            logger.error(f"Error decoding frame: {e}")
            return None

        return decode_image(img_bytes)
