"""
FastAPI application exposing enrollment and the live liveness check
"""
import asyncio
import logging

from fastapi import FastAPI, File, HTTPException, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import config
from .exceptions import BackendFailure, EnrollmentFaceMissing, ReferenceProfileMissing
from .models.data_models import FeedbackType, VerificationFeedback
from .services.verification_service import VerificationService
from .services.vision_backend import MediaPipeDeepFaceBackend, decode_image
from .services.websocket_handler import WebSocketHandler

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Face Liveness Check API",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

vision_backend = MediaPipeDeepFaceBackend(
    model_path=config.MEDIAPIPE_MODEL_PATH,
    descriptor_model=config.DESCRIPTOR_MODEL,
    max_faces=config.MAX_FACES
)
verification_service = VerificationService(vision_backend, config.liveness_config())
websocket_handler = WebSocketHandler()


@app.get("/")
async def root():
    return {
        "message": "Face Liveness Check API",
        "status": "running",
        "version": __version__
    }


@app.get("/health")
async def health():
    active = verification_service.active_session
    return {
        "status": "healthy",
        "services": {
            "api": "operational",
            "liveness": "operational"
        },
        "reference_enrolled": verification_service.has_reference,
        "active_session": active.state.value if active is not None else None
    }


@app.post("/api/enroll")
async def enroll(file: UploadFile = File(...)):
    """Upload the reference image; replaces any previous reference"""
    contents = await file.read()
    try:
        profile = await verification_service.enroll_image(contents)
    except EnrollmentFaceMissing as e:
        raise HTTPException(status_code=422, detail=str(e))
    except BackendFailure as e:
        logger.error(f"Enrollment failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "message": "Reference image processed successfully.",
        "descriptor_length": int(profile.descriptor.size)
    }


@app.post("/api/check")
async def quick_check(file: UploadFile = File(...)):
    """Single-frame liveness and match check against the reference"""
    frame = decode_image(await file.read())
    if frame is None:
        raise HTTPException(status_code=422, detail="Failed to process the uploaded image.")

    try:
        result = await verification_service.quick_check(frame)
    except ReferenceProfileMissing as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BackendFailure as e:
        logger.error(f"Quick check failed: {e}")
        raise HTTPException(status_code=503, detail=str(e))

    if result is None:
        return {"face_detected": False, "message": "No faces detected."}

    return {
        "face_detected": True,
        "is_live": result.is_live,
        "is_match": result.is_match,
        "match_rate": result.match_rate
    }


@app.websocket("/ws/verify")
async def verify(websocket: WebSocket):
    """
    Run a challenge session over a WebSocket.

    The client streams {"type": "video_frame", "frame": <base64>} messages
    and receives challenge, progress and outcome feedback until the session
    ends. Disconnecting cancels the session.
    """
    queue: asyncio.Queue = asyncio.Queue()

    try:
        orchestrator = verification_service.start_check(
            frame_source=lambda: websocket_handler.receive_video_frame(websocket),
            on_progress=lambda message: queue.put_nowait(websocket_handler.progress_feedback(message)),
            on_complete=lambda outcome: queue.put_nowait(websocket_handler.outcome_feedback(outcome)),
            on_challenge=lambda challenge: queue.put_nowait(websocket_handler.challenge_feedback(challenge))
        )
    except ReferenceProfileMissing as e:
        await websocket.accept()
        await websocket_handler.send_feedback(
            websocket,
            VerificationFeedback(type=FeedbackType.ERROR, message=str(e))
        )
        await websocket_handler.close_connection(websocket, code=1008, reason="No reference enrolled")
        return

    await websocket_handler.handle_connection(websocket, orchestrator.session_id)
    sender = asyncio.create_task(websocket_handler.forward_feedback(websocket, queue))

    close_code, close_reason = 1000, "Check finished"
    try:
        await orchestrator.run()
    except WebSocketDisconnect:
        orchestrator.stop()
        close_code = None
    except BackendFailure as e:
        queue.put_nowait(VerificationFeedback(type=FeedbackType.ERROR, message=str(e)))
        close_code, close_reason = 1011, "Vision backend failure"
    finally:
        queue.put_nowait(None)
        await sender

    if close_code is not None:
        await websocket_handler.close_connection(websocket, code=close_code, reason=close_reason)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
