"""
Vision backend turning video frames into detected faces
"""
import asyncio
import inspect
import logging
import os
import threading
from typing import Dict, List, Optional, Tuple

import cv2
import numpy as np

from ..exceptions import BackendFailure
from ..models.data_models import Face

logger = logging.getLogger(__name__)


def decode_image(image_bytes: bytes) -> Optional[np.ndarray]:
    """
    Decode an encoded image (JPEG, PNG, ...) into a BGR frame.

    Returns:
        np.ndarray: Decoded frame, or None if the bytes are not an image
    """
    if not image_bytes:
        return None
    nparr = np.frombuffer(image_bytes, np.uint8)
    frame = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    if frame is None:
        logger.error("Failed to decode image: cv2.imdecode returned None")
    return frame


async def detect_faces(backend, frame) -> List[Face]:
    """
    Call backend.detect without blocking the event loop.

    Asynchronous backends are awaited directly; synchronous ones run in the
    default executor.
    """
    if inspect.iscoroutinefunction(backend.detect):
        faces = await backend.detect(frame)
    else:
        loop = asyncio.get_running_loop()
        faces = await loop.run_in_executor(None, backend.detect, frame)
    if inspect.isawaitable(faces):
        faces = await faces
    return list(faces or [])


class VisionBackend:
    """
    Contract of the vision backend consumed by the orchestrator.

    detect() returns zero or more faces in arbitrary order; an empty list is
    not an error. Backend problems are raised as exceptions.
    """

    def detect(self, frame: np.ndarray) -> List[Face]:
        raise NotImplementedError


class MediaPipeDeepFaceBackend(VisionBackend):
    """
    Detects faces with the MediaPipe FaceLandmarker and describes them with
    DeepFace (expression probabilities and identity descriptor).

    Both models are loaded lazily on first use so the backend can be built
    without the model file or the optional libraries being present.
    """

    # FaceMesh eye contours ordered p0..p5: corners at p0/p3, upper lid p1/p2,
    # lower lid p4/p5 (p1 above p5, p2 above p4)
    LEFT_EYE_INDICES = [33, 160, 158, 133, 153, 144]
    RIGHT_EYE_INDICES = [362, 385, 387, 263, 373, 380]

    # DeepFace emotion labels renamed to the labels the detectors use
    EXPRESSION_LABELS = {
        "surprise": "surprised",
    }

    def __init__(
        self,
        model_path: Optional[str] = None,
        descriptor_model: str = "Facenet",
        max_faces: int = 2,
        target_size: Optional[Tuple[int, int]] = None
    ):
        """
        Initialize the backend.

        Args:
            model_path: Path to the MediaPipe face landmarker model file.
                        Download it with facecheck-download-model.
            descriptor_model: DeepFace model used for identity descriptors
            max_faces: Faces tracked per frame; enrollment needs at least 2 to
                       reject multi-face images
            target_size: Optional (width, height) frames are resized to before
                         landmark detection
        """
        self.model_path = model_path
        self.descriptor_model = descriptor_model
        self.max_faces = max_faces
        self.target_size = target_size
        self._face_landmarker = None
        self._deepface = None
        self._lock = threading.Lock()

    @property
    def face_landmarker(self):
        """
        Lazy initialization of the MediaPipe FaceLandmarker.

        Raises:
            BackendFailure: If the model path is missing or the model cannot be loaded
        """
        if self._face_landmarker is None:
            if self.model_path is None:
                raise BackendFailure(
                    "MediaPipe model path not provided. "
                    "Download the model using: facecheck-download-model"
                )
            if not os.path.exists(self.model_path):
                raise BackendFailure(
                    f"MediaPipe model not found at {self.model_path}. "
                    "Download it using: facecheck-download-model"
                )

            try:
                import mediapipe as mp

                base_options = mp.tasks.BaseOptions(model_asset_path=self.model_path)
                options = mp.tasks.vision.FaceLandmarkerOptions(
                    base_options=base_options,
                    running_mode=mp.tasks.vision.RunningMode.IMAGE,
                    num_faces=self.max_faces,
                    min_face_detection_confidence=0.5,
                    min_face_presence_confidence=0.5,
                    output_face_blendshapes=False,
                    output_facial_transformation_matrixes=False
                )
                self._face_landmarker = mp.tasks.vision.FaceLandmarker.create_from_options(options)
            except ImportError as e:
                raise BackendFailure("mediapipe is not installed; install facecheck[vision]") from e
            except Exception as e:
                logger.error(f"Failed to initialize MediaPipe FaceLandmarker: {e}")
                raise BackendFailure(f"Failed to initialize MediaPipe FaceLandmarker: {e}") from e

            logger.info(f"Loaded MediaPipe FaceLandmarker from {self.model_path}")

        return self._face_landmarker

    @property
    def deepface(self):
        """Lazy import of DeepFace"""
        if self._deepface is None:
            try:
                from deepface import DeepFace
            except ImportError as e:
                raise BackendFailure("deepface is not installed; install facecheck[vision]") from e
            self._deepface = DeepFace
        return self._deepface

    def preprocess_frame(self, frame: np.ndarray) -> np.ndarray:
        """
        Prepare a BGR frame for MediaPipe.

        Resizes to target_size when configured and converts BGR (OpenCV
        default) to RGB (MediaPipe requirement).
        """
        if self.target_size is not None:
            frame = cv2.resize(frame, self.target_size, interpolation=cv2.INTER_LINEAR)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def extract_landmarks(self, rgb_frame: np.ndarray) -> List[np.ndarray]:
        """
        Run the FaceLandmarker on an RGB frame.

        Returns:
            list: One (N, 2) array of normalized (x, y) landmarks per face
        """
        import mediapipe as mp

        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb_frame)
        detection_result = self.face_landmarker.detect(mp_image)

        return [
            np.array([[lm.x, lm.y] for lm in face_landmarks], dtype=np.float32)
            for face_landmarks in (detection_result.face_landmarks or [])
        ]

    def analyze_expressions(self, face_crop: np.ndarray) -> Dict[str, float]:
        """
        Expression probabilities of a face crop, in [0, 1].

        DeepFace reports percentages for angry, disgust, fear, happy, sad,
        surprise and neutral.
        """
        result = self.deepface.analyze(
            img_path=face_crop,
            actions=['emotion'],
            enforce_detection=False,
            detector_backend='skip',
            silent=True
        )
        if isinstance(result, list):
            result = result[0] if result else {}

        emotions = result.get('emotion', {}) or {}
        return {
            self.EXPRESSION_LABELS.get(label, label): float(value) / 100.0
            for label, value in emotions.items()
        }

    def compute_descriptor(self, face_crop: np.ndarray) -> np.ndarray:
        """
        Identity descriptor of a face crop.

        The embedding is L2-normalised so Euclidean distances between
        descriptors stay within [0, 2].
        """
        representations = self.deepface.represent(
            img_path=face_crop,
            model_name=self.descriptor_model,
            detector_backend='skip',
            enforce_detection=False
        )
        if not representations:
            raise BackendFailure("DeepFace returned no embedding")

        embedding = np.asarray(representations[0]["embedding"], dtype=np.float32)
        norm = np.linalg.norm(embedding)
        if norm > 0:
            embedding = embedding / norm
        return embedding

    def detect(self, frame: np.ndarray) -> List[Face]:
        """
        Detect and describe every face in a BGR frame.

        Raises:
            BackendFailure: If the frame is empty or a model is unavailable
        """
        if frame is None or frame.size == 0:
            raise BackendFailure("Cannot run detection on an empty frame")

        height, width = frame.shape[:2]
        # MediaPipe and DeepFace models are shared between executor threads
        with self._lock:
            all_landmarks = self.extract_landmarks(self.preprocess_frame(frame))

            faces = []
            for normalized in all_landmarks:
                landmarks = normalized * np.array([width, height], dtype=np.float32)
                bbox = self._bounding_box(landmarks, width, height)
                x, y, w, h = bbox
                if w <= 0 or h <= 0:
                    continue

                face_crop = frame[y:y + h, x:x + w]
                faces.append(Face(
                    bbox=bbox,
                    landmarks=landmarks,
                    left_eye=landmarks[self.LEFT_EYE_INDICES],
                    right_eye=landmarks[self.RIGHT_EYE_INDICES],
                    expressions=self.analyze_expressions(face_crop),
                    descriptor=self.compute_descriptor(face_crop)
                ))

        logger.debug(f"Detected {len(faces)} face(s) in {width}x{height} frame")
        return faces

    def close(self) -> None:
        """Release MediaPipe resources"""
        if self._face_landmarker is not None:
            self._face_landmarker.close()
            self._face_landmarker = None

    @staticmethod
    def _bounding_box(landmarks: np.ndarray, width: int, height: int) -> Tuple[int, int, int, int]:
        x_min = int(max(0, np.floor(landmarks[:, 0].min())))
        y_min = int(max(0, np.floor(landmarks[:, 1].min())))
        x_max = int(min(width, np.ceil(landmarks[:, 0].max())))
        y_max = int(min(height, np.ceil(landmarks[:, 1].max())))
        return x_min, y_min, x_max - x_min, y_max - y_min

    def __del__(self):
        """Clean up MediaPipe resources"""
        if getattr(self, "_face_landmarker", None) is not None:
            self._face_landmarker.close()
