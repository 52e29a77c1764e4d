"""
Shared fixtures: synthetic faces and scripted vision backends
"""
import asyncio
import time

import numpy as np
import pytest

from facecheck.config import LivenessConfig
from facecheck.models.data_models import ChallengeType, Face, ReferenceProfile

DESCRIPTOR_SIZE = 128


def eye_with_ear(ear: float, width: float = 10.0, x: float = 0.0) -> np.ndarray:
    """6-point eye contour whose eye aspect ratio is exactly `ear`"""
    half = ear * width / 2.0
    return np.array([
        [x, 0.0],                       # p0 corner
        [x + 0.3 * width, -half],       # p1 upper lid
        [x + 0.7 * width, -half],       # p2 upper lid
        [x + width, 0.0],               # p3 corner
        [x + 0.7 * width, half],        # p4 lower lid
        [x + 0.3 * width, half],        # p5 lower lid
    ])


def reference_descriptor() -> np.ndarray:
    descriptor = np.zeros(DESCRIPTOR_SIZE)
    descriptor[0] = 1.0
    return descriptor


def descriptor_with_rate(match_rate: float) -> np.ndarray:
    """Descriptor whose match rate against reference_descriptor() is `match_rate`"""
    descriptor = reference_descriptor()
    descriptor[1] = 1.0 - match_rate / 100.0
    return descriptor


def make_face(
    left_ear: float = 0.3,
    right_ear: float = 0.3,
    happy: float = 0.0,
    surprised: float = 0.0,
    match_rate: float = 95.0
) -> Face:
    left_eye = eye_with_ear(left_ear, x=0.0)
    right_eye = eye_with_ear(right_ear, x=30.0)
    return Face(
        bbox=(0, 0, 100, 100),
        landmarks=np.vstack([left_eye, right_eye]),
        left_eye=left_eye,
        right_eye=right_eye,
        expressions={"happy": happy, "surprised": surprised, "neutral": 1.0 - happy},
        descriptor=descriptor_with_rate(match_rate)
    )


def open_eyes(**kwargs) -> Face:
    return make_face(left_ear=0.3, right_ear=0.3, **kwargs)


def blinking(**kwargs) -> Face:
    return make_face(left_ear=0.1, right_ear=0.1, **kwargs)


def smiling(**kwargs) -> Face:
    return make_face(happy=0.9, **kwargs)


class ScriptedBackend:
    """
    Vision backend returning one scripted entry per detect() call.

    Entries are lists of faces or exceptions to raise. Once the script is
    exhausted every call returns no faces.
    """

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if not self.script:
            return []
        entry = self.script.pop(0)
        if isinstance(entry, BaseException):
            raise entry
        return entry


class AsyncScriptedBackend(ScriptedBackend):
    """Asynchronous variant that can be held until release() is called"""

    def __init__(self, script=None):
        super().__init__(script)
        self.gate = asyncio.Event()
        self.gate.set()
        self.in_flight = 0

    def hold(self):
        self.gate.clear()

    def release(self):
        self.gate.set()

    async def detect(self, frame):
        self.in_flight += 1
        try:
            await self.gate.wait()
            return ScriptedBackend.detect(self, frame)
        finally:
            self.in_flight -= 1


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def frame():
    return np.zeros((480, 640, 3), dtype=np.uint8)


@pytest.fixture
def reference():
    return ReferenceProfile(descriptor=reference_descriptor(), created_at=time.time())


@pytest.fixture
def liveness_config():
    return LivenessConfig(
        blink_threshold=0.2,
        smile_threshold=0.7,
        match_threshold=80.0,
        challenge_sequence=(ChallengeType.BLINK, ChallengeType.SMILE),
        max_attempts_per_challenge=3,
        challenge_timeout_seconds=10.0,
        sampling_interval_seconds=0.0
    )


@pytest.fixture
def clock():
    return FakeClock()
