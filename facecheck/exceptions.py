"""
Exceptions raised by the liveness check
"""


class FaceCheckError(Exception):
    """Base class for liveness check errors"""


class BackendFailure(FaceCheckError):
    """The vision backend failed; fatal for the session that called it"""


class EnrollmentFaceMissing(FaceCheckError, ValueError):
    """The enrollment image did not contain exactly one detectable face"""


class ReferenceProfileMissing(FaceCheckError):
    """A check was requested before a reference face was enrolled"""
