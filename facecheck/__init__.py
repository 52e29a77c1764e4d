"""
Face liveness check: gesture challenges interleaved with reference face matching
"""

__version__ = "1.0.0"
