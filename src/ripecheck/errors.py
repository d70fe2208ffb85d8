"""Exceptions raised by the classification pipeline.

Model and catalog load failures are soft and never surface here: they are
logged and absorbed where they happen. Everything below aborts the current
classification call only.
"""

from __future__ import annotations


class RipeCheckError(Exception):
    """Base class for pipeline failures visible to callers."""


class PreprocessError(RipeCheckError, ValueError):
    """The input could not be turned into a model tensor."""


class InferenceError(RipeCheckError, RuntimeError):
    """The runtime failed while producing a prediction."""


class UnsupportedOutputError(InferenceError):
    """The runtime returned scores the category mapper cannot interpret."""
