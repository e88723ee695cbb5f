"""Exceptions raised by the creative engine.

Only MissingInputError, InvalidImageError and PipelineError ever reach the
caller. LayoutSourceError and EncodingError are raised internally and recovered
by the pipeline (fallback layout, per-unit isolation).
"""


class CreativeEngineError(RuntimeError):
    """Base class for all engine errors."""


class MissingInputError(CreativeEngineError):
    """Raised when a required input (image or headline text) is missing."""


class InvalidImageError(CreativeEngineError):
    """Raised when the image payload cannot be decoded."""


class PipelineError(CreativeEngineError):
    """Raised when the pipeline produced no artifacts at all."""


class LayoutSourceError(CreativeEngineError):
    """Raised when a layout source errors or returns unusable data."""


class EncodingError(CreativeEngineError):
    """Raised when one size/format unit cannot be encoded."""

    def __init__(self, unit: str, message: str) -> None:
        super().__init__(f"{unit}: {message}")
        self.unit = unit
