from __future__ import annotations


class ReflectaError(ValueError):
    pass


class InvalidArgument(ReflectaError):
    pass


class NotFound(ReflectaError):
    pass


class OutOfRange(ReflectaError):
    pass


class AnalyzerCallError(ReflectaError):
    """Transport-level failure talking to an LLM provider (not a parse failure)."""


class AnalysisTimeout(ReflectaError):
    pass
