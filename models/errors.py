"""
models/errors.py
────────────────
Exception taxonomy for the recommendation engine.

  ConfigValidationError  — malformed weights; fatal at construction time
  ComputationError       — one pairwise / group scoring attempt failed
  CacheUnavailableError  — remote cache tier unreachable or timed out
  InvalidInputError      — empty or malformed profile / candidate input

Only ConfigValidationError and InvalidInputError ever reach a caller of
RecommendationEngine; the other two are recovered where they are raised.
"""


class EngineError(Exception):
    """Base class for every engine-specific error."""


class ConfigValidationError(EngineError):
    pass


class ComputationError(EngineError):
    pass


class CacheUnavailableError(EngineError):
    pass


class InvalidInputError(EngineError):
    pass
