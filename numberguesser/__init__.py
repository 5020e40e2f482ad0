"""Number Guesser: a minimal seeded guessing game used as the reference engine."""

from .numberguesser_game import NumberGuesserEngine

__all__ = ["NumberGuesserEngine"]
