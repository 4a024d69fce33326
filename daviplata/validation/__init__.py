"""Input validation package."""

from daviplata.validation.validator import MovementValidator

__all__ = ["MovementValidator"]
