"""Asynchronous reasoning generation."""

from .generator import (
    ReasoningGenerator,
    create_agent_generator,
    create_simple_generator,
    numeric_reasoning,
)
from .queue import ReasoningQueue

__all__ = [
    "ReasoningGenerator",
    "ReasoningQueue",
    "create_agent_generator",
    "create_simple_generator",
    "numeric_reasoning",
]
