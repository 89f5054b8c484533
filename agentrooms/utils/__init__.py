"""Utility modules for configuration, logging, parsing, and completion backends."""

from .decision_parser import DecisionParser
from .reasoning import split_reasoning, remove_reasoning

__all__ = [
    'DecisionParser',
    'split_reasoning',
    'remove_reasoning',
]
