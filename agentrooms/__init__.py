"""Multi-agent chat rooms with streaming selection and termination strategies."""

__version__ = "0.1.0"
