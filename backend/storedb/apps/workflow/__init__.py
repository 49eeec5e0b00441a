from .engine import TransitionError, apply_transition
from .registry import WORKFLOWS

__all__ = ["TransitionError", "WORKFLOWS", "apply_transition"]
