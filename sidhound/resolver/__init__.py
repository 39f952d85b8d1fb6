# Identity resolution: reference parsing, strategies and the resolver engine.

from .engine import DEFAULT_MAX_REENTRY, IdentityResolver, resolve_identity
from .references import IdentityReference, parse_reference
from .steps import ResolutionState, StepResult

__all__ = [
    "IdentityResolver",
    "resolve_identity",
    "DEFAULT_MAX_REENTRY",
    "IdentityReference",
    "parse_reference",
    "ResolutionState",
    "StepResult",
]
