"""
Identity resolver.

Turns an identity reference (a SID string, ``DOMAIN\\name`` or a bare name)
read from a server into a canonical IdentityRecord. Resolution walks an
ordered list of strategies (see strategies.py); the first one that applies
decides the outcome. Strategies only read the cache: the resolver applies the
writes they return, so every write happens in one place.

A SID translated to a name is resolved once more by that name so that a
richer record already in the cache wins. The number of such re-entries is
bounded by ``max_reentry``.
"""

from dataclasses import replace
from typing import Callable, Optional, Sequence, Tuple

from ..exceptions import UnresolvableIdentityError
from ..models import IdentityRecord, ServerContext
from ..utils.cache_manager import ResolutionCache
from ..utils.logging import debug, log_step
from .references import parse_reference
from .steps import ResolutionState, unresolved_record
from .strategies import DEFAULT_STRATEGIES

DEFAULT_MAX_REENTRY = 1


class IdentityResolver:
    """
    Resolve identity references against a directory collaborator.

    Args:
        directory: DirectoryCollaborator used for every lookup
        cache: Session cache; a fresh one is created when omitted
        max_reentry: How many translated names may be resolved in turn
        strategies: Ordered strategy functions (defaults to DEFAULT_STRATEGIES)
    """

    def __init__(
        self,
        directory,
        cache: Optional[ResolutionCache] = None,
        max_reentry: int = DEFAULT_MAX_REENTRY,
        strategies: Sequence[Callable] = DEFAULT_STRATEGIES,
    ):
        if max_reentry < 0:
            raise ValueError("max_reentry must be >= 0")
        self.directory = directory
        self.cache = cache if cache is not None else ResolutionCache()
        self.max_reentry = max_reentry
        self.strategies = tuple(strategies)

    def resolve(self, reference: str, context: ServerContext, strict: bool = False) -> IdentityRecord:
        """
        Resolve a single identity reference read from ``context``'s server.

        Never raises for an unresolvable reference unless ``strict`` is set;
        the returned record has ``unresolved_reference`` populated instead.

        Raises:
            UnresolvableIdentityError: strict mode and every fallback failed
        """
        record, _ = self.trace(reference, context)
        if strict and not record.resolved:
            raise UnresolvableIdentityError(reference, record)
        return record

    def trace(self, reference: str, context: ServerContext) -> Tuple[IdentityRecord, ResolutionState]:
        """Resolve a reference and also report the state the resolution finished in."""
        return self._resolve(reference, context, depth=0)

    def _resolve(
        self, reference: str, context: ServerContext, depth: int
    ) -> Tuple[IdentityRecord, ResolutionState]:
        parsed = parse_reference(reference)
        if not parsed.name:
            return unresolved_record(reference), ResolutionState.UNRESOLVED

        for strategy in self.strategies:
            result = strategy(parsed, context, self.cache.view(), self.directory)
            if result is None:
                continue

            self.cache.apply(result.writes)
            log_step(context.netbios_name, reference, result.state.value, depth)

            if result.reentry and result.record.resolved:
                if depth >= self.max_reentry:
                    debug(f"[{context.netbios_name}] Re-entry limit reached for {reference}")
                    return result.record, result.state
                inner, _ = self._resolve(result.reentry, context, depth + 1)
                if inner.resolved:
                    return replace(inner, original_reference=reference), ResolutionState.DIRECTORY_RECURSION
            return result.record, result.state

        return unresolved_record(reference), ResolutionState.UNRESOLVED


def resolve_identity(
    reference: str,
    context: ServerContext,
    directory,
    cache: Optional[ResolutionCache] = None,
    max_reentry: int = DEFAULT_MAX_REENTRY,
    strict: bool = False,
) -> IdentityRecord:
    """Resolve one reference with a throwaway resolver (pass ``cache`` to share results)."""
    resolver = IdentityResolver(directory, cache=cache, max_reentry=max_reentry)
    return resolver.resolve(reference, context, strict=strict)
