# Logging front-end for sidhound modules.
#
# Output goes through the rich console in console.py. This module gates it on
# verbosity and owns the trace lines the resolver, the cache and the group
# expander emit, so their wording stays in one place.

import os
from typing import Any, Tuple

from . import console

DEBUG_ENV = "SIDHOUND_DEBUG"

_VERBOSE = False
_DEBUG = False


def set_verbosity(verbose: bool, debug_flag: bool):
    """Set verbosity for the console; --debug is also exported for worker threads."""
    global _VERBOSE, _DEBUG
    _VERBOSE = verbose
    _DEBUG = debug_flag
    console.set_verbosity(verbose, debug_flag)

    if debug_flag:
        os.environ[DEBUG_ENV] = "1"


def debug_enabled() -> bool:
    return _DEBUG or bool(os.getenv(DEBUG_ENV))


status = console.status
error = console.error


def good(msg: str):
    """Success message, verbose/debug only."""
    if _VERBOSE or _DEBUG:
        console.good(msg)


def info(msg: str):
    if _VERBOSE or _DEBUG:
        console.info(msg)


def warn(msg: str, verbose_only: bool = False):
    console.warn(msg, verbose_only=verbose_only)


def debug(msg: str, exc_info: bool = False):
    if debug_enabled():
        console.debug(msg, exc_info=exc_info)


# =============================================================================
# Resolution trace
# =============================================================================


def log_step(server: str, reference: str, state: str, depth: int = 0):
    """
    Trace the strategy that decided a reference.

    Re-entered resolutions are indented under the SID that produced them:

        [SRV01] S-1-5-21-...-1104 -> sid_translate
        [SRV01]   CORP\\alice -> cache_hit
    """
    debug(f"[{server}] {'  ' * depth}{reference} -> {state}")


def log_collaborator_failure(operation: str, exc: Exception, args: Tuple[Any, ...] = ()):
    """A collaborator call that degraded to "no result"."""
    warn(f"{operation} failed: {exc}", verbose_only=True)
    debug(f"{operation} args={args!r}", exc_info=True)


def log_cache(namespace: str, key: str, stored: bool = False):
    debug(f"Cache {'store' if stored else 'hit'} ({namespace}): {key}")


def log_member_failure(path: str, exc: Exception):
    """A group member that could not be resolved; the expansion carries on."""
    warn(f"Failed to resolve member {path}: {exc}")
    debug(f"Member resolution traceback for {path}", exc_info=True)
