# Engine package for multi-server runs.
#
# Fans identity resolution and group expansion out over a pool of workers,
# one per interrogated server.

from .async_runner import ParallelResolver, RunnerConfig, ServerResult, aggregate_records, group_path_for

__all__ = [
    "ParallelResolver",
    "RunnerConfig",
    "ServerResult",
    "aggregate_records",
    "group_path_for",
]
