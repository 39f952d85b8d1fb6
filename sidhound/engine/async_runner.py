# Parallel per-server identity resolution.
#
# One worker per interrogated server, ThreadPoolExecutor-based because the
# SMB/RPC and LDAP calls underneath are blocking I/O.
#
# Thread-safety considerations:
# - ResolutionCache locks each namespace independently; workers share one
#   cache so identities learned on one server are reused on the others
# - each worker owns its own DirectoryCollaborator (one SMB session per server)
# - Rich console handles thread-safe output

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from ..groups.expander import GroupMembershipExpander
from ..groups.paths import winnt_path
from ..models import IdentityRecord, ServerContext
from ..resolver.engine import DEFAULT_MAX_REENTRY, IdentityResolver
from ..utils.cache_manager import ResolutionCache
from ..utils.console import print_run_complete, scan_progress
from ..utils.logging import debug, info, warn

# target -> (directory collaborator, context of the server behind it)
DirectoryFactory = Callable[[str], Tuple[object, ServerContext]]


@dataclass
class RunnerConfig:
    """Configuration for parallel processing."""

    workers: int = 10
    """Number of concurrent worker threads."""

    max_reentry: int = DEFAULT_MAX_REENTRY
    """Re-entry bound handed to every IdentityResolver."""

    show_progress: bool = True
    """Show progress bar during processing."""


@dataclass
class ServerResult:
    """Result from interrogating a single server."""

    target: str
    """Target IP or hostname."""

    success: bool = False
    """Whether the server could be interrogated at all."""

    records: List[IdentityRecord] = field(default_factory=list)
    """Identity records, references first, then expanded group members."""

    error: Optional[str] = None
    """Error message if processing failed."""

    elapsed_ms: float = 0.0
    """Processing time in milliseconds."""

    @property
    def resolved(self) -> int:
        return sum(1 for r in self.records if r.resolved)

    @property
    def unresolved(self) -> int:
        return len(self.records) - self.resolved


def group_path_for(group: str, context: ServerContext) -> str:
    """A bare group name means the server's local group; full paths pass through."""
    if "://" in group:
        return group
    return winnt_path(context.netbios_name, group)


class ParallelResolver:
    """
    Resolve identity references and expand groups on many servers at once.

    Usage:
        runner = ParallelResolver(factory, config=RunnerConfig(workers=20))
        results = runner.run(targets, references=["S-1-5-32-544"], groups=["Administrators"])

    ``factory(target)`` opens the collaborator for one server and returns it
    with that server's ServerContext; the collaborator is closed once the
    server is done.
    """

    def __init__(
        self,
        directory_factory: DirectoryFactory,
        cache: Optional[ResolutionCache] = None,
        config: Optional[RunnerConfig] = None,
    ):
        self.directory_factory = directory_factory
        self.cache = cache if cache is not None else ResolutionCache()
        self.config = config or RunnerConfig()
        self._lock = threading.Lock()
        self._succeeded = 0
        self._failed = 0

    def process_server(self, target: str, references: Sequence[str], groups: Sequence[str]) -> ServerResult:
        """Interrogate one server; every failure is captured in the result."""
        start_time = time.perf_counter()
        result = ServerResult(target=target)
        directory = None

        try:
            directory, context = self.directory_factory(target)
            resolver = IdentityResolver(directory, cache=self.cache, max_reentry=self.config.max_reentry)
            for reference in references:
                result.records.append(resolver.resolve(reference, context))
            if groups:
                expander = GroupMembershipExpander(directory, resolver)
                for group in groups:
                    result.records.extend(expander.expand(group_path_for(group, context), context))
            result.success = True
        except Exception as e:
            result.error = str(e) or type(e).__name__
            warn(f"{target}: Processing failed: {result.error}")
            debug(f"{target}: traceback", exc_info=True)
        finally:
            if directory is not None:
                directory.close()

        result.elapsed_ms = (time.perf_counter() - start_time) * 1000
        with self._lock:
            if result.success:
                self._succeeded += 1
            else:
                self._failed += 1
        return result

    def run(
        self,
        targets: Sequence[str],
        references: Sequence[str] = (),
        groups: Sequence[str] = (),
    ) -> List[ServerResult]:
        """
        Process every target and return results in target order.

        Args:
            targets: Servers to interrogate
            references: Identity references resolved against every server
            groups: Group names (local to each server) or WinNT:// / LDAP:// paths

        Returns:
            One ServerResult per target
        """
        if not targets:
            return []

        self._succeeded = 0
        self._failed = 0
        start_time = time.perf_counter()
        results: List[ServerResult] = []

        if self.config.workers <= 1:
            info(f"Sequential run: {len(targets)} target(s)")
        else:
            info(f"Starting parallel run: {len(targets)} target(s), {self.config.workers} workers")

        progress = scan_progress(len(targets), "Resolving") if self.config.show_progress else nullcontext()
        with progress as update:
            progress_lock = threading.Lock()

            def report(result: ServerResult):
                if update is None:
                    return
                with progress_lock:
                    if result.success:
                        update(f"{result.target} ({len(result.records)} identities)")
                    else:
                        update(result.target, success=False, error_msg=result.error)

            if self.config.workers <= 1:
                for target in targets:
                    result = self.process_server(target, references, groups)
                    report(result)
                    results.append(result)
            else:
                with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
                    futures = {
                        executor.submit(self.process_server, target, references, groups): target
                        for target in targets
                    }
                    for future in as_completed(futures):
                        result = future.result()
                        report(result)
                        results.append(result)

        order = {target: index for index, target in enumerate(targets)}
        results.sort(key=lambda r: order.get(r.target, len(order)))

        total_time = time.perf_counter() - start_time
        print_run_complete(
            self._succeeded,
            self._failed,
            total_time,
            sum(r.resolved for r in results),
            sum(r.unresolved for r in results),
        )
        return results


def aggregate_records(results: Sequence[ServerResult]) -> List[IdentityRecord]:
    """Flatten per-server records, keeping target order."""
    records: List[IdentityRecord] = []
    for result in results:
        records.extend(result.records)
    return records
