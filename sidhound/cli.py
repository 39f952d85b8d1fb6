import sys
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .collaborators.impacket_backend import ImpacketDirectory
from .config import Credentials, ResolverConfig, build_parser, validate_args
from .engine.async_runner import ParallelResolver, RunnerConfig, ServerResult
from .models import ServerContext
from .output.writer import write_json
from .smb.connection import get_server_context
from .utils.cache_manager import ResolutionCache
from .utils.console import print_banner, print_identity_table
from .utils.helpers import normalize_targets, read_lines, split_list
from .utils.logging import debug, info, set_verbosity, warn


def make_directory_factory(
    credentials: Credentials,
    timeout: int = 5,
    use_ldap: bool = True,
    dns_tcp: bool = False,
) -> Callable[[str], Tuple[ImpacketDirectory, ServerContext]]:
    """Per-target factory: authenticated collaborator plus the server's context."""

    def factory(target: str):
        directory = ImpacketDirectory.connect(target, credentials, timeout=timeout, use_ldap=use_ldap)
        try:
            context = get_server_context(directory.smb, target, dc_ip=credentials.dc_ip, dns_tcp=dns_tcp)
        except Exception:
            directory.close()
            raise
        debug(f"{target}: {context.netbios_name} ({context.dns_name}, {context.flavor.value})")
        return directory, context

    return factory


def collect_inputs(args: Any) -> Tuple[List[str], List[str], List[str]]:
    """Targets, identity references and groups gathered from flags and files."""
    raw_targets = split_list(args.target)
    if args.targets_file:
        raw_targets.extend(read_lines(args.targets_file))
    targets = normalize_targets(raw_targets, args.domain)

    references = split_list(args.reference)
    if args.references_file:
        references.extend(read_lines(args.references_file))

    groups = split_list(args.expand)
    return targets, references, groups


def report(results: Sequence[ServerResult], args: Any, cache: ResolutionCache) -> None:
    if not getattr(args, "no_table", False):
        for result in results:
            if result.records:
                print_identity_table(result.records, title=result.target.upper())

    if args.json:
        write_json(args.json, results)

    if args.verbose or args.debug:
        cache.print_stats()


def exit_code(results: Sequence[ServerResult], strict: bool = False) -> int:
    """1 when no server could be interrogated, or (strict) when anything stayed unresolved."""
    if results and not any(r.success for r in results):
        return 1
    if strict and any(r.unresolved for r in results):
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    print_banner()
    ap = build_parser()
    args = ap.parse_args(argv)

    # Set verbosity early
    set_verbosity(args.verbose, args.debug)

    validate_args(args)

    targets, references, groups = collect_inputs(args)
    if not targets:
        warn("No targets left after normalization")
        return 1
    info(f"{len(targets)} target(s), {len(references)} reference(s), {len(groups)} group(s) to expand")

    credentials = Credentials.from_args(args)
    resolver_config = ResolverConfig.from_args(args)

    # One cache for the whole run: identities learned on one server are reused on the rest
    cache = ResolutionCache()
    factory = make_directory_factory(
        credentials,
        timeout=args.timeout,
        use_ldap=not args.no_ldap,
        dns_tcp=args.dns_tcp,
    )
    runner = ParallelResolver(
        factory,
        cache=cache,
        config=RunnerConfig(workers=resolver_config.workers, max_reentry=resolver_config.max_reentry),
    )

    try:
        results = runner.run(targets, references=references, groups=groups)
    except KeyboardInterrupt:
        warn("Interrupted")
        return 130

    report(results, args, cache)
    return exit_code(results, strict=args.strict)


if __name__ == "__main__":
    sys.exit(main())
