import argparse
import os
import sys
import tomllib
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from rich.console import Console
from rich.table import Table
from rich_argparse import RichHelpFormatter

from .exceptions import SIDHOUND_ERRORS
from .resolver.engine import DEFAULT_MAX_REENTRY
from .utils.helpers import is_ipv4

DEFAULT_CONFIG_PATHS = (
    "sidhound.toml",
    os.path.join("config", "sidhound.toml"),
    os.path.expanduser("~/.config/sidhound/sidhound.toml"),
)

# TOML section -> {key: argparse destination}
_CONFIG_KEYS = {
    "authentication": {
        "username": "username",
        "password": "password",
        "domain": "domain",
        "hashes": "hashes",
        "kerberos": "kerberos",
        "aes_key": "aes_key",
    },
    "target": {
        "dc_ip": "dc_ip",
        "targets": "target",
        "targets_file": "targets_file",
        "threads": "threads",
        "timeout": "timeout",
        "dns_tcp": "dns_tcp",
        "no_ldap": "no_ldap",
    },
    "resolution": {
        "max_reentry": "max_reentry",
        "references_file": "references_file",
        "expand": "expand",
    },
    "output": {
        "json": "json",
        "verbose": "verbose",
        "debug": "debug",
        "no_table": "no_table",
    },
}


class TableRichHelpFormatter(RichHelpFormatter):
    """
    Custom help formatter that displays argument groups with Rich styling.
    Uses uppercase group names and custom color scheme.
    """

    styles = {
        **RichHelpFormatter.styles,
        "argparse.groups": "bold cyan",
        "argparse.args": "green",
        "argparse.metavar": "yellow",
        "argparse.help": "white",
    }

    group_name_formatter = str.upper


class TableHelpAction(argparse.Action):
    """
    Custom help action that displays arguments in Rich tables.
    """

    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(
            option_strings=option_strings,
            dest=dest,
            default=default,
            nargs=0,
            help=help,
        )

    def __call__(self, parser, namespace, values, option_string=None):
        console = Console()

        if parser.description:
            console.print(f"\n[bold white]{parser.description}[/]\n")
        console.print(f"[dim]Usage:[/] [bold]{parser.prog}[/] [OPTIONS]\n")

        for group in parser._action_groups:
            actions = [a for a in group._group_actions if not isinstance(a, (argparse._HelpAction, TableHelpAction))]
            if not actions:
                continue

            console.print(f"[bold cyan]{group.title.upper()}[/]")
            if group.description:
                console.print(f"[dim]{group.description}[/]")

            table = Table(
                border_style="dim",
                show_header=True,
                header_style="bold white",
                padding=(0, 1),
                expand=False,
            )
            table.add_column("Option", style="green", no_wrap=True)
            table.add_column("Description", style="white")

            for action in actions:
                opts = ", ".join(action.option_strings) if action.option_strings else action.dest
                if action.metavar:
                    opts += f" [yellow]{action.metavar}[/]"
                elif action.type and action.type is not bool:
                    opts += f" [yellow]{action.dest.upper()}[/]"

                help_text = action.help or ""
                if action.default not in (None, True, False, argparse.SUPPRESS) and "default:" not in help_text.lower():
                    help_text += f" [dim](default: {action.default})[/]"
                table.add_row(opts, help_text)

            console.print(table)
            console.print()

        parser.exit()


class OnceOnly(argparse.Action):
    """
    Custom argparse Action to prevent arguments from being specified multiple times.
    This is critical for preventing CLI parsing bugs where a flag (e.g. -d)
    is accidentally reused as part of another flag's value (e.g. -debug).
    """

    def __call__(self, parser, namespace, values, option_string=None):
        if getattr(namespace, self.dest, None) is not None:
            raise argparse.ArgumentError(self, f"Argument {option_string} can only be specified once.")
        setattr(namespace, self.dest, values)


def load_config(paths: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    """
    Load configuration defaults from the first TOML file found.

    Priority:
    1. ./sidhound.toml
    2. ./config/sidhound.toml
    3. ~/.config/sidhound/sidhound.toml

    Returns:
        Mapping of argparse destination -> default value
    """
    config_data: Dict[str, Any] = {}
    loaded_path = None

    for path in paths if paths is not None else DEFAULT_CONFIG_PATHS:
        if os.path.exists(path):
            try:
                with open(path, "rb") as f:
                    config_data = tomllib.load(f)
                loaded_path = path
                break
            except (OSError, tomllib.TOMLDecodeError) as e:
                print(f"[!] Error loading config file {path}: {e}")

    if not config_data:
        return {}

    if loaded_path == "sidhound.toml":
        # Credentials in the working directory are easy to leak
        print("[!] WARNING: Using sidhound.toml from current directory")
        print("[!] This can be a security risk - consider moving to config/sidhound.toml")

    defaults: Dict[str, Any] = {}
    for section, keys in _CONFIG_KEYS.items():
        values = config_data.get(section, {})
        for key, dest in keys.items():
            if key in values:
                defaults[dest] = values[key]

    # Lists are accepted where the CLI takes comma-separated values
    for dest in ("target", "expand"):
        if isinstance(defaults.get(dest), list):
            defaults[dest] = ",".join(str(v) for v in defaults[dest])

    return defaults


@dataclass
class Credentials:
    """Authentication material for SMB and LDAP sessions."""

    username: Optional[str] = None
    password: Optional[str] = None
    domain: Optional[str] = None
    hashes: Optional[str] = None
    kerberos: bool = False
    aes_key: Optional[str] = None
    dc_ip: Optional[str] = None

    @classmethod
    def from_args(cls, args):
        return cls(
            username=args.username,
            password=args.password,
            domain=args.domain,
            hashes=args.hashes,
            kerberos=bool(args.kerberos or args.aes_key),
            aes_key=args.aes_key,
            dc_ip=args.dc_ip,
        )

    def has_secret(self) -> bool:
        return bool(self.password or self.hashes or self.aes_key or self.kerberos)


@dataclass
class ResolverConfig:
    """
    Resolution settings merged from CLI args and the config file.

    Config file values arrive as argparse defaults, so anything given on the
    command line wins.
    """

    max_reentry: int = DEFAULT_MAX_REENTRY
    workers: int = 1

    @classmethod
    def from_args(cls, args):
        return cls(max_reentry=args.max_reentry, workers=max(1, args.threads))


def build_parser(config_paths: Optional[Sequence[str]] = None) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sidhound",
        description="Resolve Windows security principals to SIDs, NetBIOS and DNS names across WinNT and LDAP directories.",
        formatter_class=TableRichHelpFormatter,
        add_help=False,
    )
    ap.add_argument("-h", "--help", action=TableHelpAction, help="Show this help message")

    auth = ap.add_argument_group("Authentication options")
    auth.add_argument("-u", "--username", action=OnceOnly, help="Username")
    auth.add_argument("-p", "--password", action=OnceOnly, help="Password (omit with -k if using Kerberos/ccache)")
    auth.add_argument("-d", "--domain", action=OnceOnly, help="Domain (FQDN enables LDAP lookups, e.g. corp.local)")
    auth.add_argument("--hashes", help="NTLM hashes in LM:NT format (or NT-only 32-hex) to use instead of password")
    auth.add_argument("-k", "--kerberos", action="store_true", help="Use Kerberos authentication (supports ccache)")
    auth.add_argument(
        "--aes-key",
        dest="aes_key",
        help="AES key for Kerberos authentication (AES-128: 32 hex chars, AES-256: 64 hex chars). Implies -k.",
    )

    target = ap.add_argument_group("Target options")
    target.add_argument("-t", "--target", action=OnceOnly, help="Server(s) to interrogate - single host or comma-separated list")
    target.add_argument("--targets-file", help="File with servers, one per line")
    target.add_argument("--dc-ip", help="Domain controller IP (LDAP lookups and Kerberos KDC)")
    target.add_argument("--timeout", type=int, default=5, help="SMB connection timeout in seconds")
    target.add_argument(
        "--threads",
        type=int,
        default=1,
        help="Number of servers interrogated in parallel (default: 1 = sequential)",
    )
    target.add_argument(
        "--dns-tcp",
        action="store_true",
        help="Force DNS queries over TCP instead of UDP. Required when using SOCKS proxies or proxychains.",
    )
    target.add_argument("--no-ldap", action="store_true", help="Disable LDAP; use only LSARPC/SAMR on each server")

    resolution = ap.add_argument_group("Resolution options")
    resolution.add_argument(
        "-r", "--reference", action=OnceOnly,
        help="Identity reference(s) to resolve - SID, DOMAIN\\name or bare name, comma-separated",
    )
    resolution.add_argument("--references-file", help="File with identity references, one per line")
    resolution.add_argument(
        "--expand",
        help="Group(s) whose immediate members are resolved on each server - local group name or WinNT:// / LDAP:// path, comma-separated",
    )
    resolution.add_argument(
        "--max-reentry",
        type=int,
        default=DEFAULT_MAX_REENTRY,
        help="How many times a translated SID may be resolved again by name",
    )
    resolution.add_argument("--strict", action="store_true", help="Exit non-zero when any identity stays unresolved")

    out = ap.add_argument_group("Output options")
    out.add_argument("--json", help="Write all identity records to a JSON file")
    out.add_argument("--no-table", action="store_true", help="Do not print the identity table")

    misc = ap.add_argument_group("Misc")
    misc.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    misc.add_argument("--debug", action="store_true", help="Enable debug output (print full stack traces)")

    defaults = load_config(config_paths)
    if defaults:
        ap.set_defaults(**defaults)

    return ap


def validate_args(args):
    if not (args.target or args.targets_file):
        print(SIDHOUND_ERRORS["no_targets"])
        sys.exit(1)

    if not (args.reference or args.references_file or args.expand):
        print(SIDHOUND_ERRORS["no_work"])
        sys.exit(1)

    if not args.username or not (args.password or args.hashes or args.aes_key or args.kerberos):
        print(SIDHOUND_ERRORS["no_credentials"])
        if "KRB5CCNAME" in os.environ and not args.kerberos:
            print("[!] Detected KRB5CCNAME environment variable - did you forget the -k flag?")
        sys.exit(1)

    if args.max_reentry < 0:
        print("[!] --max-reentry must be zero or greater")
        sys.exit(1)

    if args.threads < 1:
        print("[!] --threads must be at least 1")
        sys.exit(1)

    for path in (args.targets_file, args.references_file):
        if path and not os.path.isfile(path):
            print(f"[!] File not found: {path}")
            sys.exit(1)

    # LDAP needs a DNS domain to build the search base
    if not args.no_ldap and args.domain and "." not in args.domain:
        print("[!] WARNING: Domain appears to be NetBIOS format (e.g., 'DOMAIN')")
        print("[!] LDAP lookups require FQDN format (e.g., 'domain.local'); continuing with LSARPC/SAMR only")
        print()

    # Kerberos + IP for single target
    if args.kerberos and args.target:
        for t in args.target.split(","):
            if t.strip() and is_ipv4(t.strip()):
                print(
                    "[!] Targets verification failed. Please supply hostnames or fqdns or switch to NTLM Auth (Kerberos doesn't like IP addresses)"
                )
                sys.exit(1)
