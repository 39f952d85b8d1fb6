# Small helpers used across the codebase.
#
# Credential string parsing, host classification and target list
# normalization.

import ipaddress
from typing import Iterable, List, Optional, Tuple


def is_ipv4(host: str) -> bool:
    # Permissive dotted-quad check, each octet 0-255.
    parts = host.strip().split(".")
    if len(parts) != 4:
        return False
    try:
        return all(0 <= int(p) <= 255 for p in parts)
    except ValueError:
        return False


def parse_ntlm_hashes(hashes: Optional[str]) -> Tuple[str, str]:
    """
    Parse NTLM hashes from string format.

    Args:
        hashes: Hash string in "LM:NT" or "NT" format, or None/empty

    Returns:
        Tuple of (lmhash, nthash) - empty strings if not provided
    """
    if not hashes:
        return "", ""

    if ":" in hashes:
        lmhash, nthash = hashes.split(":", 1)
        return lmhash, nthash
    else:
        return "", hashes


def short_hostname(host: str) -> str:
    """First label of a DNS name, upper-cased (server.corp.local -> SERVER). IPs are returned unchanged."""
    if is_ipv4(host):
        return host
    return host.split(".", 1)[0].upper()


def expand_cidr(cidr: str) -> List[str]:
    """Expand CIDR notation to the host addresses it covers.

    Raises:
        ValueError: If the CIDR notation is invalid
    """
    try:
        network = ipaddress.ip_network(cidr, strict=False)
    except ValueError as e:
        raise ValueError(f"Invalid CIDR notation '{cidr}': {e}") from e
    # /31 and /32 have no separate network/broadcast address
    if network.prefixlen >= 31:
        return [str(ip) for ip in network.hosts()] or [str(network.network_address)]
    return [str(ip) for ip in network.hosts()]


def is_cidr(target: str) -> bool:
    if "/" not in target:
        return False
    try:
        ipaddress.ip_network(target, strict=False)
        return True
    except ValueError:
        return False


def normalize_targets(targets: Iterable[str], domain: Optional[str] = None) -> List[str]:
    """Expand CIDRs, keep IPs and append ``domain`` to short host names.

    Empty entries and duplicates are dropped; order is preserved.
    """
    out: List[str] = []
    for t in targets:
        t = t.strip()
        if not t:
            continue
        if is_cidr(t):
            candidates = expand_cidr(t)
        elif is_ipv4(t) or "." in t or not domain or "." not in domain:
            candidates = [t]
        else:
            candidates = [f"{t}.{domain}"]
        for candidate in candidates:
            if candidate not in out:
                out.append(candidate)
    return out


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated CLI value, ignoring blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def read_lines(path: str) -> List[str]:
    """Non-empty, non-comment lines of a text file."""
    with open(path, encoding="utf-8") as f:
        return [line.strip() for line in f if line.strip() and not line.lstrip().startswith("#")]
