# LDAP utilities for sidhound
#
# Shared LDAP connection and search helpers used by the impacket directory
# backend. Search results are flattened into plain attribute bags so the
# resolver never sees impacket's ASN.1 objects.

import socket
from typing import List, Optional, Sequence

import dns.resolver
import dns.reversename
from dns.exception import DNSException
from impacket.ldap import ldap as ldap_impacket
from impacket.ldap import ldapasn1 as ldapasn1_impacket

from ..exceptions import CollaboratorUnavailableError, LDAPConnectionError
from ..models import AttributeBag, dn_from_dns
from .helpers import parse_ntlm_hashes
from .logging import debug

# Attributes whose values are raw bytes rather than text
BINARY_ATTRIBUTES = frozenset({"objectsid", "objectguid", "securityidentifier", "sidhistory"})

# Attributes always returned as lists, even with a single value
MULTI_VALUED_ATTRIBUTES = frozenset({"objectclass", "member", "memberof", "sidhistory"})


def resolve_dc_hostname(dc_ip: str, domain: str, use_tcp: bool = False) -> Optional[str]:
    """
    Resolve DC IP to hostname for Kerberos SPN construction.

    Tries a PTR lookup against the DC itself, then the system resolver.
    """
    try:
        resolver = dns.resolver.Resolver(configure=False)
        resolver.nameservers = [dc_ip]
        resolver.timeout = 3
        resolver.lifetime = 3

        answers = resolver.resolve(dns.reversename.from_address(dc_ip), "PTR", tcp=use_tcp)
        if answers:
            hostname = str(answers[0]).rstrip(".")
            if hostname and "." not in hostname:
                hostname = f"{hostname}.{domain}"
            if hostname and hostname.lower() != domain.lower():
                return hostname
    except (DNSException, OSError, ValueError) as e:
        debug(f"LDAP: PTR lookup via DC failed: {e}")

    try:
        hostname = socket.gethostbyaddr(dc_ip)[0]
        if hostname and hostname.lower() != domain.lower():
            return hostname
    except (OSError, socket.herror):
        pass

    return None


def get_ldap_connection(
    dc_ip: Optional[str],
    domain: str,
    username: str,
    password: Optional[str] = None,
    hashes: Optional[str] = None,
    kerberos: bool = False,
    aes_key: Optional[str] = None,
    dc_host: Optional[str] = None,
    use_tcp: bool = False,
) -> ldap_impacket.LDAPConnection:
    """
    Establish LDAP connection to domain controller.

    Tries LDAPS (port 636) first, then falls back to LDAP (port 389). Without
    a DC address the domain name itself is used, relying on DNS to return a
    domain controller.

    Args:
        dc_ip: Domain controller IP address
        domain: Domain name (FQDN format, e.g., "domain.local")
        username: Username for authentication
        password: Password (plaintext)
        hashes: NTLM hashes in LM:NT or NT format
        kerberos: Use Kerberos authentication
        aes_key: AES key for Kerberos (128-bit or 256-bit hex string)
        dc_host: DC hostname for Kerberos SPN (optional, will try to resolve)
        use_tcp: Force DNS queries over TCP (required for SOCKS proxies)

    Returns:
        LDAPConnection object

    Raises:
        LDAPConnectionError: If connection fails
    """
    if not domain or "." not in domain:
        raise LDAPConnectionError(f"Domain must be a DNS name, got {domain!r}")

    dc_address = dc_ip or domain
    base_dn = dn_from_dns(domain)
    lmhash, nthash = parse_ntlm_hashes(hashes)

    # Kerberos needs the DC hostname for the SPN (ldap/dc01.domain.local)
    kerberos_target = dc_host
    if (kerberos or aes_key) and not kerberos_target:
        kerberos_target = resolve_dc_hostname(dc_address, domain, use_tcp=use_tcp) if dc_ip else None
        if kerberos_target:
            debug(f"LDAP: Resolved DC hostname for Kerberos SPN: {kerberos_target}")
        else:
            debug("LDAP: Could not resolve DC hostname, Kerberos may fail")
            kerberos_target = dc_address

    connection_attempts = [
        ("ldaps", 636),
        ("ldap", 389),
    ]

    last_error = None
    for protocol, port in connection_attempts:
        try:
            if (kerberos or aes_key) and kerberos_target:
                ldap_url = f"{protocol}://{kerberos_target}"
            else:
                ldap_url = f"{protocol}://{dc_address}:{port}"
            debug(f"LDAP: Attempting {protocol.upper()} connection to {ldap_url}")

            ldap_conn = ldap_impacket.LDAPConnection(ldap_url, baseDN=base_dn, dstIp=dc_ip)

            if kerberos or aes_key:
                ldap_conn.kerberosLogin(
                    user=username,
                    password=password or "",
                    domain=domain,
                    lmhash=lmhash,
                    nthash=nthash,
                    aesKey=aes_key or "",
                    kdcHost=kerberos_target,
                )
            else:
                ldap_conn.login(
                    user=username,
                    password=password or "",
                    domain=domain,
                    lmhash=lmhash,
                    nthash=nthash,
                )

            debug(f"LDAP: Successfully connected via {protocol.upper()}")
            return ldap_conn

        except Exception as e:  # noqa: BLE001 - impacket raises many socket/SSL/LDAP error types
            error_str = str(e)
            debug(f"LDAP: {protocol.upper()} connection failed: {error_str}")
            last_error = e
            if "strongerAuthRequired" in error_str:
                debug("LDAP: DC requires signing/encryption but LDAPS also failed")
                break

    raise LDAPConnectionError(f"LDAP connection failed: {last_error}")


def entry_to_bag(entry) -> AttributeBag:
    """Flatten a SearchResultEntry into an attribute bag keyed by attribute name."""
    bag: AttributeBag = {"distinguishedName": str(entry["objectName"])}
    for attr in entry["attributes"]:
        attr_type = str(attr["type"])
        lowered = attr_type.lower()
        if lowered in BINARY_ATTRIBUTES:
            values = [bytes(val) for val in attr["vals"]]
        else:
            values = [str(val) for val in attr["vals"]]
        if lowered in MULTI_VALUED_ATTRIBUTES:
            bag[attr_type] = values
        elif values:
            bag[attr_type] = values[0]
    return bag


def search_entries(
    conn: ldap_impacket.LDAPConnection,
    search_base: str,
    search_filter: str,
    attributes: Sequence[str],
    base_scope: bool = False,
    size_limit: int = 0,
) -> List[AttributeBag]:
    """
    Run an LDAP search and return one attribute bag per entry.

    A missing search base counts as "no entries"; any other failure raises
    CollaboratorUnavailableError.
    """
    scope = ldapasn1_impacket.Scope("baseObject") if base_scope else None
    try:
        results = conn.search(
            searchBase=search_base,
            scope=scope,
            searchFilter=search_filter,
            attributes=list(attributes),
            sizeLimit=size_limit,
        )
    except ldap_impacket.LDAPSearchError as e:
        if "noSuchObject" in str(e):
            debug(f"LDAP: {search_base} does not exist")
            return []
        raise CollaboratorUnavailableError("search_directory", f"LDAP search failed: {e}") from e
    except (OSError, ldap_impacket.LDAPSessionError) as e:
        raise CollaboratorUnavailableError("search_directory", f"LDAP search failed: {e}") from e

    bags = [entry_to_bag(entry) for entry in results if isinstance(entry, ldapasn1_impacket.SearchResultEntry)]
    debug(f"LDAP: {search_filter} under {search_base} -> {len(bags)} entr{'y' if len(bags) == 1 else 'ies'}")
    return bags
