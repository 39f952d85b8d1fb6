# SMB connection helpers.
#
# Thin wrapper around Impacket's SMBConnection that accepts cleartext
# passwords, NTLM hashes (LM:NT or NT-only) and Kerberos, plus helpers that
# read the interrogated server's names off the negotiated session. The LSARPC
# and SAMR pipes used for identity lookups ride on this connection.

import socket
from typing import Optional

import dns.resolver
import dns.reversename
from dns.exception import DNSException
from impacket.smbconnection import SMBConnection

from ..models import DirectoryFlavor, ServerContext
from ..utils.helpers import is_ipv4, short_hostname
from ..utils.logging import debug


def _parse_hashes(password: str):
    # Parse a provided password or NTLM hash string.
    #
    # Accepts:
    #   - None/empty -> (None, '', '')
    #   - 'lm:nt' format -> (None, lm, nt)
    #   - 32-hex NT-only -> (None, '', nt)
    #   - cleartext -> (password, '', '')
    if not password:
        return None, "", ""

    if ":" in password:
        lm, nt = password.split(":", 1)
        return None, lm.strip(), nt.strip()

    p = password.strip()
    if len(p) == 32 and all(c in "0123456789abcdefABCDEF" for c in p):
        return None, "", p

    return password, "", ""


def smb_connect(
    target: str,
    domain: str,
    username: str,
    password: str = None,
    kerberos: bool = False,
    dc_ip: str = None,
    timeout: int = 60,
    aes_key: str = None,
) -> SMBConnection:
    # Create and authenticate an SMBConnection to `target`.
    #
    # Hashes win over a cleartext password; an AES key implies Kerberos.
    smb = SMBConnection(remoteName=target, remoteHost=target, sess_port=445, timeout=timeout)

    pwd, lmhash, nthash = _parse_hashes(password)

    if kerberos or aes_key:
        smb.kerberosLogin(
            user=username,
            password=pwd,
            domain=domain,
            lmhash=lmhash,
            nthash=nthash,
            aesKey=aes_key or "",
            TGT=None,
            TGS=None,
            kdcHost=dc_ip,
        )
    else:
        if lmhash or nthash:
            # When presenting hashes to SMB, the cleartext password is empty
            smb.login(username, "", domain, lmhash=lmhash, nthash=nthash)
        else:
            smb.login(username, pwd, domain)
    return smb


def get_server_fqdn(smb: SMBConnection, target: Optional[str] = None, dc_ip: Optional[str] = None, dns_tcp: bool = False) -> str:
    """
    Extract the server's FQDN from an established SMB connection.

    Attempts, in order:
    1. The target itself, if it already is a DNS name
    2. The DNS host name from the SMB negotiation
    3. SMB host name + DNS domain
    4. PTR lookup against the DC, then against the system resolver
    5. The bare SMB host name
    """
    if target and "." in target and not is_ipv4(target):
        return target

    server_name = None
    try:
        fqdn = smb.getServerDNSHostName()
        if fqdn:
            return fqdn

        server_name = smb.getServerName()
        server_domain = smb.getServerDNSDomainName()
        if server_name and server_domain:
            return f"{server_name}.{server_domain}"
    except (OSError, AttributeError):
        server_name = None

    if target and is_ipv4(target):
        if dc_ip:
            fqdn = _dns_ptr_lookup(target, nameserver=dc_ip, use_tcp=dns_tcp)
            if fqdn:
                return fqdn
        fqdn = _dns_ptr_lookup(target, nameserver=None, use_tcp=dns_tcp)
        if fqdn:
            return fqdn

    return server_name or target or "UNKNOWN_HOST"


def _dns_ptr_lookup(ip: str, nameserver: Optional[str] = None, use_tcp: bool = False) -> Optional[str]:
    """PTR lookup for ``ip``; a specific nameserver (e.g. the DC) is queried with dnspython."""
    if nameserver or use_tcp:
        try:
            resolver = dns.resolver.Resolver(configure=nameserver is None)
            if nameserver:
                resolver.nameservers = [nameserver]
            resolver.timeout = 3
            resolver.lifetime = 3

            answers = resolver.resolve(dns.reversename.from_address(ip), "PTR", tcp=use_tcp)
            if answers:
                return str(answers[0]).rstrip(".")
        except (DNSException, OSError) as e:
            debug(f"PTR lookup for {ip} via {nameserver or 'system resolver'} failed: {e}")

    try:
        fqdn = socket.getfqdn(ip)
        if fqdn and fqdn != ip and "." in fqdn:
            return fqdn
        hostname, _, _ = socket.gethostbyaddr(ip)
        if hostname and hostname != ip:
            return hostname
    except (OSError, socket.herror, socket.gaierror):
        pass

    return None


def get_server_context(
    smb: SMBConnection, target: str, dc_ip: Optional[str] = None, dns_tcp: bool = False
) -> ServerContext:
    """
    Build the ServerContext for an interrogated server.

    A server whose NetBIOS domain is its own name is a workgroup computer
    (flat WinNT namespace); anything else is a domain member.
    """
    fqdn = get_server_fqdn(smb, target=target, dc_ip=dc_ip, dns_tcp=dns_tcp)
    try:
        netbios = smb.getServerName() or short_hostname(fqdn)
        netbios_domain = smb.getServerDomain()
    except (OSError, AttributeError):
        netbios, netbios_domain = short_hostname(fqdn), None

    flavor = DirectoryFlavor.LDAP
    if not netbios_domain or netbios_domain.upper() == netbios.upper():
        flavor = DirectoryFlavor.WINNT
    context = ServerContext(netbios_name=netbios.upper(), dns_name=fqdn, flavor=flavor)
    debug(f"Server context: {context}")
    return context
