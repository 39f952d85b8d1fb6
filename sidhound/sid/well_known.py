# Well-known identity tables
#
# Static SIDs that resolve without any network call: NT AUTHORITY and BUILTIN
# accounts, the NULL/World/Creator authorities, mandatory labels, application
# package authority capabilities, and the device interface classes used by
# device capability SIDs.
# Reference: https://learn.microsoft.com/en-us/windows/win32/secauthz/well-known-sids

from typing import Dict, Optional, Tuple

from ..models import AccountEntry

# Authority (pseudo-domain) names that never map to a real directory
AUTHORITY_BUILTIN = "BUILTIN"
AUTHORITY_NT = "NT AUTHORITY"
AUTHORITY_NT_SERVICE = "NT SERVICE"
AUTHORITY_APP_PACKAGE = "APPLICATION PACKAGE AUTHORITY"
AUTHORITY_VIRTUAL_MACHINE = "NT VIRTUAL MACHINE"
AUTHORITY_MANDATORY_LABEL = "Mandatory Label"

WELL_KNOWN_AUTHORITIES = frozenset(
    a.upper()
    for a in (
        AUTHORITY_BUILTIN,
        AUTHORITY_NT,
        AUTHORITY_NT_SERVICE,
        AUTHORITY_APP_PACKAGE,
        AUTHORITY_VIRTUAL_MACHINE,
        AUTHORITY_MANDATORY_LABEL,
    )
)

WELL_KNOWN_SIDS = {
    # NULL, World, Local and Creator authorities
    "S-1-0-0": "NULL SID",
    "S-1-1-0": "Everyone",
    "S-1-2-0": "LOCAL",
    "S-1-2-1": "CONSOLE LOGON",
    "S-1-3-0": "CREATOR OWNER",
    "S-1-3-1": "CREATOR GROUP",
    "S-1-3-2": "CREATOR OWNER SERVER",
    "S-1-3-3": "CREATOR GROUP SERVER",
    "S-1-3-4": "OWNER RIGHTS",
    # NT AUTHORITY
    "S-1-5-1": "NT AUTHORITY\\DIALUP",
    "S-1-5-2": "NT AUTHORITY\\NETWORK",
    "S-1-5-3": "NT AUTHORITY\\BATCH",
    "S-1-5-4": "NT AUTHORITY\\INTERACTIVE",
    "S-1-5-6": "NT AUTHORITY\\SERVICE",
    "S-1-5-7": "NT AUTHORITY\\ANONYMOUS LOGON",
    "S-1-5-8": "NT AUTHORITY\\PROXY",
    "S-1-5-9": "NT AUTHORITY\\ENTERPRISE DOMAIN CONTROLLERS",
    "S-1-5-10": "NT AUTHORITY\\SELF",
    "S-1-5-11": "NT AUTHORITY\\Authenticated Users",
    "S-1-5-12": "NT AUTHORITY\\RESTRICTED",
    "S-1-5-13": "NT AUTHORITY\\TERMINAL SERVER USER",
    "S-1-5-14": "NT AUTHORITY\\REMOTE INTERACTIVE LOGON",
    "S-1-5-15": "NT AUTHORITY\\This Organization",
    "S-1-5-17": "NT AUTHORITY\\IUSR",
    "S-1-5-18": "NT AUTHORITY\\SYSTEM",
    "S-1-5-19": "NT AUTHORITY\\LOCAL SERVICE",
    "S-1-5-20": "NT AUTHORITY\\NETWORK SERVICE",
    "S-1-5-64-10": "NT AUTHORITY\\NTLM Authentication",
    "S-1-5-64-14": "NT AUTHORITY\\SChannel Authentication",
    "S-1-5-64-21": "NT AUTHORITY\\Digest Authentication",
    "S-1-5-113": "NT AUTHORITY\\Local account",
    "S-1-5-114": "NT AUTHORITY\\Local account and member of Administrators group",
    # BUILTIN domain (S-1-5-32-*)
    "S-1-5-32-544": "BUILTIN\\Administrators",
    "S-1-5-32-545": "BUILTIN\\Users",
    "S-1-5-32-546": "BUILTIN\\Guests",
    "S-1-5-32-547": "BUILTIN\\Power Users",
    "S-1-5-32-548": "BUILTIN\\Account Operators",
    "S-1-5-32-549": "BUILTIN\\Server Operators",
    "S-1-5-32-550": "BUILTIN\\Print Operators",
    "S-1-5-32-551": "BUILTIN\\Backup Operators",
    "S-1-5-32-552": "BUILTIN\\Replicators",
    "S-1-5-32-554": "BUILTIN\\Pre-Windows 2000 Compatible Access",
    "S-1-5-32-555": "BUILTIN\\Remote Desktop Users",
    "S-1-5-32-556": "BUILTIN\\Network Configuration Operators",
    "S-1-5-32-557": "BUILTIN\\Incoming Forest Trust Builders",
    "S-1-5-32-558": "BUILTIN\\Performance Monitor Users",
    "S-1-5-32-559": "BUILTIN\\Performance Log Users",
    "S-1-5-32-560": "BUILTIN\\Windows Authorization Access Group",
    "S-1-5-32-561": "BUILTIN\\Terminal Server License Servers",
    "S-1-5-32-562": "BUILTIN\\Distributed COM Users",
    "S-1-5-32-568": "BUILTIN\\IIS_IUSRS",
    "S-1-5-32-569": "BUILTIN\\Cryptographic Operators",
    "S-1-5-32-573": "BUILTIN\\Event Log Readers",
    "S-1-5-32-574": "BUILTIN\\Certificate Service DCOM Access",
    "S-1-5-32-575": "BUILTIN\\RDS Remote Access Servers",
    "S-1-5-32-576": "BUILTIN\\RDS Endpoint Servers",
    "S-1-5-32-577": "BUILTIN\\RDS Management Servers",
    "S-1-5-32-578": "BUILTIN\\Hyper-V Administrators",
    "S-1-5-32-579": "BUILTIN\\Access Control Assistance Operators",
    "S-1-5-32-580": "BUILTIN\\Remote Management Users",
    "S-1-5-32-581": "BUILTIN\\System Managed Accounts Group",
    "S-1-5-32-582": "BUILTIN\\Storage Replica Administrators",
    "S-1-5-32-583": "BUILTIN\\Device Owners",
    # Service and virtual machine authorities
    "S-1-5-80-0": "NT SERVICE\\ALL SERVICES",
    "S-1-5-83-0": "NT VIRTUAL MACHINE\\Virtual Machines",
    # Mandatory integrity labels
    "S-1-16-0": "Mandatory Label\\Untrusted Mandatory Level",
    "S-1-16-4096": "Mandatory Label\\Low Mandatory Level",
    "S-1-16-8192": "Mandatory Label\\Medium Mandatory Level",
    "S-1-16-8448": "Mandatory Label\\Medium Plus Mandatory Level",
    "S-1-16-12288": "Mandatory Label\\High Mandatory Level",
    "S-1-16-16384": "Mandatory Label\\System Mandatory Level",
    "S-1-16-20480": "Mandatory Label\\Protected Process Mandatory Level",
}

# APPLICATION PACKAGE AUTHORITY names and capabilities with fixed SIDs
APP_PACKAGE_SIDS = {
    "S-1-15-2-1": "APPLICATION PACKAGE AUTHORITY\\ALL APPLICATION PACKAGES",
    "S-1-15-2-2": "APPLICATION PACKAGE AUTHORITY\\ALL RESTRICTED APPLICATION PACKAGES",
    "S-1-15-3-1": "APPLICATION PACKAGE AUTHORITY\\Your Internet connection",
    "S-1-15-3-2": "APPLICATION PACKAGE AUTHORITY\\Your Internet connection, including incoming connections from the Internet",
    "S-1-15-3-3": "APPLICATION PACKAGE AUTHORITY\\Your home or work networks",
    "S-1-15-3-4": "APPLICATION PACKAGE AUTHORITY\\Your pictures library",
    "S-1-15-3-5": "APPLICATION PACKAGE AUTHORITY\\Your videos library",
    "S-1-15-3-6": "APPLICATION PACKAGE AUTHORITY\\Your music library",
    "S-1-15-3-7": "APPLICATION PACKAGE AUTHORITY\\Your documents library",
    "S-1-15-3-8": "APPLICATION PACKAGE AUTHORITY\\Your Windows credentials",
    "S-1-15-3-9": "APPLICATION PACKAGE AUTHORITY\\Software and hardware certificates or a smart card",
    "S-1-15-3-10": "APPLICATION PACKAGE AUTHORITY\\Removable storage",
    "S-1-15-3-11": "APPLICATION PACKAGE AUTHORITY\\Your Appointments",
    "S-1-15-3-12": "APPLICATION PACKAGE AUTHORITY\\Your Contacts",
}

# Device interface classes referenced by device capability SIDs (S-1-15-3-a-b-c-d)
DEVICE_CAPABILITY_GUIDS = {
    "{2EEF81BE-33FA-4800-9670-1CD474972C3F}": "Audio Capture Interface",
    "{E6327CAD-DCEC-4949-AE8A-991E976A79D2}": "Audio Render Interface",
    "{E5323777-F976-4F5B-9B55-B94699C46E44}": "Webcam",
    "{BFA794E4-F964-4FDB-90F6-51056BFE4B44}": "Location",
    "{6AC27878-A6FA-4155-BA85-F98F491D4F33}": "Portable Device",
    "{53F5630D-B6BF-11D0-94F2-00A0C91EFB8B}": "Volume",
    "{0850302A-B344-4FDA-9BE9-90576B8D46F0}": "Bluetooth Radio",
    "{86E0D1E0-8089-11D0-9CE4-08003E301F73}": "COM Port",
    "{A5DCBF10-6530-11D2-901F-00C04FB951ED}": "USB Device",
    "{4D1E55B2-F16F-11CF-88CB-001111000030}": "HID Device",
}


def split_caption(caption: str) -> Tuple[str, str]:
    """Split ``DOMAIN\\name`` into its parts; captions without a domain get an empty domain."""
    if "\\" in caption:
        domain, name = caption.split("\\", 1)
        return domain, name
    return "", caption


def _entry(sid: str, caption: str) -> AccountEntry:
    domain, name = split_caption(caption)
    return AccountEntry(sid=sid, caption=caption, domain=domain, name=name)


_ALL_SIDS: Dict[str, str] = {**WELL_KNOWN_SIDS, **APP_PACKAGE_SIDS}

# Reverse index: upper-cased caption -> SID (bare names indexed too for domain-less entries)
_BY_CAPTION: Dict[str, str] = {caption.upper(): sid for sid, caption in _ALL_SIDS.items()}


def is_well_known_sid(sid: str) -> bool:
    return bool(sid) and sid.upper() in _ALL_SIDS


def lookup_well_known_sid(sid: str) -> Optional[AccountEntry]:
    """Return the static account entry for a well-known SID, or None."""
    if not sid:
        return None
    caption = _ALL_SIDS.get(sid.upper())
    if caption is None:
        return None
    return _entry(sid.upper(), caption)


def lookup_well_known_name(domain: str, name: str) -> Optional[AccountEntry]:
    """
    Return the static account entry for ``domain\\name`` (case-insensitive), or None.

    An empty domain matches the domain-less entries (Everyone, CREATOR OWNER, ...).
    """
    caption = f"{domain}\\{name}" if domain else name
    sid = _BY_CAPTION.get(caption.upper())
    if sid is None:
        return None
    return _entry(sid, _ALL_SIDS[sid])


def is_well_known_authority(domain: Optional[str]) -> bool:
    return bool(domain) and domain.upper() in WELL_KNOWN_AUTHORITIES
