# sidhound exceptions

# =============================================================================
# Exceptions
# =============================================================================


class SidHoundError(Exception):
    """Base exception for identity resolution operations"""

    pass


class MalformedSidError(SidHoundError, ValueError):
    """SID text or bytes violate the SID grammar"""

    pass


class UnresolvableIdentityError(SidHoundError):
    """Every resolution fallback was exhausted for an identity reference"""

    def __init__(self, reference: str, record=None):
        super().__init__(f"Could not resolve identity reference {reference!r}")
        self.reference = reference
        self.record = record


class CollaboratorUnavailableError(SidHoundError):
    """A directory or network collaborator call failed"""

    def __init__(self, operation: str, message: str = ""):
        detail = f"{operation}: {message}" if message else operation
        super().__init__(detail)
        self.operation = operation


class LDAPConnectionError(CollaboratorUnavailableError):
    """Failed to connect to domain controller via LDAP"""

    def __init__(self, message: str = ""):
        super().__init__("ldap_connect", message)


class InvalidDirectoryPathError(SidHoundError, ValueError):
    """A WinNT:// or LDAP:// directory path could not be parsed"""

    pass


# =============================================================================
# Error Messages
# =============================================================================

SIDHOUND_ERRORS = {
    "no_targets": (
        "[!] No targets specified\n"
        "[!] Use -t/--target or --targets-file to name the servers to interrogate"
    ),
    "no_work": (
        "[!] Nothing to do\n"
        "[!] Provide identity references (-r/--references-file) or a group to expand (--expand)"
    ),
    "no_credentials": (
        "[!] Authentication requires -u/--username and one of -p/--password, --hashes, -k or --aes-key"
    ),
    "ldap_connect": (
        "[!] Failed to connect to domain controller via LDAP\n"
        "[!] Check: --dc-ip is correct, DC is reachable, credentials are valid"
    ),
}
