# SID binary codec
#
# Converts between the textual SID form (S-1-5-21-...) and the binary form
# stored in objectSid attributes and security descriptors:
#
#   Revision (1 byte) + SubAuthorityCount (1 byte)
#   + IdentifierAuthority (6 bytes, big-endian)
#   + SubAuthorities (4 bytes each, little-endian)
#
# Also decodes capability SIDs (S-1-15-3-...) into their device interface
# class GUID where the encoding allows it.
# Reference: https://learn.microsoft.com/en-us/openspecs/windows_protocols/ms-dtyp/78eb9013-1c3a-4970-ad1f-2b1dad588a25

import re
import struct
import uuid
from typing import List, Union

from ..exceptions import MalformedSidError
from ..models import CapabilityRecord
from .well_known import AUTHORITY_APP_PACKAGE, DEVICE_CAPABILITY_GUIDS

SID_REVISION = 1
MAX_SUB_AUTHORITIES = 15
MAX_AUTHORITY = (1 << 48) - 1
MAX_SUB_AUTHORITY = (1 << 32) - 1

CAPABILITY_SID_PREFIX = "S-1-15-3-"
# Hyphen-delimited segment counts of the two capability encodings
DEVICE_CAPABILITY_SEGMENTS = 8  # S-1-15-3 + 4 sub-authorities (GUID)
APP_CAPABILITY_SEGMENTS = 13  # S-1-15-3-1024 + 8 sub-authorities (SHA-256)

CAPABILITY_SCHEMA_CLASS = "group"

_DECIMAL = re.compile(r"^[0-9]+$")
_HEX = re.compile(r"^0[xX][0-9a-fA-F]+$")


def is_sid(value: str) -> bool:
    """Check if a string looks like a Windows SID."""
    if not value:
        return False
    pattern = r"^S-1-\d+(-\d+)+$"
    return bool(re.match(pattern, value.strip(), re.IGNORECASE))


def _parse_authority(segment: str, sid_string: str) -> int:
    if _DECIMAL.match(segment):
        authority = int(segment)
    elif _HEX.match(segment):
        authority = int(segment, 16)
    else:
        raise MalformedSidError(f"SID {sid_string!r}: identifier authority {segment!r} is not numeric")
    if authority > MAX_AUTHORITY:
        raise MalformedSidError(f"SID {sid_string!r}: identifier authority exceeds 48 bits")
    return authority


def _parse_sub_authorities(segments: List[str], sid_string: str) -> List[int]:
    values = []
    for segment in segments:
        if not _DECIMAL.match(segment):
            raise MalformedSidError(f"SID {sid_string!r}: sub-authority {segment!r} is not numeric")
        value = int(segment)
        if value > MAX_SUB_AUTHORITY:
            raise MalformedSidError(f"SID {sid_string!r}: sub-authority {segment} exceeds 32 bits")
        values.append(value)
    return values


def sid_to_bytes(sid_string: str) -> bytes:
    """
    Convert a SID string to its binary representation.

    Args:
        sid_string: String representation of a SID (e.g. "S-1-5-21-...-500")

    Returns:
        Binary SID (1 + 1 + 6 + 4*N bytes)

    Raises:
        MalformedSidError: if the revision is not 1, a segment is not numeric,
            or a value does not fit its field
    """
    if not isinstance(sid_string, str):
        raise MalformedSidError(f"SID must be a string, got {type(sid_string).__name__}")

    parts = sid_string.strip().split("-")
    if len(parts) < 3 or parts[0].upper() != "S":
        raise MalformedSidError(f"SID {sid_string!r} does not match S-<revision>-<authority>-...")
    if parts[1] != str(SID_REVISION):
        raise MalformedSidError(f"SID {sid_string!r}: unsupported revision {parts[1]!r}")

    authority = _parse_authority(parts[2], sid_string)
    sub_authorities = _parse_sub_authorities(parts[3:], sid_string)
    if len(sub_authorities) > MAX_SUB_AUTHORITIES:
        raise MalformedSidError(f"SID {sid_string!r}: more than {MAX_SUB_AUTHORITIES} sub-authorities")

    binary_sid = struct.pack("BB", SID_REVISION, len(sub_authorities))
    binary_sid += struct.pack(">Q", authority)[2:]
    binary_sid += struct.pack(f"<{len(sub_authorities)}I", *sub_authorities)
    return binary_sid


def bytes_to_sid(binary_sid: Union[bytes, bytearray, memoryview]) -> str:
    """
    Convert a binary SID (e.g. an objectSid attribute value) to string form.

    Raises:
        MalformedSidError: on truncated input or an unsupported revision
    """
    if binary_sid is None:
        raise MalformedSidError("Binary SID is empty")
    data = bytes(binary_sid)
    if len(data) < 8:
        raise MalformedSidError(f"Binary SID too short ({len(data)} bytes)")

    revision, subauth_count = struct.unpack("BB", data[0:2])
    if revision != SID_REVISION:
        raise MalformedSidError(f"Binary SID has unsupported revision {revision}")
    if subauth_count > MAX_SUB_AUTHORITIES:
        raise MalformedSidError(f"Binary SID claims {subauth_count} sub-authorities")

    expected = 8 + 4 * subauth_count
    if len(data) < expected:
        raise MalformedSidError(
            f"Binary SID too short for claimed sub-authority count ({len(data)} < {expected} bytes)"
        )

    authority = struct.unpack(">Q", b"\x00\x00" + data[2:8])[0]
    sub_authorities = struct.unpack(f"<{subauth_count}I", data[8:expected])

    # MS-DTYP: authorities above 32 bits are written in hex
    authority_text = str(authority) if authority < (1 << 32) else f"0x{authority:012X}"
    return "-".join([f"S-{revision}-{authority_text}", *(str(s) for s in sub_authorities)])


def get_domain_sid(sid: str) -> str:
    """Truncate a SID at its last separator (the RID), giving the domain SID."""
    return sid[: sid.rfind("-")] if "-" in sid else sid


def _sub_authority_bytes(segments: List[str], sid_string: str) -> bytes:
    values = _parse_sub_authorities(segments, sid_string)
    return struct.pack(f"<{len(values)}I", *values)


def decode_app_capability_sid(sid_string: str) -> CapabilityRecord:
    """
    Describe an app or device capability SID.

    Device capability SIDs (S-1-15-3 plus 4 sub-authorities) carry the GUID of
    a device interface class: the sub-authorities' little-endian bytes are the
    GUID's mixed-endian byte layout. App capability SIDs (S-1-15-3-1024 plus 8
    sub-authorities) carry a SHA-256 digest of the capability name and cannot
    be turned back into a name. Anything else passes through with only its SID.

    Raises:
        MalformedSidError: if a capability sub-authority is not numeric
    """
    segments = sid_string.split("-")

    if not sid_string.upper().startswith(CAPABILITY_SID_PREFIX):
        return CapabilityRecord(sid=sid_string)

    if len(segments) == DEVICE_CAPABILITY_SEGMENTS:
        guid_bytes = _sub_authority_bytes(segments[-4:], sid_string)
        guid = "{" + str(uuid.UUID(bytes_le=guid_bytes)).upper() + "}"
        interface = DEVICE_CAPABILITY_GUIDS.get(guid)
        if interface:
            name = f"{interface} device capability"
            description = f"Device capability for the {interface} device interface class {guid}"
        else:
            name = f"Unknown device capability {guid}"
            description = f"Device capability for an unknown device interface class {guid}"
        return CapabilityRecord(
            sid=sid_string,
            name=name,
            guid=guid,
            description=description,
            schema_class=CAPABILITY_SCHEMA_CLASS,
            account_name=f"{AUTHORITY_APP_PACKAGE}\\{name}",
        )

    if len(segments) == APP_CAPABILITY_SEGMENTS:
        digest = _sub_authority_bytes(segments[-8:], sid_string)
        return CapabilityRecord(
            sid=sid_string,
            name=sid_string,
            description=f"App capability (unresolvable: SHA-256 of capability name {digest.hex()})",
            schema_class=CAPABILITY_SCHEMA_CLASS,
            account_name=f"{AUTHORITY_APP_PACKAGE}\\{sid_string}",
        )

    return CapabilityRecord(sid=sid_string)
