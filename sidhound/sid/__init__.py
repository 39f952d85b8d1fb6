# SID codec and well-known identity tables.

from .codec import (
    bytes_to_sid,
    decode_app_capability_sid,
    get_domain_sid,
    is_sid,
    sid_to_bytes,
)
from .well_known import (
    is_well_known_authority,
    is_well_known_sid,
    lookup_well_known_name,
    lookup_well_known_sid,
)

__all__ = [
    "sid_to_bytes",
    "bytes_to_sid",
    "decode_app_capability_sid",
    "get_domain_sid",
    "is_sid",
    "is_well_known_sid",
    "is_well_known_authority",
    "lookup_well_known_sid",
    "lookup_well_known_name",
]
