# Directory collaborators: the interface and the impacket-backed implementation.

from .base import DEFAULT_MEMBER_ATTRIBUTES, DirectoryCollaborator

__all__ = ["DirectoryCollaborator", "DEFAULT_MEMBER_ATTRIBUTES"]
