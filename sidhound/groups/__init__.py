# Group membership expansion and directory path parsing.

from .expander import GroupMembershipExpander, build_samaccountname_filter, expand_group_members
from .paths import DirectoryPath, parse_directory_path

__all__ = [
    "GroupMembershipExpander",
    "expand_group_members",
    "build_samaccountname_filter",
    "DirectoryPath",
    "parse_directory_path",
]
