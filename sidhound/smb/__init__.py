"""SMB connectivity for sidhound.

Modules:
    connection: authenticated SMB sessions and server naming
"""
