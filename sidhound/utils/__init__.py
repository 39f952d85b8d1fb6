"""Utility modules for sidhound.

Modules:
    cache_manager: Session resolution cache
    console: Rich console output
    helpers: General helper functions
    ldap: LDAP connection and search utilities
    logging: Logging configuration
"""
