# Output package: JSON export of identity records.
