"""Domain models for flag records, quota state and health reports."""
