"""Domain Events emitted by the resilience layer."""
