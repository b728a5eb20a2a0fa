"""API Resilience Implementations.

Contains services for tracking the upstream quota, retrying calls with
exponential backoff, and fetching many resources in bounded waves.
Bounded Context: API Resilience
"""
