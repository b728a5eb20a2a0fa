"""Adapters for the LaunchDarkly REST API."""
