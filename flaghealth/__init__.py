"""flaghealth: compares code fallback values with LaunchDarkly default rules."""

__version__ = "1.0.0"
