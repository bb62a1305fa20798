"""Code-health gatekeeper: complexity, churn and risk analysis with PR verdicts."""

__version__ = "0.1.0"
