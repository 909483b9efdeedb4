"""pmflow: task readiness and prioritization for a markdown-backed PM workflow."""

__version__ = "0.1.0"
