"""depgov - dependency risk scoring and policy enforcement."""

__version__ = "0.1.0"
