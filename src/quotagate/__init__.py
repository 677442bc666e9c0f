"""QuotaGate - daily task assignment and distribution engine."""

__version__ = "0.1.0"
