"""rolematrix: role-based feature access control engine."""

__version__ = "0.1.0"
