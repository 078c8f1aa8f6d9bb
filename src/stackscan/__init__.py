"""Repository tech-stack scanner driven by an in-memory background job engine."""

__version__ = "0.1.0"
