"""Shared types and the abstract interface for chat platform connectors."""

__all__ = ["common"]