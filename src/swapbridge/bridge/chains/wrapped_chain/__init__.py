"""Wrapped-asset chain executor client."""

from .client import WrappedChainClient

__all__ = ["WrappedChainClient"]
