"""Base-chain wallet daemon client."""

from .client import BaseChainClient

__all__ = ["BaseChainClient"]
