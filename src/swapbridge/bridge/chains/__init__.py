"""Chain clients used by the bridge gateways and proof verifier."""

from .base_chain import BaseChainClient
from .wrapped_chain import WrappedChainClient

__all__ = ["BaseChainClient", "WrappedChainClient"]
