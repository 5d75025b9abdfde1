"""
swapbridge API layer.

This module provides the REST interface (FastAPI) used by swap clients and
bridge operators.
"""

from .rest import create_app, run_server

__all__ = ["create_app", "run_server"]
