"""
REST API Module

FastAPI-based REST API for the swap bridge.
"""

from .app import create_app, result_status_code, run_server

__all__ = ["create_app", "result_status_code", "run_server"]
