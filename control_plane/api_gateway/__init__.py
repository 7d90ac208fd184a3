"""
API Gateway Module

Main FastAPI application with the tenant control plane endpoints.
"""

from .main import app

__all__ = ["app"]
