"""
API module.
Contains the operational FastAPI application.
"""

from delayqueue.api.main import create_app, run

__all__ = ["create_app", "run"]
