"""API module exports"""
from .endpoints import router, get_dispatcher

__all__ = ["router", "get_dispatcher"]
