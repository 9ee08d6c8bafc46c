"""
API route modules.
"""
from src.api.routes import coins, health

__all__ = ["coins", "health"]
