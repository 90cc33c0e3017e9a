"""
Utility services for the transfer indexer.
"""

from .health_server import HealthServer

__all__ = ['HealthServer']
