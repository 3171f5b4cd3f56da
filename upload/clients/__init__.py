"""
API Clients Package

REST clients for upload backends that have no official SDK.
"""

from upload.clients.sc_player_api import SCPlayerApiClient

__all__ = ["SCPlayerApiClient"]
