"""
Implementations Package

Concrete upload provider implementations.
"""

from upload.implementations.mock_provider import MockProvider
from upload.implementations.s3_provider import S3Provider
from upload.implementations.sc_player_provider import SCPlayerProvider
from upload.implementations.youtube_provider import YouTubeProvider

__all__ = [
    "MockProvider",
    "S3Provider",
    "SCPlayerProvider",
    "YouTubeProvider",
]
