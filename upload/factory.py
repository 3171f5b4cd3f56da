"""
Provider Factory

Factory pattern for building the provider registry used by the upload
manager: one provider instance per account type.

Modes:
- "auto": real providers, falling back to the mock for any that fail to build
- "real": real providers, errors propagate
- "mock": every account type served by MockProvider (dry runs, tests)
"""

import logging
from typing import Dict, Literal, Optional

from upload.config import UploadConfig
from upload.constants import AccountType
from upload.implementations.mock_provider import MockProvider
from upload.implementations.s3_provider import S3Provider
from upload.implementations.sc_player_provider import SCPlayerProvider
from upload.implementations.youtube_provider import YouTubeProvider
from upload.interfaces.provider_interface import ProviderInterface

# Type alias
ProviderMode = Literal["auto", "real", "mock"]
ProviderRegistry = Dict[AccountType, ProviderInterface]


class ProviderFactory:
    """
    Factory for creating the provider registry.

    Usage:
        # Real providers configured from upload.yaml
        providers = ProviderFactory.create_providers(config=UploadConfig())

        # Force mock for testing
        providers = ProviderFactory.create_providers(mode="mock")
    """

    _logger = logging.getLogger(__name__)

    @classmethod
    def create_providers(
        cls,
        mode: ProviderMode = "auto",
        config: Optional[UploadConfig] = None,
    ) -> ProviderRegistry:
        """
        Create one provider per account type.

        Args:
            mode: "auto", "real" or "mock"
            config: Upload settings for the StarCapture Player provider

        Returns:
            Mapping AccountType -> provider

        Raises:
            RuntimeError: If mode="real" and a provider cannot be built
        """
        if mode == "mock":
            cls._logger.info("Creating Mock Providers (forced)")
            return {
                account_type: MockProvider(provider_type=account_type)
                for account_type in AccountType
            }

        builders = {
            AccountType.S3: S3Provider,
            AccountType.YOUTUBE: YouTubeProvider,
            AccountType.SC_PLAYER: lambda: cls._create_sc_player_provider(config),
        }

        providers: ProviderRegistry = {}
        for account_type, builder in builders.items():
            try:
                providers[account_type] = builder()
                cls._logger.info(f"Created {account_type.value} provider")
            except Exception as e:
                if mode == "real":
                    raise RuntimeError(
                        f"{account_type.value} provider requested but not available: {e}"
                    ) from e
                cls._logger.warning(
                    f"{account_type.value} provider not available ({e}), using Mock Provider"
                )
                providers[account_type] = MockProvider(provider_type=account_type)

        return providers

    @classmethod
    def _create_sc_player_provider(
        cls,
        config: Optional[UploadConfig] = None,
    ) -> SCPlayerProvider:
        """Create StarCapture Player provider from upload settings"""
        if config is None:
            return SCPlayerProvider()

        return SCPlayerProvider(
            default_base_url=config.sc_player_base_url,
            limits_cache_ttl=config.limits_cache_ttl_seconds,
            max_retries=config.direct_upload_max_retries,
            multipart_concurrency=config.multipart_concurrency,
        )


# Convenience function for quick creation
def create_providers(force_mock: bool = False) -> ProviderRegistry:
    """
    Quick registry creation with simple mock override.

    Example:
        providers = create_providers(force_mock=True)
    """
    mode: ProviderMode = "mock" if force_mock else "auto"
    return ProviderFactory.create_providers(mode=mode)
