"""Registry of video providers and their persisted configuration.

Hey future me - registration and configuration are separate on purpose:
providers register at import/startup time (code), configurations come from the
DB (user input). Either can happen first. A stored config whose provider isn't
registered yet waits in _pending_configs and is applied the moment the
provider registers.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from tubekeeper.domain.entities import ProviderConfig, Subscription
from tubekeeper.domain.exceptions import (
    ConfigurationError,
    InvalidURLError,
    ProviderConfigurationError,
)
from tubekeeper.domain.ports import IUnitOfWork, IVideoProvider, VideoProviderState

logger = logging.getLogger(__name__)

NO_PROVIDER_MESSAGE = "The given URL is not valid for any of the supported sites!"


class VideoProviderRegistry:
    """Maps provider ids to provider implementations."""

    def __init__(
        self,
        unit_of_work: Callable[[], IUnitOfWork],
        providers: Iterable[IVideoProvider] = (),
    ) -> None:
        self._unit_of_work = unit_of_work
        self._providers: dict[str, IVideoProvider] = {}
        self._pending_configs: dict[str, ProviderConfig] = {}
        for provider in providers:
            self.register_provider(provider)

    def register_provider(self, provider: IVideoProvider) -> bool:
        """Register a provider.

        Returns:
            False if a provider with the same id is already registered
        """
        provider_id = provider.provider_id
        if provider_id in self._providers:
            logger.error(f"Duplicate video provider {provider_id}")
            return False

        self._providers[provider_id] = provider
        logger.info(f"Registered video provider {provider_id}")

        pending = self._pending_configs.pop(provider_id, None)
        if pending is not None:
            self._apply(provider, pending.settings)
        return True

    async def load(self) -> None:
        """Apply persisted configurations to registered providers."""
        async with self._unit_of_work() as uow:
            configs = await uow.provider_configs.list_all()

        for config in configs:
            provider = self._providers.get(config.provider_id)
            if provider is None:
                logger.warning(f"Provider {config.provider_id} not registered, keeping config pending")
                self._pending_configs[config.provider_id] = config
                continue
            self._apply(provider, config.settings)

    def _apply(self, provider: IVideoProvider, settings: dict[str, Any]) -> None:
        # A broken stored config must not take the whole registry down
        try:
            provider.configure(settings)
        except (ProviderConfigurationError, ConfigurationError, ValueError) as e:
            provider.state = VideoProviderState.NOT_CONFIGURED
            logger.error(f"Failed to configure video provider {provider.provider_id}: {e}")
            return
        provider.state = VideoProviderState.OK
        logger.info(f"Configured video provider {provider.provider_id}")

    async def configure_provider(
        self, provider_id: str, settings: dict[str, Any] | None
    ) -> None:
        """Store and apply a configuration; None removes it.

        Raises:
            ConfigurationError: Unknown provider id
            ProviderConfigurationError: Settings rejected by the provider
        """
        provider = self.get(provider_id)

        if settings is not None:
            provider.validate_configuration(settings)
            provider.configure(settings)
            async with self._unit_of_work() as uow:
                await uow.provider_configs.save(ProviderConfig(provider_id, dict(settings)))
            provider.state = VideoProviderState.OK
            logger.info(f"Configured video provider {provider_id}")
        else:
            provider.unconfigure()
            async with self._unit_of_work() as uow:
                await uow.provider_configs.delete(provider_id)
            provider.state = VideoProviderState.NOT_CONFIGURED
            logger.info(f"Unconfigured video provider {provider_id}")

    async def get_provider_config(self, provider_id: str) -> dict[str, Any] | None:
        """Return the stored settings of a provider, None if there are none."""
        async with self._unit_of_work() as uow:
            config = await uow.provider_configs.get(provider_id)
        return config.settings if config is not None else None

    def get(self, provider_id: str) -> IVideoProvider:
        """Get a provider by id.

        Raises:
            ConfigurationError: Unknown provider id
        """
        try:
            return self._providers[provider_id]
        except KeyError:
            raise ConfigurationError(f"Video provider '{provider_id}' is not registered") from None

    def get_for_subscription(self, subscription: Subscription) -> IVideoProvider:
        return self.get(subscription.provider_id)

    def configured_providers(self) -> list[IVideoProvider]:
        return [p for p in self._providers.values() if p.state == VideoProviderState.OK]

    def find_provider_for_url(self, url: str) -> IVideoProvider | None:
        """First configured provider (registration order) accepting the URL."""
        for provider in self.configured_providers():
            try:
                provider.validate_subscription_url(url)
            except InvalidURLError:
                continue
            return provider
        return None

    def validate_subscription_url(self, url: str) -> None:
        """Raises InvalidURLError unless some configured provider accepts url."""
        if self.find_provider_for_url(url) is None:
            raise InvalidURLError(NO_PROVIDER_MESSAGE)

    async def fetch_subscription(self, url: str) -> Subscription:
        """Resolve a URL into an unsaved Subscription.

        Raises:
            InvalidURLError: No configured provider accepts the URL
        """
        provider = self.find_provider_for_url(url)
        if provider is None:
            raise InvalidURLError(NO_PROVIDER_MESSAGE)
        subscription = await provider.fetch_subscription(url)
        subscription.provider_id = provider.provider_id
        return subscription

    def available_providers(self) -> list[IVideoProvider]:
        return list(self._providers.values())
