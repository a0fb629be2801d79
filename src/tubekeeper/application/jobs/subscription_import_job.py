"""SubscriptionImportJob - bulk-adds subscriptions from a list of URLs.

Each URL is resolved through the provider registry on its own: an invalid URL,
an already subscribed playlist or a provider error is logged for that URL and
the import goes on with the next one.
"""

from typing import TYPE_CHECKING, Any

from tubekeeper.application.scheduler.job import Job
from tubekeeper.domain.entities import JobExecution, Subscription, VideoOrder
from tubekeeper.domain.exceptions import ExternalServiceError, InvalidURLError, ValidationException

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

# Keys accepted in `overrides`; they map 1:1 onto Subscription fields
OVERRIDE_FIELDS = ("auto_download", "download_limit", "download_order", "auto_delete_watched")


def apply_overrides(subscription: Subscription, overrides: dict[str, Any]) -> None:
    """Copy override values onto a subscription.

    Raises:
        ValidationException: Unknown key or invalid download order
    """
    unknown = set(overrides) - set(OVERRIDE_FIELDS)
    if unknown:
        raise ValidationException(f"Unknown subscription settings: {', '.join(sorted(unknown))}")

    for field_name in OVERRIDE_FIELDS:
        value = overrides.get(field_name)
        if field_name == "download_order" and value is not None:
            try:
                value = VideoOrder(value)
            except ValueError as e:
                raise ValidationException(f"Invalid download order '{value}'") from e
        setattr(subscription, field_name, value)


class SubscriptionImportJob(Job):
    """Creates one subscription per URL for the user owning the execution."""

    name = "SubscriptionImportJob"

    def __init__(
        self,
        execution: JobExecution,
        context: "ServiceContext",
        urls: list[str],
        parent_folder_id: int | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(execution, context)
        self._urls = list(urls)
        self._parent_folder_id = parent_folder_id
        self._overrides = dict(overrides or {})

    def get_description(self) -> str:
        return f"Importing {len(self._urls)} subscriptions..."

    async def run(self) -> None:
        user_id = self.execution.user_id
        if user_id is None:
            raise ValueError("Importing subscriptions requires an owning user")

        self.set_total_steps(max(len(self._urls), 1))
        imported: list[int] = []

        for url in self._urls:
            await self.progress_advance(1, url)
            try:
                subscription = await self.context.provider_registry.fetch_subscription(url)
            except (InvalidURLError, ExternalServiceError, ValueError) as e:
                self.log.error(f"Error importing URL {url}: {e}")
                await self.usr_warn(f"Could not import {url}: {e}", suppress_notification=True)
                continue

            subscription.user_id = user_id
            subscription.parent_folder_id = self._parent_folder_id
            apply_overrides(subscription, self._overrides)

            async with self.context.unit_of_work() as uow:
                existing = await uow.subscriptions.get_by_provider_native_id(
                    user_id, subscription.provider_id, subscription.provider_native_id
                )
                if existing is not None:
                    self.log.info(f"Skipping {url}: already subscribed as {existing.name}")
                    continue
                saved = await uow.subscriptions.add(subscription)

            assert saved.id is not None
            imported.append(saved.id)
            self.log.info(f"Imported subscription {saved.id} [{saved.name}] from {url}")

        await self.usr_log(f"Imported {len(imported)} of {len(self._urls)} subscriptions", progress=1.0)
        for subscription_id in imported:
            self.context.subscriptions.synchronize(subscription_id, user_id)
