"""Subscription Service - folder tree, subscriptions and synchronize entry points.

Hey future me - this is what a web layer (or CLI) calls. Everything that
validates input does it BEFORE the first write: a rejected folder move or
duplicate subscription leaves the DB exactly as it was.

FOLDER TREE:
```
root (parent_id=None)
├── Music            ← SubscriptionFolder
│   ├── Live         ← SubscriptionFolder
│   └── Channel A    ← Subscription (parent_folder_id=Music)
└── Channel B        ← Subscription at the root
```
Folder names are unique per (user, parent), case-insensitive. Moving a folder
under itself or one of its descendants is rejected with ValidationException.
"""

import logging
from collections.abc import Callable
from typing import IO, TYPE_CHECKING, Any, AnyStr

from tubekeeper.application.jobs.subscription_import_job import SubscriptionImportJob, apply_overrides
from tubekeeper.application.jobs.synchronize_job import SynchronizeJob
from tubekeeper.application.scheduler.scheduler import ScheduledJob
from tubekeeper.application.scheduler.triggers import parse_cron
from tubekeeper.application.services import subscription_file_parser
from tubekeeper.domain.entities import Subscription, SubscriptionFolder
from tubekeeper.domain.exceptions import (
    DuplicateEntityException,
    EntityNotFoundException,
    ValidationException,
)
from tubekeeper.domain.ports import IUnitOfWork

if TYPE_CHECKING:
    from tubekeeper.application.context import ServiceContext

logger = logging.getLogger(__name__)

GLOBAL_SYNC_JOB_ID = "global-synchronize"

TreeNode = SubscriptionFolder | Subscription


class SubscriptionService:
    """User-facing operations on folders and subscriptions."""

    def __init__(self, context: "ServiceContext") -> None:
        self._context = context

    # =========================================================================
    # FOLDERS
    # =========================================================================

    async def create_folder(
        self, user_id: int, name: str, parent_id: int | None = None
    ) -> SubscriptionFolder:
        """Create a folder.

        Raises:
            ValidationException: Empty or duplicate name
            EntityNotFoundException: Parent folder doesn't exist (for this user)
        """
        name = (name or "").strip()
        if not name:
            raise ValidationException("Folder name cannot be empty")

        async with self._context.unit_of_work() as uow:
            await self._check_parent(uow, user_id, parent_id)
            await self._check_unique_name(uow, user_id, parent_id, name, None)
            folder = await uow.folders.add(
                SubscriptionFolder(name=name, user_id=user_id, parent_id=parent_id)
            )

        logger.info(f"Created folder {folder.id} [{folder.name}] for user {user_id}")
        return folder

    async def update_folder(
        self, folder_id: int, name: str, parent_id: int | None
    ) -> SubscriptionFolder:
        """Rename and/or move a folder.

        Raises:
            EntityNotFoundException: Folder or new parent doesn't exist
            ValidationException: Empty/duplicate name or the move would create a cycle
        """
        name = (name or "").strip()
        if not name:
            raise ValidationException("Folder name cannot be empty")

        async with self._context.unit_of_work() as uow:
            folder = await uow.folders.get_by_id(folder_id)
            if folder is None:
                raise EntityNotFoundException("SubscriptionFolder", folder_id)

            await self._check_parent(uow, folder.user_id, parent_id)
            await self._check_unique_name(uow, folder.user_id, parent_id, name, folder_id)
            await self._check_no_cycle(uow, folder_id, parent_id)

            folder.name = name
            folder.parent_id = parent_id
            await uow.folders.update(folder)

        logger.info(f"Updated folder {folder_id} [{name}] parent={parent_id}")
        return folder

    async def delete_folder(self, folder_id: int, keep_subscriptions: bool = False) -> None:
        """Delete a folder and its sub folders.

        Args:
            folder_id: Folder to delete
            keep_subscriptions: Move every subscription of the subtree to the
                root instead of deleting it

        Raises:
            EntityNotFoundException: Folder doesn't exist
        """
        async with self._context.unit_of_work() as uow:
            folder = await uow.folders.get_by_id(folder_id)
            if folder is None:
                raise EntityNotFoundException("SubscriptionFolder", folder_id)

            if keep_subscriptions:
                nodes = await self._traverse(uow, folder.user_id, folder_id, lambda node: node)
                for node in nodes:
                    if isinstance(node, Subscription):
                        node.parent_folder_id = None
                        await uow.subscriptions.update(node)

            await uow.folders.delete(folder_id)

        logger.info(f"Deleted folder {folder_id} (keep_subscriptions={keep_subscriptions})")

    async def traverse(
        self,
        user_id: int,
        root_folder_id: int | None,
        visit: Callable[[TreeNode], Any],
    ) -> list[Any]:
        """Walk the folder tree below root_folder_id (None = whole tree).

        visit() is called for the root folder (when given), every folder and
        every subscription below it; non-None results are collected.

        Returns:
            Collected results of visit()
        """
        async with self._context.unit_of_work() as uow:
            return await self._traverse(uow, user_id, root_folder_id, visit)

    async def _traverse(
        self,
        uow: IUnitOfWork,
        user_id: int,
        root_folder_id: int | None,
        visit: Callable[[TreeNode], Any],
    ) -> list[Any]:
        collected: list[Any] = []

        def collect(node: TreeNode) -> None:
            result = visit(node)
            if result is not None:
                collected.append(result)

        if root_folder_id is not None:
            root = await uow.folders.get_by_id(root_folder_id)
            if root is None:
                raise EntityNotFoundException("SubscriptionFolder", root_folder_id)
            collect(root)

        queue: list[int | None] = [root_folder_id]
        visited: set[int | None] = set()
        while queue:
            folder_id = queue.pop()
            if folder_id in visited:
                logger.error(f"Found folder tree cycle for folder id {folder_id}")
                continue
            visited.add(folder_id)

            for child in await uow.folders.list_children(user_id, folder_id):
                collect(child)
                queue.append(child.id)

            for subscription in await uow.subscriptions.list_by_folder(user_id, folder_id):
                collect(subscription)

        return collected

    async def _check_parent(self, uow: IUnitOfWork, user_id: int, parent_id: int | None) -> None:
        if parent_id is None:
            return
        parent = await uow.folders.get_by_id(parent_id)
        if parent is None or parent.user_id != user_id:
            raise EntityNotFoundException("SubscriptionFolder", parent_id)

    async def _check_unique_name(
        self,
        uow: IUnitOfWork,
        user_id: int,
        parent_id: int | None,
        name: str,
        folder_id: int | None,
    ) -> None:
        existing = await uow.folders.get_by_name(user_id, parent_id, name)
        if existing is not None and existing.id != folder_id:
            raise ValidationException(f"A folder named '{name}' already exists here")

    async def _check_no_cycle(
        self, uow: IUnitOfWork, folder_id: int, new_parent_id: int | None
    ) -> None:
        # Walk up from the new parent; meeting folder_id means we'd become our own ancestor
        current = new_parent_id
        seen: set[int] = set()
        while current is not None:
            if current == folder_id:
                raise ValidationException("A folder cannot be moved into itself or one of its sub folders")
            if current in seen:
                logger.error(f"Found folder tree cycle for folder id {current}")
                break
            seen.add(current)
            parent = await uow.folders.get_by_id(current)
            current = parent.parent_id if parent is not None else None

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def add_subscription_from_url(
        self,
        user_id: int,
        url: str,
        parent_folder_id: int | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> Subscription:
        """Resolve a playlist/channel URL, store it and schedule its first synchronization.

        Raises:
            InvalidURLError: No configured provider accepts the URL
            DuplicateEntityException: The user already has this playlist
            EntityNotFoundException: parent_folder_id doesn't exist
        """
        subscription = await self._context.provider_registry.fetch_subscription(url)
        subscription.user_id = user_id
        subscription.parent_folder_id = parent_folder_id
        apply_overrides(subscription, overrides or {})

        async with self._context.unit_of_work() as uow:
            await self._check_parent(uow, user_id, parent_folder_id)
            existing = await uow.subscriptions.get_by_provider_native_id(
                user_id, subscription.provider_id, subscription.provider_native_id
            )
            if existing is not None:
                raise DuplicateEntityException("Subscription", subscription.provider_native_id)
            subscription = await uow.subscriptions.add(subscription)

        assert subscription.id is not None
        logger.info(f"Added subscription {subscription.id} [{subscription.name}] for user {user_id}")
        self.synchronize(subscription.id, user_id)
        return subscription

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        """Save user editable fields (name, folder, overrides).

        Raises:
            EntityNotFoundException: Subscription or folder doesn't exist
        """
        if subscription.id is None:
            raise EntityNotFoundException("Subscription", None)
        if not subscription.name or not subscription.name.strip():
            raise ValidationException("Subscription name cannot be empty")

        async with self._context.unit_of_work() as uow:
            current = await uow.subscriptions.get_by_id(subscription.id)
            if current is None:
                raise EntityNotFoundException("Subscription", subscription.id)
            if current.user_id is not None:
                await self._check_parent(uow, current.user_id, subscription.parent_folder_id)

            current.name = subscription.name.strip()
            current.copy_overrides_from(subscription)
            current.rewrite_playlist_indices = subscription.rewrite_playlist_indices
            await uow.subscriptions.update(current)

        return current

    async def delete_subscription(self, subscription_id: int) -> None:
        """Delete a subscription and its videos. Downloaded files stay on disk.

        Raises:
            EntityNotFoundException: Subscription doesn't exist
        """
        async with self._context.unit_of_work() as uow:
            if await uow.subscriptions.get_by_id(subscription_id) is None:
                raise EntityNotFoundException("Subscription", subscription_id)
            await uow.subscriptions.delete(subscription_id)
        logger.info(f"Deleted subscription {subscription_id}")

    # =========================================================================
    # IMPORT
    # =========================================================================

    def import_subscriptions(
        self,
        user_id: int,
        urls: list[str],
        parent_folder_id: int | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> ScheduledJob:
        """Schedule a SubscriptionImportJob for a list of URLs.

        Raises:
            ValidationException: Invalid overrides
        """
        # Fail now instead of inside the job
        apply_overrides(Subscription(name="-", provider_id="-", provider_native_id="-"), overrides or {})
        return self._context.scheduler.add_job(
            SubscriptionImportJob,
            args=(list(urls), parent_folder_id, dict(overrides or {})),
            user_id=user_id,
        )

    @staticmethod
    def parse_subscription_file(file_handle: IO[AnyStr]) -> list[str]:
        """Extract URLs from an OPML or plain URL-list file.

        Raises:
            FormatNotSupportedError: Unknown format
        """
        return subscription_file_parser.parse(file_handle)

    # =========================================================================
    # SYNCHRONIZATION
    # =========================================================================

    def synchronize(self, subscription_id: int, user_id: int | None = None) -> ScheduledJob:
        """Run a synchronization of one subscription as soon as possible."""
        return self._context.scheduler.add_job(
            SynchronizeJob, args=(subscription_id,), user_id=user_id
        )

    def synchronize_all(self) -> ScheduledJob:
        """Run a global synchronization now, unless one is already queued or running."""
        return self._context.scheduler.add_job(
            SynchronizeJob,
            job_id=GLOBAL_SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
        )

    def schedule_global_synchronize(self, cron: str | None = None) -> ScheduledJob:
        """(Re)register the recurring global synchronization.

        Calling it again only reschedules the existing registration.

        Raises:
            ValidationException: Invalid cron expression
        """
        expression = cron or self._context.settings.scheduler.sync_schedule
        trigger = parse_cron(expression)
        job = self._context.scheduler.add_job(
            SynchronizeJob,
            trigger=trigger,
            job_id=GLOBAL_SYNC_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Global synchronization scheduled with '{expression}'")
        return job
