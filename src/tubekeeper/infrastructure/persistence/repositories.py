"""Repository implementations for domain entities."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from tubekeeper.domain.entities import (
    JobExecution,
    JobMessage,
    JobMessageLevel,
    JobStatus,
    ProviderConfig,
    Subscription,
    SubscriptionFolder,
    User,
    UserPreferences,
    Video,
    VideoOrder,
)
from tubekeeper.domain.exceptions import EntityNotFoundException
from tubekeeper.domain.ports import (
    IJobExecutionRepository,
    IProviderConfigRepository,
    ISubscriptionFolderRepository,
    ISubscriptionRepository,
    IUnitOfWork,
    IUserRepository,
    IVideoRepository,
)

from .models import (
    JobExecutionModel,
    JobMessageModel,
    ProviderConfigModel,
    SubscriptionFolderModel,
    SubscriptionModel,
    UserModel,
    VideoModel,
    ensure_utc_aware,
)

logger = logging.getLogger(__name__)

# Hey future me - every order gets the id as tie breaker, otherwise two videos with the same
# publish_date come back in random order and "top 3 by order" download picks flap between runs.
VIDEO_ORDER_MAPPING: dict[VideoOrder, tuple[ColumnElement[Any], ...]] = {
    VideoOrder.NEWEST: (VideoModel.publish_date.desc(), VideoModel.id.desc()),
    VideoOrder.OLDEST: (VideoModel.publish_date.asc(), VideoModel.id.asc()),
    VideoOrder.PLAYLIST: (VideoModel.playlist_index.asc(), VideoModel.id.asc()),
    VideoOrder.PLAYLIST_REVERSE: (VideoModel.playlist_index.desc(), VideoModel.id.desc()),
    VideoOrder.POPULARITY: (VideoModel.view_count.desc(), VideoModel.id.asc()),
    VideoOrder.RATING: (VideoModel.rating.desc(), VideoModel.id.asc()),
}


def _preferences_to_dict(preferences: UserPreferences) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for key, value in vars(preferences).items():
        if value is None:
            continue
        data[key] = value.value if isinstance(value, VideoOrder) else value
    return data


def _preferences_from_dict(data: dict[str, Any] | None) -> UserPreferences:
    data = dict(data or {})
    known = set(vars(UserPreferences()).keys())
    values = {key: value for key, value in data.items() if key in known}
    if values.get("download_order") is not None:
        values["download_order"] = VideoOrder(values["download_order"])
    return UserPreferences(**values)


class UserRepository(IUserRepository):
    """SQLAlchemy implementation of User repository."""

    # Hey future me, repos get the session of the unit of work injected and NEVER commit.
    # add() flushes so the autoincrement id is known right away; the row is still rolled
    # back if the surrounding unit of work fails.
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, user: User) -> User:
        model = UserModel(
            username=user.username,
            preferences=_preferences_to_dict(user.preferences),
        )
        self.session.add(model)
        await self.session.flush()
        user.id = model.id
        return user

    async def get_by_id(self, user_id: int) -> User | None:
        model = await self.session.get(UserModel, user_id)
        return self._to_entity(model) if model else None

    async def get_by_username(self, username: str) -> User | None:
        stmt = select(UserModel).where(UserModel.username == username)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def update(self, user: User) -> None:
        model = await self.session.get(UserModel, user.id)
        if model is None:
            raise EntityNotFoundException("User", user.id)
        model.username = user.username
        model.preferences = _preferences_to_dict(user.preferences)

    @staticmethod
    def _to_entity(model: UserModel) -> User:
        return User(
            id=model.id,
            username=model.username,
            preferences=_preferences_from_dict(model.preferences),
        )


class SubscriptionFolderRepository(ISubscriptionFolderRepository):
    """SQLAlchemy implementation of SubscriptionFolder repository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, folder: SubscriptionFolder) -> SubscriptionFolder:
        model = SubscriptionFolderModel(
            name=folder.name, user_id=folder.user_id, parent_id=folder.parent_id
        )
        self.session.add(model)
        await self.session.flush()
        folder.id = model.id
        return folder

    async def get_by_id(self, folder_id: int) -> SubscriptionFolder | None:
        model = await self.session.get(SubscriptionFolderModel, folder_id)
        return self._to_entity(model) if model else None

    async def get_by_name(
        self, user_id: int, parent_id: int | None, name: str
    ) -> SubscriptionFolder | None:
        stmt = select(SubscriptionFolderModel).where(
            SubscriptionFolderModel.user_id == user_id,
            SubscriptionFolderModel.parent_id.is_(parent_id)
            if parent_id is None
            else SubscriptionFolderModel.parent_id == parent_id,
            func.lower(SubscriptionFolderModel.name) == name.lower(),
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def list_children(
        self, user_id: int, parent_id: int | None
    ) -> list[SubscriptionFolder]:
        stmt = (
            select(SubscriptionFolderModel)
            .where(
                SubscriptionFolderModel.user_id == user_id,
                SubscriptionFolderModel.parent_id.is_(None)
                if parent_id is None
                else SubscriptionFolderModel.parent_id == parent_id,
            )
            .order_by(func.lower(SubscriptionFolderModel.name))
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def update(self, folder: SubscriptionFolder) -> None:
        model = await self.session.get(SubscriptionFolderModel, folder.id)
        if model is None:
            raise EntityNotFoundException("SubscriptionFolder", folder.id)
        model.name = folder.name
        model.parent_id = folder.parent_id

    async def delete(self, folder_id: int) -> None:
        stmt = delete(SubscriptionFolderModel).where(SubscriptionFolderModel.id == folder_id)
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("SubscriptionFolder", folder_id)

    @staticmethod
    def _to_entity(model: SubscriptionFolderModel) -> SubscriptionFolder:
        return SubscriptionFolder(
            id=model.id, name=model.name, user_id=model.user_id, parent_id=model.parent_id
        )


class SubscriptionRepository(ISubscriptionRepository):
    """SQLAlchemy implementation of Subscription repository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, subscription: Subscription) -> Subscription:
        model = SubscriptionModel()
        self._apply(model, subscription)
        self.session.add(model)
        await self.session.flush()
        subscription.id = model.id
        return subscription

    async def get_by_id(self, subscription_id: int) -> Subscription | None:
        model = await self.session.get(SubscriptionModel, subscription_id)
        return self._to_entity(model) if model else None

    async def get_by_provider_native_id(
        self, user_id: int, provider_id: str, provider_native_id: str
    ) -> Subscription | None:
        stmt = select(SubscriptionModel).where(
            SubscriptionModel.user_id == user_id,
            SubscriptionModel.provider_id == provider_id,
            SubscriptionModel.provider_native_id == provider_native_id,
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def list_all(self) -> list[Subscription]:
        stmt = select(SubscriptionModel).order_by(SubscriptionModel.id)
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def list_by_user(self, user_id: int) -> list[Subscription]:
        stmt = (
            select(SubscriptionModel)
            .where(SubscriptionModel.user_id == user_id)
            .order_by(SubscriptionModel.id)
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def list_by_folder(
        self, user_id: int, folder_id: int | None
    ) -> list[Subscription]:
        stmt = (
            select(SubscriptionModel)
            .where(
                SubscriptionModel.user_id == user_id,
                SubscriptionModel.parent_folder_id.is_(None)
                if folder_id is None
                else SubscriptionModel.parent_folder_id == folder_id,
            )
            .order_by(func.lower(SubscriptionModel.name))
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def update(self, subscription: Subscription) -> None:
        model = await self.session.get(SubscriptionModel, subscription.id)
        if model is None:
            raise EntityNotFoundException("Subscription", subscription.id)
        self._apply(model, subscription)

    async def delete(self, subscription_id: int) -> None:
        stmt = delete(SubscriptionModel).where(SubscriptionModel.id == subscription_id)
        result = await self.session.execute(stmt)
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise EntityNotFoundException("Subscription", subscription_id)

    @staticmethod
    def _apply(model: SubscriptionModel, subscription: Subscription) -> None:
        model.user_id = subscription.user_id
        model.name = subscription.name
        model.provider_id = subscription.provider_id
        model.provider_native_id = subscription.provider_native_id
        model.description = subscription.description
        model.channel_id = subscription.channel_id
        model.channel_name = subscription.channel_name
        model.thumbnail_url = subscription.thumbnail_url
        model.parent_folder_id = subscription.parent_folder_id
        model.rewrite_playlist_indices = subscription.rewrite_playlist_indices
        model.auto_download = subscription.auto_download
        model.download_limit = subscription.download_limit
        model.download_order = (
            subscription.download_order.value if subscription.download_order else None
        )
        model.auto_delete_watched = subscription.auto_delete_watched
        model.last_synchronized = subscription.last_synchronized

    @staticmethod
    def _to_entity(model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=model.id,
            user_id=model.user_id,
            name=model.name,
            provider_id=model.provider_id,
            provider_native_id=model.provider_native_id,
            description=model.description,
            channel_id=model.channel_id,
            channel_name=model.channel_name,
            thumbnail_url=model.thumbnail_url,
            parent_folder_id=model.parent_folder_id,
            rewrite_playlist_indices=model.rewrite_playlist_indices,
            auto_download=model.auto_download,
            download_limit=model.download_limit,
            download_order=VideoOrder(model.download_order) if model.download_order else None,
            auto_delete_watched=model.auto_delete_watched,
            last_synchronized=ensure_utc_aware(model.last_synchronized),
        )


class VideoRepository(IVideoRepository):
    """SQLAlchemy implementation of Video repository."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, video: Video) -> Video:
        model = VideoModel()
        self._apply(model, video)
        self.session.add(model)
        await self.session.flush()
        video.id = model.id
        return video

    async def get_by_id(self, video_id: int) -> Video | None:
        model = await self.session.get(VideoModel, video_id)
        return self._to_entity(model) if model else None

    async def get_by_native_id(
        self, subscription_id: int, provider_native_id: str
    ) -> Video | None:
        stmt = select(VideoModel).where(
            VideoModel.subscription_id == subscription_id,
            VideoModel.provider_native_id == provider_native_id,
        )
        result = await self.session.execute(stmt)
        model = result.scalars().first()
        return self._to_entity(model) if model else None

    async def list_by_subscription(self, subscription_id: int) -> list[Video]:
        stmt = (
            select(VideoModel)
            .where(VideoModel.subscription_id == subscription_id)
            .order_by(*VIDEO_ORDER_MAPPING[VideoOrder.PLAYLIST])
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def update(self, video: Video) -> None:
        model = await self.session.get(VideoModel, video.id)
        if model is None:
            raise EntityNotFoundException("Video", video.id)
        self._apply(model, video)

    async def update_many(self, videos: Iterable[Video]) -> None:
        for video in videos:
            await self.update(video)

    async def clear_new_flag(self, subscription_id: int) -> int:
        stmt = (
            update(VideoModel)
            .where(VideoModel.subscription_id == subscription_id, VideoModel.is_new.is_(True))
            .values(is_new=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def list_download_candidates(
        self, subscription_id: int, order: VideoOrder
    ) -> list[Video]:
        stmt = (
            select(VideoModel)
            .where(
                VideoModel.subscription_id == subscription_id,
                VideoModel.downloaded_path.is_(None),
                VideoModel.watched.is_(False),
            )
            .order_by(*VIDEO_ORDER_MAPPING[order])
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    async def count_downloaded_for_subscription(self, subscription_id: int) -> int:
        stmt = select(func.count(VideoModel.id)).where(
            VideoModel.subscription_id == subscription_id,
            VideoModel.downloaded_path.is_not(None),
        )
        return (await self.session.execute(stmt)).scalar_one()

    async def count_downloaded_for_user(self, user_id: int) -> int:
        stmt = (
            select(func.count(VideoModel.id))
            .join(SubscriptionModel, VideoModel.subscription_id == SubscriptionModel.id)
            .where(
                SubscriptionModel.user_id == user_id,
                VideoModel.downloaded_path.is_not(None),
            )
        )
        return (await self.session.execute(stmt)).scalar_one()

    # Listen up, words are AND-ed, and each word may match the title, the description, the
    # uploader or the subscription name. subscription_ids=[] means "no subscriptions" (empty
    # folder), which is different from None = "don't filter".
    async def search(
        self,
        user_id: int,
        order: VideoOrder,
        words: list[str] | None = None,
        subscription_ids: list[int] | None = None,
        only_watched: bool | None = None,
        only_downloaded: bool | None = None,
    ) -> list[Video]:
        conditions: list[ColumnElement[bool]] = [SubscriptionModel.user_id == user_id]

        for word in words or []:
            pattern = f"%{word}%"
            conditions.append(
                or_(
                    VideoModel.name.ilike(pattern),
                    VideoModel.description.ilike(pattern),
                    VideoModel.uploader_name.ilike(pattern),
                    SubscriptionModel.name.ilike(pattern),
                )
            )
        if subscription_ids is not None:
            conditions.append(VideoModel.subscription_id.in_(subscription_ids))
        if only_watched is not None:
            conditions.append(VideoModel.watched.is_(only_watched))
        if only_downloaded is not None:
            conditions.append(
                VideoModel.downloaded_path.is_not(None)
                if only_downloaded
                else VideoModel.downloaded_path.is_(None)
            )

        stmt = (
            select(VideoModel)
            .join(SubscriptionModel, VideoModel.subscription_id == SubscriptionModel.id)
            .where(and_(*conditions))
            .order_by(*VIDEO_ORDER_MAPPING[order])
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    @staticmethod
    def _apply(model: VideoModel, video: Video) -> None:
        model.subscription_id = video.subscription_id  # type: ignore[assignment]
        model.provider_native_id = video.provider_native_id
        model.name = video.name
        model.description = video.description
        model.publish_date = video.publish_date
        model.thumbnail_url = video.thumbnail_url
        model.uploader_name = video.uploader_name
        model.playlist_index = video.playlist_index
        model.downloaded_path = video.downloaded_path
        model.downloaded_size = video.downloaded_size
        model.watched = video.watched
        model.is_new = video.is_new
        model.view_count = video.view_count
        model.rating = video.rating

    @staticmethod
    def _to_entity(model: VideoModel) -> Video:
        return Video(
            id=model.id,
            subscription_id=model.subscription_id,
            provider_native_id=model.provider_native_id,
            name=model.name,
            description=model.description,
            publish_date=ensure_utc_aware(model.publish_date),  # type: ignore[arg-type]
            thumbnail_url=model.thumbnail_url,
            uploader_name=model.uploader_name,
            playlist_index=model.playlist_index,
            downloaded_path=model.downloaded_path,
            downloaded_size=model.downloaded_size,
            watched=model.watched,
            is_new=model.is_new,
            view_count=model.view_count,
            rating=model.rating,
            last_updated=ensure_utc_aware(model.last_updated),  # type: ignore[arg-type]
        )


class JobExecutionRepository(IJobExecutionRepository):
    """SQLAlchemy implementation of the job execution log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(self, execution: JobExecution) -> JobExecution:
        model = JobExecutionModel(
            start_time=execution.start_time,
            end_time=execution.end_time,
            user_id=execution.user_id,
            description=execution.description,
            status=execution.status.value,
        )
        self.session.add(model)
        await self.session.flush()
        execution.id = model.id
        return execution

    async def get_by_id(self, execution_id: int) -> JobExecution | None:
        model = await self.session.get(JobExecutionModel, execution_id)
        return self._to_entity(model) if model else None

    async def update(self, execution: JobExecution) -> None:
        model = await self.session.get(JobExecutionModel, execution.id)
        if model is None:
            raise EntityNotFoundException("JobExecution", execution.id)
        model.description = execution.description[:250]
        model.status = execution.status.value
        model.end_time = execution.end_time

    async def list_recent(
        self, user_id: int | None, limit: int = 50
    ) -> list[JobExecution]:
        stmt = (
            select(JobExecutionModel)
            .where(
                or_(JobExecutionModel.user_id.is_(None), JobExecutionModel.user_id == user_id)
            )
            .order_by(JobExecutionModel.start_time.desc(), JobExecutionModel.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [self._to_entity(model) for model in result.scalars().all()]

    # Hey future me - this is the crash recovery scan. A second call right after the first
    # matches no rows, which is exactly the idempotency we want.
    async def mark_running_as_interrupted(self) -> int:
        stmt = (
            update(JobExecutionModel)
            .where(JobExecutionModel.status == JobStatus.RUNNING.value)
            .values(status=JobStatus.INTERRUPTED.value)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def add_message(self, message: JobMessage) -> JobMessage:
        model = JobMessageModel(
            timestamp=message.timestamp,
            job_id=message.job_id,
            progress=message.progress,
            message=message.text[:1024],
            level=message.level.value,
            suppress_notification=message.suppress_notification,
        )
        self.session.add(model)
        await self.session.flush()
        message.id = model.id
        return message

    async def list_messages(self, execution_id: int) -> list[JobMessage]:
        stmt = (
            select(JobMessageModel)
            .where(JobMessageModel.job_id == execution_id)
            .order_by(JobMessageModel.timestamp, JobMessageModel.id)
        )
        result = await self.session.execute(stmt)
        return [
            JobMessage(
                id=model.id,
                job_id=model.job_id,
                text=model.message,
                level=JobMessageLevel(model.level),
                progress=model.progress,
                suppress_notification=model.suppress_notification,
                timestamp=ensure_utc_aware(model.timestamp),  # type: ignore[arg-type]
            )
            for model in result.scalars().all()
        ]

    async def delete_finished_before(self, threshold: datetime) -> int:
        terminal = [
            status.value for status in JobStatus if status is not JobStatus.RUNNING
        ]
        ids_stmt = select(JobExecutionModel.id).where(
            JobExecutionModel.status.in_(terminal),
            or_(
                JobExecutionModel.end_time < threshold,
                and_(
                    JobExecutionModel.end_time.is_(None),
                    JobExecutionModel.start_time < threshold,
                ),
            ),
        )
        ids = list((await self.session.execute(ids_stmt)).scalars().all())
        if not ids:
            return 0

        # Explicit message delete: don't rely on the FK pragma being on
        await self.session.execute(delete(JobMessageModel).where(JobMessageModel.job_id.in_(ids)))
        await self.session.execute(delete(JobExecutionModel).where(JobExecutionModel.id.in_(ids)))
        return len(ids)

    @staticmethod
    def _to_entity(model: JobExecutionModel) -> JobExecution:
        return JobExecution(
            id=model.id,
            description=model.description,
            user_id=model.user_id,
            status=JobStatus(model.status),
            start_time=ensure_utc_aware(model.start_time),  # type: ignore[arg-type]
            end_time=ensure_utc_aware(model.end_time),
        )


class ProviderConfigRepository(IProviderConfigRepository):
    """SQLAlchemy implementation of provider configuration storage."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_all(self) -> list[ProviderConfig]:
        result = await self.session.execute(
            select(ProviderConfigModel).order_by(ProviderConfigModel.provider_id)
        )
        return [self._to_entity(model) for model in result.scalars().all()]

    async def get(self, provider_id: str) -> ProviderConfig | None:
        model = await self.session.get(ProviderConfigModel, provider_id)
        return self._to_entity(model) if model else None

    async def save(self, config: ProviderConfig) -> None:
        model = await self.session.get(ProviderConfigModel, config.provider_id)
        if model is None:
            model = ProviderConfigModel(provider_id=config.provider_id)
            self.session.add(model)
        model.settings = json.dumps(config.settings)

    async def delete(self, provider_id: str) -> None:
        await self.session.execute(
            delete(ProviderConfigModel).where(ProviderConfigModel.provider_id == provider_id)
        )

    @staticmethod
    def _to_entity(model: ProviderConfigModel) -> ProviderConfig:
        try:
            settings = json.loads(model.settings) if model.settings else {}
        except json.JSONDecodeError:
            logger.error(f"Stored configuration of provider {model.provider_id} is not valid JSON")
            settings = {}
        return ProviderConfig(provider_id=model.provider_id, settings=settings)


class SqlAlchemyUnitOfWork(IUnitOfWork):
    """Unit of work bundling all repositories on one AsyncSession.

    Hey future me - one instance = one transaction. Create a fresh one per block:
    `async with context.unit_of_work() as uow: ...`. Commit on clean exit, rollback
    on exception (see IUnitOfWork.__aexit__), session closed either way.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._session: AsyncSession | None = None

    async def __aenter__(self) -> SqlAlchemyUnitOfWork:
        self._session = self._session_factory()
        self.users = UserRepository(self._session)
        self.folders = SubscriptionFolderRepository(self._session)
        self.subscriptions = SubscriptionRepository(self._session)
        self.videos = VideoRepository(self._session)
        self.jobs = JobExecutionRepository(self._session)
        self.provider_configs = ProviderConfigRepository(self._session)
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._session is not None:
                await self._session.close()
                self._session = None

    @property
    def session(self) -> AsyncSession:
        if self._session is None:
            raise RuntimeError("Unit of work is not active; use 'async with'")
        return self._session

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()
