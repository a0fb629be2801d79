"""Tests for the SQLAlchemy repositories and unit of work.

Hey future me - these run against a real SQLite file (see the `database`
fixture), so cascades and case-insensitive lookups behave like production.
"""

import pytest

from tubekeeper.domain.entities import (
    JobExecution,
    JobMessage,
    JobMessageLevel,
    Subscription,
    SubscriptionFolder,
    User,
    UserPreferences,
    Video,
    VideoOrder,
)
from tubekeeper.domain.exceptions import EntityNotFoundException


async def _add_user(database, name: str = "alice") -> User:
    async with database.unit_of_work() as uow:
        return await uow.users.add(User(username=name))


async def _add_subscription(database, user: User, native_id: str = "PL1") -> Subscription:
    async with database.unit_of_work() as uow:
        return await uow.subscriptions.add(
            Subscription(
                name=f"Playlist {native_id}",
                provider_id="fake",
                provider_native_id=native_id,
                user_id=user.id,
            )
        )


class TestUnitOfWork:
    """Test commit / rollback behaviour."""

    async def test_commit_on_clean_exit(self, database) -> None:
        user = await _add_user(database)
        async with database.unit_of_work() as uow:
            assert (await uow.users.get_by_id(user.id)).username == "alice"

    async def test_rollback_on_error(self, database) -> None:
        with pytest.raises(RuntimeError):
            async with database.unit_of_work() as uow:
                await uow.users.add(User(username="ghost"))
                raise RuntimeError("abort")

        async with database.unit_of_work() as uow:
            assert await uow.users.get_by_username("ghost") is None

    async def test_session_scope_rolls_back_on_error(self, database) -> None:
        from sqlalchemy import func, select

        from tubekeeper.infrastructure.persistence.models import UserModel

        with pytest.raises(RuntimeError):
            async with database.session_scope() as session:
                session.add(UserModel(username="ghost", preferences={}))
                await session.flush()
                raise RuntimeError("abort")

        async with database.session_scope() as session:
            assert await session.scalar(select(func.count()).select_from(UserModel)) == 0


class TestUserRepository:
    """Test users and their preferences."""

    async def test_preferences_round_trip(self, database) -> None:
        user = User(
            username="bob",
            preferences=UserPreferences(download_order=VideoOrder.OLDEST, download_global_limit=10),
        )
        async with database.unit_of_work() as uow:
            await uow.users.add(user)

        async with database.unit_of_work() as uow:
            stored = await uow.users.get_by_username("bob")
        assert stored.preferences.download_order == VideoOrder.OLDEST
        assert stored.preferences.download_global_limit == 10
        assert stored.preferences.auto_download is None


class TestFolderRepository:
    """Test folder lookups."""

    async def test_get_by_name_is_case_insensitive_and_scoped(self, database) -> None:
        user = await _add_user(database)
        async with database.unit_of_work() as uow:
            root = await uow.folders.add(SubscriptionFolder(name="Music", user_id=user.id))
            await uow.folders.add(SubscriptionFolder(name="Live", user_id=user.id, parent_id=root.id))

        async with database.unit_of_work() as uow:
            assert (await uow.folders.get_by_name(user.id, None, "MUSIC")).id == root.id
            assert await uow.folders.get_by_name(user.id, None, "Live") is None
            assert await uow.folders.get_by_name(user.id, root.id, "live") is not None

    async def test_delete_unknown_folder_raises(self, database) -> None:
        with pytest.raises(EntityNotFoundException):
            async with database.unit_of_work() as uow:
                await uow.folders.delete(42)


class TestSubscriptionRepository:
    """Test subscription persistence."""

    async def test_native_id_lookup_scoped_to_user(self, database) -> None:
        alice = await _add_user(database, "alice")
        bob = await _add_user(database, "bob")
        await _add_subscription(database, alice, "PL1")

        async with database.unit_of_work() as uow:
            assert await uow.subscriptions.get_by_provider_native_id(alice.id, "fake", "PL1")
            assert await uow.subscriptions.get_by_provider_native_id(bob.id, "fake", "PL1") is None

    async def test_overrides_round_trip(self, database) -> None:
        user = await _add_user(database)
        subscription = await _add_subscription(database, user)
        subscription.download_order = VideoOrder.PLAYLIST_REVERSE
        subscription.download_limit = 0

        async with database.unit_of_work() as uow:
            await uow.subscriptions.update(subscription)
        async with database.unit_of_work() as uow:
            stored = await uow.subscriptions.get_by_id(subscription.id)

        assert stored.download_order == VideoOrder.PLAYLIST_REVERSE
        assert stored.download_limit == 0
        assert stored.auto_download is None


class TestVideoRepository:
    """Test video queries."""

    async def test_clear_new_flag_counts_rows(self, database) -> None:
        user = await _add_user(database)
        subscription = await _add_subscription(database, user)
        async with database.unit_of_work() as uow:
            await uow.videos.add(Video("a", "A", 0, subscription_id=subscription.id))
            await uow.videos.add(Video("b", "B", 1, subscription_id=subscription.id, is_new=False))

        async with database.unit_of_work() as uow:
            assert await uow.videos.clear_new_flag(subscription.id) == 1
        async with database.unit_of_work() as uow:
            assert await uow.videos.clear_new_flag(subscription.id) == 0

    async def test_downloaded_counts(self, database) -> None:
        user = await _add_user(database)
        first = await _add_subscription(database, user, "PL1")
        second = await _add_subscription(database, user, "PL2")
        async with database.unit_of_work() as uow:
            await uow.videos.add(Video("a", "A", 0, subscription_id=first.id, downloaded_path="/a"))
            await uow.videos.add(Video("b", "B", 0, subscription_id=second.id, downloaded_path="/b"))
            await uow.videos.add(Video("c", "C", 1, subscription_id=second.id))

        async with database.unit_of_work() as uow:
            assert await uow.videos.count_downloaded_for_subscription(first.id) == 1
            assert await uow.videos.count_downloaded_for_user(user.id) == 2

    async def test_popularity_order(self, database) -> None:
        user = await _add_user(database)
        subscription = await _add_subscription(database, user)
        async with database.unit_of_work() as uow:
            await uow.videos.add(Video("low", "Low", 0, subscription_id=subscription.id, view_count=5))
            await uow.videos.add(Video("high", "High", 1, subscription_id=subscription.id, view_count=500))

        async with database.unit_of_work() as uow:
            videos = await uow.videos.list_download_candidates(subscription.id, VideoOrder.POPULARITY)
        assert [v.provider_native_id for v in videos] == ["high", "low"]

    async def test_update_missing_video_raises(self, database) -> None:
        with pytest.raises(EntityNotFoundException):
            async with database.unit_of_work() as uow:
                await uow.videos.update(Video("x", "X", 0, id=999))


class TestJobExecutionRepository:
    """Test the job history tables."""

    async def test_recent_executions_scoped_to_user(self, database) -> None:
        alice = await _add_user(database, "alice")
        bob = await _add_user(database, "bob")
        async with database.unit_of_work() as uow:
            await uow.jobs.add(JobExecution(description="system"))
            await uow.jobs.add(JobExecution(description="alice's", user_id=alice.id))
            await uow.jobs.add(JobExecution(description="bob's", user_id=bob.id))

        async with database.unit_of_work() as uow:
            recent = await uow.jobs.list_recent(alice.id)
        assert sorted(e.description for e in recent) == ["alice's", "system"]

    async def test_messages_in_order(self, database) -> None:
        async with database.unit_of_work() as uow:
            execution = await uow.jobs.add(JobExecution(description="job"))
            await uow.jobs.add_message(JobMessage(job_id=execution.id, text="first"))
            await uow.jobs.add_message(
                JobMessage(job_id=execution.id, text="second", level=JobMessageLevel.WARNING)
            )

        async with database.unit_of_work() as uow:
            messages = await uow.jobs.list_messages(execution.id)
        assert [(m.text, m.level) for m in messages] == [
            ("first", JobMessageLevel.NORMAL),
            ("second", JobMessageLevel.WARNING),
        ]
