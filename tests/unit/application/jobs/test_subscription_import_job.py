"""Tests for SubscriptionImportJob and override handling."""

from unittest.mock import patch

import pytest

from tubekeeper.application.jobs import SubscriptionImportJob
from tubekeeper.application.jobs.subscription_import_job import apply_overrides
from tubekeeper.domain.entities import JobMessageLevel, Subscription, VideoOrder
from tubekeeper.domain.exceptions import ValidationException

URL_PREFIX = "https://videos.example/playlist/"


class TestApplyOverrides:
    """Test copying override values onto subscriptions."""

    def test_values_applied_and_missing_reset(self) -> None:
        subscription = Subscription(
            name="x", provider_id="fake", provider_native_id="PL1", auto_delete_watched=True
        )
        apply_overrides(subscription, {"download_limit": 4, "download_order": "rating"})

        assert subscription.download_limit == 4
        assert subscription.download_order == VideoOrder.RATING
        assert subscription.auto_delete_watched is None

    def test_unknown_key_rejected(self) -> None:
        subscription = Subscription(name="x", provider_id="fake", provider_native_id="PL1")
        with pytest.raises(ValidationException, match="color"):
            apply_overrides(subscription, {"color": "red"})

    def test_invalid_order_rejected(self) -> None:
        subscription = Subscription(name="x", provider_id="fake", provider_native_id="PL1")
        with pytest.raises(ValidationException):
            apply_overrides(subscription, {"download_order": "shuffle"})


class TestSubscriptionImportJob:
    """Test bulk import."""

    async def test_imports_valid_urls_and_skips_bad_ones(self, context, user, run_job) -> None:
        folder = await context.subscriptions.create_folder(user.id, "Imported")
        urls = [f"{URL_PREFIX}PL1", "https://elsewhere.example/x", f"{URL_PREFIX}PL2"]

        with patch.object(context.subscriptions, "synchronize") as synchronize:
            job = await run_job(
                SubscriptionImportJob, urls, folder.id, {"auto_download": False}, user_id=user.id
            )

        async with context.unit_of_work() as uow:
            subscriptions = await uow.subscriptions.list_by_user(user.id)
            messages = await uow.jobs.list_messages(job.execution.id)

        assert sorted(s.provider_native_id for s in subscriptions) == ["PL1", "PL2"]
        assert all(s.parent_folder_id == folder.id for s in subscriptions)
        assert all(s.auto_download is False for s in subscriptions)
        assert synchronize.call_count == 2

        warnings = [m for m in messages if m.level == JobMessageLevel.WARNING]
        assert len(warnings) == 1
        assert "elsewhere.example" in warnings[0].text
        assert messages[-1].text == "Imported 2 of 3 subscriptions"

    async def test_already_subscribed_is_skipped(
        self, context, user, make_subscription, run_job
    ) -> None:
        await make_subscription("PL1")

        with patch.object(context.subscriptions, "synchronize"):
            job = await run_job(
                SubscriptionImportJob, [f"{URL_PREFIX}PL1"], None, None, user_id=user.id
            )

        async with context.unit_of_work() as uow:
            assert len(await uow.subscriptions.list_by_user(user.id)) == 1
            messages = await uow.jobs.list_messages(job.execution.id)
        assert messages[-1].text == "Imported 0 of 1 subscriptions"

    async def test_requires_owning_user(self, context, run_job) -> None:
        with pytest.raises(ValueError):
            await run_job(SubscriptionImportJob, [f"{URL_PREFIX}PL1"])
