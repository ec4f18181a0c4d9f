"""
Tests for generation admission: quota gating and usage recording.
"""

from datetime import datetime, timedelta, timezone

import pytest

from imagegen_app.models.subscription import UNBOUNDED
from imagegen_app.services.admission_service import MAX_PROMPT_LENGTH
from imagegen_app.utils.errors import InvalidInput, QuotaExceeded, UpstreamUnavailable


def _active_subscription(tier_id):
    return {
        "user_id": "user-1",
        "tier_id": tier_id,
        "subscription_id": "sub_123",
        "status": "active",
        "current_period_end": (datetime.now(timezone.utc) + timedelta(days=20)).isoformat(),
        "cancel_at_period_end": False,
        "last_event_at": None,
    }


class TestAdmission:
    async def test_free_tier_allows_three_then_blocks(self, admission, generator, db, user):
        for _ in range(3):
            result = await admission.admit(user, "a cat")
            assert result.output == ["https://replicate.delivery/output-0.png"]

        with pytest.raises(QuotaExceeded) as exc_info:
            await admission.admit(user, "a cat")

        assert generator.run.await_count == 3
        assert len(db.generations) == 3
        quota = exc_info.value.quota_info
        assert quota["used_this_period"] == 3
        assert quota["monthly_limit"] == 3
        assert quota["remaining"] == 0
        assert quota["reset_at"] is not None

    async def test_quota_error_body(self, admission, db, user):
        for i in range(3):
            db.generations.append(
                {"user_id": "user-1", "prompt": f"p{i}", "created_at": datetime.now(timezone.utc).isoformat()}
            )

        with pytest.raises(QuotaExceeded) as exc_info:
            await admission.admit(user, "one more")

        body = exc_info.value.to_response().model_dump(exclude_none=True)
        assert body["error"] == "Monthly image generation limit reached"
        assert body["error_code"] == "QUOTA_EXCEEDED"
        assert body["quota_info"]["tier"] == "Free"
        assert exc_info.value.status_code == 400

    async def test_provider_failure_records_nothing(self, admission, generator, db, user):
        generator.run.side_effect = UpstreamUnavailable("Image generation failed, please retry")

        with pytest.raises(UpstreamUnavailable):
            await admission.admit(user, "a cat")

        assert db.generations == []

    @pytest.mark.parametrize("prompt", [None, "", "   "])
    async def test_empty_prompt_rejected_before_generation(self, admission, generator, db, user, prompt):
        with pytest.raises(InvalidInput):
            await admission.admit(user, prompt)

        generator.run.assert_not_awaited()
        assert db.generations == []

    async def test_overlong_prompt_rejected(self, admission, generator, user):
        with pytest.raises(InvalidInput) as exc_info:
            await admission.admit(user, "x" * (MAX_PROMPT_LENGTH + 1))

        assert exc_info.value.message == f"Prompt must be at most {MAX_PROMPT_LENGTH} characters"

        generator.run.assert_not_awaited()

    async def test_prompt_is_trimmed(self, admission, generator, db, user):
        await admission.admit(user, "  a cat  ")

        generator.build_input.assert_called_once_with("a cat", "standard")
        assert db.generations[0]["prompt"] == "a cat"

    async def test_tier_resolution_is_passed_to_generator(self, admission, generator, db, user):
        db.subscriptions["user-1"] = _active_subscription("2")

        await admission.admit(user, "a dog")

        generator.build_input.assert_called_once_with("a dog", "hd")
        generator.run.assert_awaited_once_with("stability-ai/sdxl:abc123", {"prompt": "a dog", "resolution": "hd"})

    async def test_unbounded_tier_never_blocks(self, admission, db, user):
        db.subscriptions["user-1"] = _active_subscription("3")

        for i in range(10):
            result = await admission.admit(user, f"prompt {i}")
            assert result.entitlement.remaining == UNBOUNDED

        assert len(db.generations) == 10

    async def test_canceled_subscription_gets_free_quota(self, admission, db, user):
        db.subscriptions["user-1"] = dict(_active_subscription("2"), status="canceled")

        for _ in range(3):
            await admission.admit(user, "a cat")
        with pytest.raises(QuotaExceeded):
            await admission.admit(user, "a cat")

    async def test_record_failure_still_returns_output(self, admission, db, user):
        db.fail_inserts = True

        result = await admission.admit(user, "a cat")

        assert result.output == ["https://replicate.delivery/output-0.png"]
        assert result.record is None
        assert db.generations == []
