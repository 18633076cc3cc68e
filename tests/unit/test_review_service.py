"""Unit tests for the completion review trigger."""

import pytest

from src.api.middleware.error_handler import ConflictError, PermissionDeniedError
from src.schemas.request import ReviewCreate
from src.services.review_service import ReviewPromptCache, ReviewService, get_review_prompt_cache
from tests.conftest import CLIENT_ID, PRO_ID, STRANGER_ID
from tests.fake_supabase import FakeSupabase


def complete_request(fake_db: FakeSupabase, status: str = "completed") -> None:
    fake_db.tables["requests"][0].update(
        {"status": status, "professional_id": PRO_ID, "accepted_professional_id": PRO_ID}
    )


class TestReviewPromptCache:
    """Tests for the process-local prompt flags."""

    def test_mark_once(self) -> None:
        """Marking reports whether the flag was newly set."""
        cache = ReviewPromptCache()

        assert cache.mark("r1", "v1") is True
        assert cache.mark("r1", "v1") is False
        assert cache.is_marked("r1", "v1") is True
        assert cache.is_marked("r1", "v2") is False

    def test_global_instance(self) -> None:
        """The global cache is shared."""
        assert get_review_prompt_cache() is get_review_prompt_cache()


class TestShouldShowPrompt:
    """Tests for should_show_prompt."""

    @pytest.mark.asyncio
    async def test_not_completed(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Open requests never prompt."""
        show, reason = await ReviewService().should_show_prompt(marketplace["request"]["id"], CLIENT_ID)

        assert (show, reason) == (False, "not_completed")

    @pytest.mark.asyncio
    async def test_exactly_once_on_repeated_signals(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Seeing the completed request twice opens the prompt once."""
        complete_request(fake_db)
        service = ReviewService()
        request_id = marketplace["request"]["id"]

        first = await service.should_show_prompt(request_id, CLIENT_ID)
        second = await service.should_show_prompt(request_id, CLIENT_ID)

        assert first == (True, "completed")
        assert second == (False, "already_shown")

    @pytest.mark.asyncio
    async def test_durable_across_processes(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A cold process cache still honours the stored prompt record."""
        complete_request(fake_db)
        request_id = marketplace["request"]["id"]

        assert (await ReviewService().should_show_prompt(request_id, CLIENT_ID))[0] is True
        get_review_prompt_cache().clear()

        assert await ReviewService().should_show_prompt(request_id, CLIENT_ID) == (False, "already_shown")
        assert len(fake_db.rows("review_prompts")) == 1

    @pytest.mark.asyncio
    async def test_prompt_is_per_viewer(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Each participant gets their own prompt."""
        complete_request(fake_db)
        request_id = marketplace["request"]["id"]
        service = ReviewService()

        assert (await service.should_show_prompt(request_id, CLIENT_ID))[0] is True
        assert (await service.should_show_prompt(request_id, PRO_ID))[0] is True

    @pytest.mark.asyncio
    async def test_already_reviewed(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A viewer who already reviewed is not prompted."""
        complete_request(fake_db)
        fake_db.seed("reviews", {"request_id": marketplace["request"]["id"], "reviewer_id": CLIENT_ID, "rating": 5})

        result = await ReviewService().should_show_prompt(marketplace["request"]["id"], CLIENT_ID)

        assert result == (False, "already_reviewed")

    @pytest.mark.asyncio
    async def test_stranger(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Non-participants cannot poll the prompt."""
        with pytest.raises(PermissionDeniedError):
            await ReviewService().should_show_prompt(marketplace["request"]["id"], STRANGER_ID)


class TestSubmitReview:
    """Tests for submit_review."""

    @pytest.mark.asyncio
    async def test_review_completes_request_best_effort(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """After the professional finished, the client's review completes the request."""
        complete_request(fake_db, status="in_process")
        request_id = marketplace["request"]["id"]
        fake_db.seed(
            "agreements",
            {"request_id": request_id, "professional_id": PRO_ID, "status": "in_progress", "completed_by_pro": True},
        )

        review = await ReviewService().submit_review(request_id, CLIENT_ID, ReviewCreate(rating=5, comment="  Excelente  "))

        assert review["rating"] == 5
        assert review["comment"] == "Excelente"
        assert review["reviewee_id"] == PRO_ID
        assert review["request_completed"] is True
        assert fake_db.row("requests", request_id)["status"] == "completed"
        assert await ReviewService().should_show_prompt(request_id, CLIENT_ID) == (False, "already_shown")

    @pytest.mark.asyncio
    async def test_second_review_conflicts(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A reviewer reviews a request once."""
        complete_request(fake_db)
        request_id = marketplace["request"]["id"]
        service = ReviewService()
        await service.submit_review(request_id, CLIENT_ID, ReviewCreate(rating=4))

        with pytest.raises(ConflictError):
            await service.submit_review(request_id, CLIENT_ID, ReviewCreate(rating=1))
        assert len(fake_db.rows("reviews")) == 1

    @pytest.mark.asyncio
    async def test_unfinished_work(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Reviews wait until the work is finished."""
        complete_request(fake_db, status="in_process")

        with pytest.raises(ConflictError):
            await ReviewService().submit_review(marketplace["request"]["id"], CLIENT_ID, ReviewCreate(rating=5))

    @pytest.mark.asyncio
    async def test_only_owner_reviews(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """The professional cannot review their own job."""
        complete_request(fake_db)

        with pytest.raises(PermissionDeniedError):
            await ReviewService().submit_review(marketplace["request"]["id"], PRO_ID, ReviewCreate(rating=5))
