"""
Tests for ReviewReplyService against a real SQLite store in tmp_path.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from replydesk.domain import (
    InvalidTransitionError,
    RateLimitExceeded,
    ReportPeriod,
    Review,
    ReviewNotFoundError,
    ReviewStatus,
    ReviewValidationError,
    fallback_reply,
)
from replydesk.infrastructure.llm import CompletionError
from replydesk.infrastructure.ratelimit import RateLimiter

AMY_PAYLOAD = {"id": "r1", "rating": 5, "text": "Best croissants in town!", "customerName": "Amy"}


def _activity_types(db, business_id="biz-1"):
    return [a.type for a in reversed(db.list_activities(business_id))]


# ── Single reply ───────────────────────────────────────────────────

def test_single_reply_is_saved_as_draft(seeded_db, make_service, make_client):
    client = make_client(["Glad the croissants hit the spot, Amy. See you next weekend."])
    service = make_service(client)

    result = asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1", caller_key="1.2.3.4"))

    assert result.success is True
    review = seeded_db.get_review("biz-1", "r1")
    assert review.ai_reply == "Glad the croissants hit the spot, Amy. See you next weekend."
    assert review.automated_reply is True
    assert review.automation_failed is False
    assert review.reply_tone == "friendly"
    assert review.status is ReviewStatus.PENDING
    assert _activity_types(seeded_db) == ["ai_reply_generated"]
    assert "Corner Bakery" in client.calls[0]["system_prompt"]


def test_failed_reply_saves_fallback_and_flags(seeded_db, make_service, make_client):
    service = make_service(make_client([CompletionError("LLM API timeout", transient=True)]))

    result = asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1"))

    assert result.success is False
    assert result.reply == fallback_reply(5, "friendly", "Amy")
    review = seeded_db.get_review("biz-1", "r1")
    assert review.automation_failed is True
    assert review.automation_error == "LLM API timeout"
    assert review.ai_reply == result.reply
    assert review.status is ReviewStatus.PENDING
    assert _activity_types(seeded_db) == ["automation_failed"]


def test_failed_reply_keeps_an_existing_draft(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r1", ai_reply="Earlier draft")
    service = make_service(make_client([CompletionError("down")]))

    asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1"))

    review = seeded_db.get_review("biz-1", "r1")
    assert review.ai_reply == "Earlier draft"
    assert review.automation_failed is True


@pytest.mark.parametrize("status", [ReviewStatus.POSTED, ReviewStatus.SKIPPED, ReviewStatus.NEEDS_EDIT])
def test_locked_reviews_are_not_touched(seeded_db, make_service, make_client, status):
    seeded_db.update_review("biz-1", "r1", status=status, final_reply="Human reply")
    service = make_service(make_client(["A brand new automated reply for Amy."]))

    result = asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1"))

    assert result.success is True
    review = seeded_db.get_review("biz-1", "r1")
    assert review.status is status
    assert review.ai_reply is None
    assert review.final_reply == "Human reply"
    assert _activity_types(seeded_db) == []


def test_invalid_payload_fails_before_any_call(seeded_db, make_service, make_client):
    client = make_client()
    service = make_service(client)

    with pytest.raises(ReviewValidationError) as exc_info:
        asyncio.run(service.generate_single_reply({"id": "r1", "rating": 5}, "biz-1"))

    assert exc_info.value.fields == ["text", "customerName"]
    assert client.calls == []


def test_rate_limit_rejects_before_any_call(seeded_db, make_service, make_client):
    client = make_client()
    service = make_service(client, RateLimiter(limit=2, window_seconds=60))

    asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1", caller_key="9.9.9.9"))
    asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1", caller_key="9.9.9.9"))
    with pytest.raises(RateLimitExceeded) as exc_info:
        asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1", caller_key="9.9.9.9"))

    assert exc_info.value.retry_after >= 1
    assert len(client.calls) == 2
    # Another caller is unaffected
    asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1", caller_key="8.8.8.8"))
    assert len(client.calls) == 3


def test_brand_voice_comes_from_business_settings(seeded_db, make_service, make_client):
    seeded_db.save_business_settings("biz-1", brand_voice_preset="playful", custom_instruction=None)
    client = make_client([CompletionError("down")])
    service = make_service(client)

    result = asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1"))

    assert result.tone == "playful"
    assert result.reply == fallback_reply(5, "playful", "Amy")


def test_unknown_business_uses_defaults(db, make_service, make_client):
    client = make_client()
    service = make_service(client)

    result = asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-unknown"))

    assert result.success is True
    assert result.tone == "friendly"
    assert "Our business" in client.calls[0]["system_prompt"]


def test_recent_replies_are_passed_as_phrases_to_avoid(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r3", ai_reply="Thank you so much for the kind words, Cara!")
    client = make_client()
    service = make_service(client)

    asyncio.run(service.generate_single_reply(AMY_PAYLOAD, "biz-1"))

    assert "thank you so much for" in client.calls[0]["system_prompt"]


def test_reply_for_stored_review_by_id(seeded_db, make_service, make_client):
    client = make_client(["Sorry the coffee was cold, Ben. Next one is on us."])
    service = make_service(client)

    result = asyncio.run(service.generate_reply_for_review("biz-1", "r2"))

    assert result.review_id == "r2"
    assert seeded_db.get_review("biz-1", "r2").ai_reply == "Sorry the coffee was cold, Ben. Next one is on us."
    with pytest.raises(ReviewNotFoundError):
        asyncio.run(service.generate_reply_for_review("biz-1", "missing"))


# ── Batches ────────────────────────────────────────────────────────

def _payloads():
    return [
        AMY_PAYLOAD,
        {"id": "r2", "rating": 2, "text": "Coffee was cold and the line was slow.", "customerName": "Ben"},
        {"id": "r3", "rating": 4, "text": "Lovely staff, a bit pricey.", "customer_name": "Cara"},
    ]


def test_batch_counts_and_persistence(seeded_db, make_service, make_client):
    client = make_client([
        "Glad you loved the croissants, Amy.",
        CompletionError("LLM API returned HTTP 500", transient=True),
        "Thanks Cara, we will pass that on to the team.",
    ])
    service = make_service(client)

    result = asyncio.run(service.generate_batch_replies(_payloads(), "biz-1", chunk_size=2))

    assert result.total == 3
    assert (result.success_count, result.failure_count) == (2, 1)
    assert [r.review_id for r in result.results] == ["r1", "r2", "r3"]
    assert [e.review_id for e in result.errors] == ["r2"]

    assert seeded_db.get_review("biz-1", "r1").ai_reply == "Glad you loved the croissants, Amy."
    failed = seeded_db.get_review("biz-1", "r2")
    assert failed.automation_failed is True
    assert failed.ai_reply == fallback_reply(2, "friendly", "Ben")

    types = _activity_types(seeded_db)
    assert types[0] == "bulk_generation_start"
    assert types[-1] == "bulk_generation_complete"
    assert types.count("automation_failed") == 1
    assert types.count("ai_reply_generated") == 2


def test_batch_rejects_invalid_payloads_up_front(seeded_db, make_service, make_client):
    client = make_client()
    service = make_service(client)
    payloads = _payloads() + [{"id": "r4", "rating": 9, "text": "??", "customerName": "Dan"}]

    with pytest.raises(ReviewValidationError) as exc_info:
        asyncio.run(service.generate_batch_replies(payloads, "biz-1"))

    assert "review 3: rating" in str(exc_info.value)
    assert client.calls == []


@pytest.mark.parametrize("payloads", [None, "r1", {"reviews": []}])
def test_batch_requires_a_list(seeded_db, make_service, make_client, payloads):
    with pytest.raises(ReviewValidationError):
        asyncio.run(make_service(make_client()).generate_batch_replies(payloads, "biz-1"))


def test_empty_batch_is_an_empty_result(seeded_db, make_service, make_client):
    client = make_client()

    result = asyncio.run(make_service(client).generate_batch_replies([], "biz-1"))

    assert (result.total, result.success_count, result.failure_count) == (0, 0, 0)
    assert result.results == []
    assert result.errors == []
    assert client.calls == []
    assert _activity_types(seeded_db) == []


def test_batch_rejects_duplicate_ids(seeded_db, make_service, make_client):
    with pytest.raises(ReviewValidationError) as exc_info:
        asyncio.run(make_service(make_client()).generate_batch_replies([AMY_PAYLOAD, AMY_PAYLOAD], "biz-1"))
    assert "duplicate id r1" in str(exc_info.value)


def test_batch_reports_unsaved_reviews(seeded_db, make_service, make_client):
    payloads = _payloads() + [{"id": "r-new", "rating": 3, "text": "Okay.", "customerName": "Dan"}]
    service = make_service(make_client())

    result = asyncio.run(service.generate_batch_replies(payloads, "biz-1"))

    assert result.success_count == 4
    assert result.success_count + result.failure_count == result.total
    assert [(e.review_id, e.step) for e in result.errors] == [("r-new", "persist")]


def test_batch_without_database_update(seeded_db, make_service, make_client):
    service = make_service(make_client())

    result = asyncio.run(service.generate_batch_replies(_payloads(), "biz-1", update_database=False))

    assert result.success_count == 3
    assert seeded_db.get_review("biz-1", "r1").ai_reply is None
    assert _activity_types(seeded_db) == []


def test_retry_failed_clears_the_flag(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r2", automation_failed=True, automation_error="timeout")
    client = make_client(["Sorry about the cold coffee, Ben. We have fixed the machine."])
    service = make_service(client)

    result = asyncio.run(service.retry_failed("biz-1"))

    assert result.total == 1
    review = seeded_db.get_review("biz-1", "r2")
    assert review.automation_failed is False
    assert review.automation_error is None
    assert review.ai_reply.startswith("Sorry about the cold coffee")


def test_retry_failed_with_nothing_to_do(seeded_db, make_service, make_client):
    client = make_client()
    result = asyncio.run(make_service(client).retry_failed("biz-1"))
    assert result.total == 0
    assert client.calls == []


def test_run_automation_drafts_only_unreplied_pending(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r1", ai_reply="Already drafted")
    seeded_db.update_review("biz-1", "r3", status=ReviewStatus.SKIPPED)
    client = make_client()
    service = make_service(client)

    result = asyncio.run(service.run_automation("biz-1"))

    assert [r.review_id for r in result.results] == ["r2"]
    assert seeded_db.get_review("biz-1", "r1").ai_reply == "Already drafted"
    assert seeded_db.get_review("biz-1", "r2").ai_reply is not None


def _statuses(db, business_id="biz-1"):
    return {r.id: r.status for r in db.list_reviews(business_id)}


@pytest.mark.parametrize("mode,approved", [
    ("manual", set()),
    ("auto_4_plus", {"r1", "r3"}),
    ("auto_except_low", {"r1", "r3", "r4"}),
])
def test_run_automation_applies_the_approval_mode(seeded_db, make_service, make_client, mode, approved):
    seeded_db.add_review(Review(id="r4", business_id="biz-1", rating=3, text="It was fine.", customer_name="Dan"))
    seeded_db.save_business_settings("biz-1", approval_mode=mode)
    service = make_service(make_client())

    result = asyncio.run(service.run_automation("biz-1"))

    assert result.success_count == 4
    assert result.auto_approved == len(approved)
    assert result.to_dict()["auto_approved"] == len(approved)
    statuses = _statuses(seeded_db)
    assert {rid for rid, status in statuses.items() if status is ReviewStatus.APPROVED} == approved
    for review_id in approved:
        assert seeded_db.get_review("biz-1", review_id).auto_approved is True
    assert seeded_db.get_review("biz-1", "r2").status is ReviewStatus.PENDING
    assert seeded_db.get_review("biz-1", "r2").auto_approved is False


def test_auto_approval_is_logged_with_its_policy(seeded_db, make_service, make_client):
    seeded_db.save_business_settings("biz-1", approval_mode="auto_4_plus")

    asyncio.run(make_service(make_client()).run_automation("biz-1"))

    logged = [a for a in seeded_db.list_activities("biz-1") if a.type == "reply_auto_approved"]
    assert sorted(a.review_id for a in logged) == ["r1", "r3"]
    amy = next(a for a in logged if a.review_id == "r1")
    assert amy.description == "Auto-approved 5-star review (4+ star policy)"
    assert amy.metadata == {"from": "pending", "to": "approved", "approval_mode": "auto_4_plus", "rating": 5}


def test_fallback_drafts_are_never_auto_approved(seeded_db, make_service, make_client):
    seeded_db.save_business_settings("biz-1", approval_mode="auto_except_low")
    service = make_service(make_client(default=CompletionError("down")))

    result = asyncio.run(service.run_automation("biz-1"))

    assert result.failure_count == 3
    assert result.auto_approved == 0
    assert set(_statuses(seeded_db).values()) == {ReviewStatus.PENDING}


def test_approval_mode_argument_overrides_the_setting(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r3", ai_reply="Already drafted")
    service = make_service(make_client())

    result = asyncio.run(service.run_automation("biz-1", approval_mode="auto_4_plus"))

    assert result.auto_approved == 1
    assert seeded_db.get_review("biz-1", "r1").status is ReviewStatus.APPROVED
    # only fresh drafts from this run are candidates
    assert seeded_db.get_review("biz-1", "r3").status is ReviewStatus.PENDING


def test_auto_approved_reviews_still_go_through_posting(seeded_db, make_service, make_client):
    service = make_service(make_client())
    asyncio.run(service.run_automation("biz-1", approval_mode="auto_4_plus"))

    posted = asyncio.run(service.post("biz-1", "r1"))

    assert posted.status is ReviewStatus.POSTED
    assert posted.auto_approved is True


# ── Insights ───────────────────────────────────────────────────────

def _add_this_weeks_reviews(db):
    now = datetime.now(timezone.utc).isoformat()
    db.add_review(Review(id="w1", business_id="biz-2", rating=5, text="Superb!", customer_name="Amy", review_date=now))
    db.add_review(Review(id="w2", business_id="biz-2", rating=1, text="Rude staff.", customer_name="Ben", review_date=now))


def test_insights_from_provider(db, make_service, make_client):
    _add_this_weeks_reviews(db)
    answer = json.dumps({"positiveThemes": [{"theme": "Great food"}], "overallConfidence": 0.9})
    service = make_service(make_client([answer]))

    bundle = asyncio.run(service.generate_insights("biz-2"))

    assert bundle.fallback is False
    assert bundle.overall_confidence == 0.9
    assert bundle.stats.total_reviews == 2
    assert _activity_types(db, "biz-2") == ["insights_generated"]


def test_insights_compare_with_the_previous_week(db, make_service, make_client):
    _add_this_weeks_reviews(db)
    last_week = (ReportPeriod.current_week().start - timedelta(days=3)).isoformat()
    for review_id in ("p1", "p2", "p3", "p4"):
        db.add_review(Review(id=review_id, business_id="biz-2", rating=4, text="Good.",
                             customer_name="Cy", review_date=last_week))
    service = make_service(make_client([CompletionError("down")]))

    bundle = asyncio.run(service.generate_insights("biz-2"))

    assert bundle.stats.total_reviews == 2
    assert bundle.stats.week_over_week_change == -50


@pytest.mark.parametrize("outcome", [CompletionError("down"), "this is not json"])
def test_insights_degrade_to_fallback(db, make_service, make_client, outcome):
    _add_this_weeks_reviews(db)
    service = make_service(make_client([outcome]))

    bundle = asyncio.run(service.generate_insights("biz-2"))

    assert bundle.fallback is True
    assert bundle.overall_confidence == 0.65
    assert [h["type"] for h in bundle.highlights] == ["best", "worst"]


def test_insights_for_empty_week(db, make_service, make_client):
    client = make_client()
    bundle = asyncio.run(make_service(client).generate_insights("biz-empty"))
    assert bundle.overall_confidence == 1.0
    assert client.calls == []


def test_insights_are_rate_limited(db, make_service, make_client):
    service = make_service(make_client(), RateLimiter(limit=1, window_seconds=60))
    asyncio.run(service.generate_insights("biz-empty", caller_key="1.1.1.1"))
    with pytest.raises(RateLimitExceeded):
        asyncio.run(service.generate_insights("biz-empty", caller_key="1.1.1.1"))


# ── Workflow transitions ───────────────────────────────────────────

def test_approve_then_post(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r1", ai_reply="Thanks Amy!")
    service = make_service(make_client())

    approved = asyncio.run(service.approve("biz-1", "r1"))
    assert approved.status is ReviewStatus.APPROVED

    posted = asyncio.run(service.post("biz-1", "r1"))
    assert posted.status is ReviewStatus.POSTED
    assert posted.posted_at is not None

    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.post("biz-1", "r1"))
    assert _activity_types(seeded_db) == ["reply_approved", "reply_posted"]


def test_approve_with_edited_reply(seeded_db, make_service, make_client):
    review = asyncio.run(make_service(make_client()).approve("biz-1", "r2", final_reply="  So sorry, Ben.  "))
    assert review.final_reply == "So sorry, Ben."
    assert review.reply_text == "So sorry, Ben."


def test_approve_requires_a_reply(seeded_db, make_service, make_client):
    with pytest.raises(ReviewValidationError):
        asyncio.run(make_service(make_client()).approve("biz-1", "r1"))


def test_pending_review_cannot_be_posted_directly(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r1", ai_reply="Thanks Amy!")
    with pytest.raises(InvalidTransitionError):
        asyncio.run(make_service(make_client()).post("biz-1", "r1"))


def test_needs_edit_leaves_only_through_a_rewrite(seeded_db, make_service, make_client):
    seeded_db.update_review("biz-1", "r2", ai_reply="Draft")
    service = make_service(make_client())

    flagged = asyncio.run(service.mark_needs_edit("biz-1", "r2", reason="Too generic"))
    assert flagged.status is ReviewStatus.NEEDS_EDIT

    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.approve("biz-1", "r2"))

    edited = asyncio.run(service.edit_reply("biz-1", "r2", "Sorry Ben, the machine is fixed now."))
    assert edited.status is ReviewStatus.APPROVED
    assert edited.final_reply == "Sorry Ben, the machine is fixed now."

    activities = seeded_db.list_activities("biz-1")
    assert activities[1].type == "reply_needs_edit"
    assert activities[1].metadata["reason"] == "Too generic"
    assert activities[0].type == "reply_edited"


def test_edit_keeps_status_for_open_reviews(seeded_db, make_service, make_client):
    edited = asyncio.run(make_service(make_client()).edit_reply("biz-1", "r1", "Thanks Amy!"))
    assert edited.status is ReviewStatus.PENDING
    assert edited.final_reply == "Thanks Amy!"


def test_closed_reviews_cannot_change(seeded_db, make_service, make_client):
    service = make_service(make_client())
    asyncio.run(service.skip("biz-1", "r3"))

    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.edit_reply("biz-1", "r3", "Late reply"))
    with pytest.raises(InvalidTransitionError):
        asyncio.run(service.mark_needs_edit("biz-1", "r3"))


def test_edit_requires_text(seeded_db, make_service, make_client):
    with pytest.raises(ReviewValidationError):
        asyncio.run(make_service(make_client()).edit_reply("biz-1", "r1", "   "))


def test_unknown_review(seeded_db, make_service, make_client):
    with pytest.raises(ReviewNotFoundError):
        asyncio.run(make_service(make_client()).skip("biz-1", "nope"))
    # Reviews are scoped by business
    with pytest.raises(ReviewNotFoundError):
        asyncio.run(make_service(make_client()).skip("biz-other", "r1"))


# ── Read models & import ───────────────────────────────────────────

def test_list_reviews_by_status(seeded_db, make_service, make_client):
    service = make_service(make_client())
    asyncio.run(service.skip("biz-1", "r3"))

    skipped = asyncio.run(service.list_reviews("biz-1", "skipped"))
    assert [r.id for r in skipped] == ["r3"]

    with pytest.raises(ReviewValidationError):
        asyncio.run(service.list_reviews("biz-1", "archived"))


def test_import_reviews(db, make_service, make_client):
    service = make_service(make_client())
    records = [
        {"id": "i1", "rating": 4, "text": "Nice", "customer_name": "Amy", "review_date": "2024-06-10"},
        {"id": "i1", "rating": 4, "text": "Nice", "customer_name": "Amy", "review_date": "2024-06-10"},
    ]

    stored = asyncio.run(service.import_reviews("biz-1", records))

    assert (stored["added"], stored["skipped"]) == (1, 1)
    assert asyncio.run(service.get_stats("biz-1"))["pending"] == 1
