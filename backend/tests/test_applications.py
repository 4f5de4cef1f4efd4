"""Tests for the job application store: slots, applying and withdrawing."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from fakes import FakeSupabase, add_job, add_provider, add_user, interleaved
from sasa.jobs import storage
from sasa.jobs.applications import (
    apply_to_job,
    claim_slot,
    get_application_count,
    get_applications,
    has_applied,
    release_slot,
    withdraw_application,
)


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def job(db):
    requester = add_user(db)
    return add_job(db, requester["id"])


@pytest.fixture
def providers(db):
    return [add_provider(db, name=f"Provider {i}") for i in range(1, 7)]


class TestApply:
    @pytest.mark.asyncio
    async def test_four_applicants_then_full(self, db, job, providers):
        """P1..P4 apply, P1 moves the job to pending_selection, P5 is turned away."""
        first, error = await apply_to_job(db, job["id"], providers[0]["id"], message="Can come today")
        assert error is None
        assert first["status"] == "pending"
        assert first["message"] == "Can come today"
        assert db.get("jobs", job["id"])["status"] == "pending_selection"

        for provider in providers[1:4]:
            created, error = await apply_to_job(db, job["id"], provider["id"])
            assert error is None
            assert created is not None

        created, error = await apply_to_job(db, job["id"], providers[4]["id"])

        assert created is None
        assert error == "job_full"
        assert await get_application_count(db, job["id"]) == 4
        assert db.get("jobs", job["id"])["pending_applications"] == 4

    @pytest.mark.asyncio
    async def test_already_applied_beats_full(self, db, job, providers):
        for provider in providers[:4]:
            await apply_to_job(db, job["id"], provider["id"])

        _, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert error == "already_applied"

    @pytest.mark.asyncio
    async def test_same_provider_cannot_apply_twice(self, db, job, providers):
        await apply_to_job(db, job["id"], providers[0]["id"])
        _, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert error == "already_applied"
        assert len(db.rows("job_applications", job_id=job["id"])) == 1
        assert db.get("jobs", job["id"])["pending_applications"] == 1

    @pytest.mark.asyncio
    async def test_unique_constraint_releases_slot(self, db, job, providers):
        """A duplicate that slips past the pre-check still fails cleanly."""
        await apply_to_job(db, job["id"], providers[0]["id"])

        with patch("sasa.jobs.applications.has_applied", new_callable=AsyncMock) as mock_applied:
            mock_applied.return_value = False
            _, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert error == "already_applied"
        assert db.get("jobs", job["id"])["pending_applications"] == 1

    @pytest.mark.asyncio
    async def test_closed_job_rejects(self, db, job, providers):
        db.tables["jobs"][0]["status"] = "cancelled"

        _, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert error == "not_accepting"
        assert db.rows("job_applications") == []

    @pytest.mark.asyncio
    async def test_missing_job(self, db, providers):
        _, error = await apply_to_job(db, "no-such-job", providers[0]["id"])
        assert error == "not_found"

    @pytest.mark.asyncio
    async def test_job_closed_between_claim_and_insert(self, db, job, providers):
        """An application landing after a selection is rejected straight away."""
        original = db.execute

        def execute(query):
            result = original(query)
            if query.table == "job_applications" and query.op == "insert":
                row = db.tables["jobs"][0]
                row.update(status="accepted", provider_id=providers[1]["id"], version=row["version"] + 1)
            return result

        db.execute = execute

        created, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert created is None
        assert error == "not_accepting"
        assert db.rows("job_applications")[0]["status"] == "rejected"

    @pytest.mark.asyncio
    async def test_concurrent_applies_never_exceed_cap(self, db, job, providers):
        with interleaved("sasa.jobs.applications", "get_job", "atomic_update_job", "has_applied"):
            results = await asyncio.gather(*(apply_to_job(db, job["id"], p["id"]) for p in providers))

        errors = [error for _, error in results]
        assert errors.count(None) == 4
        assert errors.count("job_full") == 2
        assert len(db.rows("job_applications", status="pending")) == 4

    @pytest.mark.asyncio
    async def test_custom_cap(self, db, job, providers):
        await apply_to_job(db, job["id"], providers[0]["id"], max_pending=1)
        _, error = await apply_to_job(db, job["id"], providers[1]["id"], max_pending=1)

        assert error == "job_full"


class TestSlots:
    @pytest.mark.asyncio
    async def test_claim_retries_after_concurrent_write(self, db, job):
        real_update = storage.atomic_update_job
        seen_versions = []

        async def racing_update(db_, current, **updates):
            seen_versions.append(current["version"])
            if len(seen_versions) == 1:
                # Someone else wrote to the job first
                db.tables["jobs"][0]["version"] += 1
                return None, "conflict"
            return await real_update(db_, current, **updates)

        with patch("sasa.jobs.applications.atomic_update_job", side_effect=racing_update):
            updated, error = await claim_slot(db, job["id"])

        assert error is None
        assert seen_versions == [0, 1]
        assert updated["pending_applications"] == 1
        assert updated["version"] == 2

    @pytest.mark.asyncio
    async def test_claim_gives_up_after_max_attempts(self, db, job):
        with patch("sasa.jobs.applications.atomic_update_job", new_callable=AsyncMock) as mock_update:
            mock_update.return_value = (None, "conflict")
            updated, error = await claim_slot(db, job["id"], max_attempts=3)

        assert updated is None
        assert error == "conflict"
        assert mock_update.await_count == 3

    @pytest.mark.asyncio
    async def test_release_of_last_slot_reopens(self, db, job):
        await claim_slot(db, job["id"])
        await claim_slot(db, job["id"])

        after_one, _ = await release_slot(db, job["id"])
        assert after_one["status"] == "pending_selection"
        assert after_one["pending_applications"] == 1

        after_two, _ = await release_slot(db, job["id"])
        assert after_two["status"] == "open"
        assert after_two["pending_applications"] == 0

    @pytest.mark.asyncio
    async def test_release_leaves_settled_jobs_alone(self, db, job):
        db.tables["jobs"][0].update(status="accepted", provider_id="p1")

        settled, error = await release_slot(db, job["id"])

        assert error is None
        assert settled["status"] == "accepted"
        assert settled["version"] == 0


class TestWithdraw:
    @pytest.mark.asyncio
    async def test_withdrawing_last_application_reopens_job(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])

        updated_job, error = await withdraw_application(db, application["id"], providers[0]["id"])

        assert error is None
        assert updated_job["status"] == "open"
        assert updated_job["pending_applications"] == 0
        assert db.get("job_applications", application["id"]) is None

    @pytest.mark.asyncio
    async def test_job_stays_pending_while_others_remain(self, db, job, providers):
        first, _ = await apply_to_job(db, job["id"], providers[0]["id"])
        await apply_to_job(db, job["id"], providers[1]["id"])

        updated_job, _ = await withdraw_application(db, first["id"], providers[0]["id"])

        assert updated_job["status"] == "pending_selection"
        assert updated_job["pending_applications"] == 1

    @pytest.mark.asyncio
    async def test_second_withdraw_fails_without_changes(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])
        await withdraw_application(db, application["id"], providers[0]["id"])
        before = db.get("jobs", job["id"])

        updated_job, error = await withdraw_application(db, application["id"], providers[0]["id"])

        assert updated_job is None
        assert error == "not_found"
        assert db.get("jobs", job["id"]) == before

    @pytest.mark.asyncio
    async def test_only_owner_can_withdraw(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])

        _, error = await withdraw_application(db, application["id"], providers[1]["id"])

        assert error == "forbidden"
        assert db.get("job_applications", application["id"]) is not None

    @pytest.mark.asyncio
    async def test_only_pending_can_be_withdrawn(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])
        db.tables["job_applications"][0]["status"] = "selected"

        _, error = await withdraw_application(db, application["id"], providers[0]["id"])

        assert error == "not_pending"

    @pytest.mark.asyncio
    async def test_release_conflict_keeps_application_and_slot_in_step(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])

        with patch("sasa.jobs.applications.atomic_update_job", new_callable=AsyncMock) as mock_update:
            mock_update.return_value = (None, "conflict")
            updated_job, error = await withdraw_application(db, application["id"], providers[0]["id"], max_attempts=2)

        assert updated_job is None
        assert error == "conflict"
        restored = db.get("job_applications", application["id"])
        assert restored["status"] == "pending"
        assert db.get("jobs", job["id"])["pending_applications"] == await get_application_count(db, job["id"])

        # Retrying once the job settles reopens it
        reopened, error = await withdraw_application(db, application["id"], providers[0]["id"])
        assert error is None
        assert reopened["status"] == "open"
        assert reopened["pending_applications"] == 0

    @pytest.mark.asyncio
    async def test_withdrawn_provider_can_apply_again(self, db, job, providers):
        application, _ = await apply_to_job(db, job["id"], providers[0]["id"])
        await withdraw_application(db, application["id"], providers[0]["id"])

        assert await has_applied(db, job["id"], providers[0]["id"]) is False
        again, error = await apply_to_job(db, job["id"], providers[0]["id"])

        assert error is None
        assert again["id"] != application["id"]


class TestApplicationReads:
    @pytest.mark.asyncio
    async def test_applications_carry_provider_snippet(self, db, job):
        individual = add_provider(db, name="Thabo")
        company = add_provider(db, name="Kgosi", company=True, role="company")
        await apply_to_job(db, job["id"], individual["id"])
        await apply_to_job(db, job["id"], company["id"])

        applications = await get_applications(db, job["id"])

        assert [a["provider"]["name"] for a in applications] == ["Thabo", "Kgosi"]
        assert applications[0]["provider"]["is_company"] is False
        assert applications[1]["provider"]["is_company"] is True
        assert applications[0]["provider"]["rating_average"] == 4.5
        assert applications[0]["provider"]["completed_jobs_count"] == 3

    @pytest.mark.asyncio
    async def test_count_only_includes_pending(self, db, job, providers):
        await apply_to_job(db, job["id"], providers[0]["id"])
        await apply_to_job(db, job["id"], providers[1]["id"])
        db.tables["job_applications"][0]["status"] = "rejected"

        assert await get_application_count(db, job["id"]) == 1
        assert await has_applied(db, job["id"], providers[0]["id"]) is True
