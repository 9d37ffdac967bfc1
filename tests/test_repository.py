"""Tests for JobRepository persistence (jobs, assets, settings)."""

from unittest import mock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ingestion import PreparedAsset
from app.jobs import JobStatus
from app.models import IngestionJob, MediaAsset
from app.schemas import SettingsPayload, WriteMode
from app.utils.media import MediaCategory


def prepared(name: str = "a.png", category=MediaCategory.IMAGE, mime="image/png") -> PreparedAsset:
    return PreparedAsset(
        original_path=f"/inputs/{name}",
        storage_path=f"/content/2024/03/1-0-{name}",
        media_category=category,
        mime_type=mime,
        size_bytes=10,
        sha256="ab" * 32,
    )


def count_rows(pool, model) -> int:
    with pool.session() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


class TestInsertJobWithAssets:
    """Tests for insert_job_with_assets."""

    def test_inserts_job_and_assets(self, repository):
        repository.insert_job_with_assets(
            "job-1",
            "Batch",
            JobStatus.QUEUED,
            [prepared("a.png"), prepared("b.wav", MediaCategory.AUDIO, "audio/wav")],
            now=1000,
        )

        details = repository.find_job_with_assets("job-1")
        assert details.job.status == "queued"
        assert details.job.created_at == details.job.updated_at == 1000
        assert details.job.asset_count == 2
        assert [a.media_type for a in details.assets] == ["image", "audio"]
        assert [a.original_path for a in details.assets] == ["/inputs/a.png", "/inputs/b.wav"]
        assert details.assets[0].sha256 == "ab" * 32

    def test_asset_insert_failure_leaves_nothing(self, repository, temp_pool):
        """If any asset row fails, the job row is rolled back too."""
        original_add = Session.add

        def failing_add(self, instance, *args, **kwargs):
            if isinstance(instance, MediaAsset) and instance.original_path.endswith("b.png"):
                raise IntegrityError("INSERT", {}, Exception("simulated"))
            return original_add(self, instance, *args, **kwargs)

        with mock.patch.object(Session, "add", failing_add):
            with pytest.raises(IntegrityError):
                repository.insert_job_with_assets(
                    "job-1", "Batch", "queued", [prepared("a.png"), prepared("b.png")], now=1
                )

        assert count_rows(temp_pool, IngestionJob) == 0
        assert count_rows(temp_pool, MediaAsset) == 0

    def test_duplicate_job_id_rejected(self, repository, temp_pool):
        repository.insert_job_with_assets("job-1", "First", "queued", [prepared()], now=1)

        with pytest.raises(IntegrityError):
            repository.insert_job_with_assets("job-1", "Second", "queued", [prepared()], now=2)

        assert count_rows(temp_pool, IngestionJob) == 1
        assert count_rows(temp_pool, MediaAsset) == 1

    def test_rejects_empty_title_and_assets(self, repository):
        with pytest.raises(ValueError):
            repository.insert_job_with_assets("job-1", "   ", "queued", [prepared()], now=1)
        with pytest.raises(ValueError):
            repository.insert_job_with_assets("job-1", "Title", "queued", [], now=1)


class TestReads:
    """Tests for list_jobs and find_job_with_assets."""

    def test_list_jobs_ordering_and_counts(self, repository):
        repository.insert_job_with_assets("job-old", "Old", "queued", [prepared()], now=1000)
        repository.insert_job_with_assets(
            "job-new", "New", "queued", [prepared(), prepared("c.png")], now=2000
        )
        # Same timestamps: id DESC breaks the tie
        repository.insert_job_with_assets("job-tie-a", "A", "queued", [prepared()], now=1500)
        repository.insert_job_with_assets("job-tie-b", "B", "queued", [prepared()], now=1500)

        jobs = repository.list_jobs()

        assert [j.id for j in jobs] == ["job-new", "job-tie-b", "job-tie-a", "job-old"]
        assert {j.id: j.asset_count for j in jobs}["job-new"] == 2

    def test_status_change_moves_job_to_front(self, repository):
        repository.insert_job_with_assets("job-a", "A", "queued", [prepared()], now=1000)
        repository.insert_job_with_assets("job-b", "B", "queued", [prepared()], now=2000)

        repository.update_status("job-a", JobStatus.CANCELLED, now=3000)

        assert [j.id for j in repository.list_jobs()] == ["job-a", "job-b"]

    def test_list_jobs_empty(self, repository):
        assert repository.list_jobs() == []

    def test_find_unknown_returns_none(self, repository):
        assert repository.find_job_with_assets("missing") is None


class TestSettings:
    """Tests for get_settings / save_settings."""

    def test_seeded_defaults(self, repository):
        settings = repository.get_settings()
        assert settings == SettingsPayload(
            vault_path="",
            publisher_cli_path="obsidian",
            summary_model="gemini-2.5-flash",
            write_mode=WriteMode.CLI_FALLBACK,
        )

    def test_save_round_trip(self, repository):
        payload = SettingsPayload(
            vault_path="/vault",
            publisher_cli_path="/usr/bin/obsidian",
            summary_model="gemini-2.5-pro",
            write_mode=WriteMode.FILESYSTEM_ONLY,
        )

        saved = repository.save_settings(payload)

        assert saved == payload
        assert repository.get_settings() == payload

    def test_settings_remain_singleton(self, repository, temp_pool):
        from app.models import AppSettings

        for model in ("m1", "m2", "m3"):
            repository.save_settings(
                SettingsPayload(summary_model=model, write_mode=WriteMode.CLI_ONLY)
            )

        assert count_rows(temp_pool, AppSettings) == 1
        assert repository.get_settings().summary_model == "m3"
