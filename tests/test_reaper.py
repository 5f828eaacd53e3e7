"""Stuck job reaper tests."""

from datetime import timedelta

import pytest

from fakes import FakeImageVendor, build_orchestrator, build_registry
from lumen.core.timezone import utcnow
from lumen.models.generation import GenerationJob, GenerationStatus
from lumen.models.generation_image import GenerationImage
from lumen.workers.stuck_job_reaper import TIMEOUT_MESSAGE, reap_stuck_jobs


async def stuck_job(uow_factory, organization, provider, image_statuses, age_hours=2):
    created_at = utcnow() - timedelta(hours=age_hours)
    async with await uow_factory() as uow:
        job = await uow.generation_jobs.add(
            GenerationJob(
                organization_id=organization.id,
                user_id=organization.id,
                base_prompt="a kite",
                provider_id=provider.id,
                estimated_cost=30,
                status=GenerationStatus.PROCESSING if image_statuses else GenerationStatus.PENDING,
                created_at=created_at,
            )
        )
        await uow.generation_images.add_many(
            [
                GenerationImage(
                    job_id=job.id,
                    position=position,
                    prompt=f"p{position}",
                    status=status,
                    task_id=f"{job.id}-{position}",
                    image_url="https://cdn/x.png" if status == GenerationStatus.COMPLETED else None,
                )
                for position, status in enumerate(image_statuses)
            ]
        )
    return job


@pytest.mark.asyncio
async def test_reaper_expires_stuck_jobs(uow_factory, organization, image_provider_row):
    orchestrator = build_orchestrator(uow_factory, build_registry(vendor=FakeImageVendor()))
    partial = await stuck_job(
        uow_factory,
        organization,
        image_provider_row,
        [GenerationStatus.COMPLETED, GenerationStatus.PROCESSING, GenerationStatus.PROCESSING],
    )
    silent = await stuck_job(
        uow_factory, organization, image_provider_row, [GenerationStatus.PROCESSING]
    )
    abandoned = await stuck_job(uow_factory, organization, image_provider_row, [])
    fresh = await stuck_job(
        uow_factory, organization, image_provider_row, [GenerationStatus.PROCESSING], age_hours=0
    )

    expired = await reap_stuck_jobs(orchestrator, uow_factory, timeout_seconds=3600)

    assert expired == 3

    partial_details = await orchestrator.get_generation(partial.id)
    assert partial_details.job.status == GenerationStatus.COMPLETED
    assert partial_details.job.actual_cost == 10
    assert partial_details.images[1].error_message == TIMEOUT_MESSAGE

    silent_details = await orchestrator.get_generation(silent.id)
    assert silent_details.job.status == GenerationStatus.FAILED
    assert silent_details.job.error_message == "all 1 images failed"

    abandoned_details = await orchestrator.get_generation(abandoned.id)
    assert abandoned_details.job.status == GenerationStatus.FAILED
    assert abandoned_details.job.error_message == "generation abandoned"
    assert abandoned_details.job.actual_cost == 0

    fresh_details = await orchestrator.get_generation(fresh.id)
    assert fresh_details.job.status == GenerationStatus.PROCESSING

    async with await uow_factory() as uow:
        org = await uow.organizations.get_by_id(organization.id)
    assert org.credits == 90


@pytest.mark.asyncio
async def test_reaper_with_nothing_to_do(uow_factory, organization, image_provider_row):
    orchestrator = build_orchestrator(uow_factory, build_registry(vendor=FakeImageVendor()))

    assert await reap_stuck_jobs(orchestrator, uow_factory, timeout_seconds=3600) == 0
