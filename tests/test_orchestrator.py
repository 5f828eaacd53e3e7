"""Generation orchestrator tests.

Tests cover the full job lifecycle against a real (SQLite) database:
- Submission validation and the advisory credit check
- LLM fallback ordering and eligibility
- Callback settlement, duplicate deliveries and the completion race
- Exactly-once credit deduction on finalization
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from fakes import (
    OWNER_ID,
    FakeImageVendor,
    FakeLLM,
    FakeVision,
    FlakyImageClient,
    build_orchestrator,
    build_registry,
    image_descriptor,
    kieai_callback,
    llm_descriptor,
)
from lumen.models.generation import GenerationStatus
from lumen.models.profile import Profile
from lumen.models.provider import Provider, ProviderCategory
from lumen.services.exceptions import (
    CallbackPayloadError,
    InsufficientCreditsError,
    NotFoundError,
    PermissionDeniedError,
    ProviderError,
    ValidationError,
)
from lumen.services.generation.orchestrator import (
    ALL_LLM_PROVIDERS_FAILED,
    SubmitGenerationRequest,
    clamp_variations,
    compute_actual_cost,
    should_fallback,
)
from lumen.services.providers.replicate_client import ReplicateImageProvider
from lumen.services.uploads import UploadService


def request_for(organization, **overrides) -> SubmitGenerationRequest:
    fields = {
        "organization_id": organization.id,
        "user_id": OWNER_ID,
        "provider_id": "kieai-seedream",
        "base_prompt": "studio photo of a sneaker",
        "num_variations": 3,
    }
    fields.update(overrides)
    return SubmitGenerationRequest(**fields)


async def run_to_callbacks(orchestrator, organization, **overrides):
    """Submit a job and wait until its images have been sent to the vendor."""
    job = await orchestrator.submit_generation(request_for(organization, **overrides))
    await orchestrator.supervisor.wait_idle()
    return await orchestrator.get_generation(job.id)


async def balance_and_entries(uow_factory, organization_id):
    async with await uow_factory() as uow:
        org = await uow.organizations.get_by_id(organization_id)
        entries = await uow.credit_ledger.list_by_organization(organization_id)
        total = await uow.credit_ledger.sum_by_organization(organization_id)
    return org.credits, entries, total


@pytest_asyncio.fixture
async def vendor():
    return FakeImageVendor()


@pytest_asyncio.fixture
async def orchestrator(uow_factory, organization, image_provider_row, vendor):
    return build_orchestrator(uow_factory, build_registry(vendor=vendor))


class TestPureHelpers:
    def test_clamp_variations(self):
        assert clamp_variations(None) == 4
        assert clamp_variations(0) == 4
        assert clamp_variations(-3) == 4
        assert clamp_variations(1) == 1
        assert clamp_variations(15) == 10

    def test_actual_cost_divides_before_multiplying(self):
        assert compute_actual_cost(10, 3, 3) == 9
        assert compute_actual_cost(30, 3, 2) == 20
        assert compute_actual_cost(30, 3, 0) == 0
        assert compute_actual_cost(30, 0, 0) == 0

    def test_should_fallback(self):
        error = ProviderError("kieai-gemini3: HTTP 429: Rate limit exceeded")
        assert should_fallback(error, []) is True
        assert should_fallback(error, ["rate limit"]) is True
        assert should_fallback(error, ["timeout", "quota"]) is False


@pytest.mark.asyncio
class TestSubmission:
    async def test_submit_returns_pending_job_with_estimate(self, orchestrator, organization):
        job = await orchestrator.submit_generation(request_for(organization))

        assert job.status == GenerationStatus.PENDING
        assert job.estimated_cost == 30
        assert job.actual_cost is None
        await orchestrator.supervisor.wait_idle()

    async def test_variations_are_clamped_before_estimating(self, orchestrator, organization):
        capped = await orchestrator.submit_generation(request_for(organization, num_variations=15))
        defaulted = await orchestrator.submit_generation(request_for(organization, num_variations=0))

        assert capped.estimated_cost == 100
        assert defaulted.estimated_cost == 40
        await orchestrator.supervisor.wait_idle()

    async def test_insufficient_credits_reports_amounts(self, uow_factory, image_provider_row, vendor):
        from lumen.models.organization import Organization

        async with await uow_factory() as uow:
            poor = await uow.organizations.add(Organization(name="Poor", slug="poor", credits=5))
            await uow.profiles.add(Profile(user_id=OWNER_ID, organization_id=poor.id))
        orchestrator = build_orchestrator(uow_factory, build_registry(vendor=vendor))

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await orchestrator.submit_generation(request_for(poor, num_variations=4))

        assert exc_info.value.available == 5
        assert exc_info.value.required == 40
        assert await orchestrator.list_generations(poor.id) == []

    async def test_user_must_belong_to_the_organization(self, orchestrator, organization, member):
        with pytest.raises(PermissionDeniedError, match="not a member"):
            await orchestrator.submit_generation(request_for(organization, user_id=uuid4()))

        job = await orchestrator.submit_generation(request_for(organization, user_id=member.id))
        assert job.user_id == member.id
        await orchestrator.supervisor.wait_idle()

    async def test_provider_can_be_referenced_by_id(
        self, orchestrator, organization, image_provider_row
    ):
        job = await orchestrator.submit_generation(
            request_for(organization, provider_id=str(image_provider_row.id))
        )
        assert job.provider_id == image_provider_row.id
        await orchestrator.supervisor.wait_idle()

    async def test_validation_errors(self, orchestrator, organization):
        with pytest.raises(ValidationError):
            await orchestrator.submit_generation(request_for(organization, base_prompt="   "))
        with pytest.raises(ValidationError):
            await orchestrator.submit_generation(request_for(organization, user_id="not-a-uuid"))
        with pytest.raises(ValidationError):
            await orchestrator.submit_generation(
                request_for(organization, reference_images=["http://insecure.example/a.png"])
            )
        with pytest.raises(ValidationError):
            await orchestrator.submit_generation(request_for(organization, provider_id=""))

    async def test_unknown_provider_and_organization(self, orchestrator, organization):
        with pytest.raises(NotFoundError):
            await orchestrator.submit_generation(request_for(organization, provider_id="nope"))
        with pytest.raises(NotFoundError):
            await orchestrator.submit_generation(
                SubmitGenerationRequest(
                    organization_id=uuid4(),
                    user_id=uuid4(),
                    provider_id="kieai-seedream",
                    base_prompt="x",
                )
            )

    async def test_provider_must_be_an_active_image_provider(
        self, orchestrator, organization, uow_factory
    ):
        async with await uow_factory() as uow:
            await uow.providers.add(
                Provider(slug="kieai-gemini3", name="LLM", category=ProviderCategory.LLM)
            )
            await uow.providers.add(
                Provider(
                    slug="kieai-nano",
                    name="Off",
                    category=ProviderCategory.IMAGE_GENERATION,
                    is_active=False,
                )
            )

        with pytest.raises(ValidationError, match="not an image generation provider"):
            await orchestrator.submit_generation(
                request_for(organization, provider_id="kieai-gemini3")
            )
        with pytest.raises(ValidationError, match="not active"):
            await orchestrator.submit_generation(request_for(organization, provider_id="kieai-nano"))


@pytest.mark.asyncio
class TestPipeline:
    async def test_images_submitted_with_callback_url(self, orchestrator, organization, vendor):
        details = await run_to_callbacks(orchestrator, organization)

        assert details.job.status == GenerationStatus.PROCESSING
        assert [image.prompt for image in details.images] == ["Prompt A", "Prompt B", "Prompt C"]
        assert all(image.status == GenerationStatus.PROCESSING for image in details.images)
        assert {image.task_id for image in details.images} == {"task-1", "task-2", "task-3"}
        assert {payload["callback_url"] for payload in vendor.submitted} == {
            "https://api.lumen.test/api/v1/callbacks/kieai-seedream"
        }

    async def test_reference_images_are_analyzed_into_system_prompt(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        vision = FakeVision()
        llm = FakeLLM("kieai-gemini3")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(llms=[(llm_descriptor("kieai-gemini3"), llm)], vision=vision, vendor=vendor),
        )

        await run_to_callbacks(
            orchestrator, organization, reference_images=["https://cdn.example/ref.png"]
        )

        assert vision.calls == ["https://cdn.example/ref.png"]
        system = llm.messages[0].content
        assert "Reference Image Analysis:" in system
        assert "Image 1: a red sneaker on marble" in system
        assert llm.messages[1].content.startswith("Base Prompt: studio photo of a sneaker")

    async def test_llm_fallback_on_eligible_error(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        primary = FakeLLM("kieai-gemini3", error=ProviderError("HTTP 503: overloaded"))
        secondary = FakeLLM("kieai-gemini25", content="One\nTwo")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(
                llms=[
                    (llm_descriptor("kieai-gemini25", priority=1), secondary),
                    (llm_descriptor("kieai-gemini3", priority=0), primary),
                ],
                vendor=vendor,
            ),
        )

        details = await run_to_callbacks(orchestrator, organization)

        assert primary.calls == 1
        assert secondary.calls == 1
        assert [image.prompt for image in details.images] == ["One", "Two"]

    async def test_ineligible_llm_error_fails_job_without_fallback(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        primary = FakeLLM("kieai-gemini3", error=ProviderError("HTTP 400: bad request"))
        secondary = FakeLLM("kieai-gemini25")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(
                llms=[
                    (
                        llm_descriptor(
                            "kieai-gemini3", fallback_error_substrings=["rate limit", "503"]
                        ),
                        primary,
                    ),
                    (llm_descriptor("kieai-gemini25", priority=1), secondary),
                ],
                vendor=vendor,
            ),
        )

        details = await run_to_callbacks(orchestrator, organization)

        assert secondary.calls == 0
        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == "HTTP 400: bad request"
        assert details.job.actual_cost == 0
        assert details.images == []

    async def test_all_llm_providers_failing(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(
                llms=[
                    (llm_descriptor("kieai-gemini3"), FakeLLM("kieai-gemini3", error=ProviderError("down"))),
                    (
                        llm_descriptor("kieai-gemini25", priority=1),
                        FakeLLM("kieai-gemini25", error=ProviderError("also down")),
                    ),
                ],
                vendor=vendor,
            ),
        )

        details = await run_to_callbacks(orchestrator, organization)

        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == ALL_LLM_PROVIDERS_FAILED

    async def test_no_llm_providers(self, uow_factory, organization, image_provider_row, vendor):
        orchestrator = build_orchestrator(uow_factory, build_registry(llms=[], vendor=vendor))

        details = await run_to_callbacks(orchestrator, organization)

        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == "no LLM providers available"

    async def test_blank_llm_output_fails_job(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        llm = FakeLLM("kieai-gemini3", content="  \n\n  ")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(llms=[(llm_descriptor("kieai-gemini3"), llm)], vendor=vendor),
        )

        details = await run_to_callbacks(orchestrator, organization)

        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == "no prompts generated"

    async def test_pipeline_crash_is_recorded_on_job(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        vision = FakeVision(error=RuntimeError("boom"))
        orchestrator = build_orchestrator(
            uow_factory, build_registry(vision=vision, vendor=vendor)
        )

        details = await run_to_callbacks(
            orchestrator, organization, reference_images=["https://cdn.example/ref.png"]
        )

        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == "internal error: RuntimeError: boom"

    async def test_rejected_submission_fails_only_that_image(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        llm = FakeLLM("kieai-gemini3", content="Keep A\n\nreject B\n\nKeep C")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(llms=[(llm_descriptor("kieai-gemini3"), llm)], vendor=vendor),
        )

        details = await run_to_callbacks(orchestrator, organization)

        statuses = [image.status for image in details.images]
        assert statuses == [
            GenerationStatus.PROCESSING,
            GenerationStatus.FAILED,
            GenerationStatus.PROCESSING,
        ]
        assert "HTTP 400" in details.images[1].error_message
        assert details.job.status == GenerationStatus.PROCESSING

        for image in (details.images[0], details.images[2]):
            await orchestrator.handle_callback(
                "kieai-seedream",
                kieai_callback(image.task_id, image_url=f"https://cdn.kie.ai/{image.task_id}.png"),
            )

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 20

    async def test_every_submission_rejected_fails_job_immediately(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        llm = FakeLLM("kieai-gemini3", content="reject 1\n\nreject 2")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(llms=[(llm_descriptor("kieai-gemini3"), llm)], vendor=vendor),
        )

        details = await run_to_callbacks(orchestrator, organization)

        assert details.job.status == GenerationStatus.FAILED
        assert details.job.error_message == "all 2 images failed"
        assert details.job.actual_cost == 0

    async def test_replicate_transport_error_fails_only_that_image(
        self, uow_factory, organization, image_provider_row
    ):
        async def create_prediction(**kwargs):
            prompt = kwargs["input"]["prompt"]
            if prompt == "B":
                raise httpx.ReadTimeout("read timed out")
            return SimpleNamespace(id=f"pred-{prompt}", status="starting")

        client = MagicMock()
        client.predictions.async_create = AsyncMock(side_effect=create_prediction)
        async with await uow_factory() as uow:
            await uow.providers.add(
                Provider(
                    slug="replicate-flux",
                    name="Replicate Flux",
                    category=ProviderCategory.IMAGE_GENERATION,
                    api_key="r8",
                    cost_per_use=8,
                )
            )
        llm = FakeLLM("kieai-gemini3", content="A\n\nB\n\nC")
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(
                llms=[(llm_descriptor("kieai-gemini3"), llm)],
                images=[
                    (
                        image_descriptor("replicate-flux", cost_per_use=8),
                        ReplicateImageProvider("replicate-flux", "r8", client=client),
                    )
                ],
            ),
        )

        details = await run_to_callbacks(orchestrator, organization, provider_id="replicate-flux")

        assert details.job.status == GenerationStatus.PROCESSING
        assert details.job.error_message is None
        assert [image.status for image in details.images] == [
            GenerationStatus.PROCESSING,
            GenerationStatus.FAILED,
            GenerationStatus.PROCESSING,
        ]
        assert details.images[1].error_message.startswith("Network timeout:")
        assert [details.images[0].task_id, details.images[2].task_id] == ["pred-A", "pred-C"]

    async def test_unexpected_client_error_is_confined_to_its_image(
        self, uow_factory, organization, image_provider_row
    ):
        async with await uow_factory() as uow:
            await uow.providers.add(
                Provider(
                    slug="flaky-images",
                    name="Flaky",
                    category=ProviderCategory.IMAGE_GENERATION,
                    cost_per_use=10,
                )
            )
        llm = FakeLLM("kieai-gemini3", content="A\n\nB\n\nC")
        flaky = FlakyImageClient("flaky-images", failing={"A"}, error=KeyError("id"))
        orchestrator = build_orchestrator(
            uow_factory,
            build_registry(
                llms=[(llm_descriptor("kieai-gemini3"), llm)],
                images=[(image_descriptor("flaky-images"), flaky)],
            ),
        )

        details = await run_to_callbacks(orchestrator, organization, provider_id="flaky-images")

        assert details.job.status == GenerationStatus.PROCESSING
        assert details.images[0].status == GenerationStatus.FAILED
        assert details.images[0].error_message == "submission error: KeyError: 'id'"
        assert [image.task_id for image in details.images[1:]] == [
            "flaky-images-B",
            "flaky-images-C",
        ]


@pytest.mark.asyncio
class TestCallbacksAndBilling:
    async def test_all_completed_charges_full_estimate(
        self, orchestrator, organization, uow_factory
    ):
        details = await run_to_callbacks(orchestrator, organization)

        for image in details.images:
            outcome = await orchestrator.handle_callback(
                "kieai-seedream",
                kieai_callback(image.task_id, image_url=f"https://cdn.kie.ai/{image.task_id}.png"),
            )
            assert outcome.applied is True
            assert outcome.status == GenerationStatus.COMPLETED

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 30
        assert finished.job.completed_at is not None
        assert finished.images[0].image_url == "https://cdn.kie.ai/task-1.png"

        balance, entries, total = await balance_and_entries(uow_factory, organization.id)
        assert balance == 70
        assert len(entries) == 1
        assert entries[0].amount == -30
        assert entries[0].job_id == details.job.id
        assert total == -30

    async def test_partial_completion_charges_completed_share(
        self, orchestrator, organization, uow_factory
    ):
        details = await run_to_callbacks(orchestrator, organization)
        first, second, third = details.images

        await orchestrator.handle_callback(
            "kieai-seedream", kieai_callback(first.task_id, image_url="https://cdn.kie.ai/1.png")
        )
        await orchestrator.handle_callback("kieai-seedream", kieai_callback(second.task_id, "fail"))

        midway = await orchestrator.get_generation(details.job.id)
        assert midway.job.status == GenerationStatus.PROCESSING
        assert midway.job.actual_cost is None
        balance, entries, _ = await balance_and_entries(uow_factory, organization.id)
        assert balance == 100
        assert entries == []

        await orchestrator.handle_callback(
            "kieai-seedream", kieai_callback(third.task_id, image_url="https://cdn.kie.ai/3.png")
        )

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 20
        assert finished.images[1].status == GenerationStatus.FAILED
        assert finished.images[1].error_message == "vendor could not render the prompt"

        balance, _, _ = await balance_and_entries(uow_factory, organization.id)
        assert balance == 80

    async def test_unmirrorable_image_keeps_vendor_url(
        self, uow_factory, organization, image_provider_row, vendor
    ):
        stored = {}
        fetched = []

        class Store:
            async def put(self, key, data, content_type):
                stored[key] = data
                return f"https://files.lumen.test/{key}"

        def serve(request):
            fetched.append(str(request.url))
            return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

        uploads = UploadService(Store(), http_transport=httpx.MockTransport(serve))
        orchestrator = build_orchestrator(uow_factory, build_registry(vendor=vendor), uploads=uploads)
        details = await run_to_callbacks(orchestrator, organization, num_variations=2)
        first, second = details.images

        await orchestrator.handle_callback(
            "kieai-seedream", kieai_callback(first.task_id, image_url="http://cdn.kie.ai/1.png")
        )
        await orchestrator.handle_callback(
            "kieai-seedream", kieai_callback(second.task_id, image_url="https://cdn.kie.ai/2.png")
        )

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert fetched == ["https://cdn.kie.ai/2.png"]
        assert finished.images[0].image_url == "http://cdn.kie.ai/1.png"
        assert finished.images[0].storage_key is None
        assert finished.images[1].storage_key in stored

    async def test_all_failed_charges_nothing(self, orchestrator, organization, uow_factory):
        details = await run_to_callbacks(orchestrator, organization)

        for image in details.images:
            await orchestrator.handle_callback("kieai-seedream", kieai_callback(image.task_id, "fail"))

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.FAILED
        assert finished.job.actual_cost == 0
        assert finished.job.error_message == "all 3 images failed"

        balance, entries, _ = await balance_and_entries(uow_factory, organization.id)
        assert balance == 100
        assert entries == []

    async def test_success_without_url_counts_as_failure(self, orchestrator, organization):
        details = await run_to_callbacks(orchestrator, organization)

        outcome = await orchestrator.handle_callback(
            "kieai-seedream", kieai_callback(details.images[0].task_id)
        )

        assert outcome.status == GenerationStatus.FAILED

    async def test_duplicate_callback_is_ignored(self, orchestrator, organization, uow_factory):
        details = await run_to_callbacks(orchestrator, organization)
        payloads = [
            kieai_callback(image.task_id, image_url=f"https://cdn.kie.ai/{image.task_id}.png")
            for image in details.images
        ]

        for payload in payloads:
            await orchestrator.handle_callback("kieai-seedream", payload)
        duplicate = await orchestrator.handle_callback("kieai-seedream", payloads[0])

        assert duplicate.applied is False
        balance, entries, _ = await balance_and_entries(uow_factory, organization.id)
        assert balance == 70
        assert len(entries) == 1

    async def test_concurrent_callbacks_finalize_exactly_once(
        self, orchestrator, organization, uow_factory
    ):
        details = await run_to_callbacks(orchestrator, organization)
        payloads = [
            kieai_callback(image.task_id, image_url=f"https://cdn.kie.ai/{image.task_id}.png")
            for image in details.images
        ]

        outcomes = await asyncio.gather(
            *(orchestrator.handle_callback("kieai-seedream", payload) for payload in payloads * 2)
        )

        assert sum(1 for outcome in outcomes if outcome.applied) == 3
        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 30

        balance, entries, total = await balance_and_entries(uow_factory, organization.id)
        assert balance == 70
        assert len(entries) == 1
        assert total == -30

    async def test_zero_cost_provider_writes_no_ledger_entry(
        self, uow_factory, organization, vendor
    ):
        async with await uow_factory() as uow:
            await uow.providers.add(
                Provider(
                    slug="kieai-seedream",
                    name="Free tier",
                    category=ProviderCategory.IMAGE_GENERATION,
                    cost_per_use=0,
                )
            )
        orchestrator = build_orchestrator(uow_factory, build_registry(vendor=vendor))

        details = await run_to_callbacks(orchestrator, organization)
        assert details.job.estimated_cost == 0
        for image in details.images:
            await orchestrator.handle_callback(
                "kieai-seedream", kieai_callback(image.task_id, image_url="https://cdn.kie.ai/x.png")
            )

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 0
        balance, entries, _ = await balance_and_entries(uow_factory, organization.id)
        assert balance == 100
        assert entries == []

    async def test_balance_drained_before_finalize_records_error(
        self, orchestrator, organization, uow_factory
    ):
        details = await run_to_callbacks(orchestrator, organization)
        await orchestrator.ledger.deduct(organization.id, 90, "spent elsewhere")

        for image in details.images:
            await orchestrator.handle_callback(
                "kieai-seedream", kieai_callback(image.task_id, image_url="https://cdn.kie.ai/x.png")
            )

        finished = await orchestrator.get_generation(details.job.id)
        assert finished.job.status == GenerationStatus.COMPLETED
        assert finished.job.actual_cost == 30
        assert finished.job.error_message.startswith("credit deduction failed: insufficient credits")

        balance, entries, total = await balance_and_entries(uow_factory, organization.id)
        assert balance == 10
        assert len(entries) == 1
        assert total == -90

    async def test_callback_errors(self, orchestrator, organization):
        await run_to_callbacks(orchestrator, organization)

        with pytest.raises(NotFoundError):
            await orchestrator.handle_callback("unknown-vendor", kieai_callback("task-1"))
        with pytest.raises(NotFoundError):
            await orchestrator.handle_callback("kieai-seedream", kieai_callback("task-999"))
        with pytest.raises(CallbackPayloadError):
            await orchestrator.handle_callback("kieai-seedream", b"not json")


@pytest.mark.asyncio
class TestQueries:
    async def test_get_generation_enforces_organization(self, orchestrator, organization):
        job = await orchestrator.submit_generation(request_for(organization))
        await orchestrator.supervisor.wait_idle()

        found = await orchestrator.get_generation(job.id, organization_id=organization.id)
        assert found.job.id == job.id

        with pytest.raises(NotFoundError):
            await orchestrator.get_generation(job.id, organization_id=uuid4())
        with pytest.raises(NotFoundError):
            await orchestrator.get_generation(uuid4())

    async def test_list_generations_paginates(self, orchestrator, organization):
        first = await orchestrator.submit_generation(request_for(organization, num_variations=1))
        second = await orchestrator.submit_generation(request_for(organization, num_variations=1))
        await orchestrator.supervisor.wait_idle()

        jobs = await orchestrator.list_generations(organization.id)
        assert {job.id for job in jobs} == {first.id, second.id}
        assert len(await orchestrator.list_generations(organization.id, limit=1)) == 1
        assert len(await orchestrator.list_generations(organization.id, limit=1, offset=1)) == 1
