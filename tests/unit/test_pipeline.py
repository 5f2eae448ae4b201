"""Unit tests for the portal generation pipeline."""
from pathlib import Path

import pytest

from cvportal.errors import PortalErrorCode
from cvportal.models import DeploymentResult, PortalGenerationStep, PortalStatus
from cvportal.portal.templates import TemplateService
from tests.conftest import (
    FailingEmbeddingProvider,
    FailingLLM,
    FakeEmbeddingProvider,
    FakeLLM,
    FakeStager,
)

Step = PortalGenerationStep

ALL_STEPS_WITHOUT_DEPLOY = [
    Step.VALIDATE_INPUT,
    Step.EXTRACT_CV_DATA,
    Step.CONFIGURE_URLS,
    Step.GENERATE_TEMPLATE,
    Step.CUSTOMIZE_DESIGN,
    Step.CREATE_EMBEDDINGS,
    Step.SETUP_VECTOR_DB,
    Step.BUILD_RAG_SYSTEM,
    Step.UPDATE_CV_DOCUMENT,
    Step.GENERATE_QR_CODES,
    Step.FINALIZE_PORTAL,
]


@pytest.fixture
def job(repository, minimal_cv):
    repository.save_job("job-1", {"parsedData": minimal_cv, "userId": "user-42"})
    return "job-1"


class TestSuccessfulGeneration:
    @pytest.mark.asyncio
    async def test_portal_is_generated_without_deployment(self, make_service, repository, job):
        """A run with no Hub token completes every step except deployment."""
        stager = FakeStager()
        service = make_service(stager=stager)

        result = await service.generate_portal(job)

        assert result.success
        assert result.error is None
        assert result.steps_completed == ALL_STEPS_WITHOUT_DEPLOY
        assert result.urls.portal == "https://john-doe-cv-portal.hf.space"
        assert result.warnings == ["DEPLOY_TO_HUGGINGFACE: offline"]
        assert result.embeddings_generated == 3

        portal = result.portal_config
        assert portal.id == "portal-job-1"
        assert portal.user_id == "user-42"
        assert portal.status is PortalStatus.COMPLETED
        assert portal.template.id == "corporate-professional"
        assert portal.rag_config.enabled
        assert portal.rag_config.vector_count == 3
        assert portal.customization.features.enable_chat
        assert portal.deployment.space_name == "john-doe-cv-portal-job1"
        assert len(stager.calls) == 1
        assert stager.calls[0]["vector_store"] is not None

    @pytest.mark.asyncio
    async def test_side_effects_are_persisted(self, make_service, repository, job):
        result = await make_service().generate_portal(job)

        stored = repository.get_portal_config("portal-job-1")
        assert stored["status"] == "COMPLETED"
        assert stored["urls"]["portal"] == result.urls.portal
        assert "secrets" not in stored["deployment"]

        job_doc = repository.get_job(job)
        assert job_doc["portalData"]["status"] == "COMPLETED"
        assert job_doc["portalData"]["configId"] == "portal-job-1"
        assert job_doc["portalData"]["urls"]["chat"] == "https://john-doe-cv-portal.hf.space/chat"
        assert job_doc["metadata"]["hasWebPortal"] is True
        assert job_doc["metadata"]["portalUrl"] == "https://john-doe-cv-portal.hf.space"

        assert [c["kind"] for c in repository.list_qr_codes(job)] == ["portal", "chat"]
        assert Path(result.portal_config.rag_config.vector_store_path).exists()

    @pytest.mark.asyncio
    async def test_steps_are_reported_in_pipeline_order(self, make_service, job):
        result = await make_service().generate_portal(job)

        orders = [step.order for step in result.steps_completed]
        assert orders == sorted(orders)

    @pytest.mark.asyncio
    async def test_deployment_replaces_placeholder_urls(self, make_service, repository, job):
        space_url = "https://jdoe-john-doe-cv-portal-job1.hf.space"
        stager = FakeStager(DeploymentResult(success=True, space_url=space_url, api_url=f"{space_url}/api"))

        result = await make_service(stager=stager).generate_portal(job)

        assert result.success
        assert Step.DEPLOY_TO_HUGGINGFACE in result.steps_completed
        assert result.warnings is None
        assert result.urls.portal == space_url
        assert result.urls.chat == f"{space_url}/chat"
        assert result.urls.api.chat == f"{space_url}/api/chat"
        assert result.portal_config.urls == result.urls
        assert repository.get_job(job)["metadata"]["portalUrl"] == space_url

    @pytest.mark.asyncio
    async def test_deployment_refreshes_template_links(self, make_service, repository, job):
        space_url = "https://jdoe-john-doe-cv-portal-job1.hf.space"
        stager = FakeStager(DeploymentResult(success=True, space_url=space_url, api_url=f"{space_url}/api"))

        result = await make_service(stager=stager).generate_portal(job)

        links = result.portal_config.template.config["links"]
        assert links["portal"] == space_url
        assert links["chat"] == f"{space_url}/chat"
        stored = repository.get_portal_config("portal-job-1")
        assert stored["template"]["config"]["links"]["portal"] == space_url

    @pytest.mark.asyncio
    async def test_requested_template_and_overrides(self, make_service, job):
        result = await make_service().generate_portal(
            job,
            config={
                "template": "technical-expert",
                "userId": "owner-7",
                "privacy": {"level": "unlisted", "maskContactInfo": True},
                "visibility": "private",
            },
        )

        portal = result.portal_config
        assert portal.template.id == "technical-expert"
        assert portal.user_id == "owner-7"
        assert portal.privacy.mask_contact_info
        assert portal.deployment.visibility == "private"

    @pytest.mark.asyncio
    async def test_design_customization_is_applied(self, make_service, job):
        llm = FakeLLM(reply='{"theme": {"colors": {"primary": "#ff0000"}}, "content": {"tagline": "Hi"}}')
        service = make_service(template_service=TemplateService(llm=llm))

        result = await service.generate_portal(job)

        assert result.portal_config.template.theme.colors["primary"] == "#ff0000"
        assert result.portal_config.customization.theme["primary"] == "#ff0000"
        assert result.portal_config.customization.content == {"tagline": "Hi"}

    @pytest.mark.asyncio
    async def test_debug_mode_does_not_change_the_outcome(self, make_service, job):
        result = await make_service().generate_portal(job, options={"debugMode": True})

        assert result.success
        assert result.steps_completed == ALL_STEPS_WITHOUT_DEPLOY


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_name_fails_without_side_effects(self, make_service, repository):
        """Validation failures never touch the job document or the portal store."""
        repository.save_job("job-2", {"parsedData": {"personalInfo": {}, "skills": ["Python"]}})
        provider = FakeEmbeddingProvider()
        stager = FakeStager()

        result = await make_service(provider=provider, stager=stager).generate_portal("job-2")

        assert not result.success
        assert result.error.code is PortalErrorCode.VALIDATION_ERROR
        assert result.error.step == "VALIDATE_INPUT"
        assert result.steps_completed == []
        assert repository.get_portal_config("portal-job-2") is None
        assert "portalData" not in repository.get_job("job-2")
        assert provider.calls == []
        assert stager.calls == []

    @pytest.mark.asyncio
    async def test_unknown_job(self, make_service, repository):
        result = await make_service().generate_portal("nope")

        assert result.error.code is PortalErrorCode.VALIDATION_ERROR
        assert "not found" in result.error.message
        assert repository.get_job("nope") is None

    @pytest.mark.asyncio
    async def test_job_without_parsed_data(self, make_service, repository):
        repository.save_job("job-3", {"status": "uploaded"})

        result = await make_service().generate_portal("job-3")

        assert result.error.code is PortalErrorCode.VALIDATION_ERROR
        assert "No parsed CV data" in result.error.message

    @pytest.mark.asyncio
    async def test_fatal_step_cannot_be_skipped(self, make_service, repository, job):
        result = await make_service().generate_portal(job, options={"skipSteps": ["GENERATE_TEMPLATE"]})

        assert not result.success
        assert result.error.code is PortalErrorCode.VALIDATION_ERROR
        assert result.steps_completed == []
        assert repository.get_portal_config("portal-job-1") is None

    @pytest.mark.asyncio
    async def test_unknown_template_is_fatal(self, make_service, repository, job):
        result = await make_service().generate_portal(job, config={"template": "neon"})

        assert not result.success
        assert result.error.code is PortalErrorCode.TEMPLATE_GENERATION_FAILED
        assert result.error.step == "GENERATE_TEMPLATE"
        assert result.steps_completed == [Step.VALIDATE_INPUT, Step.EXTRACT_CV_DATA, Step.CONFIGURE_URLS]
        assert repository.get_portal_config("portal-job-1") is None
        assert repository.get_job(job)["portalData"]["status"] == "FAILED"


class TestDegradedSteps:
    @pytest.mark.asyncio
    async def test_embedding_failure_disables_chat(self, make_service, repository, job):
        """An embedding outage degrades the portal to one without a chat assistant."""
        provider = FailingEmbeddingProvider()
        stager = FakeStager()

        result = await make_service(provider=provider, stager=stager).generate_portal(job)

        assert result.success
        for step in (Step.CREATE_EMBEDDINGS, Step.SETUP_VECTOR_DB, Step.BUILD_RAG_SYSTEM):
            assert step not in result.steps_completed
        assert Step.FINALIZE_PORTAL in result.steps_completed
        assert any(w.startswith("CREATE_EMBEDDINGS:") for w in result.warnings)
        assert result.embeddings_generated == 0

        portal = result.portal_config
        assert not portal.rag_config.enabled
        assert portal.rag_config.vector_store_path is None
        assert not portal.customization.features.enable_chat
        assert stager.calls[0]["vector_store"] is None
        assert repository.get_portal_config("portal-job-1")["ragConfig"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_customization_failure_keeps_default_design(self, make_service, job):
        service = make_service(template_service=TemplateService(llm=FailingLLM()))

        result = await service.generate_portal(job)

        assert result.success
        assert Step.CUSTOMIZE_DESIGN not in result.steps_completed
        assert any(w.startswith("CUSTOMIZE_DESIGN:") for w in result.warnings)
        assert result.portal_config.template.theme.colors["primary"] == "#1e40af"

    @pytest.mark.asyncio
    async def test_skipped_embeddings_skip_dependent_steps(self, make_service, job):
        provider = FakeEmbeddingProvider()

        result = await make_service(provider=provider).generate_portal(
            job, options={"skipSteps": ["CREATE_EMBEDDINGS"]}
        )

        assert result.success
        assert Step.SETUP_VECTOR_DB not in result.steps_completed
        assert Step.BUILD_RAG_SYSTEM not in result.steps_completed
        assert result.warnings == ["DEPLOY_TO_HUGGINGFACE: offline"]
        assert provider.calls == []
        assert not result.portal_config.rag_config.enabled

    @pytest.mark.asyncio
    async def test_slow_deploy_times_out_as_a_warning(self, make_service, job):
        service = make_service(stager=FakeStager(delay=1.0), step_timeout=0.2)

        result = await service.generate_portal(job)

        assert result.success
        assert Step.DEPLOY_TO_HUGGINGFACE not in result.steps_completed
        assert result.warnings == ["DEPLOY_TO_HUGGINGFACE: DEPLOY_TO_HUGGINGFACE timed out after 0.2s"]


class TestTimeoutAndRegeneration:
    @pytest.mark.asyncio
    async def test_run_deadline(self, make_service, repository, job):
        """The overall budget is checked between steps; the slow deploy exhausts it."""
        service = make_service(stager=FakeStager(delay=0.5))

        result = await service.generate_portal(job, options={"timeoutMs": 300})

        assert not result.success
        assert result.error.code is PortalErrorCode.TIMEOUT
        assert result.error.step == "UPDATE_CV_DOCUMENT"
        assert result.steps_completed[-1] is Step.BUILD_RAG_SYSTEM
        assert repository.get_portal_config("portal-job-1") is None
        assert repository.get_job(job)["portalData"]["status"] == "FAILED"

    @pytest.mark.asyncio
    async def test_existing_portal_is_returned(self, make_service, job):
        """A completed portal is returned as is unless regeneration is forced."""
        service = make_service()
        first = await service.generate_portal(job)

        second = await service.generate_portal(job)

        assert second.success
        assert second.steps_completed == []
        assert "already exists" in second.warnings[0]
        assert second.portal_config.id == first.portal_config.id
        assert second.urls == first.urls

    @pytest.mark.asyncio
    async def test_force_regenerate_runs_again(self, make_service, job):
        service = make_service()
        await service.generate_portal(job)

        result = await service.generate_portal(job, options={"forceRegenerate": True})

        assert result.success
        assert result.steps_completed == ALL_STEPS_WITHOUT_DEPLOY
        assert result.portal_config.status is PortalStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_portal_is_regenerated_without_force(self, make_service, repository, job):
        service = make_service()
        repository.save_portal_config("portal-job-1", job, "FAILED", {
            "id": "portal-job-1", "jobId": job, "userId": "u", "status": "FAILED",
        })

        result = await service.generate_portal(job)

        assert result.steps_completed == ALL_STEPS_WITHOUT_DEPLOY
