"""Unit tests for portal URLs, templates, QR records, models and persistence."""
import pytest
from pydantic import ValidationError as PydanticValidationError

from cvportal.db import set_dotted
from cvportal.errors import InternalError, TemplateCustomizationError, TemplateGenerationError
from cvportal.models import (
    GenerationOptions,
    ParsedCV,
    PortalConfig,
    PortalGenerationStep,
    PortalStatus,
    QueryProcessorConfig,
    RAGConfig,
)
from cvportal.portal.qr import QRCodeService
from cvportal.portal.templates import (
    DEFAULT_TEMPLATES,
    TemplateService,
    parse_json_object,
    select_template,
)
from cvportal.portal.urls import (
    apply_deployment_urls,
    generate_portal_urls,
    generate_space_name,
    slugify,
    space_host_url,
)
from tests.conftest import FailingLLM, FakeLLM

Step = PortalGenerationStep


class TestUrls:
    @pytest.mark.parametrize("name, slug", [
        ("John Doe", "john-doe"),
        ("  José  O'Brien ", "jos-o-brien"),
        ("!!!", "professional"),
        (None, "professional"),
    ])
    def test_slugify(self, name, slug):
        assert slugify(name) == slug

    def test_placeholder_urls(self):
        urls = generate_portal_urls("John Doe")

        assert urls.portal == "https://john-doe-cv-portal.hf.space"
        assert urls.chat == "https://john-doe-cv-portal.hf.space/chat"
        assert urls.qr_menu == "https://john-doe-cv-portal.hf.space/qr-menu"
        assert urls.api.chat == "https://john-doe-cv-portal.hf.space/api/chat"

    def test_deployment_urls_use_api_base(self):
        urls = apply_deployment_urls("https://jdoe-space.hf.space/", "https://api.example.com")

        assert urls.portal == "https://jdoe-space.hf.space"
        assert urls.download == "https://jdoe-space.hf.space/download"
        assert urls.api.analytics == "https://api.example.com/analytics"

    def test_space_name_is_deterministic(self):
        assert generate_space_name("John Doe", "job-ABC-12345678") == "john-doe-cv-portal-12345678"
        assert generate_space_name("John Doe", "job-1") == generate_space_name("John Doe", "job-1")

    def test_space_name_is_capped(self):
        name = generate_space_name("x" * 200, "job-1")

        assert len(name) <= 96
        assert name.endswith("-cv-portal-job1")

    def test_space_host_url(self):
        assert space_host_url("JDoe", "my_space") == "https://jdoe-my-space.hf.space"


class TestTemplates:
    def test_selection_follows_profile_content(self, minimal_cv, full_cv):
        assert select_template(ParsedCV.model_validate(minimal_cv)).id == "corporate-professional"
        assert select_template(ParsedCV.model_validate(full_cv)).id == "technical-expert"

        designer = ParsedCV.model_validate({"projects": [{"name": "Logo"}], "skills": ["Figma"]})
        assert select_template(designer).id == "creative-portfolio"

    def test_generate_template_attaches_links(self, minimal_cv):
        urls = generate_portal_urls("John Doe")

        template = TemplateService().generate_template(ParsedCV.model_validate(minimal_cv), urls)

        assert template.config["links"]["portal"] == urls.portal
        assert template.config["links"]["api"]["chat"] == urls.api.chat

    def test_requested_template_id(self, minimal_cv):
        template = TemplateService().generate_template(
            ParsedCV.model_validate(minimal_cv), generate_portal_urls("John Doe"), requested="technical-expert"
        )

        assert template.id == "technical-expert"

    def test_unknown_template_is_rejected(self, minimal_cv):
        with pytest.raises(TemplateGenerationError, match="Unknown template 'neon'"):
            TemplateService().generate_template(
                ParsedCV.model_validate(minimal_cv), generate_portal_urls("John Doe"), requested="neon"
            )

    @pytest.mark.parametrize("text, expected", [
        ('{"theme": {"colors": {"primary": "#000"}}}', {"theme": {"colors": {"primary": "#000"}}}),
        ('Sure!\n```json\n{"content": {"headline": "Hi"}}\n```', {"content": {"headline": "Hi"}}),
        ('Here you go: {"a": {"b": 1}} hope it helps', {"a": {"b": 1}}),
        ("no json here", None),
        ('{"unbalanced": ', None),
    ])
    def test_parse_json_object(self, text, expected):
        assert parse_json_object(text) == expected

    @pytest.mark.asyncio
    async def test_customize_design_merges_patch(self, minimal_cv):
        llm = FakeLLM(reply="""```json
{"theme": {"colors": {"primary": "#ff0000"}},
 "config": {"layout": "wide", "links": {"portal": "https://evil.example"}},
 "content": {"headline": "Backend engineer"}}
```""")
        service = TemplateService(llm=llm, model="design-model")
        profile = ParsedCV.model_validate(minimal_cv)
        template = service.generate_template(profile, generate_portal_urls("John Doe"))

        customized, content = await service.customize_design(profile, template)

        assert customized.theme.colors["primary"] == "#ff0000"
        assert customized.theme.colors["secondary"] == template.theme.colors["secondary"]
        assert customized.config["layout"] == "wide"
        assert customized.config["links"]["portal"] == "https://john-doe-cv-portal.hf.space"
        assert content == {"headline": "Backend engineer"}
        assert template.theme.colors["primary"] == "#1e40af"
        assert llm.calls[0]["model"] == "design-model"

    @pytest.mark.asyncio
    async def test_customize_design_keeps_template_on_garbage(self, minimal_cv):
        service = TemplateService(llm=FakeLLM(reply="I cannot help with that."))
        profile = ParsedCV.model_validate(minimal_cv)
        template = service.generate_template(profile, generate_portal_urls("John Doe"))

        customized, content = await service.customize_design(profile, template)

        assert customized == template
        assert content == {}

    @pytest.mark.asyncio
    async def test_customize_design_model_failure(self, minimal_cv):
        service = TemplateService(llm=FailingLLM())
        profile = ParsedCV.model_validate(minimal_cv)
        template = service.generate_template(profile, generate_portal_urls("John Doe"))

        with pytest.raises(TemplateCustomizationError):
            await service.customize_design(profile, template)


class TestQRCodes:
    def test_portal_codes_are_recorded(self, repository):
        codes = QRCodeService(repository).generate_portal_codes("job-1", generate_portal_urls("John Doe"))

        assert [c["data"] for c in codes] == [
            "https://john-doe-cv-portal.hf.space",
            "https://john-doe-cv-portal.hf.space/chat",
        ]
        assert codes[0]["trackingUrl"] == (
            "https://john-doe-cv-portal.hf.space?utm_source=qr&utm_content=portal"
        )

        stored = repository.list_qr_codes("job-1")
        assert [c["kind"] for c in stored] == ["portal", "chat"]
        assert [c["id"] for c in stored] == [c["id"] for c in codes]
        assert stored[1]["metadata"]["title"] == "AI Chat QR Code"


class TestModels:
    def test_skip_steps_expand_to_dependents(self):
        options = GenerationOptions.model_validate({"skipSteps": ["CREATE_EMBEDDINGS"]})

        assert options.skip_steps == [
            Step.CREATE_EMBEDDINGS, Step.SETUP_VECTOR_DB, Step.BUILD_RAG_SYSTEM,
        ]

    def test_fatal_steps_cannot_be_skipped(self):
        with pytest.raises(PydanticValidationError, match="Fatal steps cannot be skipped"):
            GenerationOptions.model_validate({"skipSteps": ["FINALIZE_PORTAL"]})

    def test_timeout_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            GenerationOptions(timeout_ms=0)

    def test_status_transitions(self):
        portal = PortalConfig(id="portal-job-1", job_id="job-1", user_id="u")
        portal.transition_to(PortalStatus.GENERATING)
        portal.transition_to(PortalStatus.COMPLETED)

        with pytest.raises(InternalError, match="COMPLETED -> GENERATING"):
            portal.transition_to(PortalStatus.GENERATING)

    def test_pending_cannot_complete(self):
        portal = PortalConfig(id="portal-job-1", job_id="job-1", user_id="u")

        with pytest.raises(InternalError):
            portal.transition_to(PortalStatus.COMPLETED)

    def test_secrets_are_not_serialized(self):
        portal = PortalConfig.model_validate({
            "id": "portal-job-1",
            "jobId": "job-1",
            "userId": "u",
            "deployment": {"spaceName": "space", "secrets": {"HF_TOKEN": "secret"}},
        })

        document = portal.to_document()

        assert document["deployment"]["spaceName"] == "space"
        assert "secrets" not in document["deployment"]
        assert portal.deployment.secrets == {"HF_TOKEN": "secret"}

    @pytest.mark.parametrize("max_sources", [-1, 4])
    def test_source_cap_is_bounded(self, max_sources):
        with pytest.raises(PydanticValidationError):
            QueryProcessorConfig.model_validate({"maxSources": max_sources})

    def test_stored_rag_config_cannot_raise_source_cap(self):
        with pytest.raises(PydanticValidationError):
            RAGConfig.model_validate({"queryProcessing": {"maxSources": 10}})

    def test_apply_urls_updates_template_links(self):
        portal = PortalConfig(
            id="portal-job-1",
            job_id="job-1",
            user_id="u",
            template=DEFAULT_TEMPLATES["technical-expert"].model_copy(deep=True),
        )

        portal.apply_urls(apply_deployment_urls("https://jdoe-space.hf.space"))

        assert portal.urls.portal == "https://jdoe-space.hf.space"
        assert portal.template.config["links"]["portal"] == "https://jdoe-space.hf.space"


class TestRepository:
    def test_set_dotted_creates_intermediate_objects(self):
        document = {"portalData": "stale"}

        set_dotted(document, "portalData.status", "FAILED")
        set_dotted(document, "metadata.hasWebPortal", True)

        assert document == {"portalData": {"status": "FAILED"}, "metadata": {"hasWebPortal": True}}

    def test_update_job_fields(self, repository):
        repository.save_job("job-1", {"parsedData": {}, "portalData": {"status": "PENDING", "keep": 1}})

        assert repository.update_job_fields("job-1", {"portalData.status": "COMPLETED"})

        assert repository.get_job("job-1")["portalData"] == {"status": "COMPLETED", "keep": 1}

    def test_update_missing_job(self, repository):
        assert repository.update_job_fields("missing", {"a": 1}) is False
        assert repository.get_job("missing") is None

    def test_portal_config_roundtrip(self, repository):
        repository.save_portal_config("portal-job-1", "job-1", "COMPLETED", {"id": "portal-job-1"})

        assert repository.get_portal_config("portal-job-1") == {"id": "portal-job-1"}
        assert repository.get_portal_config("portal-job-2") is None
