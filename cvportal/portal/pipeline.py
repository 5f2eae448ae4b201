"""Portal generation orchestrator.

Drives a fixed sequence of steps for one job:

    VALIDATE_INPUT -> EXTRACT_CV_DATA -> CONFIGURE_URLS -> GENERATE_TEMPLATE
    -> CUSTOMIZE_DESIGN -> CREATE_EMBEDDINGS -> SETUP_VECTOR_DB
    -> BUILD_RAG_SYSTEM -> (create portal config) -> DEPLOY_TO_HUGGINGFACE
    -> UPDATE_CV_DOCUMENT -> GENERATE_QR_CODES -> FINALIZE_PORTAL

Fatal steps abort the run; non-fatal steps record a warning, degrade the
feature they build and let the run continue. ``generate_portal`` never
raises: every failure comes back as a structured ``PortalError``.
"""
import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from cvportal import config
from cvportal.db import PortalRepository
from cvportal.deploy.huggingface import DeploymentStager, space_variables
from cvportal.errors import (
    CVIntegrationError,
    DeploymentError,
    EmbeddingProviderError,
    InternalError,
    PipelineTimeoutError,
    PortalGenerationError,
    QRUpdateError,
    RAGBuildError,
    TemplateCustomizationError,
    TemplateGenerationError,
    ValidationError,
    VectorStoreError,
)
from cvportal.llm_client import OllamaClient
from cvportal.models import (
    STEP_DEPENDENCIES,
    ChatServiceConfig,
    EmbeddingProviderConfig,
    FeatureToggles,
    GenerationOptions,
    HuggingFaceSpaceConfig,
    ParsedCV,
    PortalConfig,
    PortalCustomization,
    PortalGenerationResult,
    PortalGenerationStep,
    PortalOverrides,
    PortalStatus,
    PortalTemplate,
    PortalUrls,
    RAGConfig,
)
from cvportal.portal.qr import QRCodeService
from cvportal.portal.templates import TemplateService, has_portfolio
from cvportal.portal.urls import apply_deployment_urls, generate_portal_urls, generate_space_name
from cvportal.rag.chat import build_chat_config
from cvportal.rag.chunker import ContentChunker, TextChunk
from cvportal.rag.embeddings import EmbeddingGenerator, RAGEmbedding
from cvportal.rag.store import VectorStore, store_path_for

logger = structlog.get_logger()

Step = PortalGenerationStep


@dataclass
class _PipelineRun:
    """Mutable state for one ``generate_portal`` call. Never shared across runs."""

    job_id: str
    options: GenerationOptions
    overrides: PortalOverrides
    portal_config: PortalConfig
    started: float
    deadline: Optional[float] = None
    job: Optional[Dict[str, Any]] = None
    profile: Optional[ParsedCV] = None
    urls: Optional[PortalUrls] = None
    template: Optional[PortalTemplate] = None
    content: Dict[str, Any] = field(default_factory=dict)
    chunks: List[TextChunk] = field(default_factory=list)
    embeddings: List[RAGEmbedding] = field(default_factory=list)
    vector_store: Optional[VectorStore] = None
    vector_store_path: Optional[Path] = None
    chat_config: Optional[ChatServiceConfig] = None
    rag_ready: bool = False
    steps_completed: List[PortalGenerationStep] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass(frozen=True)
class _StepPolicy:
    name: str
    handler: str
    fatal: bool
    error_class: Type[PortalGenerationError]
    step: Optional[PortalGenerationStep] = None


_PIPELINE = (
    _StepPolicy("VALIDATE_INPUT", "_validate_input", True, ValidationError, Step.VALIDATE_INPUT),
    _StepPolicy("EXTRACT_CV_DATA", "_extract_cv_data", True, ValidationError, Step.EXTRACT_CV_DATA),
    _StepPolicy("CONFIGURE_URLS", "_configure_urls", True, InternalError, Step.CONFIGURE_URLS),
    _StepPolicy("GENERATE_TEMPLATE", "_generate_template", True, TemplateGenerationError, Step.GENERATE_TEMPLATE),
    _StepPolicy("CUSTOMIZE_DESIGN", "_customize_design", False, TemplateCustomizationError, Step.CUSTOMIZE_DESIGN),
    _StepPolicy("CREATE_EMBEDDINGS", "_create_embeddings", False, EmbeddingProviderError, Step.CREATE_EMBEDDINGS),
    _StepPolicy("SETUP_VECTOR_DB", "_setup_vector_db", False, VectorStoreError, Step.SETUP_VECTOR_DB),
    _StepPolicy("BUILD_RAG_SYSTEM", "_build_rag_system", False, RAGBuildError, Step.BUILD_RAG_SYSTEM),
    # Internal step: not reported in steps_completed
    _StepPolicy("CREATE_PORTAL_CONFIG", "_create_portal_config", True, InternalError),
    _StepPolicy("DEPLOY_TO_HUGGINGFACE", "_deploy", False, DeploymentError, Step.DEPLOY_TO_HUGGINGFACE),
    _StepPolicy("UPDATE_CV_DOCUMENT", "_update_cv_document", False, CVIntegrationError, Step.UPDATE_CV_DOCUMENT),
    _StepPolicy("GENERATE_QR_CODES", "_generate_qr_codes", False, QRUpdateError, Step.GENERATE_QR_CODES),
    _StepPolicy("FINALIZE_PORTAL", "_finalize", True, InternalError, Step.FINALIZE_PORTAL),
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PortalGenerationService:
    """Turns a parsed CV into a deployed portal with a RAG chat assistant."""

    def __init__(
        self,
        repository: PortalRepository,
        embedding_generator: EmbeddingGenerator,
        deployment_stager: DeploymentStager,
        chunker: Optional[ContentChunker] = None,
        template_service: Optional[TemplateService] = None,
        qr_service: Optional[QRCodeService] = None,
        step_timeout: Optional[float] = None,
        vector_store_dir: Optional[Path] = None,
    ):
        """Initialize the service.

        Args:
            repository: Job and portal persistence
            embedding_generator: Embeds profile chunks
            deployment_stager: Pushes the portal to Hugging Face
            chunker: Profile chunker (default settings if omitted)
            template_service: Template generation/customization (no design model if omitted)
            qr_service: QR record creation (backed by ``repository`` if omitted)
            step_timeout: Upper bound per step in seconds (default from config)
            vector_store_dir: Where serialized vector stores are written
        """
        self.repository = repository
        self.embedding_generator = embedding_generator
        self.deployment_stager = deployment_stager
        self.chunker = chunker or ContentChunker()
        self.template_service = template_service or TemplateService()
        self.qr_service = qr_service or QRCodeService(repository)
        self.step_timeout = step_timeout or config.STEP_TIMEOUT_SECONDS
        self.vector_store_dir = vector_store_dir or config.VECTOR_STORE_DIR

    async def generate_portal(
        self,
        job_id: str,
        config: Union[PortalOverrides, Dict[str, Any], None] = None,
        options: Union[GenerationOptions, Dict[str, Any], None] = None,
    ) -> PortalGenerationResult:
        """Run the pipeline for one job.

        Args:
            job_id: Job whose ``parsedData`` holds the CV
            config: Overrides for template, owner, features, privacy, visibility
            options: Generation options (force, skip, timeout, debug)

        Returns:
            PortalGenerationResult; never raises
        """
        started = time.monotonic()
        log = logger.bind(job_id=job_id)

        try:
            options = GenerationOptions.model_validate(options or {})
            overrides = PortalOverrides.model_validate(config or {})
        except PydanticValidationError as e:
            error = ValidationError("Invalid generation request", details=str(e))
            log.warning("portal_request_invalid", error=str(e))
            return PortalGenerationResult(
                success=False,
                error=error.to_portal_error(),
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )

        try:
            existing = self._existing_portal(job_id, options)
            if existing is not None:
                log.info("portal_already_exists", portal_id=existing.id)
                return PortalGenerationResult(
                    success=True,
                    portal_config=existing,
                    urls=existing.urls,
                    processing_time_ms=int((time.monotonic() - started) * 1000),
                    warnings=["Portal already exists; pass force_regenerate to rebuild it"],
                )

            portal_config = PortalConfig(
                id=PortalConfig.portal_id(job_id),
                job_id=job_id,
                user_id=overrides.user_id or job_id,
            )
            portal_config.transition_to(PortalStatus.GENERATING)

            run = _PipelineRun(
                job_id=job_id,
                options=options,
                overrides=overrides,
                portal_config=portal_config,
                started=started,
                deadline=started + options.timeout_ms / 1000 if options.timeout_ms else None,
            )
        except Exception as e:
            log.exception("portal_generation_setup_failed", error=str(e))
            error = e if isinstance(e, PortalGenerationError) else InternalError(str(e))
            return PortalGenerationResult(
                success=False,
                error=error.to_portal_error(),
                processing_time_ms=int((time.monotonic() - started) * 1000),
            )

        log.info(
            "portal_generation_started",
            force_regenerate=options.force_regenerate,
            skip_steps=[s.value for s in options.skip_steps],
            timeout_ms=options.timeout_ms,
        )

        try:
            for policy in _PIPELINE:
                self._check_deadline(run, policy)

                if policy.step is not None and policy.step in options.skip_steps:
                    log.info("portal_step_skipped", step=policy.name, reason="requested")
                    continue

                missing = [
                    dep for dep in STEP_DEPENDENCIES.get(policy.step, ())
                    if dep not in run.steps_completed
                ]
                if missing:
                    log.info(
                        "portal_step_skipped",
                        step=policy.name,
                        reason="dependency_not_completed",
                        missing=[m.value for m in missing],
                    )
                    continue

                error = await self._run_step(run, policy)
                if error is None:
                    if policy.step is not None:
                        run.steps_completed.append(policy.step)
                    continue

                if policy.fatal:
                    raise error

                run.warnings.append(f"{policy.name}: {error.message}")
                log.warning(
                    "portal_step_degraded",
                    step=policy.name,
                    code=error.code.value,
                    error=error.message,
                )

        except PortalGenerationError as error:
            return self._fail(run, error)
        except Exception as e:
            log.exception("portal_generation_internal_error", error=str(e))
            return self._fail(run, InternalError(f"Unexpected failure: {e}", details=type(e).__name__))

        log.info(
            "portal_generation_completed",
            processing_time_ms=run.elapsed_ms,
            steps_completed=len(run.steps_completed),
            warnings=len(run.warnings),
            portal_url=run.urls.portal if run.urls else None,
            rag_enabled=run.portal_config.rag_config.enabled,
        )

        return PortalGenerationResult(
            success=True,
            portal_config=run.portal_config,
            urls=run.urls,
            processing_time_ms=run.elapsed_ms,
            steps_completed=run.steps_completed,
            warnings=run.warnings or None,
            embeddings_generated=len(run.embeddings),
        )

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    def _existing_portal(self, job_id: str, options: GenerationOptions) -> Optional[PortalConfig]:
        if options.force_regenerate:
            return None
        document = self.repository.get_portal_config(PortalConfig.portal_id(job_id))
        if document is None:
            return None
        existing = PortalConfig.model_validate(document)
        return existing if existing.status is PortalStatus.COMPLETED else None

    def _check_deadline(self, run: _PipelineRun, policy: _StepPolicy) -> None:
        if run.deadline is not None and time.monotonic() >= run.deadline:
            raise PipelineTimeoutError(
                f"Generation exceeded {run.options.timeout_ms}ms before {policy.name}",
                step=policy.name,
            )

    async def _run_step(self, run: _PipelineRun, policy: _StepPolicy) -> Optional[PortalGenerationError]:
        """Run one step under the per-step timeout.

        Returns:
            None on success, otherwise the error classified by the step's policy
        """
        handler: Callable[[_PipelineRun], Awaitable[None]] = getattr(self, policy.handler)
        log = logger.bind(job_id=run.job_id, step=policy.name)
        detail = log.info if run.options.debug_mode else log.debug
        step_started = time.monotonic()

        detail("portal_step_started")

        try:
            async with asyncio.timeout(self.step_timeout):
                await handler(run)

        except asyncio.TimeoutError:
            message = f"{policy.name} timed out after {self.step_timeout}s"
            if policy.fatal:
                return PipelineTimeoutError(message, step=policy.name)
            return policy.error_class(message, step=policy.name)

        except PortalGenerationError as e:
            if e.step is None:
                e.step = policy.name
            return e

        except Exception as e:
            log.exception("portal_step_failed", error=str(e))
            wrapped = policy.error_class(f"{policy.name} failed: {e}", step=policy.name, details=type(e).__name__)
            wrapped.__cause__ = e
            return wrapped

        detail("portal_step_completed", duration_ms=int((time.monotonic() - step_started) * 1000))
        return None

    def _fail(self, run: _PipelineRun, error: PortalGenerationError) -> PortalGenerationResult:
        run.portal_config.transition_to(PortalStatus.FAILED)

        logger.error(
            "portal_generation_failed",
            job_id=run.job_id,
            step=error.step,
            code=error.code.value,
            error=error.message,
            processing_time_ms=run.elapsed_ms,
            steps_completed=len(run.steps_completed),
        )

        # Validation failures abort before any side effects
        if not isinstance(error, ValidationError):
            try:
                self.repository.update_job_fields(run.job_id, {
                    "portalData.status": PortalStatus.FAILED.value,
                    "portalData.error": error.message,
                    "portalData.lastUpdated": _now_iso(),
                })
            except Exception as e:
                logger.error("job_failure_status_update_failed", job_id=run.job_id, error=str(e))

        return PortalGenerationResult(
            success=False,
            error=error.to_portal_error(),
            processing_time_ms=run.elapsed_ms,
            steps_completed=run.steps_completed,
            warnings=run.warnings or None,
            embeddings_generated=len(run.embeddings),
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _validate_input(self, run: _PipelineRun) -> None:
        if not run.job_id or not run.job_id.strip():
            raise ValidationError("Job ID is required")

        job = self.repository.get_job(run.job_id)
        if job is None:
            raise ValidationError(f"Job {run.job_id} not found")

        parsed = job.get("parsedData")
        if not isinstance(parsed, dict):
            raise ValidationError(f"No parsed CV data found for job {run.job_id}")

        name = (parsed.get("personalInfo") or {}).get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("CV must contain personal information with name")

        run.job = job

    async def _extract_cv_data(self, run: _PipelineRun) -> None:
        try:
            run.profile = ParsedCV.model_validate(run.job["parsedData"])
        except PydanticValidationError as e:
            raise ValidationError("Parsed CV data is malformed", details=str(e)) from e

        if run.overrides.user_id is None and run.job.get("userId"):
            run.portal_config.user_id = run.job["userId"]

        logger.debug(
            "cv_data_extracted",
            job_id=run.job_id,
            experience=len(run.profile.experience),
            skills=len(run.profile.skill_list()),
            projects=len(run.profile.projects),
        )

    async def _configure_urls(self, run: _PipelineRun) -> None:
        run.urls = generate_portal_urls(run.profile.name)

    async def _generate_template(self, run: _PipelineRun) -> None:
        run.template = self.template_service.generate_template(
            run.profile, run.urls, requested=run.overrides.template
        )

    async def _customize_design(self, run: _PipelineRun) -> None:
        run.template, run.content = await self.template_service.customize_design(
            run.profile, run.template
        )

    async def _create_embeddings(self, run: _PipelineRun) -> None:
        core = self.chunker.chunk_core_sections(run.profile)
        supplementary = self.chunker.chunk(run.profile, covered_keys=self.chunker.covered_keys(core))
        run.chunks = core + supplementary

        if not run.chunks:
            raise EmbeddingProviderError("Profile produced no content to embed")

        # Any failed batch abandons RAG for this job; nothing is partially indexed
        run.embeddings = await self.embedding_generator.embed_chunks(run.chunks)

    async def _setup_vector_db(self, run: _PipelineRun) -> None:
        store = VectorStore(
            dimension=self.embedding_generator.dimension,
            embedding_model=self.embedding_generator.model,
        )
        try:
            store.add(run.embeddings)
        except ValueError as e:
            raise VectorStoreError(str(e)) from e

        if len(store) == 0:
            raise VectorStoreError("Vector store is empty")
        run.vector_store = store

    async def _build_rag_system(self, run: _PipelineRun) -> None:
        sample = run.vector_store.embeddings[0]
        if not run.vector_store.search(list(sample.vector), top_k=1, min_score=-1.0):
            raise RAGBuildError("Vector store returned no results for a stored vector")

        run.chat_config = build_chat_config(run.profile)
        try:
            run.vector_store_path = run.vector_store.save(
                store_path_for(run.portal_config.id, self.vector_store_dir)
            )
        except RuntimeError as e:
            raise RAGBuildError(str(e)) from e
        run.rag_ready = True

    async def _create_portal_config(self, run: _PipelineRun) -> None:
        profile = run.profile
        portal_config = run.portal_config

        features = run.overrides.features or FeatureToggles(
            enable_portfolio=has_portfolio(profile),
            enable_testimonials=bool(profile.references),
        )
        features.enable_chat = features.enable_chat and run.rag_ready

        portal_config.template = run.template
        portal_config.customization = PortalCustomization(
            personal_info=profile.personal_info,
            features=features,
            theme=dict(run.template.theme.colors),
            content=run.content,
        )
        portal_config.rag_config = RAGConfig(
            enabled=run.rag_ready,
            embeddings=EmbeddingProviderConfig(
                model=self.embedding_generator.model,
                dimensions=self.embedding_generator.dimension,
            ),
            chat_service=run.chat_config or build_chat_config(profile),
            vector_count=len(run.vector_store) if run.rag_ready else 0,
            vector_store_path=str(run.vector_store_path) if run.rag_ready else None,
        )
        if run.overrides.privacy is not None:
            portal_config.privacy = run.overrides.privacy

        space_name = generate_space_name(profile.name, run.job_id)
        portal_config.deployment = HuggingFaceSpaceConfig(
            space_name=space_name,
            visibility=run.overrides.visibility or "public",
            description=f"Professional web portal for {profile.name}",
        )
        portal_config.deployment.variables = space_variables(portal_config)
        portal_config.deployment.secrets = {"HF_TOKEN": config.SPACE_CHAT_API_KEY}
        portal_config.urls = run.urls
        portal_config.updated_at = datetime.now(timezone.utc)

    async def _deploy(self, run: _PipelineRun) -> None:
        result = await self.deployment_stager.deploy(
            run.portal_config, run.vector_store if run.rag_ready else None
        )
        if not result.success or not result.space_url:
            raise DeploymentError(result.error or "Deployment did not return a space URL")

        run.urls = apply_deployment_urls(result.space_url, result.api_url)
        run.portal_config.apply_urls(run.urls)

    async def _update_cv_document(self, run: _PipelineRun) -> None:
        updated = self.repository.update_job_fields(run.job_id, {
            "portalData.urls": run.urls.to_document(),
            "portalData.lastUpdated": _now_iso(),
            "metadata.hasWebPortal": True,
            "metadata.portalUrl": run.urls.portal,
        })
        if not updated:
            raise CVIntegrationError(f"Job {run.job_id} disappeared before its links were written")

    async def _generate_qr_codes(self, run: _PipelineRun) -> None:
        self.qr_service.generate_portal_codes(run.job_id, run.urls)

    async def _finalize(self, run: _PipelineRun) -> None:
        completed = run.portal_config.model_copy(deep=True)
        completed.urls = run.urls
        completed.transition_to(PortalStatus.COMPLETED)

        self.repository.update_job_fields(run.job_id, {
            "portalData.configId": completed.id,
            "portalData.status": completed.status.value,
            "portalData.lastUpdated": _now_iso(),
        })
        # Persisted last so a failed finalize never leaves a COMPLETED config behind
        self.repository.save_portal_config(
            completed.id, completed.job_id, completed.status.value, completed.to_document()
        )
        run.portal_config = completed


def build_portal_service(
    repository: Optional[PortalRepository] = None,
    llm: Optional[OllamaClient] = None,
) -> PortalGenerationService:
    """Wire a service with the default Ollama, Hugging Face and SQLite backends."""
    repository = repository or PortalRepository()
    repository.init_database()
    llm = llm or OllamaClient()

    return PortalGenerationService(
        repository=repository,
        embedding_generator=EmbeddingGenerator(provider=llm),
        deployment_stager=DeploymentStager(),
        template_service=TemplateService(llm=llm),
        qr_service=QRCodeService(repository),
    )
