"""Pydantic models for profiles, portal configuration and pipeline results.

Documents are stored with camelCase keys (the format produced by the CV
parser), so every model uses a camelCase alias generator and accepts either
spelling on input.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cvportal import config
from cvportal.errors import InternalError, PortalError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self) -> Dict[str, Any]:
        """Serialize to a JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Parsed CV
# ---------------------------------------------------------------------------


class PersonalInfo(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    linkedin: Optional[str] = None
    website: Optional[str] = None


class Experience(CamelModel):
    company: Optional[str] = None
    position: Optional[str] = None
    duration: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    description: Optional[str] = None
    achievements: List[str] = Field(default_factory=list)
    technologies: List[str] = Field(default_factory=list)


class Education(CamelModel):
    institution: Optional[str] = None
    degree: Optional[str] = None
    field: Optional[str] = None
    graduation_date: Optional[str] = None


class Project(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    url: Optional[str] = None


class Certification(CamelModel):
    name: Optional[str] = None
    issuer: Optional[str] = None
    date: Optional[str] = None


class LanguageSkill(CamelModel):
    language: Optional[str] = None
    proficiency: Optional[str] = None


class ParsedCV(CamelModel):
    """Structured CV as produced by the upstream parser."""

    personal_info: Optional[PersonalInfo] = None
    summary: Optional[str] = None
    experience: List[Experience] = Field(default_factory=list)
    education: List[Education] = Field(default_factory=list)
    skills: Union[List[str], Dict[str, List[str]]] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    certifications: List[Certification] = Field(default_factory=list)
    languages: List[LanguageSkill] = Field(default_factory=list)
    custom_sections: Dict[str, Any] = Field(default_factory=dict)
    references: List[Any] = Field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.personal_info.name if self.personal_info else None

    def skill_list(self) -> List[str]:
        """Flatten skills whether they are a list or grouped by category."""
        if isinstance(self.skills, dict):
            return [skill for group in self.skills.values() for skill in group]
        return list(self.skills)


# ---------------------------------------------------------------------------
# Pipeline steps and status
# ---------------------------------------------------------------------------


class PortalStatus(str, Enum):
    PENDING = "PENDING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_ALLOWED_TRANSITIONS = {
    PortalStatus.PENDING: {PortalStatus.GENERATING},
    PortalStatus.GENERATING: {PortalStatus.COMPLETED, PortalStatus.FAILED},
    PortalStatus.COMPLETED: set(),
    PortalStatus.FAILED: set(),
}


class PortalGenerationStep(str, Enum):
    """Pipeline steps, declared in execution order."""

    VALIDATE_INPUT = "VALIDATE_INPUT"
    EXTRACT_CV_DATA = "EXTRACT_CV_DATA"
    CONFIGURE_URLS = "CONFIGURE_URLS"
    GENERATE_TEMPLATE = "GENERATE_TEMPLATE"
    CUSTOMIZE_DESIGN = "CUSTOMIZE_DESIGN"
    CREATE_EMBEDDINGS = "CREATE_EMBEDDINGS"
    SETUP_VECTOR_DB = "SETUP_VECTOR_DB"
    BUILD_RAG_SYSTEM = "BUILD_RAG_SYSTEM"
    DEPLOY_TO_HUGGINGFACE = "DEPLOY_TO_HUGGINGFACE"
    UPDATE_CV_DOCUMENT = "UPDATE_CV_DOCUMENT"
    GENERATE_QR_CODES = "GENERATE_QR_CODES"
    FINALIZE_PORTAL = "FINALIZE_PORTAL"

    @property
    def order(self) -> int:
        return list(PortalGenerationStep).index(self)


FATAL_STEPS = frozenset({
    PortalGenerationStep.VALIDATE_INPUT,
    PortalGenerationStep.EXTRACT_CV_DATA,
    PortalGenerationStep.CONFIGURE_URLS,
    PortalGenerationStep.GENERATE_TEMPLATE,
    PortalGenerationStep.FINALIZE_PORTAL,
})

# Each RAG step consumes what the previous one produced.
STEP_DEPENDENCIES = {
    PortalGenerationStep.SETUP_VECTOR_DB: (PortalGenerationStep.CREATE_EMBEDDINGS,),
    PortalGenerationStep.BUILD_RAG_SYSTEM: (PortalGenerationStep.SETUP_VECTOR_DB,),
}


# ---------------------------------------------------------------------------
# Portal configuration
# ---------------------------------------------------------------------------


class ApiUrls(CamelModel):
    chat: str
    contact: str
    analytics: str


class PortalUrls(CamelModel):
    portal: str
    chat: str
    contact: str
    download: str
    qr_menu: str
    api: ApiUrls


class PortalTheme(CamelModel):
    id: str
    name: str
    colors: Dict[str, Any] = Field(default_factory=dict)
    typography: Dict[str, Any] = Field(default_factory=dict)


class PortalTemplate(CamelModel):
    id: str
    name: str
    description: str = ""
    category: str
    version: str = "1.0"
    is_premium: bool = False
    theme: PortalTheme
    config: Dict[str, Any] = Field(default_factory=dict)
    required_sections: List[str] = Field(default_factory=list)
    optional_sections: List[str] = Field(default_factory=list)


class FeatureToggles(CamelModel):
    enable_chat: bool = True
    enable_contact_form: bool = True
    enable_portfolio: bool = False
    enable_testimonials: bool = False
    enable_analytics: bool = True
    enable_cv_download: bool = True
    enable_dark_mode: bool = True


class PortalCustomization(CamelModel):
    personal_info: Optional[PersonalInfo] = None
    features: FeatureToggles = Field(default_factory=FeatureToggles)
    theme: Dict[str, Any] = Field(default_factory=dict)
    content: Dict[str, Any] = Field(default_factory=dict)


class EmbeddingProviderConfig(CamelModel):
    provider: str = config.EMBEDDING_PROVIDER
    model: str = config.EMBEDDING_MODEL
    dimensions: int = Field(default=config.EMBEDDING_DIMENSION, gt=0)


class ChatServiceConfig(CamelModel):
    """Settings the deployed chat assistant runs with."""

    provider: str = "ollama"
    model: str = config.CHAT_MODEL
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1200, gt=0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    system_prompt: str = ""
    no_context_reply: str = ""


class QueryProcessorConfig(CamelModel):
    top_k: int = Field(default=config.RETRIEVAL_TOP_K, gt=0)
    min_score: float = Field(default=config.RETRIEVAL_MIN_SCORE, ge=-1.0, le=1.0)
    max_tokens: int = Field(default=config.MAX_CONTEXT_TOKENS, gt=0)
    max_sources: int = Field(default=config.MAX_CONTEXT_SOURCES, ge=0, le=config.MAX_CONTEXT_SOURCES)


class RAGConfig(CamelModel):
    enabled: bool = False
    embeddings: EmbeddingProviderConfig = Field(default_factory=EmbeddingProviderConfig)
    chat_service: ChatServiceConfig = Field(default_factory=ChatServiceConfig)
    query_processing: QueryProcessorConfig = Field(default_factory=QueryProcessorConfig)
    vector_count: int = 0
    vector_store_path: Optional[str] = None


class HuggingFaceSpaceConfig(CamelModel):
    space_name: str
    visibility: str = "public"
    sdk: str = "gradio"
    hardware: str = "cpu-basic"
    description: str = ""
    variables: Dict[str, str] = Field(default_factory=dict)
    secrets: Dict[str, str] = Field(default_factory=dict, exclude=True)


class AnalyticsCounters(CamelModel):
    total_views: int = 0
    unique_visitors: int = 0
    chat_sessions: int = 0
    contact_submissions: int = 0
    cv_downloads: int = 0
    qr_scans: int = 0


class PrivacySettings(CamelModel):
    level: str = "public"
    mask_contact_info: bool = False
    mask_companies: List[str] = Field(default_factory=list)
    analytics_consent: bool = True


class PortalConfig(CamelModel):
    """One portal per generation job, keyed ``portal-{job_id}``."""

    id: str
    job_id: str
    user_id: str
    template: Optional[PortalTemplate] = None
    customization: PortalCustomization = Field(default_factory=PortalCustomization)
    rag_config: RAGConfig = Field(default_factory=RAGConfig)
    deployment: Optional[HuggingFaceSpaceConfig] = None
    status: PortalStatus = PortalStatus.PENDING
    urls: Optional[PortalUrls] = None
    analytics: AnalyticsCounters = Field(default_factory=AnalyticsCounters)
    privacy: PrivacySettings = Field(default_factory=PrivacySettings)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @staticmethod
    def portal_id(job_id: str) -> str:
        return f"portal-{job_id}"

    def apply_urls(self, urls: PortalUrls) -> None:
        """Point the portal and its template links at ``urls``."""
        self.urls = urls
        if self.template is not None:
            self.template.config = {**self.template.config, "links": urls.to_document()}
        self.updated_at = _utcnow()

    def transition_to(self, status: PortalStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InternalError(
                f"Invalid portal status transition {self.status.value} -> {status.value}"
            )
        self.status = status
        self.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# Pipeline options and results
# ---------------------------------------------------------------------------


class PortalOverrides(CamelModel):
    """Caller-supplied settings applied on top of the generated portal config."""

    template: Optional[Union[str, PortalTemplate]] = None
    user_id: Optional[str] = None
    features: Optional[FeatureToggles] = None
    privacy: Optional[PrivacySettings] = None
    visibility: Optional[str] = None


class GenerationOptions(CamelModel):
    force_regenerate: bool = False
    skip_steps: List[PortalGenerationStep] = Field(default_factory=list)
    timeout_ms: Optional[int] = Field(default=None, gt=0)
    debug_mode: bool = False

    @field_validator("skip_steps")
    @classmethod
    def _only_non_fatal(cls, steps: List[PortalGenerationStep]) -> List[PortalGenerationStep]:
        fatal = [step.value for step in steps if step in FATAL_STEPS]
        if fatal:
            raise ValueError(f"Fatal steps cannot be skipped: {', '.join(fatal)}")

        # A skipped RAG step takes the steps that consume its output with it
        expanded = set(steps)
        for step in list(PortalGenerationStep):
            if any(dep in expanded for dep in STEP_DEPENDENCIES.get(step, ())):
                expanded.add(step)
        return sorted(expanded, key=lambda s: s.order)


class DeploymentResult(CamelModel):
    success: bool
    space_url: Optional[str] = None
    api_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PortalGenerationResult(CamelModel):
    success: bool
    portal_config: Optional[PortalConfig] = None
    urls: Optional[PortalUrls] = None
    error: Optional[PortalError] = None
    processing_time_ms: int = 0
    steps_completed: List[PortalGenerationStep] = Field(default_factory=list)
    warnings: Optional[List[str]] = None
    embeddings_generated: int = 0
