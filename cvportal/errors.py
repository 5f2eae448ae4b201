"""Error types raised by the portal generation pipeline.

Each exception class fixes its own error code, category and recoverability,
so the orchestrator classifies failures by type at the point they are raised
rather than by inspecting message text.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    GENERATION = "generation"
    RAG = "rag"
    DEPLOYMENT = "deployment"
    INTEGRATION = "integration"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class PortalErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TEMPLATE_GENERATION_FAILED = "TEMPLATE_GENERATION_FAILED"
    TEMPLATE_CUSTOMIZATION_FAILED = "TEMPLATE_CUSTOMIZATION_FAILED"
    EMBEDDING_PROVIDER_ERROR = "EMBEDDING_PROVIDER_ERROR"
    VECTOR_DB_ERROR = "VECTOR_DB_ERROR"
    RAG_SYSTEM_FAILED = "RAG_SYSTEM_FAILED"
    DEPLOYMENT_ERROR = "DEPLOYMENT_ERROR"
    CV_INTEGRATION_FAILED = "CV_INTEGRATION_FAILED"
    QR_UPDATE_ERROR = "QR_UPDATE_ERROR"
    TIMEOUT = "TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PortalError(BaseModel):
    """Structured error returned at the pipeline boundary."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: PortalErrorCode
    message: str
    recoverable: bool
    category: ErrorCategory
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    step: Optional[str] = None
    details: Optional[str] = None


class PortalGenerationError(Exception):
    """Base class for every failure the pipeline knows how to report."""

    code = PortalErrorCode.INTERNAL_ERROR
    category = ErrorCategory.INTERNAL
    recoverable = False

    def __init__(self, message: str, step: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.details = details

    def to_portal_error(self) -> PortalError:
        return PortalError(
            code=self.code,
            message=self.message,
            recoverable=self.recoverable,
            category=self.category,
            step=self.step,
            details=self.details,
        )


class ValidationError(PortalGenerationError):
    """Required input is missing or malformed. Raised before any side effects."""

    code = PortalErrorCode.VALIDATION_ERROR
    category = ErrorCategory.VALIDATION


class TemplateGenerationError(PortalGenerationError):
    code = PortalErrorCode.TEMPLATE_GENERATION_FAILED
    category = ErrorCategory.GENERATION


class TemplateCustomizationError(PortalGenerationError):
    code = PortalErrorCode.TEMPLATE_CUSTOMIZATION_FAILED
    category = ErrorCategory.GENERATION
    recoverable = True


class EmbeddingProviderError(PortalGenerationError):
    """The embedding provider failed after the batch retry budget ran out."""

    code = PortalErrorCode.EMBEDDING_PROVIDER_ERROR
    category = ErrorCategory.RAG
    recoverable = True


class VectorStoreError(PortalGenerationError):
    code = PortalErrorCode.VECTOR_DB_ERROR
    category = ErrorCategory.RAG
    recoverable = True


class RAGBuildError(PortalGenerationError):
    code = PortalErrorCode.RAG_SYSTEM_FAILED
    category = ErrorCategory.RAG
    recoverable = True


class DeploymentError(PortalGenerationError):
    code = PortalErrorCode.DEPLOYMENT_ERROR
    category = ErrorCategory.DEPLOYMENT
    recoverable = True


class CVIntegrationError(PortalGenerationError):
    code = PortalErrorCode.CV_INTEGRATION_FAILED
    category = ErrorCategory.INTEGRATION
    recoverable = True


class QRUpdateError(PortalGenerationError):
    code = PortalErrorCode.QR_UPDATE_ERROR
    category = ErrorCategory.INTEGRATION
    recoverable = True


class PipelineTimeoutError(PortalGenerationError):
    """The wall-clock budget for a run or a single step ran out."""

    code = PortalErrorCode.TIMEOUT
    category = ErrorCategory.TIMEOUT


class InternalError(PortalGenerationError):
    """Catch-all for unexpected failures."""
