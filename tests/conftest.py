"""Shared fixtures and fakes for the unit tests."""
import asyncio
import hashlib
import os
import tempfile

# Config creates its data directory on import; keep it out of the source tree
os.environ.setdefault("CVPORTAL_DATA_DIR", tempfile.mkdtemp(prefix="cvportal-tests-"))

import pytest

from cvportal.db import PortalRepository
from cvportal.models import DeploymentResult
from cvportal.portal.pipeline import PortalGenerationService
from cvportal.rag.embeddings import EmbeddingGenerator

TEST_DIMENSION = 8


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeEmbeddingProvider:
    """Deterministic hash-based vectors; records every batch it receives."""

    def __init__(self, dimension=TEST_DIMENSION):
        self.dimension = dimension
        self.calls = []

    def vector(self, text):
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[: self.dimension]]

    async def embed(self, texts, model=None):
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]


class ConstantEmbeddingProvider(FakeEmbeddingProvider):
    """Every text maps to the same vector, so every search hit scores 1.0."""

    def vector(self, text):
        return [1.0] * self.dimension


class ScriptedEmbeddingProvider(FakeEmbeddingProvider):
    """Returns pre-set vectors for known texts."""

    def __init__(self, vectors, dimension=TEST_DIMENSION):
        super().__init__(dimension)
        self.vectors = vectors

    def vector(self, text):
        return list(self.vectors[text])


class FailingEmbeddingProvider:
    def __init__(self, message="provider down"):
        self.message = message
        self.calls = 0

    async def embed(self, texts, model=None):
        self.calls += 1
        raise RuntimeError(self.message)


class FakeLLM:
    """Chat client returning a canned reply."""

    def __init__(self, reply="John has five years of Python experience."):
        self.reply = reply
        self.calls = []

    async def chat(self, messages, model=None, temperature=None, max_tokens=None):
        self.calls.append({"messages": messages, "model": model, "temperature": temperature})
        return self.reply

    async def list_models(self):
        return ["gemma3:12b"]


class FailingLLM:
    async def chat(self, messages, model=None, temperature=None, max_tokens=None):
        raise RuntimeError("model unavailable")


class FakeStager:
    """Deployment stager returning a fixed result."""

    def __init__(self, result=None, delay=0.0):
        self.result = result or DeploymentResult(success=False, error="offline")
        self.delay = delay
        self.calls = []

    async def deploy(self, portal_config, vector_store=None):
        self.calls.append({"portal_config": portal_config, "vector_store": vector_store})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def minimal_cv():
    return {
        "personalInfo": {"name": "John Doe", "title": "Software Engineer", "email": "john@example.com"},
        "experience": [
            {
                "company": "Acme Corp",
                "position": "Senior Engineer",
                "duration": "2019 - 2024",
                "description": "Built backend services in Python.",
                "technologies": ["Python", "AWS"],
            }
        ],
        "skills": ["Python", "AWS"],
    }


@pytest.fixture
def full_cv(minimal_cv):
    return {
        **minimal_cv,
        "summary": "Backend engineer focused on reliable distributed systems.",
        "education": [{"institution": "MIT", "degree": "BSc", "field": "Computer Science"}],
        "achievements": ["Cut infrastructure costs by 30%"],
        "projects": [
            {"name": "Portal Builder", "description": "Generates portfolio sites", "technologies": ["Python"]},
            {"description": "Unnamed side project"},
        ],
        "certifications": [
            {"name": "AWS Certified Solutions Architect", "issuer": "Amazon Web Services", "date": "2023"}
        ],
        "languages": [{"language": "English", "proficiency": "Native"}],
        "customSections": {"Volunteering": "Mentor at Code Club"},
    }


@pytest.fixture
def repository(tmp_path):
    repo = PortalRepository(tmp_path / "test.sqlite")
    repo.init_database()
    return repo


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def make_generator(fake_sleep):
    def _make(provider=None, **kwargs):
        kwargs.setdefault("dimension", TEST_DIMENSION)
        kwargs.setdefault("rate_limit_delay_ms", 0)
        kwargs.setdefault("retry_attempts", 1)
        return EmbeddingGenerator(
            provider or FakeEmbeddingProvider(),
            model="fake-embed",
            sleep=fake_sleep,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_service(repository, make_generator, tmp_path):
    def _make(provider=None, stager=None, **kwargs):
        return PortalGenerationService(
            repository=repository,
            embedding_generator=make_generator(provider),
            deployment_stager=stager or FakeStager(),
            vector_store_dir=tmp_path / "stores",
            **kwargs,
        )
    return _make
