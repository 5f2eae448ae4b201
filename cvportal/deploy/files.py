"""Builds the files committed to a portal's Hugging Face Space."""
import base64
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from cvportal import config
from cvportal.models import PortalConfig
from cvportal.rag.store import VectorStore

SPACE_REQUIREMENTS = """gradio>=4.44.0
numpy>=1.24.0
huggingface_hub>=0.24.0
sentence-transformers>=2.7.0
"""

_env = Environment(
    loader=FileSystemLoader(str(config.SPACE_TEMPLATES_DIR)),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
    autoescape=False,
)


@dataclass
class SpaceFile:
    path: str
    content: str

    def encoded(self) -> str:
        return base64.b64encode(self.content.encode("utf-8")).decode("ascii")


def _empty_vector_db(portal_config: PortalConfig) -> Dict[str, Any]:
    embeddings = portal_config.rag_config.embeddings
    return {
        "metadata": {
            "version": "1.0",
            "totalEmbeddings": 0,
            "dimensions": embeddings.dimensions,
            "embeddingModel": embeddings.model,
        },
        "embeddings": [],
        "index": {"type": "flat_inner_product", "metric": "cosine", "normalized": True},
        "searchConfig": {},
    }


def build_space_files(
    portal_config: PortalConfig, vector_store: Optional[VectorStore] = None
) -> List[SpaceFile]:
    """Render app entrypoint, serialized vector store, config, requirements and readme."""
    info = portal_config.customization.personal_info
    name = (info.name if info else None) or "Professional"
    rag = portal_config.rag_config

    vector_db = vector_store.to_dict() if vector_store is not None else _empty_vector_db(portal_config)
    vector_db["searchConfig"] = {
        "topK": rag.query_processing.top_k,
        "minScore": rag.query_processing.min_score,
        "maxTokens": rag.query_processing.max_tokens,
    }

    runtime_config = {
        "personalInfo": info.to_document() if info else None,
        "template": portal_config.template.id if portal_config.template else None,
        "chatConfig": rag.chat_service.to_document(),
        "ragEnabled": rag.enabled,
        "urls": portal_config.urls.to_document() if portal_config.urls else None,
        "links": portal_config.template.config.get("links") if portal_config.template else None,
    }

    readme = _env.get_template("README.md.j2").render(
        name=name,
        title=(info.title if info else None) or "professional",
        summary=info.summary if info else None,
        sdk=portal_config.deployment.sdk if portal_config.deployment else "gradio",
        has_projects=portal_config.customization.features.enable_portfolio,
        rag_enabled=rag.enabled,
        vector_count=rag.vector_count,
        embedding_model=rag.embeddings.model,
        dimensions=rag.embeddings.dimensions,
    )

    return [
        SpaceFile("app.py", _env.get_template("app.py.j2").render(name=name)),
        SpaceFile("vector_db.json", json.dumps(vector_db)),
        SpaceFile("requirements.txt", SPACE_REQUIREMENTS),
        SpaceFile("portal_config.json", json.dumps(runtime_config, indent=2)),
        SpaceFile("README.md", readme),
    ]
