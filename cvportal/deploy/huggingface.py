"""Hugging Face Spaces deployment via the Hub REST API.

Handles:
- Namespace resolution (token owner unless configured)
- Space creation (an existing space is reused)
- Single-commit upload of the generated files (overwrites on redeploy)
- Space variables and secrets
- Runtime stage polling until the space runs
"""
import asyncio
import json
from typing import Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from cvportal import config
from cvportal.deploy.files import SpaceFile, build_space_files
from cvportal.errors import DeploymentError
from cvportal.models import DeploymentResult, HuggingFaceSpaceConfig, PortalConfig
from cvportal.portal.urls import apply_deployment_urls, space_host_url
from cvportal.rag.store import VectorStore

logger = structlog.get_logger()

RUNNING_STAGE = "RUNNING"


class DeploymentStager:
    """Pushes a generated portal to a Hugging Face Space. Best-effort: never raises."""

    def __init__(
        self,
        token: str = None,
        namespace: str = None,
        api_url: str = None,
        poll_attempts: int = None,
        poll_interval: float = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the stager.

        Args:
            token: Hub access token with write scope (default from config)
            namespace: User or organization owning the space (default: token owner)
            api_url: Hub base URL (default from config)
            poll_attempts: Runtime status checks before giving up
            poll_interval: Seconds between status checks
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used to stub the Hub in tests)
            sleep: Awaitable sleep function (injected in tests)
        """
        self.token = token if token is not None else config.HUGGINGFACE_TOKEN
        self.namespace = namespace if namespace is not None else config.HUGGINGFACE_NAMESPACE
        self.api_url = (api_url or config.HUGGINGFACE_API_URL).rstrip("/")
        self.poll_attempts = poll_attempts or config.DEPLOY_POLL_ATTEMPTS
        self.poll_interval = config.DEPLOY_POLL_INTERVAL if poll_interval is None else poll_interval
        self.timeout = timeout or config.HUGGINGFACE_TIMEOUT
        self._transport = transport
        self._sleep = sleep

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.api_url,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.token}"},
            transport=self._transport,
        )

    async def deploy(
        self, portal_config: PortalConfig, vector_store: Optional[VectorStore] = None
    ) -> DeploymentResult:
        """Deploy a portal.

        Args:
            portal_config: Portal with its ``deployment`` descriptor filled in
            vector_store: Store to ship as ``vector_db.json`` (None ships an empty one)

        Returns:
            DeploymentResult; failures are reported, not raised
        """
        space = portal_config.deployment
        if space is None:
            return DeploymentResult(success=False, error="Portal has no deployment target")

        if not self.token:
            logger.warning("huggingface_deploy_skipped", reason="token_not_configured")
            return DeploymentResult(success=False, error="Hugging Face token not configured")

        stage = "resolve_namespace"
        try:
            async with self._client() as client:
                owner = self.namespace or await self._whoami(client)
                repo_id = f"{owner}/{space.space_name}"

                stage = "create_space"
                created = await self._create_space(client, space, owner)

                stage = "upload_files"
                space_url = space_host_url(owner, space.space_name)
                deployed = portal_config.model_copy(deep=True)
                deployed.apply_urls(apply_deployment_urls(space_url))
                files = build_space_files(deployed, vector_store)
                await self._upload_files(client, repo_id, files)

                stage = "configure_environment"
                await self._configure_environment(client, repo_id, space)

                stage = "poll_status"
                runtime_stage = await self._wait_until_running(client, repo_id)

        except Exception as e:
            error = f"{stage} failed: {e}"
            logger.error(
                "huggingface_deploy_failed",
                space_name=space.space_name,
                stage=stage,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeploymentResult(success=False, error=error, metadata={"stage": stage})

        logger.info("huggingface_deploy_completed", repo_id=repo_id, space_url=space_url)

        return DeploymentResult(
            success=True,
            space_url=space_url,
            api_url=f"{space_url}/api",
            metadata={
                "repoId": repo_id,
                "hubUrl": f"{self.api_url}/spaces/{repo_id}",
                "created": created,
                "filesUploaded": len(files),
                "stage": runtime_stage,
            },
        )

    async def _whoami(self, client: httpx.AsyncClient) -> str:
        response = await client.get("/api/whoami-v2")
        response.raise_for_status()
        name = response.json().get("name")
        if not name:
            raise DeploymentError("Token owner could not be resolved")
        return name

    async def _create_space(
        self, client: httpx.AsyncClient, space: HuggingFaceSpaceConfig, owner: str
    ) -> bool:
        """Create the space. Returns False if it already existed."""
        payload = {
            "type": "space",
            "name": space.space_name,
            "private": space.visibility != "public",
            "sdk": space.sdk,
            "hardware": space.hardware,
        }
        if self.namespace:
            payload["organization"] = owner

        response = await client.post("/api/repos/create", json=payload)
        if response.status_code == 409:
            logger.info("huggingface_space_exists", space_name=space.space_name)
            return False
        response.raise_for_status()

        logger.info("huggingface_space_created", space_name=space.space_name, owner=owner)
        return True

    async def _upload_files(
        self, client: httpx.AsyncClient, repo_id: str, files: List[SpaceFile]
    ) -> None:
        lines = [{"key": "header", "value": {"summary": "Deploy CV portal", "description": ""}}]
        lines.extend(
            {
                "key": "file",
                "value": {"path": f.path, "content": f.encoded(), "encoding": "base64"},
            }
            for f in files
        )
        body = "\n".join(json.dumps(line) for line in lines)

        response = await client.post(
            f"/api/spaces/{repo_id}/commit/main",
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        response.raise_for_status()
        logger.info("huggingface_files_uploaded", repo_id=repo_id, file_count=len(files))

    async def _configure_environment(
        self, client: httpx.AsyncClient, repo_id: str, space: HuggingFaceSpaceConfig
    ) -> None:
        for key, value in space.variables.items():
            response = await client.post(
                f"/api/spaces/{repo_id}/variables", json={"key": key, "value": value}
            )
            response.raise_for_status()

        for key, value in space.secrets.items():
            if not value:
                continue
            response = await client.post(
                f"/api/spaces/{repo_id}/secrets", json={"key": key, "value": value}
            )
            response.raise_for_status()

        logger.info(
            "huggingface_environment_configured",
            repo_id=repo_id,
            variables=sorted(space.variables),
            secret_count=sum(1 for v in space.secrets.values() if v),
        )

    async def _wait_until_running(self, client: httpx.AsyncClient, repo_id: str) -> str:
        """Poll the runtime stage.

        Raises:
            DeploymentError: On an error stage or when attempts run out
        """
        stage = "UNKNOWN"
        for attempt in range(1, self.poll_attempts + 1):
            response = await client.get(f"/api/spaces/{repo_id}/runtime")
            response.raise_for_status()
            stage = response.json().get("stage", "UNKNOWN")

            logger.debug("huggingface_runtime_polled", repo_id=repo_id, attempt=attempt, stage=stage)

            if stage == RUNNING_STAGE:
                return stage
            if stage.endswith("_ERROR"):
                raise DeploymentError(f"Space entered {stage}")

            if attempt < self.poll_attempts:
                await self._sleep(self.poll_interval)

        raise DeploymentError(
            f"Space not running after {self.poll_attempts} status checks (last stage: {stage})"
        )


def space_variables(portal_config: PortalConfig) -> Dict[str, str]:
    """Public environment variables for the deployed chat app."""
    info = portal_config.customization.personal_info
    return {
        "PROFESSIONAL_NAME": (info.name if info else None) or "Professional",
        "PROFESSIONAL_TITLE": (info.title if info else None) or "professional",
        "CHAT_MODEL": config.SPACE_CHAT_MODEL,
        "EMBEDDING_MODEL": "sentence-transformers/all-MiniLM-L6-v2",
    }
