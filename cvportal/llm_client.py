"""Ollama client wrapper for chat completions and batch embeddings."""
import httpx
from typing import List, Dict, Optional
import structlog

from cvportal import config

logger = structlog.get_logger()


class OllamaClient:
    """Async client for interacting with Ollama API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used to stub the API in tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self._transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Upper bound on generated tokens

        Returns:
            The assistant message content

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.CHAT_MODEL

        payload = {"model": model, "messages": messages, "stream": False}
        options = {}
        if temperature is not None:
            options["temperature"] = temperature
        if max_tokens is not None:
            options["num_predict"] = max_tokens
        if options:
            payload["options"] = options

        try:
            async with self._client() as client:
                logger.info("ollama_chat_request", model=model, message_count=len(messages))

                response = await client.post("/api/chat", json=payload)
                response.raise_for_status()

                content = response.json().get("message", {}).get("content", "")
                logger.info("ollama_chat_response", model=model, response_length=len(content))
                return content

        except httpx.HTTPError as e:
            logger.error(
                "ollama_chat_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def embed(self, texts: List[str], model: str = None) -> List[List[float]]:
        """Embed a batch of texts in one request.

        Args:
            texts: Texts to embed
            model: Embedding model (defaults to config.EMBEDDING_MODEL)

        Returns:
            One vector per input text, in input order

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        try:
            async with self._client(timeout=config.EMBEDDING_TIMEOUT) as client:
                logger.debug("ollama_embedding_request", model=model, batch_size=len(texts))

                response = await client.post("/api/embed", json={"model": model, "input": texts})
                response.raise_for_status()

                embeddings = response.json().get("embeddings", [])
                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    count=len(embeddings),
                    dimension=len(embeddings[0]) if embeddings else 0,
                )
                return embeddings

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), model=model)
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                return [m["name"] for m in response.json().get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
