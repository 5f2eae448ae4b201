"""Quart application exposing portal generation and the portal chat assistant."""
from typing import Optional

import structlog
from quart import Quart, jsonify, request

from cvportal import config
from cvportal.db import PortalRepository
from cvportal.errors import PortalErrorCode
from cvportal.llm_client import OllamaClient
from cvportal.log import configure_logging
from cvportal.models import PortalConfig, PortalGenerationResult
from cvportal.portal.pipeline import PortalGenerationService, build_portal_service
from cvportal.rag.chat import ChatService
from cvportal.rag.retriever import RAGQueryProcessor
from cvportal.rag.store import VectorStore

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 2000

_ERROR_STATUS = {
    PortalErrorCode.VALIDATION_ERROR: 400,
    PortalErrorCode.TIMEOUT: 504,
}


def _result_status(result: PortalGenerationResult) -> int:
    if result.success:
        return 200
    return _ERROR_STATUS.get(result.error.code, 500) if result.error else 500


def create_app(
    service: Optional[PortalGenerationService] = None,
    llm: Optional[OllamaClient] = None,
) -> Quart:
    """Create the web app.

    Args:
        service: Generation service (built from config on startup if omitted)
        llm: Chat client for the assistant (default Ollama client)
    """
    app = Quart(__name__)
    app.config["portal_service"] = service
    app.config["llm"] = llm or OllamaClient()

    @app.before_serving
    async def startup():
        configure_logging()
        if app.config["portal_service"] is None:
            app.config["portal_service"] = build_portal_service(llm=app.config["llm"])
        logger.info("app_started", data_dir=str(config.DATA_DIR))

    def portal_service() -> PortalGenerationService:
        return app.config["portal_service"]

    def repository() -> PortalRepository:
        return portal_service().repository

    @app.route("/api/jobs/<job_id>", methods=["PUT"])
    async def save_job(job_id: str):
        """Store a job document.

        Expects JSON body:
        {
            "parsedData": {...},   // ParsedCV
            "userId": "optional owner id"
        }
        """
        data = await request.get_json()
        if not isinstance(data, dict) or not isinstance(data.get("parsedData"), dict):
            return jsonify({"error": "Missing 'parsedData' in request body"}), 400

        repository().save_job(job_id, data)
        logger.info("job_saved", job_id=job_id)
        return jsonify({"jobId": job_id}), 201

    @app.route("/api/portals/<job_id>", methods=["POST"])
    async def generate(job_id: str):
        """Generate (or regenerate) the portal for a job.

        Expects optional JSON body:
        {
            "config": {"template": "technical-expert", ...},
            "options": {"forceRegenerate": true, "skipSteps": [...], "timeoutMs": 60000}
        }
        """
        data = await request.get_json(silent=True) or {}

        result = await portal_service().generate_portal(
            job_id, config=data.get("config"), options=data.get("options")
        )
        return jsonify(result.to_document()), _result_status(result)

    @app.route("/api/portals/<job_id>", methods=["GET"])
    async def get_portal(job_id: str):
        document = repository().get_portal_config(PortalConfig.portal_id(job_id))
        if document is None:
            return jsonify({"error": "Portal not found"}), 404
        return jsonify(document)

    @app.route("/api/portals/<job_id>/chat", methods=["POST"])
    async def chat(job_id: str):
        """Ask the portal's assistant a question.

        Expects JSON body: {"message": "user question"}

        Returns JSON: {"answer": "...", "sources": [...], "usedContext": bool}
        """
        data = await request.get_json(silent=True)
        if not data or "message" not in data:
            return jsonify({"error": "Missing 'message' in request body"}), 400

        message = str(data["message"]).strip()
        if not message:
            return jsonify({"error": "Message cannot be empty"}), 400
        if len(message) > MAX_MESSAGE_LENGTH:
            return jsonify({"error": f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"}), 400

        document = repository().get_portal_config(PortalConfig.portal_id(job_id))
        if document is None:
            return jsonify({"error": "Portal not found"}), 404

        portal = PortalConfig.model_validate(document)
        rag = portal.rag_config
        if not rag.enabled or not rag.vector_store_path:
            return jsonify({"error": "Chat is not available for this portal"}), 409

        try:
            store = VectorStore.load(rag.vector_store_path)
            service = portal_service()
            chat_service = ChatService(
                query_processor=RAGQueryProcessor(service.embedding_generator, rag.query_processing),
                llm=app.config["llm"],
                chat_config=rag.chat_service,
                professional_name=(portal.customization.personal_info.name
                                   if portal.customization.personal_info else "this professional"),
            )
            answer = await chat_service.answer(message, store)

        except Exception as e:
            logger.error("chat_endpoint_error", job_id=job_id, error=str(e), error_type=type(e).__name__)
            return jsonify({
                "error": "An error occurred processing your request. Please try again."
            }), 500

        logger.info("chat_response_sent", job_id=job_id, used_context=answer.used_context)
        return jsonify(answer.to_dict())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe: Ollama reachable and the chat model available."""
        checks = {"status": "healthy", "ollama": False, "models": False}

        try:
            models = await app.config["llm"].list_models()
            checks["ollama"] = True

            if config.CHAT_MODEL in models:
                checks["models"] = True
            else:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing chat model: {config.CHAT_MODEL}"

            return jsonify(checks), 200 if checks["status"] == "healthy" else 503

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)
            return jsonify(checks), 503

    @app.route("/health/live")
    async def health_live():
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
