"""Quart application exposing ingest, query, stats and reset over HTTP."""
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as RequestValidationError
from quart import Quart, current_app, jsonify, request

from docqa import config
from docqa.context import AppContext, build_context
from docqa.errors import (
    CapabilityError,
    DimensionMismatchError,
    EmptyDocumentError,
    ValidationError,
)
from docqa.log import configure_logging

configure_logging()

logger = structlog.get_logger()

CONTEXT_KEY = "docqa"


class QueryRequest(BaseModel):
    query: str
    top_k: int = config.RETRIEVAL_TOP_K


class DocumentRequest(BaseModel):
    text: str
    filename: Optional[str] = None
    metadata: Dict[str, Union[str, int, float, bool]] = Field(default_factory=dict)


def _context() -> AppContext:
    return current_app.extensions[CONTEXT_KEY]


def _configuration() -> dict:
    return {
        "embed_model": config.EMBEDDING_MODEL,
        "llm_model": config.CHAT_MODEL,
        "chunk_length": config.CHUNK_SIZE,
        "chunk_overlap": config.CHUNK_OVERLAP,
        "vector_backend": config.VECTOR_BACKEND,
    }


async def _json_body(model: type[BaseModel]) -> BaseModel:
    data = await request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model(**data)
    except RequestValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid '{field}': {first.get('msg')}") from e


def create_app(context: Optional[AppContext] = None) -> Quart:
    """Create the Quart app.

    Args:
        context: Prebuilt application context; built before serving if omitted
    """
    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_UPLOAD_BYTES
    app.extensions[CONTEXT_KEY] = context

    @app.before_serving
    async def startup():
        if app.extensions.get(CONTEXT_KEY) is None:
            app.extensions[CONTEXT_KEY] = await build_context()

    @app.route("/api/health")
    async def health():
        """Liveness probe with a configuration summary."""
        return jsonify({
            "status": "healthy",
            "service": config.SERVICE_NAME,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "configuration": _configuration(),
        })

    @app.route("/api/info")
    async def info():
        """System information including index statistics."""
        stats = await _context().pipeline.stats()
        return jsonify({
            "system": "Document Q&A RAG Service",
            "version": config.VERSION,
            "stats": stats.to_dict(),
            "configuration": {
                **_configuration(),
                "collection": config.COLLECTION_NAME,
                "data_dir": str(config.DATA_DIR),
                "chroma_url": config.CHROMA_URL,
            },
            "endpoints": {
                "health": "/api/health",
                "documents": "/api/documents",
                "upload": "/api/upload",
                "query": "/api/query",
                "stats": "/api/stats",
                "info": "/api/info",
                "reset": "/api/reset",
            },
        })

    @app.route("/api/documents", methods=["POST"])
    async def ingest_document():
        """Ingest raw text.

        Expects JSON body:
        {
            "text": "document text",
            "filename": "optional-name.txt",
            "metadata": {"optional": "scalar values"}
        }
        """
        body = await _json_body(DocumentRequest)
        metadata = dict(body.metadata)
        if body.filename:
            metadata["filename"] = body.filename

        result = await _context().pipeline.ingest(body.text, metadata)
        return jsonify({
            "document_id": result.document_id,
            "chunk_count": result.chunk_count,
        }), 201

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        """List indexed documents with their filename and chunk count."""
        documents = await _context().pipeline.documents()
        return jsonify({
            "documents": [d.to_dict() for d in documents],
            "count": len(documents),
        })

    @app.route("/api/upload", methods=["POST"])
    async def upload_document():
        """Ingest an uploaded .txt, .md or .json file (multipart field 'file')."""
        files = await request.files
        upload = files.get("file")
        if upload is None or not upload.filename:
            return jsonify({"error": "No file uploaded"}), 400

        filename = Path(upload.filename).name
        if Path(filename).suffix.lower() not in config.ALLOWED_EXTENSIONS:
            return jsonify({
                "error": "File type not allowed. Allowed types: "
                + ", ".join(config.ALLOWED_EXTENSIONS)
            }), 400

        try:
            content = upload.read().decode("utf-8")
        except UnicodeDecodeError:
            return jsonify({"error": "File must be UTF-8 text"}), 400

        result = await _context().pipeline.ingest_content(content, filename)

        logger.info("document_uploaded", filename=filename, chunk_count=result.chunk_count)
        return jsonify({
            "document_id": result.document_id,
            "filename": filename,
            "chunk_count": result.chunk_count,
        }), 201

    @app.route("/api/query", methods=["POST"])
    async def query():
        """Answer a question from the indexed documents.

        Expects JSON body:
        {
            "query": "question text",
            "top_k": 5  // optional, clamped into [1, MAX_TOP_K]
        }
        """
        body = await _json_body(QueryRequest)
        pipeline = _context().pipeline
        top_k = pipeline.clamp_k(body.top_k)

        logger.info("query_request_received", query_length=len(body.query), top_k=top_k)

        answer = await pipeline.answer(body.query, top_k)
        return jsonify({
            **answer.to_dict(),
            "query": body.query,
            "top_k": top_k,
        })

    @app.route("/api/stats")
    async def stats():
        result = await _context().pipeline.stats()
        return jsonify(result.to_dict())

    @app.route("/api/reset", methods=["POST"])
    async def reset():
        """Delete every indexed chunk."""
        await _context().pipeline.reset()
        logger.warning("index_reset_requested")
        return jsonify({"status": "reset"})

    @app.errorhandler(ValidationError)
    async def validation_error(error):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(EmptyDocumentError)
    async def empty_document(error):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(CapabilityError)
    async def capability_error(error):
        logger.error("capability_unavailable", error=str(error), rate_limited=error.rate_limited)
        if error.rate_limited:
            return jsonify({"error": "Upstream model is rate limited. Please retry shortly."}), 429
        return jsonify({"error": "Upstream model service is unavailable. Please try again."}), 503

    @app.errorhandler(DimensionMismatchError)
    async def dimension_mismatch(error):
        logger.error("embedding_dimension_mismatch", error=str(error))
        return jsonify({"error": "Index configuration error: embedding dimension mismatch"}), 500

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(413)
    async def too_large(error):
        return jsonify({
            "error": f"Upload exceeds {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit"
        }), 413

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


app = create_app()


if __name__ == "__main__":
    # For development - run with hypercorn in production
    app.run(host="0.0.0.0", port=5000, debug=True)
