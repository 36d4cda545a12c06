from __future__ import annotations

import base64
import binascii
import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error, request

logger = logging.getLogger(__name__)

UNREACHABLE_MESSAGE = "Failed to connect to processing service. Make sure the processor is running."


@dataclass(frozen=True)
class ProcessorResult:
    status: str
    message: str
    warnings: list[str] = field(default_factory=list)
    processed_filename: str | None = None
    content: bytes | None = None
    response: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "warnings": list(self.warnings),
            "processed_filename": self.processed_filename,
            "has_content": self.content is not None,
        }


class DocumentProcessor(Protocol):
    def process_document(self, document_id: int) -> ProcessorResult:
        ...


def _post_json(url: str, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers={"Content-Type": "application/json"}, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    if not response_body.strip():
        return {}
    parsed = json.loads(response_body)
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def _http_error_message(exc: error.HTTPError) -> str:
    try:
        response_body = exc.read().decode("utf-8", errors="replace").strip()
    except Exception:
        response_body = ""

    excerpt = ""
    if response_body:
        try:
            parsed = json.loads(response_body)
        except json.JSONDecodeError:
            excerpt = response_body[:200]
        else:
            if isinstance(parsed, dict):
                detail = parsed.get("error") or parsed.get("message") or parsed.get("detail")
                if isinstance(detail, str) and detail.strip():
                    excerpt = detail.strip()

    if excerpt:
        return f"Processor returned HTTP {exc.code}: {excerpt}"
    return f"Processor returned HTTP {exc.code}."


def _decode_content(payload: dict[str, Any]) -> tuple[bytes | None, list[str]]:
    encoded = payload.get("content_base64") or payload.get("contentBase64")
    if not isinstance(encoded, str) or not encoded.strip():
        return None, []
    try:
        return base64.b64decode(encoded.strip(), validate=True), []
    except (binascii.Error, ValueError):
        return None, ["Processor returned content that is not valid base64; ignored."]


class HttpDocumentProcessor:
    """Client for the external form-filling service, invoked by document id."""

    def __init__(self, base_url: str, timeout_seconds: float = 300.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/process-document"

    def process_document(self, document_id: int) -> ProcessorResult:
        logger.info("Dispatching document %d to %s", document_id, self.endpoint)
        try:
            payload = _post_json(self.endpoint, {"document_id": document_id}, self.timeout_seconds)
        except error.HTTPError as exc:
            return ProcessorResult(status="error", message=_http_error_message(exc))
        except error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                return ProcessorResult(status="error", message="Processor request timed out.")
            return ProcessorResult(status="error", message=UNREACHABLE_MESSAGE, warnings=[str(exc.reason)])
        except (socket.timeout, TimeoutError):
            return ProcessorResult(status="error", message="Processor request timed out.")
        except ConnectionError as exc:
            return ProcessorResult(status="error", message=UNREACHABLE_MESSAGE, warnings=[str(exc)])
        except json.JSONDecodeError:
            return ProcessorResult(status="error", message="Processor returned a non-JSON response.")

        if payload.get("success") is False or payload.get("status") == "error":
            detail = payload.get("error") or payload.get("message") or "Unknown error"
            return ProcessorResult(status="error", message=f"Processor error: {detail}", response=payload)

        content, warnings = _decode_content(payload)
        filename = payload.get("processed_filename") or payload.get("filename")
        return ProcessorResult(
            status="success",
            message=str(payload.get("message") or "Document processing started successfully"),
            warnings=warnings,
            processed_filename=filename if isinstance(filename, str) and filename.strip() else None,
            content=content,
            response=payload,
        )
