"""
Registry Gateway

Pairs the admission limiter with document serialization and the registry
call. Every outbound request waits for an admission grant first.
"""

import logging
import time
from typing import Any, Optional

from registry_gateway.config import Settings, settings as default_settings
from registry_gateway.errors import SubmissionFailed
from registry_gateway.observability.tracing import (
    add_span_attributes,
    get_tracer,
    trace_span,
)
from registry_gateway.ratelimit.config import QuotaConfig
from registry_gateway.ratelimit.limiter import AdmissionLimiter
from registry_gateway.ratelimit.metrics import (
    record_submission,
    record_submission_failed,
    record_submission_latency,
)
from .serializer import DocumentSerializer, JsonSerializer
from .submitter import DocumentSubmitter, HttpDocumentSubmitter

logger = logging.getLogger(__name__)
tracer = get_tracer("gateway.client")


class RegistryGateway:
    """
    Rate-limited client for the document registry.

    Orchestrates:
    1. Serialization of the document
    2. Admission (blocks while the window is saturated)
    3. The registry call
    4. Observability (tracing and metrics)
    """

    def __init__(
        self,
        limiter: AdmissionLimiter,
        submitter: DocumentSubmitter,
        serializer: Optional[DocumentSerializer] = None,
    ):
        self.limiter = limiter
        self.submitter = submitter
        self.serializer = serializer or JsonSerializer()

    @property
    def endpoint(self) -> str:
        return getattr(self.submitter, "url", type(self.submitter).__name__)

    def submit(self, payload: bytes, signature: str) -> None:
        """
        Submit an already serialized document.

        Blocks until the limiter grants admission, then performs exactly one
        registry call.

        Raises:
            SubmissionFailed: If the registry call fails
        """
        endpoint = self.endpoint

        with trace_span(tracer, "registry.submit", {"registry.endpoint": endpoint, "payload.bytes": len(payload)}) as span:
            wait_start = time.monotonic()
            self.limiter.acquire()
            wait_ms = (time.monotonic() - wait_start) * 1000
            add_span_attributes(span, {"admission.wait_ms": wait_ms})

            call_start = time.monotonic()
            try:
                self.submitter.submit(payload, signature)
            except SubmissionFailed as e:
                record_submission_failed(endpoint, e.status_code)
                logger.error(f"Submission to {endpoint} failed: {e}")
                raise
            finally:
                record_submission_latency(endpoint, (time.monotonic() - call_start) * 1000)

            record_submission(endpoint)
            logger.info(f"Document submitted to {endpoint} (waited {wait_ms:.1f}ms for admission)")

    def create_document(self, document: Any, signature: str) -> None:
        """
        Serialize a document and submit it.

        Serialization happens before admission, so a document that cannot be
        encoded never consumes a grant.

        Args:
            document: Mapping, dataclass instance or pydantic model
            signature: Document signature

        Raises:
            SerializationError: If the document cannot be encoded
            SubmissionFailed: If the registry call fails
        """
        payload = self.serializer.serialize(document)
        self.submit(payload, signature)

    def close(self) -> None:
        """Stop the limiter sweep and release the HTTP session."""
        self.limiter.close()
        close = getattr(self.submitter, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "RegistryGateway":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_gateway(settings: Optional[Settings] = None) -> RegistryGateway:
    """
    Build a gateway wired from settings.

    The gateway owns a limiter sweep thread and an HTTP session. Call
    close() when done, or use the gateway in a ``with`` block.

    Args:
        settings: Settings instance, defaults to the module-level settings

    Returns:
        RegistryGateway with an HTTP submitter and JSON serializer
    """
    settings = settings or default_settings
    quota = QuotaConfig.from_settings(settings)

    limiter = AdmissionLimiter(
        quota.window_seconds,
        quota.limit,
        bucket_count=quota.bucket_count,
    )
    submitter = HttpDocumentSubmitter(
        url=settings.REGISTRY_URL,
        timeout=settings.REGISTRY_TIMEOUT_SEC,
        signature_header=settings.REGISTRY_SIGNATURE_HEADER,
    )
    return RegistryGateway(limiter, submitter, JsonSerializer())
