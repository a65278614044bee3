"""
Registry Document Submitter

One HTTP POST per document to the registry's create endpoint. Transport
errors and non-2xx responses are reported as SubmissionFailed; nothing is
retried here.
"""

import logging
from typing import Optional, Protocol

import requests

from registry_gateway.errors import SubmissionFailed

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://ismp.crpt.ru/api/v3/lk/documents/create"
DEFAULT_SIGNATURE_HEADER = "Signature"


class DocumentSubmitter(Protocol):
    def submit(self, payload: bytes, signature: str) -> None:
        ...


class HttpDocumentSubmitter:
    """Posts serialized documents to the registry with requests."""

    def __init__(
        self,
        url: str = DEFAULT_REGISTRY_URL,
        timeout: float = 30.0,
        signature_header: str = DEFAULT_SIGNATURE_HEADER,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.signature_header = signature_header
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()

    def submit(self, payload: bytes, signature: str) -> None:
        """
        Post one document to the registry.

        Args:
            payload: Serialized JSON document
            signature: Document signature, sent in the signature header

        Raises:
            SubmissionFailed: On connection errors, timeouts or non-2xx responses
        """
        headers = {
            "Content-Type": "application/json",
            self.signature_header: signature,
        }

        try:
            response = self.session.post(
                self.url,
                data=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Request to {self.url} failed: {e}")
            raise SubmissionFailed(f"Request to {self.url} failed: {e}") from e

        with response:
            if not 200 <= response.status_code < 300:
                logger.error(f"Registry rejected document: HTTP {response.status_code}")
                raise SubmissionFailed(
                    f"Registry responded with HTTP {response.status_code}",
                    status_code=response.status_code,
                    response_text=response.text,
                )

            logger.debug(f"Document accepted by registry: HTTP {response.status_code}")

    def close(self) -> None:
        if self._owns_session:
            self.session.close()
