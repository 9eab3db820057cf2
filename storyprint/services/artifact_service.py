import logging
from dataclasses import dataclass
from typing import Optional

import requests

from storyprint.config import settings
from storyprint.exceptions import ArtifactGenerationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PrintArtifacts:
    cover_url: str
    interior_url: str


class ArtifactService:
    """Client for the service that renders a finished book into print-ready PDFs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = (base_url or settings.artifact_service_url).rstrip("/")
        self.timeout = timeout or settings.artifact_timeout_seconds
        self.http = http or requests.Session()

    def generate(self, book_id: int) -> PrintArtifacts:
        url = f"{self.base_url}/books/{book_id}/print-files"
        logger.info(f"Generating print files for book {book_id}")

        try:
            response = self.http.post(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise ArtifactGenerationError(
                f"Print file generation failed: {e}", {"book_id": book_id}
            ) from e

        if response.status_code >= 400:
            logger.error(
                f"Print file generation for book {book_id} failed "
                f"({response.status_code}): {response.text}"
            )
            raise ArtifactGenerationError(
                "Print file generation failed",
                {"book_id": book_id, "response_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ArtifactGenerationError(
                "Print file generation returned an invalid response", {"book_id": book_id}
            ) from e

        cover_url = body.get("cover_url")
        interior_url = body.get("interior_url")
        if not cover_url or not interior_url:
            raise ArtifactGenerationError(
                "Print file generation did not return both files",
                {"book_id": book_id, "response": body},
            )

        logger.info(f"Print files ready for book {book_id}")
        return PrintArtifacts(cover_url=cover_url, interior_url=interior_url)
