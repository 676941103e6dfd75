"""
REST client for the external document-extraction service.
Submits expense-analysis jobs and fetches job status/result pages.
"""
from typing import Any, Dict, Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ExternalJobError
from core.logger import setup_logger
from core.schema import JobPage

logger = setup_logger(__name__)


class TransientServiceError(ExternalJobError):
    """Connection problems and 5xx responses worth another attempt."""
    pass


class ExtractionServiceClient:
    """Thin wrapper over the extraction service job API with retry logic."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        """Initialize REST client."""
        settings = get_settings()
        self.base_url = (base_url or settings.extraction_service_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.extraction_api_key
        self.timeout = timeout or settings.extraction_timeout

        logger.info(f"Initialized extraction client for {self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TransientServiceError),
        reraise=True
    )
    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs
            )
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            logger.warning(f"Extraction service unreachable ({method} {url}): {e}")
            raise TransientServiceError(
                f"Extraction service unreachable: {e}",
                details={"url": url}
            )
        except requests.exceptions.RequestException as e:
            raise ExternalJobError(
                f"Extraction service request failed: {e}",
                details={"url": url}
            )

        if response.status_code >= 500:
            raise TransientServiceError(
                f"Extraction service returned HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code}
            )
        if response.status_code >= 400:
            raise ExternalJobError(
                f"Extraction service returned HTTP {response.status_code}",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "response_text": response.text,
                }
            )

        try:
            return response.json()
        except ValueError as e:
            raise ExternalJobError(
                f"Extraction service returned invalid JSON: {e}",
                details={"url": url, "raw_response": response.text}
            )

    def start_job(self, bucket: str, key: str) -> Optional[str]:
        """
        Submit one expense-analysis job.

        Args:
            bucket: Storage bucket holding the document
            key: Document key inside the bucket

        Returns:
            Job identifier, or None if the service did not return one
        """
        body = {"DocumentLocation": {"S3Object": {"Bucket": bucket, "Name": key}}}
        data = self._request("POST", "/jobs", json=body)
        return data.get("JobId")

    def get_job(self, job_id: str, next_token: Optional[str] = None) -> JobPage:
        """
        Fetch job status and one page of results.

        Args:
            job_id: Job identifier
            next_token: Continuation token of the page to fetch

        Returns:
            JobPage
        """
        params = {"NextToken": next_token} if next_token else None
        data = self._request("GET", f"/jobs/{job_id}", params=params)
        return JobPage.model_validate(data)
