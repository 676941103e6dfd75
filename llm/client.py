"""
Generative model client using direct REST calls to the inference gateway.
Sends one prompt with sampling parameters and returns the generation text.
"""
import json
from typing import Any, Dict, Optional

import requests
import urllib3
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import ConfigurationError, LLMError, ModelResponseParseError
from core.logger import setup_logger

logger = setup_logger(__name__)


class ModelClient:
    """Wrapper for the model gateway REST API with retry logic."""

    def __init__(self):
        """Initialize REST API client."""
        settings = get_settings()
        if not settings.model_gateway_url:
            raise ConfigurationError(
                "MODEL_GATEWAY_URL environment variable not set",
                details={"required_key": "MODEL_GATEWAY_URL"}
            )

        self.gateway_url = settings.model_gateway_url
        self.api_key = settings.model_api_key
        self.model_id = settings.model_id
        self.timeout = settings.model_timeout
        self.temperature = settings.model_temperature
        self.top_p = settings.model_top_p
        self.max_gen_len = settings.model_max_gen_len
        self.verify_ssl = settings.model_verify_ssl

        if not self.verify_ssl:
            # Internal gateways often run with self-signed certificates
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        logger.info(f"Initialized model client with model: {self.model_id}, gateway: {self.gateway_url}")

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        """Request body: the prompt plus low-temperature sampling parameters."""
        return {
            "modelId": self.model_id,
            "prompt": prompt,
            "max_gen_len": self.max_gen_len,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(LLMError),
        reraise=True
    )
    def invoke(self, prompt: str) -> str:
        """
        Run a single-shot generation.

        Args:
            prompt: Complete prompt text

        Returns:
            The generation string

        Raises:
            LLMError: If the gateway call fails after retries
            ModelResponseParseError: If the gateway body has no generation
        """
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.gateway_url,
                headers=headers,
                data=json.dumps(self.build_payload(prompt)),
                verify=self.verify_ssl,
                timeout=self.timeout
            )
            response.raise_for_status()

        except requests.exceptions.Timeout as e:
            logger.error(f"Gateway request timeout after {self.timeout}s: {e}")
            raise LLMError(
                f"Gateway request timeout after {self.timeout}s",
                details={"gateway_url": self.gateway_url, "timeout": self.timeout}
            )

        except requests.exceptions.HTTPError as e:
            logger.error(f"Gateway HTTP error: {e}")
            raise LLMError(
                f"Gateway returned HTTP error: {e}",
                details={
                    "gateway_url": self.gateway_url,
                    "status_code": getattr(e.response, "status_code", None),
                    "response_text": getattr(e.response, "text", None),
                }
            )

        except requests.exceptions.RequestException as e:
            logger.error(f"Gateway request failed: {e}")
            raise LLMError(
                f"Failed to connect to gateway: {str(e)}",
                details={"gateway_url": self.gateway_url, "error": str(e)}
            )

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse gateway response as JSON: {e}")
            raise ModelResponseParseError(
                f"Gateway returned invalid JSON: {e}",
                details={"raw_response": response.text}
            )

        generation = body.get("generation") if isinstance(body, dict) else None
        if not isinstance(generation, str):
            logger.error(f"Response keys: {list(body.keys()) if isinstance(body, dict) else type(body)}")
            raise ModelResponseParseError(
                "Unexpected response structure: no 'generation' string",
                details={"raw_response": response.text}
            )

        if isinstance(body, dict) and "prompt_token_count" in body:
            logger.debug(
                f"Token usage - Input: {body.get('prompt_token_count', 'N/A')}, "
                f"Output: {body.get('generation_token_count', 'N/A')}"
            )

        return generation


# Singleton client instance
_client: Optional[ModelClient] = None


def get_client() -> ModelClient:
    """
    Get or create model client singleton.

    Returns:
        Model client instance
    """
    global _client
    if _client is None:
        _client = ModelClient()
    return _client
