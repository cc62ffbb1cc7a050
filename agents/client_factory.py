import logging
from typing import Optional

from openai import AsyncOpenAI

from utils.errors import NotAvailableError
from .settings import ContentSettings

# Module logger
logger = logging.getLogger(__name__)

ASSISTANTS_BETA_HEADER = {"OpenAI-Beta": "assistants=v2"}


class ClientFactory:
    """
    Factory for the OpenAI client used by the assistant workflow.
    Centralizes logic for:
    - Credential and assistant id checks
    - Base URL override (proxies, local gateways)
    - The Assistants v2 beta header
    """

    @staticmethod
    def create_openai_client(settings: ContentSettings, timeout: Optional[float] = None) -> AsyncOpenAI:
        """
        Create an AsyncOpenAI client from resolved settings.

        Args:
            settings: Resolved content settings
            timeout: Optional per-request timeout in seconds

        Returns:
            Configured AsyncOpenAI instance

        Raises:
            NotAvailableError: when the API key or assistant id is missing
        """
        if not settings.openai_api_key:
            raise NotAvailableError("OpenAI API key is not configured")
        if not settings.assistant_id:
            raise NotAvailableError("Brand voice assistant id is not configured")

        kwargs = {
            "api_key": settings.openai_api_key,
            "default_headers": dict(ASSISTANTS_BETA_HEADER),
        }
        if settings.openai_base_url:
            kwargs["base_url"] = settings.openai_base_url
        if timeout is not None:
            kwargs["timeout"] = timeout

        logger.debug(
            "Creating AsyncOpenAI client (base_url=%s, assistant_id=%s)",
            settings.openai_base_url or "default", settings.assistant_id,
        )
        return AsyncOpenAI(**kwargs)
