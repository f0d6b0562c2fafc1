"""
Folio - Anthropic Claude Client
Async client for the Claude API, used by the enrichment features.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import anthropic

import config
from core.logger import log_info, log_warning


@dataclass
class AnthropicResponse:
    """Response from Anthropic API."""
    text: str
    input_tokens: int
    output_tokens: int
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None  # "overloaded", "rate_limited", "server_error", "auth_error", etc.
    stop_reason: Optional[str] = None


class AnthropicClient:
    """
    Async client for Anthropic Claude API.

    Failures never raise out of chat()/generate(); they come back as a
    response with success=False and a classified error_type.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 4096,
        timeout: int = 120
    ):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key
            model: Model to use
            max_tokens: Maximum tokens to generate
            timeout: Request timeout in seconds
        """
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: Optional[anthropic.AsyncAnthropic] = None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        """Lazy-create the SDK client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout
            )
        return self._client

    def is_available(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)

    def _classify_error(self, error: Exception) -> tuple:
        """
        Classify an API error for retry decisions.

        Returns:
            Tuple of (error_type, error_message)
        """
        error_msg = str(error)

        if isinstance(error, anthropic.APITimeoutError):
            return ("timeout", "Request timed out")
        elif isinstance(error, anthropic.APIConnectionError):
            return ("connection_error", "Connection failed")
        elif isinstance(error, anthropic.RateLimitError):
            return ("rate_limited", "Rate limit exceeded")
        elif isinstance(error, anthropic.APIStatusError):
            status = error.status_code
            if status == 529:
                return ("overloaded", "API overloaded")
            elif status in (500, 502, 503):
                return ("server_error", f"Server error ({status})")
            elif status in (401, 403):
                return ("auth_error", "Authentication failed")
            elif status == 400:
                return ("bad_request", error_msg)

        error_lower = error_msg.lower()
        if "overloaded" in error_lower:
            return ("overloaded", "API overloaded")
        elif "rate" in error_lower:
            return ("rate_limited", "Rate limit exceeded")
        elif "authentication" in error_lower or "api key" in error_lower:
            return ("auth_error", "Invalid API key")

        return ("unknown", error_msg)

    def _is_transient_error(self, error_type: str) -> bool:
        """Check if an error type is transient (worth retrying)."""
        return error_type in ("timeout", "connection_error", "server_error")

    async def _call_with_retry(self, client: anthropic.AsyncAnthropic, create_kwargs: dict):
        """
        Make an API call with automatic retry for transient errors.

        Retries on 500, 502, 503, timeouts, and connection errors with
        exponential backoff. Other errors are raised immediately.
        """
        max_attempts = config.API_RETRY_MAX_ATTEMPTS
        delay = config.API_RETRY_INITIAL_DELAY
        backoff = config.API_RETRY_BACKOFF_MULTIPLIER

        for attempt in range(max_attempts):
            try:
                return await client.messages.create(**create_kwargs)
            except Exception as e:
                error_type, error_msg = self._classify_error(e)

                if not self._is_transient_error(error_type) or attempt >= max_attempts - 1:
                    raise

                log_warning(
                    f"Transient API error (attempt {attempt + 1}/{max_attempts}): "
                    f"{error_type} - {error_msg}. Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)
                delay *= backoff

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        model: Optional[str] = None
    ) -> AnthropicResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": ..., "content": ...} dicts
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate (uses default if None)
            temperature: Sampling temperature
            model: Optional model override

        Returns:
            AnthropicResponse with generated text
        """
        if max_tokens is None:
            max_tokens = self.max_tokens

        try:
            client = self._get_client()

            request_params = {
                "model": model or self.model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": messages
            }
            if system_prompt:
                request_params["system"] = system_prompt

            response = await self._call_with_retry(client, request_params)

            text = ""
            # content can be None on some error paths
            for block in getattr(response, "content", None) or []:
                block_text = getattr(block, "text", None)
                if block_text:
                    text += block_text

            log_info(
                f"Claude response: {response.usage.input_tokens} in / "
                f"{response.usage.output_tokens} out",
                prefix="🤖"
            )

            return AnthropicResponse(
                text=text,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                success=True,
                stop_reason=response.stop_reason
            )

        except Exception as e:
            error_type, error_msg = self._classify_error(e)

            return AnthropicResponse(
                text="",
                input_tokens=0,
                output_tokens=0,
                success=False,
                error=error_msg,
                error_type=error_type
            )

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7
    ) -> AnthropicResponse:
        """
        Simple text generation from a prompt.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate
            temperature: Sampling temperature

        Returns:
            AnthropicResponse with generated text
        """
        messages = [{"role": "user", "content": prompt}]
        return await self.chat(
            messages=messages,
            system_prompt=system_prompt,
            max_tokens=max_tokens,
            temperature=temperature
        )


def create_anthropic_client() -> AnthropicClient:
    """Client configured from config.py / the environment."""
    return AnthropicClient(
        api_key=config.ANTHROPIC_API_KEY,
        model=config.ANTHROPIC_MODEL,
        max_tokens=config.ANTHROPIC_MAX_TOKENS,
        timeout=config.ANTHROPIC_TIMEOUT
    )
