"""
Shared HTTP plumbing for inference backend adapters.

Every adapter talks JSON over HTTP through a pooled aiohttp session; this
module owns session lifetime, timeouts, bearer authentication and the mapping
of HTTP failures onto the inference error taxonomy.
"""

import asyncio
import json
import os
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMProviderInterface,
    LLMRequest,
    ProviderDescriptor,
    TokenChunk,
    LLMConnectionError,
    LLMRateLimitError,
    LLMProtocolError
)
from inference_core.llm.streaming import StreamDecoder, StreamFraming
from inference_core.llm.tokens import TokenEstimator

# Payload excerpts attached to protocol errors are cut to this length.
PAYLOAD_EXCERPT_CHARS = 500


class HTTPProviderBase(LLMProviderInterface):
    """
    Base class for adapters that speak JSON over HTTP.

    Subclasses build wire bodies and map replies; this class sends them.
    """

    def __init__(self, descriptor: ProviderDescriptor):
        super().__init__(descriptor)
        self.base_url = descriptor.resolved_base_url
        self.estimator = TokenEstimator()

        # HTTP session for connection pooling
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.descriptor.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self.logger.info(f"Closed HTTP session for {self.provider_id}")
        self._session = None

    def _headers(self) -> Dict[str, str]:
        """Request headers, with bearer auth when an API key variable is configured."""
        headers = {"Content-Type": "application/json"}
        if self.descriptor.api_key_env:
            api_key = os.getenv(self.descriptor.api_key_env)
            if api_key:
                headers["Authorization"] = f"Bearer {api_key}"
            else:
                self.logger.debug(
                    f"API key variable {self.descriptor.api_key_env} is not set for {self.provider_id}"
                )
        return headers

    def _request_timeout(self, request: Optional[LLMRequest] = None) -> aiohttp.ClientTimeout:
        if request is not None and request.timeout:
            return aiohttp.ClientTimeout(total=request.timeout)
        return aiohttp.ClientTimeout(total=self.descriptor.timeout)

    def _health_timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.descriptor.health_timeout)

    def _resolve_model(self, request: LLMRequest) -> str:
        return request.model or self.descriptor.default_model

    def _estimate_prompt_tokens(self, request: LLMRequest) -> int:
        return self.estimator.estimate_messages(request.messages)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _raise_for_status(self, response: aiohttp.ClientResponse, path: str) -> None:
        """Map non-success statuses to transport errors."""
        if 200 <= response.status < 300:
            return
        error_text = await response.text()
        message = (
            f"{self.provider_id} returned status {response.status} for {path}: "
            f"{error_text[:PAYLOAD_EXCERPT_CHARS]}"
        )
        if response.status == 429:
            raise LLMRateLimitError(message, provider_id=self.provider_id, status=response.status)
        raise LLMConnectionError(message, provider_id=self.provider_id, status=response.status)

    def _parse_json(self, text: str, path: str) -> Any:
        try:
            return json.loads(text)
        except ValueError:
            self.logger.error(
                f"Unparseable reply from {self.provider_id} {path}: {text[:PAYLOAD_EXCERPT_CHARS]}"
            )
            raise LLMProtocolError(
                f"{self.provider_id} returned invalid JSON for {path}",
                provider_id=self.provider_id,
                payload=text[:PAYLOAD_EXCERPT_CHARS]
            )

    async def _request_json(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None
    ) -> Any:
        """
        Send a request and return the decoded JSON reply.

        Args:
            method: HTTP method
            path: Path appended to the base URL
            body: JSON body, if any
            timeout: Per-call timeout overriding the session default

        Returns:
            Decoded JSON value

        Raises:
            LLMConnectionError: Network failure, timeout or non-success status
            LLMProtocolError: Reply is not valid JSON
        """
        try:
            session = await self._get_session()
            async with session.request(
                method,
                self._url(path),
                json=body,
                headers=self._headers(),
                timeout=timeout or self._request_timeout()
            ) as response:
                await self._raise_for_status(response, path)
                text = await response.text()
        except asyncio.TimeoutError as e:
            self.logger.warning(f"{self.provider_id} {method} {path} timed out")
            raise LLMConnectionError(
                f"Request to {self.provider_id} {path} timed out", provider_id=self.provider_id
            ) from e
        except aiohttp.ClientError as e:
            self.logger.warning(f"HTTP error calling {self.provider_id} {path}: {str(e)}")
            raise LLMConnectionError(
                f"Failed to connect to {self.provider_id} at {self.base_url}: {str(e)}",
                provider_id=self.provider_id
            ) from e
        return self._parse_json(text, path)

    async def _post_json(
        self,
        path: str,
        body: Dict[str, Any],
        timeout: Optional[aiohttp.ClientTimeout] = None
    ) -> Any:
        return await self._request_json("POST", path, body, timeout)

    async def _get_json(self, path: str, timeout: Optional[aiohttp.ClientTimeout] = None) -> Any:
        return await self._request_json("GET", path, None, timeout)

    async def _get_ok(self, path: str, timeout: Optional[aiohttp.ClientTimeout] = None) -> bool:
        """GET a path and report whether it answered with a success status."""
        session = await self._get_session()
        async with session.get(
            self._url(path), headers=self._headers(), timeout=timeout or self._health_timeout()
        ) as response:
            return 200 <= response.status < 300

    async def _stream(
        self,
        path: str,
        body: Dict[str, Any],
        framing: StreamFraming,
        request: LLMRequest
    ) -> AsyncIterator[TokenChunk]:
        """
        POST a streaming request and decode the body as it arrives.

        The response is released on every exit path, including cancellation
        and early close by the consumer.
        """
        decoder = StreamDecoder(
            framing,
            provider_id=self.provider_id,
            prompt_tokens=self._estimate_prompt_tokens(request)
        )
        try:
            session = await self._get_session()
            async with session.post(
                self._url(path),
                json=body,
                headers=self._headers(),
                timeout=self._request_timeout(request)
            ) as response:
                await self._raise_for_status(response, path)
                async for chunk in decoder.decode(response.content):
                    yield chunk
        except asyncio.TimeoutError as e:
            self.logger.warning(f"Stream from {self.provider_id} {path} timed out")
            raise LLMConnectionError(
                f"Stream from {self.provider_id} {path} timed out", provider_id=self.provider_id
            ) from e
        except aiohttp.ClientError as e:
            self.logger.warning(f"HTTP error streaming from {self.provider_id} {path}: {str(e)}")
            raise LLMConnectionError(
                f"Failed to stream from {self.provider_id} at {self.base_url}: {str(e)}",
                provider_id=self.provider_id
            ) from e
