from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import httpx
from httpx._types import QueryParamTypes, RequestContent, RequestData, RequestFiles
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.exceptions.errors import CompassError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientInterface(ABC):
    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)
        self.max_retries = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_MAX_RETRIES", default=3))
        self.retry_backoff = helper_config.get_number_val(f"{self.get_client_type().upper()}_RETRY_BACKOFF", default=0.5)

        # client and config
        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Validates that all required configuration values for the client are set and valid.

        Raises:
            ValueError: If any required configuration value is missing or invalid.
        """
        req_config = self._get_required_config()
        for config in req_config:
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        """
        Returns the type of the client in lowercase. E.g. "rag"
        """
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        pass

    def get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "qdrant"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "qdrant"
        """
        pass

    ################ ERRORS ##################
    @abstractmethod
    def _get_unavailable_error(self) -> type[CompassError]:
        """
        Returns the error raised when the backend cannot be reached, times out or answers with a 5xx status.
        Only this error type is retried.
        """
        pass

    @abstractmethod
    def _get_rejected_error(self) -> type[CompassError]:
        """
        Returns the error raised when the backend answers with a 4xx status.
        """
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns all required configurations for the client.

        Returns:
            list[EnvConfig]: A list containing the details of each required configuration key.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Returns:
            str: The full configuration key name for the client. E.g. "RAG_QDRANT_API_KEY"
        """
        key_prefix = f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}"
        return f"{key_prefix}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Retrieves the value of a configuration key for the client.

        Args:
            raw_key (str): The raw configuration key name
            default (Any): The default value to return if the configuration key is not set
            val_type (str): The type of the configuration value ("string", "number", "bool", "list")
        """
        key = self._get_config_key_name(raw_key)
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        elif val_type == "bool":
            return self._helper_config.get_bool_val(key, default=default)
        elif val_type == "list":
            return self._helper_config.get_list_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in {self.get_client_type().upper()} client '{self.get_engine_name()}'.")

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns the authentication header for the client backend server, if an API key is set.

        Returns:
            dict: A dictionary containing the auth data
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the base URL of the client backend server from env variables

        Returns:
            str: The base URL of the client backend server (e.g. "http://localhost:6333")
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        """
        Returns the endpoint path for healthcheck requests.

        Returns:
            str: The endpoint path for healthcheck requests (e.g. "/healthz")
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Check if the client backend is healthy by sending a test request.

        Returns:
            httpx.Response: The response from the healthcheck request.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialise the HTTP client.

        Args:
            transport (httpx.AsyncBaseTransport | None): Optional transport to mount instead of the
                network, e.g. an ``httpx.MockTransport`` serving an in-memory backend.
        """
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        """Close the HTTP client and any other resources."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_request(
        self,
        method: str,
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
    ) -> httpx.Request:
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")

        endpoint = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""

        # Do NOT set a default Content-Type: httpx sets it automatically for json/data/files.
        # For content (raw bytes), the caller must pass the correct type via additional_headers.
        headers: dict = {}
        headers.update(self._get_auth_header())
        if additional_headers:
            headers.update(additional_headers)

        kwargs: dict = {
            "url": f"{self._get_base_url().rstrip('/')}{endpoint}",
            "headers": headers,
            "timeout": self.timeout,
            "params": params,
        }

        # add exactly one body argument
        if content is not None:
            kwargs["content"] = content
        elif data is not None:
            kwargs["data"] = data
        elif files is not None:
            kwargs["files"] = files
        elif json is not None:
            kwargs["json"] = json

        return self._client.build_request(method, **kwargs)

    async def _send_with_retry(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        """Send a request, mapping transport failures and 5xx answers to the unavailable error.

        The unavailable error is retried with exponential backoff up to ``<TYPE>_MAX_RETRIES`` times.

        Raises:
            CompassError: The client's unavailable error once all attempts are exhausted.
        """
        unavailable = self._get_unavailable_error()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_backoff, max=max(self.retry_backoff * 8, 0)),
            retry=retry_if_exception_type(unavailable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    response = await self._client.send(request, stream=stream)
                except httpx.TimeoutException as exc:
                    self.logging.warning("Request to %s timed out (attempt %d).", request.url, attempt.retry_state.attempt_number)
                    raise unavailable(f"Request to {request.url} timed out") from exc
                except httpx.TransportError as exc:
                    self.logging.warning("Request to %s failed: %s (attempt %d).", request.url, exc, attempt.retry_state.attempt_number)
                    raise unavailable(f"Request to {request.url} failed") from exc

                if response.status_code >= 500:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    await response.aclose()
                    self.logging.warning(
                        "Request to %s answered with status %d: %s (attempt %d).",
                        request.url, response.status_code, body[:200], attempt.retry_state.attempt_number,
                    )
                    raise unavailable(f"Request to {request.url} failed with status {response.status_code}")
        return response

    async def _raise_for_rejection(self, response: httpx.Response) -> None:
        if response.status_code >= 300:
            body = (await response.aread()).decode("utf-8", errors="replace")
            self.logging.error(
                "Request to %s failed with status %d: %s",
                response.request.url,
                response.status_code,
                body[:500],
            )
            raise self._get_rejected_error()(
                f"Request to {response.request.url} failed with status {response.status_code}"
            )

    async def do_request(
        self,
        method: str = "GET",
        content: RequestContent | None = None,
        data: RequestData | None = None,
        files: RequestFiles | None = None,
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send an HTTP request to the client backend.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, …).
            content: Raw bytes / stream body.
            data: Form-encoded body (dict or list of tuples).
            files: Multipart file upload.
            json: JSON-serialisable body (sets Content-Type automatically).
            params: URL query parameters.
            endpoint: Path to append to the base URL (leading slash optional).
            additional_headers: Extra headers that override the defaults.
            raise_on_error: Raise the client's rejected error on a 3xx/4xx status.

        Returns:
            The raw httpx.Response.

        Raises:
            CompassError: Unavailable error on timeouts, transport failures and 5xx answers;
                rejected error on other non-2xx answers when raise_on_error is True.
        """
        request = self._build_request(
            method=method,
            content=content,
            data=data,
            files=files,
            json=json,
            params=params,
            endpoint=endpoint,
            additional_headers=additional_headers,
        )
        response = await self._send_with_retry(request)
        if raise_on_error:
            await self._raise_for_rejection(response)
        return response

    @asynccontextmanager
    async def do_stream_request(
        self,
        method: str = "POST",
        json: dict | None = None,
        endpoint: str = "",
        additional_headers: dict | None = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming HTTP request. The response is closed when the context exits.

        Only opening the stream is retried; a failure while reading the body is not.

        Yields:
            httpx.Response: The open response, ready for ``aiter_lines()``/``aiter_bytes()``.
        """
        request = self._build_request(method=method, json=json, endpoint=endpoint, additional_headers=additional_headers)
        response = await self._send_with_retry(request, stream=True)
        try:
            await self._raise_for_rejection(response)
            yield response
        finally:
            await response.aclose()
