from abc import ABC, abstractmethod
from typing import Any

import httpx
from httpx._types import QueryParamTypes

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.errors import BackendUnavailableError, DocIntelError


class ClientInterface(ABC):
    """Base of every backend client.

    A client is identified by its type ("embed", "llm", "rag", "graph", "blob", "meta") and its
    engine ("ollama", "qdrant", ...). Its settings live in {TYPE}_{ENGINE}_{KEY} environment
    variables and are validated when the client is constructed, so a misconfigured engine fails
    at startup. HTTP engines use the shared httpx client created by boot(); other engines
    override boot(), close() and do_healthcheck().
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0)

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every required configuration key once.

        Raises:
            ValueError: If a required value is missing or cannot be parsed.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the engine used by the client. E.g. "qdrant"
        """
        pass

    def _get_error_class(self) -> type[DocIntelError]:
        """
        Exception raised when the backend is unreachable or answers with an error status.
        Client families narrow it, e.g. EmbeddingFailedError for embed clients.
        """
        return BackendUnavailableError

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns:
            list[EnvConfig]: The configuration keys the engine reads, with their defaults.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Returns:
            str: The full environment key, e.g. "RAG_QDRANT_API_KEY" for raw_key "api_key".
        """
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads one configuration value of this client.

        Args:
            raw_key (str): Key without the {TYPE}_{ENGINE}_ prefix.
            default (Any): Returned when the key is unset. None makes the key required.
            val_type (str): "string", "number", "bool" or "list".
        """
        getters = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in getters:
            raise ValueError(
                f"Unsupported config value type '{val_type}' for key '{raw_key}' of {self.get_client_type()} client '{self.get_engine_name()}'."
            )
        return getters[val_type](self._get_config_key_name(raw_key), default=default)

    ################ HTTP ##################
    def _get_auth_header(self) -> dict:
        """Bearer header when the engine configured an API key, engines with other schemes override it."""
        api_key = getattr(self, "_api_key", "")
        return {"Authorization": f"Bearer {api_key}"} if api_key else {}

    def _get_base_url(self) -> str:
        """
        Returns:
            str: The engine's BASE_URL setting, e.g. "http://localhost:11434".

        Raises:
            NotImplementedError: If the engine does not talk HTTP.
        """
        base_url = getattr(self, "_base_url", None)
        if not base_url:
            raise NotImplementedError(f"{self.__class__.__name__} has no HTTP backend.")
        return base_url

    def _get_endpoint_healthcheck(self) -> str:
        return ""

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Create the HTTP client. Tests pass an httpx.MockTransport as transport."""
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_initialize(self) -> None:
        """Create schema objects the backend needs (collections, constraints, tables). Idempotent."""
        return None

    async def do_healthcheck(self) -> bool:
        """
        Returns:
            bool: True if the backend answered the healthcheck endpoint with a success status.
        """
        try:
            response = await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())
        except DocIntelError as e:
            self.logging.warning("Healthcheck of %s client '%s' failed: %s", self.get_client_type(), self.get_engine_name(), e)
            return False
        return response.is_success

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def do_request(
        self,
        method: str = "GET",
        endpoint: str = "",
        json: dict | None = None,
        params: QueryParamTypes | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send a request to the backend.

        Args:
            method (str): HTTP method.
            endpoint (str): Path appended to the base URL, leading slash optional.
            json (dict | None): JSON body.
            params (QueryParamTypes | None): URL query parameters.
            raise_on_error (bool): Raise on a non-2xx status instead of returning the response.

        Returns:
            httpx.Response: The raw response.

        Raises:
            RuntimeError: If boot() was not called.
            DocIntelError: The client's error class when the backend is unreachable, times out
                or (with raise_on_error) answers with an error status.
        """
        if self._client is None:
            raise RuntimeError("HTTP client not initialised. Call boot() before making requests.")

        path = endpoint.strip().lstrip("/")
        url = self._get_base_url().rstrip("/") + (f"/{path}" if path else "")

        try:
            response = await self._client.request(
                method, url, json=json, params=params, headers=self._get_auth_header(), timeout=self.timeout,
            )
        except httpx.TransportError as e:
            self.logging.error("Request to %s failed: %s", url, e)
            raise self._get_error_class()(f"Request to {url} failed: {e}") from e

        if raise_on_error and not response.is_success:
            # provider bodies only go to the log
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:500])
            raise self._get_error_class()(f"Request to {url} failed with status {response.status_code}")

        return response
