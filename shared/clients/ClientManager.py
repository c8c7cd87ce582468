from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface

# client type → class name prefix, e.g. "rag" + "Qdrant" → RAGClientQdrant
_CLASS_PREFIXES: dict[str, str] = {
    "embed": "EmbedClient",
    "llm": "LLMClient",
    "rag": "RAGClient",
    "graph": "GraphClient",
    "blob": "BlobClient",
    "meta": "MetaClient",
}


class ClientManager:
    """Manager class to instantiate the configured client of one client type."""

    def __init__(self, helper_config: HelperConfig, client_type: str):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client_type = client_type.strip().lower()
        if self.client_type not in _CLASS_PREFIXES:
            raise ValueError("Unknown client type '%s'. Supported: %s" % (client_type, sorted(_CLASS_PREFIXES)))
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """Read the engine name from env configuration ({TYPE}_ENGINE).

        Returns:
            str: Capitalised engine name (e.g. "Qdrant").

        Raises:
            ValueError: If {TYPE}_ENGINE is not set or empty.
        """
        key = f"{self.client_type.upper()}_ENGINE"
        engine = self.helper_config.get_string_val(key)
        if not engine:
            raise ValueError("No %s engine specified in configuration (%s)." % (self.client_type, key))
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> ClientInterface:
        """Instantiate the client for the configured engine.

        Returns:
            ClientInterface: The instantiated client.

        Raises:
            ValueError: If the engine is unsupported or cannot be imported.
        """
        engine = self._get_engine_from_env()
        class_name = f"{_CLASS_PREFIXES[self.client_type]}{engine}"
        try:
            module = __import__(
                f"shared.clients.{self.client_type}.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError("Unsupported %s engine '%s'. Error: %s" % (self.client_type, engine, e))
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated %s client for engine: %s", self.client_type, engine)
        return client

    def get_client(self) -> ClientInterface:
        """Return the instantiated client."""
        return self.client
