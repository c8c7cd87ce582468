from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    """Embedding client for a local or remote Ollama server (/api/embed).

    Inputs longer than the model context are truncated by Ollama instead of failing the
    whole batch. An API key is only needed behind an authenticating reverse proxy.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._keep_alive = self.get_config_val("KEEP_ALIVE", default="5m", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_default_model(self) -> str:
        return "nomic-embed-text"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="KEEP_ALIVE", val_type="string", default="5m"),
        ]

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        # answers "Ollama is running"
        return ""

    def get_endpoint_embedding(self) -> str:
        return "/api/embed"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, texts: list[str]) -> dict:
        return {
            "model": self.embed_model,
            "input": texts,
            "dimensions": self.embed_dimensions,
            "truncate": True,
            "keep_alive": self._keep_alive,
        }

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Read the "embeddings" list of an /api/embed answer, already in input order.

        Raises:
            ValueError: If the list is missing or one of its vectors is empty.
        """
        embeddings = response_data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            raise ValueError("Ollama answered without embeddings (keys: %s)." % ", ".join(response_data))
        empty = [position for position, vector in enumerate(embeddings) if not vector]
        if empty:
            raise ValueError("Ollama returned empty embeddings at positions %s." % empty)
        return embeddings
