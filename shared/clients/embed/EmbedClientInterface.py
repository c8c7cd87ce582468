import asyncio
from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.models.errors import DocIntelError, EmbeddingFailedError

from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

        # model and embedding config
        settings = helper_config.get_pipeline_settings()
        self.embed_model = helper_config.get_string_val(f"{self.get_client_type().upper()}_MODEL", default=self._get_default_model())
        self.embed_dimensions: int = settings.embed_dimensions
        self.batch_size: int = settings.embed_batch_size
        self.batch_delay: float = settings.embed_batch_delay

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "embed"

    def _get_error_class(self) -> type[DocIntelError]:
        return EmbeddingFailedError

    def get_dimensions(self) -> int:
        """Returns the fixed vector size every embedding of this deployment has."""
        return self.embed_dimensions

    @abstractmethod
    def _get_default_model(self) -> str:
        """Returns the model used when EMBED_MODEL is not set."""
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def get_endpoint_embedding(self) -> str:
        """Path of the embedding endpoint below the base URL, e.g. "/api/embed"."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_embed_payload(self, texts: list[str]) -> dict:
        """Request body embedding all texts in one call. The engine asks for embed_dimensions
        wherever its API allows choosing the output size.
        """
        pass

    ##########################################
    ################# OTHER ##################
    ##########################################

    @abstractmethod
    def extract_embeddings_from_response(self, response_data: dict) -> list[list[float]]:
        """Turn a parsed embedding answer into vectors ordered like the request inputs.

        Raises:
            ValueError: If the answer has no usable vectors. Count and dimension are
                checked by the caller.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_embed(self, text: str) -> list[float]:
        """Embed a single text.

        Args:
            text (str): The text to embed.

        Returns:
            list[float]: The embedding vector.

        Raises:
            EmbeddingFailedError: If the backend fails or returns an unexpected vector.
        """
        vectors = await self._do_embed_request([text])
        return vectors[0]

    async def do_embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts, one vector per input in input order.

        Requests are split into batches of EMBED_BATCH_SIZE with EMBED_BATCH_DELAY seconds
        between consecutive batches.

        Args:
            texts (list[str]): The texts to embed.

        Returns:
            list[list[float]]: Embedding vectors in the same order as the inputs.

        Raises:
            EmbeddingFailedError: If any batch fails. No partial result is returned.
        """
        vectors: list[list[float]] = []
        for batch_start in range(0, len(texts), self.batch_size):
            if batch_start > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            batch = texts[batch_start: batch_start + self.batch_size]
            vectors.extend(await self._do_embed_request(batch))
            self.logging.debug(
                "Embedded batch %d-%d of %d texts via '%s'.",
                batch_start, batch_start + len(batch), len(texts), self.get_engine_name(),
            )
        return vectors

    async def _do_embed_request(self, texts: list[str]) -> list[list[float]]:
        """Send one embedding request and validate the returned vectors."""
        response = await self.do_request(
            method="POST",
            endpoint=self.get_endpoint_embedding(),
            json=self.get_embed_payload(texts),
            raise_on_error=True,
        )
        try:
            vectors = self.extract_embeddings_from_response(response.json())
        except ValueError as e:
            raise EmbeddingFailedError(str(e)) from e

        if len(vectors) != len(texts):
            raise EmbeddingFailedError(
                "Embedding backend returned %d vectors for %d inputs." % (len(vectors), len(texts))
            )
        for vector in vectors:
            if len(vector) != self.embed_dimensions:
                raise EmbeddingFailedError(
                    "Embedding dimension mismatch: expected %d, got %d (model '%s')."
                    % (self.embed_dimensions, len(vector), self.embed_model)
                )
        return vectors
