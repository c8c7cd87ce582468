from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError, StoreUnavailableError


class BlobClientInterface(ClientInterface):
    """Opaque blob store keyed by path ({user_id}/{doc_id}/{filename})."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.presign_ttl = int(helper_config.get_number_val(f"{self.get_client_type().upper()}_PRESIGN_TTL", default=3600))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "blob"

    def _get_error_class(self) -> type[DocIntelError]:
        return StoreUnavailableError

    @staticmethod
    def build_key(user_id: str, doc_id: str, filename: str) -> str:
        """Blob key of an uploaded document. Path separators in the filename are flattened."""
        safe_name = filename.replace("/", "_").replace("\\", "_").strip() or "file"
        return f"{user_id}/{doc_id}/{safe_name}"

    ##########################################
    ############### REQUESTS #################
    ##########################################

    @abstractmethod
    async def do_put(self, key: str, data: bytes, content_type: str) -> str:
        """Store bytes under key.

        Returns:
            str: A URL (or URI) identifying the stored object.
        """
        pass

    @abstractmethod
    async def do_get(self, key: str) -> bytes:
        """Read the bytes stored under key.

        Raises:
            FileNotFoundError: If nothing is stored under key.
        """
        pass

    @abstractmethod
    async def do_delete(self, key: str) -> None:
        """Delete the object stored under key. Deleting a missing key is not an error."""
        pass

    @abstractmethod
    async def do_presigned_url(self, key: str, ttl: int | None = None) -> str:
        """Time-limited download URL for key, ttl in seconds (BLOB_PRESIGN_TTL by default)."""
        pass
