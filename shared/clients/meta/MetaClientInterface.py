from abc import abstractmethod
from datetime import datetime

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentMetadata, DocumentRecord, ProcessingStatus
from shared.models.errors import DocIntelError, StoreUnavailableError


class MetaClientInterface(ClientInterface):
    """Keyed record store for DocumentRecords, addressed by (doc_id, user_id)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_client_type(self) -> str:
        return "meta"

    def _get_error_class(self) -> type[DocIntelError]:
        return StoreUnavailableError

    ##########################################
    ############### REQUESTS #################
    ##########################################

    @abstractmethod
    async def do_create(self, record: DocumentRecord) -> DocumentRecord:
        """Insert a new record."""
        pass

    @abstractmethod
    async def do_get(self, doc_id: str, user_id: str) -> DocumentRecord | None:
        pass

    @abstractmethod
    async def do_get_many(self, doc_ids: list[str], user_id: str) -> dict[str, DocumentRecord]:
        """Records of the user for the given ids, keyed by doc_id. Unknown ids are left out."""
        pass

    @abstractmethod
    async def do_list_by_user(self, user_id: str, page: int = 1, limit: int = 10) -> tuple[list[DocumentRecord], int]:
        """One page of the user's records, newest upload first.

        Returns:
            tuple[list[DocumentRecord], int]: The page and the total number of records of the user.
        """
        pass

    @abstractmethod
    async def do_update_status(self, doc_id: str, user_id: str, status: ProcessingStatus, error_message: str | None = None) -> bool:
        """Atomically set status and error message. Any status other than failed clears the error.

        Returns:
            bool: False if the record does not exist.
        """
        pass

    @abstractmethod
    async def do_update_metadata(self, doc_id: str, user_id: str, metadata: DocumentMetadata) -> bool:
        pass

    @abstractmethod
    async def do_update_fields(self, doc_id: str, user_id: str, filename: str | None = None, metadata: dict | None = None) -> DocumentRecord | None:
        """Update the user-editable fields. metadata is merged into the existing metadata.

        Returns:
            DocumentRecord | None: The updated record, None if it does not exist.
        """
        pass

    @abstractmethod
    async def do_delete(self, doc_id: str, user_id: str) -> bool:
        pass

    @abstractmethod
    async def do_find_by_status(self, statuses: list[ProcessingStatus], updated_before: datetime | None = None) -> list[DocumentRecord]:
        """Records of all users in one of the statuses, optionally last updated before a point in time."""
        pass
