from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint
from shared.models.errors import DocIntelError, StoreUnavailableError

from shared.helper.HelperConfig import HelperConfig

# payload fields that get a keyword index, every search filters on them
INDEXED_PAYLOAD_FIELDS = ("userId", "docId")

# Filters are plain dicts: payload key → value (exact match) or list of values (match any).
PayloadFilter = dict[str, str | list[str]]


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @staticmethod
    def _require_user(user_id: str) -> None:
        if not user_id or not str(user_id).strip():
            raise ValueError("user_id is mandatory for every vector store access.")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    def _get_error_class(self) -> type[DocIntelError]:
        return StoreUnavailableError

    ##########################################
    ########## BACKEND OPERATIONS ############
    ##########################################

    @abstractmethod
    async def do_existence_check(self) -> bool:
        """Check if the collection exists in the rag backend."""
        pass

    @abstractmethod
    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        """Create the collection with a fixed vector size and distance metric."""
        pass

    @abstractmethod
    async def do_create_payload_index(self, field_name: str) -> None:
        """Create a keyword index on a payload field."""
        pass

    @abstractmethod
    async def do_upsert_points(self, points: list[VectorPoint]) -> None:
        """Insert new points or replace existing ones with the same id.

        Raises:
            StoreUnavailableError: If the backend rejects the request or cannot be reached.
        """
        pass

    @abstractmethod
    async def do_search(self, vector: list[float], filters: PayloadFilter, limit: int, score_threshold: float | None = None) -> list[SearchHit]:
        """Nearest-neighbour search restricted by payload filters.

        Returns:
            list[SearchHit]: Matches ordered by descending cosine similarity.
        """
        pass

    @abstractmethod
    async def do_delete_points_by_filter(self, filters: PayloadFilter) -> None:
        """Delete all points matching the filters."""
        pass

    @abstractmethod
    async def do_scroll(self, filters: PayloadFilter, with_vector: bool = False, limit: int = 256, offset: str | int | None = None) -> ScrollResult:
        """Read a single page of points matching the filters."""
        pass

    @abstractmethod
    async def do_count(self, filters: PayloadFilter) -> int:
        """Count the points matching the filters."""
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_initialize(self, vector_size: int | None = None) -> None:
        """Create the collection and its payload indexes if they do not exist yet. Idempotent.

        Args:
            vector_size (int | None): Vector size of the collection. Required on first creation.
        """
        if await self.do_existence_check():
            return
        if not vector_size:
            raise ValueError("vector_size is required to create the collection.")
        self.logging.info("Creating %s collection with vector size %d.", self.get_engine_name(), vector_size)
        await self.do_create_collection(vector_size=vector_size, distance="Cosine")
        for field_name in INDEXED_PAYLOAD_FIELDS:
            await self.do_create_payload_index(field_name)

    async def do_search_chunks(
        self,
        vector: list[float],
        user_id: str,
        limit: int,
        score_threshold: float | None = None,
        doc_ids: list[str] | None = None,
    ) -> list[SearchHit]:
        """Search the chunks of one user, optionally only inside some documents.

        Args:
            vector (list[float]): The query vector.
            user_id (str): Owner filter, mandatory.
            limit (int): Maximum number of hits.
            score_threshold (float | None): Minimum cosine similarity.
            doc_ids (list[str] | None): Restrict hits to these documents.

        Returns:
            list[SearchHit]: Matches ordered by descending similarity.
        """
        self._require_user(user_id)
        filters: PayloadFilter = {"userId": user_id}
        if doc_ids:
            filters["docId"] = list(doc_ids)
        return await self.do_search(vector=vector, filters=filters, limit=limit, score_threshold=score_threshold)

    async def do_delete_by_document(self, doc_id: str, user_id: str) -> None:
        """Remove all points whose payload matches both doc_id and user_id."""
        self._require_user(user_id)
        await self.do_delete_points_by_filter({"docId": doc_id, "userId": user_id})

    async def do_count_document_points(self, doc_id: str, user_id: str) -> int:
        self._require_user(user_id)
        return await self.do_count({"docId": doc_id, "userId": user_id})

    async def do_scroll_all(self, filters: PayloadFilter, with_vector: bool = False, page_size: int = 256) -> ScrollResult:
        """Scroll through ALL points matching the filter, paginating automatically.

        Returns:
            ScrollResult: All matching points collected across all pages.
        """
        all_points: list[dict] = []
        offset: str | int | None = None
        page = 1
        while True:
            page_result = await self.do_scroll(filters=filters, with_vector=with_vector, limit=page_size, offset=offset)
            all_points.extend(page_result.result)
            self.logging.debug(
                "Fetched RAG points page %d from %s, total points so far: %d",
                page, self.get_engine_name(), len(all_points),
            )
            offset = page_result.next_page_offset
            if offset is None:
                break
            page += 1
        return ScrollResult(result=all_points)

    async def do_fetch_document_vectors(self, doc_id: str, user_id: str) -> list[list[float]]:
        """Read back the stored chunk vectors of one document, in chunk order."""
        self._require_user(user_id)
        scroll = await self.do_scroll_all({"docId": doc_id, "userId": user_id}, with_vector=True)
        points = sorted(scroll.result, key=lambda p: (p.get("payload") or {}).get("chunkIndex", 0))
        return [p["vector"] for p in points if p.get("vector")]
