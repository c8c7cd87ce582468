import numpy as np

from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import PayloadFilter, RAGClientInterface
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint
from shared.models.config import EnvConfig


class RAGClientMemory(RAGClientInterface):
    """In-process vector store with brute-force cosine search.

    Used for local development and tests. Nothing survives a restart.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._vector_size: int | None = None
        # point id → (vector, payload); dicts keep insertion order
        self._points: dict[str, tuple[np.ndarray, dict]] = {}

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Memory"

    def _get_required_config(self) -> list[EnvConfig]:
        return []

    @staticmethod
    def _matches(payload: dict, filters: PayloadFilter) -> bool:
        for key, value in filters.items():
            if isinstance(value, list):
                if payload.get(key) not in value:
                    return False
            elif payload.get(key) != value:
                return False
        return True

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport=None) -> None:
        return None

    async def close(self) -> None:
        return None

    async def do_healthcheck(self) -> bool:
        return True

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self) -> bool:
        return self._vector_size is not None

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        self._vector_size = vector_size

    async def do_create_payload_index(self, field_name: str) -> None:
        return None

    async def do_upsert_points(self, points: list[VectorPoint]) -> None:
        for point in points:
            vector = np.asarray(point.vector, dtype=float)
            if self._vector_size is not None and vector.shape[0] != self._vector_size:
                raise ValueError(f"Vector size {vector.shape[0]} does not match collection size {self._vector_size}.")
            self._points[point.id] = (vector, point.payload.model_dump(by_alias=True))

    async def do_search(self, vector: list[float], filters: PayloadFilter, limit: int, score_threshold: float | None = None) -> list[SearchHit]:
        query = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = query / norm

        hits: list[SearchHit] = []
        for point_id, (stored, payload) in self._points.items():
            if not self._matches(payload, filters):
                continue
            stored_norm = np.linalg.norm(stored)
            score = float(np.dot(stored, query) / stored_norm) if stored_norm > 0 else 0.0
            if score_threshold is not None and score < score_threshold:
                continue
            hits.append(SearchHit(id=point_id, score=score, payload=dict(payload)))
        # stable sort keeps insertion order between equal scores
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    async def do_delete_points_by_filter(self, filters: PayloadFilter) -> None:
        for point_id in [pid for pid, (_, payload) in self._points.items() if self._matches(payload, filters)]:
            del self._points[point_id]

    async def do_scroll(self, filters: PayloadFilter, with_vector: bool = False, limit: int = 256, offset: str | int | None = None) -> ScrollResult:
        matching = [(pid, stored, payload) for pid, (stored, payload) in self._points.items() if self._matches(payload, filters)]
        start = int(offset or 0)
        page = matching[start: start + limit]
        result = []
        for pid, stored, payload in page:
            point = {"id": pid, "payload": dict(payload)}
            if with_vector:
                point["vector"] = stored.tolist()
            result.append(point)
        next_offset = start + limit if start + limit < len(matching) else None
        return ScrollResult(result=result, next_page_offset=next_offset)

    async def do_count(self, filters: PayloadFilter) -> int:
        return sum(1 for _, payload in self._points.values() if self._matches(payload, filters))
