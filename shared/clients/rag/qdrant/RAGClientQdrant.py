from shared.helper.HelperConfig import HelperConfig
from shared.clients.rag.RAGClientInterface import PayloadFilter, RAGClientInterface
from shared.clients.rag.models.Scroll import ScrollResult
from shared.clients.rag.models.VectorPoint import SearchHit, VectorPoint
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="docintel_chunks", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Qdrant"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default=None),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="COLLECTION", val_type="string", default="docintel_chunks")
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        # qdrant expects the raw key, not a bearer token
        return {"api-key": self._api_key} if self._api_key else {}

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_collection(self, suffix: str = "") -> str:
        """E.g. "/collections/docintel_chunks/points/search" for suffix "points/search"."""
        path = f"/collections/{self._collection_name}"
        return f"{path}/{suffix}" if suffix else path

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_filter_payload(self, filters: PayloadFilter) -> dict:
        """Translate a payload filter into a Qdrant "must" filter.

        Lists become match-any conditions, scalars exact-match conditions.
        """
        conditions: list[dict] = []
        for key, value in filters.items():
            if isinstance(value, list):
                conditions.append({"key": key, "match": {"any": value}})
            else:
                conditions.append({"key": key, "match": {"value": value}})
        return {"must": conditions}

    def get_search_payload(self, vector: list[float], filters: PayloadFilter, limit: int, score_threshold: float | None) -> dict:
        payload = {
            "vector": vector,
            "filter": self.get_filter_payload(filters),
            "limit": limit,
            "with_payload": True,
            "with_vector": False,
        }
        if score_threshold is not None:
            payload["score_threshold"] = score_threshold
        return payload

    def get_scroll_payload(self, filters: PayloadFilter, with_vector: bool, limit: int, offset: str | int | None = None) -> dict:
        payload = {
            "filter": self.get_filter_payload(filters),
            "limit": limit,
            "with_payload": True,
            "with_vector": with_vector,
        }
        if offset is not None:
            payload["offset"] = offset
        return payload

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_existence_check(self) -> bool:
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_collection("exists"), raise_on_error=True)
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, vector_size: int, distance: str = "Cosine") -> None:
        await self.do_request(
            method="PUT",
            json={"vectors": {"size": vector_size, "distance": distance}},
            endpoint=self._get_endpoint_collection(),
            raise_on_error=True,
        )

    async def do_create_payload_index(self, field_name: str) -> None:
        await self.do_request(
            method="PUT",
            json={"field_name": field_name, "field_schema": "keyword"},
            endpoint=self._get_endpoint_collection("index"),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_upsert_points(self, points: list[VectorPoint]) -> None:
        await self.do_request(
            method="PUT",
            json={"points": [point.to_backend() for point in points]},
            endpoint=self._get_endpoint_collection("points"),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_search(self, vector: list[float], filters: PayloadFilter, limit: int, score_threshold: float | None = None) -> list[SearchHit]:
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(vector, filters, limit, score_threshold),
            endpoint=self._get_endpoint_collection("points/search"),
            raise_on_error=True,
        )
        return [
            SearchHit(id=str(item["id"]), score=float(item.get("score", 0.0)), payload=item.get("payload") or {})
            for item in resp.json().get("result", [])
        ]

    async def do_delete_points_by_filter(self, filters: PayloadFilter) -> None:
        await self.do_request(
            method="POST",
            json={"filter": self.get_filter_payload(filters)},
            endpoint=self._get_endpoint_collection("points/delete"),
            params={"wait": "true"},
            raise_on_error=True,
        )

    async def do_scroll(self, filters: PayloadFilter, with_vector: bool = False, limit: int = 256, offset: str | int | None = None) -> ScrollResult:
        resp = await self.do_request(
            method="POST",
            json=self.get_scroll_payload(filters, with_vector, limit, offset),
            endpoint=self._get_endpoint_collection("points/scroll"),
            raise_on_error=True,
        )
        result = resp.json().get("result", {})
        return ScrollResult(
            result=result.get("points", []),
            next_page_offset=result.get("next_page_offset"),
        )

    async def do_count(self, filters: PayloadFilter) -> int:
        resp = await self.do_request(
            method="POST",
            json={"filter": self.get_filter_payload(filters), "exact": True},
            endpoint=self._get_endpoint_collection("points/count"),
            raise_on_error=True,
        )
        return int(resp.json().get("result", {}).get("count", 0))
