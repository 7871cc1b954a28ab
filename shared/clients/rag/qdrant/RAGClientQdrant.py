from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.QueryHit import QueryHit
from shared.clients.rag.models.ScrollPage import StoredPoint
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class RAGClientQdrant(RAGClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default=None, val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")
        self._collection_name = self.get_config_val("COLLECTION", default="compass_documents", val_type="string")

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
            EnvConfig(env_key="COLLECTION", val_type="string", default="compass_documents"),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"api-key": f"{self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/healthz"

    def _get_endpoint_scroll(self) -> str:
        return f"/collections/{self._collection_name}/points/scroll"

    def _get_endpoint_search(self) -> str:
        return f"/collections/{self._collection_name}/points/search"

    def _get_endpoint_points(self) -> str:
        # wait=true so a following search already sees the upserted points
        return f"/collections/{self._collection_name}/points?wait=true"

    def _get_endpoint_set_payload(self) -> str:
        return f"/collections/{self._collection_name}/points/payload?wait=true"

    def _get_endpoint_delete_points(self) -> str:
        return f"/collections/{self._collection_name}/points/delete?wait=true"

    def _get_endpoint_check_collection_existence(self) -> str:
        return f"/collections/{self._collection_name}/exists"

    def _get_endpoint_create_collection(self) -> str:
        return f"/collections/{self._collection_name}"

    def _get_endpoint_count(self) -> str:
        return f"/collections/{self._collection_name}/points/count"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_scroll_payload(self, filter: dict | None, with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | None = None) -> dict:
        payload = {
            "limit": limit,
            "with_payload": with_payload,
            "with_vector": with_vector,
        }
        if filter:
            payload["filter"] = filter
        if offset is not None:
            payload["offset"] = offset
        return payload

    def get_search_payload(self, vector: list[float], filter: dict | None, top_k: int) -> dict:
        payload = {
            "vector": vector,
            "limit": top_k,
            "with_payload": True,
            "with_vector": False,
        }
        if filter:
            payload["filter"] = filter
        return payload

    def get_set_payload_payload(self, point_ids: list[str], patch: dict) -> dict:
        return {"payload": patch, "points": point_ids}

    def get_count_payload(self, filter: dict | None) -> dict:
        payload: dict = {"exact": True}
        if filter:
            payload["filter"] = filter
        return payload

    def get_delete_payload(self, point_ids: list[str]) -> dict:
        return {"points": point_ids}

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_scroll_points(self, raw_response: dict) -> list[StoredPoint]:
        points = raw_response.get("result", {}).get("points", [])
        return [StoredPoint(id=str(point["id"]), payload=point.get("payload") or {}) for point in points]

    def extract_next_page_offset(self, raw_response: dict) -> str | None:
        offset = raw_response.get("result", {}).get("next_page_offset")
        return str(offset) if offset is not None else None

    def extract_search_hits(self, raw_response: dict) -> list[QueryHit]:
        return [
            QueryHit(id=str(hit.get("id")), score=float(hit.get("score", 0.0)), payload=hit.get("payload") or {})
            for hit in raw_response.get("result", [])
        ]
