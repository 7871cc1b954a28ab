from abc import abstractmethod
from typing import Any
import json
import math

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.rag.models.QueryHit import QueryHit
from shared.clients.rag.models.ScrollPage import ScrollPage, StoredPoint
from shared.exceptions.errors import CompassError, StoreRejected, StoreUnavailable
from shared.helper.HelperConfig import HelperConfig


class RAGClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self.scroll_page_size = int(helper_config.get_number_val("RAG_SCROLL_PAGE_SIZE", default=1000))
        self.delete_batch_size = int(helper_config.get_number_val("RAG_DELETE_BATCH_SIZE", default=500))

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "rag"
        """
        return "rag"

    ################ ERRORS ##################
    def _get_unavailable_error(self) -> type[CompassError]:
        return StoreUnavailable

    def _get_rejected_error(self) -> type[CompassError]:
        return StoreRejected

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_scroll(self) -> str:
        """
        Returns the endpoint path for scroll requests (e.g. "/collections/my_col/points/scroll").
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self) -> str:
        """
        Returns the endpoint path for similarity search requests (e.g. "/collections/my_col/points/search").
        """
        pass

    @abstractmethod
    def _get_endpoint_points(self) -> str:
        """
        Returns the endpoint path for points upsert requests (e.g. "/collections/my_col/points").
        """
        pass

    @abstractmethod
    def _get_endpoint_set_payload(self) -> str:
        """
        Returns the endpoint path for partial payload updates (e.g. "/collections/my_col/points/payload").
        """
        pass

    @abstractmethod
    def _get_endpoint_delete_points(self) -> str:
        """
        Returns the endpoint path for deleting points by id (e.g. "/collections/my_col/points/delete").
        """
        pass

    @abstractmethod
    def _get_endpoint_check_collection_existence(self) -> str:
        """
        Returns the endpoint path for collection existence check requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_create_collection(self) -> str:
        """
        Returns the endpoint path for create collection requests.
        """
        pass

    @abstractmethod
    def _get_endpoint_count(self) -> str:
        """Returns the endpoint path for counting points matching a filter."""
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_scroll_payload(self, filter: dict | None, with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | None = None) -> dict:
        """
        Returns the payload for scroll requests to the RAG backend.

        Args:
            filter (dict | None): The filter to apply, in the backend's filter dialect.
            with_payload (bool | list | dict): Whether to include the payload, or which payload fields to include.
            with_vector (bool | list): Whether to include the vector.
            limit (int | None): The maximum number of results to return.
            offset (str | None): Pagination cursor returned by the previous scroll page.
                                 None means start from the beginning.

        Returns:
            dict: The payload for the scroll request.
        """
        pass

    @abstractmethod
    def get_search_payload(self, vector: list[float], filter: dict | None, top_k: int) -> dict:
        """
        Returns the payload for a similarity search restricted by a filter.

        Args:
            vector (list[float]): The query embedding.
            filter (dict | None): The access filter.
            top_k (int): Maximum number of hits.

        Returns:
            dict: The payload for the search request.
        """
        pass

    @abstractmethod
    def get_set_payload_payload(self, point_ids: list[str], patch: dict) -> dict:
        """
        Returns the payload for a partial metadata update of the given points.
        """
        pass

    @abstractmethod
    def get_count_payload(self, filter: dict | None) -> dict:
        """Builds the backend-specific request payload for a point count."""
        pass

    @abstractmethod
    def get_delete_payload(self, point_ids: list[str]) -> dict:
        """
        Builds the backend-specific request payload for deleting points by id.
        """
        pass

    ################ RESPONSE PARSER ##################
    @abstractmethod
    def extract_next_page_offset(self, raw_response: dict) -> str | None:
        """
        Extracts the pagination cursor for the next scroll page from a raw response.
        Return None when the backend signals that no further pages exist.
        """
        pass

    @abstractmethod
    def extract_scroll_points(self, raw_response: dict) -> list[StoredPoint]:
        """
        Extracts the points of a raw scroll response, with an empty payload where none was requested.
        """
        pass

    @abstractmethod
    def extract_search_hits(self, raw_response: dict) -> list[QueryHit]:
        """
        Extracts the hits of a similarity search, best match first.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def _post_json(self, endpoint: str, body: dict, method: str = "POST") -> httpx.Response:
        return await self.do_request(
            method=method,
            content=json.dumps(body),
            endpoint=endpoint,
            additional_headers={"Content-Type": "application/json"},
            raise_on_error=True,
        )

    async def do_existence_check(self) -> bool:
        """Check if the collection exists in the rag backend.

        Returns:
            bool: True if the collection exists, False otherwise.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_check_collection_existence(), raise_on_error=True)
        return bool(resp.json().get("result", {}).get("exists"))

    async def do_create_collection(self, vector_size: int = 768, distance: str = "Cosine") -> httpx.Response:
        """Create the collection in the rag backend.

        Args:
            vector_size (int): The size of the vectors in the collection.
            distance (str): The distance metric for the vectors.

        Returns:
            httpx.Response: The response from the create collection request.
        """
        return await self.do_request(
            method="PUT",
            json={
                "vectors": {
                    "size": vector_size,
                    "distance": distance}},
            endpoint=self._get_endpoint_create_collection(),
            raise_on_error=True)

    async def do_query(self, vector: list[float], filter: dict | None, top_k: int = 5) -> list[QueryHit]:
        """Return the top_k points closest to vector among those matching filter.

        Args:
            vector (list[float]): The query embedding.
            filter (dict | None): Access filter; None searches the whole collection.
            top_k (int): Maximum number of hits.

        Returns:
            list[QueryHit]: Hits ordered by descending score.
        """
        resp = await self._post_json(self._get_endpoint_search(), self.get_search_payload(vector, filter, top_k))
        return self.extract_search_hits(resp.json())

    async def do_upsert_points(self, points: list[dict[str, Any]]) -> httpx.Response:
        """Upsert points into the collection.
        Inserts new points or replaces existing ones if a point with the same ID already exists.

        Args:
            points (list[dict[str, Any]]): Points as {"id", "vector", "payload"} dicts.

        Returns:
            httpx.Response: The response from the upsert request.
        """
        return await self._post_json(self._get_endpoint_points(), {"points": points}, method="PUT")

    async def do_set_payload(self, point_id: str, patch: dict) -> None:
        """Merge patch into the payload of a single point, leaving other fields untouched.

        Args:
            point_id (str): The point to update.
            patch (dict): Payload fields to overwrite, e.g. {"is_latest": False}.
        """
        await self._post_json(self._get_endpoint_set_payload(), self.get_set_payload_payload([point_id], patch))

    async def do_delete_points(self, point_ids: list[str]) -> int:
        """Delete points by id, in batches of RAG_DELETE_BATCH_SIZE.

        Args:
            point_ids (list[str]): The points to delete.

        Returns:
            int: Number of ids submitted for deletion.
        """
        for batch_start in range(0, len(point_ids), self.delete_batch_size):
            batch = point_ids[batch_start: batch_start + self.delete_batch_size]
            await self._post_json(self._get_endpoint_delete_points(), self.get_delete_payload(batch))
        return len(point_ids)

    async def do_delete_points_by_filter(self, filter: dict) -> int:
        """Delete all points matching filter.

        Matching ids are resolved first with a payload-free scroll so the caller
        learns how many records were removed.

        Args:
            filter (dict): The filter that identifies which points to delete.

        Returns:
            int: Number of deleted points.
        """
        matches = await self.do_scroll_all(filter=filter, with_payload=False, with_vector=False)
        point_ids = matches.ids()
        if not point_ids:
            return 0
        deleted = await self.do_delete_points(point_ids)
        self.logging.info("Deleted %d point(s) from %s.", deleted, self.get_engine_name())
        return deleted

    async def do_scroll(self, filter: dict | None, with_payload: bool | list | dict, with_vector: bool | list, limit: int | None = None, offset: str | None = None) -> ScrollPage:
        """Scroll a single page from the collection.

        To retrieve all matching points across an arbitrary number of pages use
        do_scroll_all() instead.

        Args:
            filter (dict | None): The filter to apply.
            with_payload (bool | list | dict): Whether to include the payload, or which payload fields to include.
            with_vector (bool | list): Whether to include the vector.
            limit (int | None): The maximum number of results to return per page.
            offset (str | None): Pagination cursor from the previous page's next_page_offset.

        Returns:
            ScrollPage: The page, including next_page_offset when further pages are available.
        """
        resp = await self._post_json(
            self._get_endpoint_scroll(),
            self.get_scroll_payload(filter, with_payload, with_vector, limit, offset),
        )
        raw_response = resp.json()
        return ScrollPage(
            points=self.extract_scroll_points(raw_response),
            next_page_offset=self.extract_next_page_offset(raw_response),
        )

    async def do_count(self, filter: dict | None) -> int:
        """Count the total number of points matching the given filter."""
        resp = await self._post_json(self._get_endpoint_count(), self.get_count_payload(filter))
        return resp.json().get("result", {}).get("count", 0)

    async def do_scroll_all(self, filter: dict | None, with_payload: bool | list | dict, with_vector: bool | list) -> ScrollPage:
        """Scroll through ALL points matching the filter, paginating automatically.

        Args:
            filter (dict | None): The filter to apply.
            with_payload (bool | list | dict): Whether to include the payload, or which fields.
            with_vector (bool | list): Whether to include the vector in each result point.

        Returns:
            ScrollPage: All matching points collected across all pages;
                        next_page_offset is always None on the returned result.
        """
        all_points: list[StoredPoint] = []
        offset: str | None = None
        page = 1
        total_points = await self.do_count(filter)
        total_pages = math.ceil(total_points / self.scroll_page_size) if total_points > 0 else 1
        while True:
            page_result = await self.do_scroll(
                filter=filter,
                with_payload=with_payload,
                with_vector=with_vector,
                limit=self.scroll_page_size,
                offset=offset,
            )
            all_points.extend(page_result.points)
            self.logging.debug(
                "Fetched RAG points page %d of %d from %s, total points so far: %d of %d",
                page, total_pages, self.get_engine_name(), len(all_points), total_points,
            )
            offset = page_result.next_page_offset
            if not offset:
                break
            page += 1
        return ScrollPage(points=all_points)
