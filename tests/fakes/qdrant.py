"""In-memory stand-in for the subset of the Qdrant REST API the RAG client uses."""

import json
import math
from collections import Counter
from typing import Callable

import httpx

_RANGE_CHECKS = {
    "gt": lambda value, bound: value > bound,
    "gte": lambda value, bound: value >= bound,
    "lt": lambda value, bound: value < bound,
    "lte": lambda value, bound: value <= bound,
}


def _equals(stored, expected) -> bool:
    # keep True from matching version 1
    return stored == expected and isinstance(stored, bool) == isinstance(expected, bool)


def _match_condition(payload: dict, condition: dict) -> bool:
    if any(key in condition for key in ("must", "should", "must_not")):
        return matches_filter(payload, condition)
    value = payload.get(condition["key"])
    if "range" in condition:
        bounds = condition["range"]
        return isinstance(value, (int, float)) and all(
            _RANGE_CHECKS[op](value, bound) for op, bound in bounds.items() if bound is not None
        )
    match = condition["match"]
    candidates = value if isinstance(value, list) else [value]
    if "value" in match:
        return any(_equals(candidate, match["value"]) for candidate in candidates)
    if "any" in match:
        return any(_equals(candidate, expected) for candidate in candidates for expected in match["any"])
    raise ValueError(f"Unsupported match {match}")


def matches_filter(payload: dict, query_filter: dict | None) -> bool:
    if not query_filter:
        return True
    if not all(_match_condition(payload, c) for c in query_filter.get("must", [])):
        return False
    should = query_filter.get("should", [])
    if should and not any(_match_condition(payload, c) for c in should):
        return False
    return not any(_match_condition(payload, c) for c in query_filter.get("must_not", []))


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeQdrant:
    def __init__(self) -> None:
        self.points: dict[str, dict] = {}
        self.collection_exists = False
        self.vector_size: int | None = None
        self.calls: Counter = Counter()
        self._failures: list[dict] = []

    ##########################################
    ############### HELPERS ##################
    ##########################################

    def fail(self, operation: str, times: int = 1, status: int = 503, when: Callable[[dict], bool] | None = None) -> None:
        """Answer the next `times` matching calls of an operation with an error status."""
        self._failures.append({"operation": operation, "remaining": times, "status": status, "when": when})

    def add_point(self, point_id: str, vector: list[float], payload: dict) -> None:
        self.points[point_id] = {"id": point_id, "vector": vector, "payload": dict(payload)}

    def payloads(self, **criteria) -> list[dict]:
        return [
            p["payload"] for p in self.points.values()
            if all(_equals(p["payload"].get(key), value) for key, value in criteria.items())
        ]

    def _injected_failure(self, operation: str, body: dict) -> httpx.Response | None:
        for failure in self._failures:
            if failure["operation"] != operation or failure["remaining"] <= 0:
                continue
            if failure["when"] is not None and not failure["when"](body):
                continue
            failure["remaining"] -= 1
            return httpx.Response(failure["status"], json={"status": {"error": "injected failure"}})
        return None

    @staticmethod
    def _select_payload(payload: dict, with_payload) -> dict | None:
        if with_payload is True:
            return dict(payload)
        if isinstance(with_payload, list):
            return {key: payload[key] for key in with_payload if key in payload}
        return None

    def _filtered(self, query_filter: dict | None) -> list[dict]:
        return [p for p in self.points.values() if matches_filter(p["payload"], query_filter)]

    ##########################################
    ############### HANDLER ##################
    ##########################################

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/healthz":
            operation = "healthz"
        elif path.endswith("/exists"):
            operation = "exists"
        elif path.endswith("/points/search"):
            operation = "search"
        elif path.endswith("/points/scroll"):
            operation = "scroll"
        elif path.endswith("/points/count"):
            operation = "count"
        elif path.endswith("/points/payload"):
            operation = "set_payload"
        elif path.endswith("/points/delete"):
            operation = "delete"
        elif path.endswith("/points") and request.method == "PUT":
            operation = "upsert"
        elif request.method == "PUT":
            operation = "create"
        else:
            return httpx.Response(404, json={"status": {"error": f"unknown path {path}"}})

        self.calls[operation] += 1
        failure = self._injected_failure(operation, body)
        if failure is not None:
            return failure
        return getattr(self, f"_do_{operation}")(body)

    def _ok(self, result) -> httpx.Response:
        return httpx.Response(200, json={"result": result, "status": "ok", "time": 0.001})

    def _do_healthz(self, body: dict) -> httpx.Response:
        return httpx.Response(200, text="healthz check passed")

    def _do_exists(self, body: dict) -> httpx.Response:
        return self._ok({"exists": self.collection_exists})

    def _do_create(self, body: dict) -> httpx.Response:
        self.collection_exists = True
        self.vector_size = body["vectors"]["size"]
        return self._ok(True)

    def _do_upsert(self, body: dict) -> httpx.Response:
        for point in body["points"]:
            self.add_point(str(point["id"]), point["vector"], point["payload"])
        return self._ok({"operation_id": 1, "status": "completed"})

    def _do_set_payload(self, body: dict) -> httpx.Response:
        for point_id in body["points"]:
            if point_id in self.points:
                self.points[point_id]["payload"].update(body["payload"])
        return self._ok({"operation_id": 2, "status": "completed"})

    def _do_delete(self, body: dict) -> httpx.Response:
        for point_id in body["points"]:
            self.points.pop(str(point_id), None)
        return self._ok({"operation_id": 3, "status": "completed"})

    def _do_count(self, body: dict) -> httpx.Response:
        return self._ok({"count": len(self._filtered(body.get("filter")))})

    def _do_scroll(self, body: dict) -> httpx.Response:
        matching = sorted(self._filtered(body.get("filter")), key=lambda p: p["id"])
        start = int(body.get("offset") or 0)
        limit = body.get("limit") or 10
        page = matching[start: start + limit]
        next_offset = start + limit if start + limit < len(matching) else None
        points = [
            {"id": p["id"], "payload": self._select_payload(p["payload"], body.get("with_payload", True))}
            for p in page
        ]
        return self._ok({"points": points, "next_page_offset": next_offset})

    def _do_search(self, body: dict) -> httpx.Response:
        scored = [
            (_cosine(body["vector"], p["vector"]), p) for p in self._filtered(body.get("filter"))
        ]
        scored.sort(key=lambda item: item[0], reverse=True)
        hits = [
            {"id": p["id"], "version": 0, "score": score, "payload": dict(p["payload"])}
            for score, p in scored[: body.get("limit", 10)]
        ]
        return self._ok(hits)
