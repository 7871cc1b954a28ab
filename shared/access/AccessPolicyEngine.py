"""Builds the vector store filter that decides which chunks a principal may retrieve.

All access branching lives here. Filters use the Qdrant filter dialect:
``must`` (AND), ``should`` (OR), ``must_not`` (NOT), ``match.value`` and
``match.any``, ``range``. A ``match.value`` on a list field matches when the list
contains the value.
"""

from typing import Iterable

from shared.models.access import AccessLevel, Principal, QueryMode


def _match(key: str, value) -> dict:
    return {"key": key, "match": {"value": value}}


def _match_any(key: str, values: list) -> dict:
    return {"key": key, "match": {"any": values}}


def _at_least(key: str, lower: int) -> dict:
    return {"key": key, "range": {"gte": lower}}


class AccessPolicyEngine:
    """Pure filter builder: equal inputs always produce equal filters."""

    def build_filter(self, principal: Principal, mode: QueryMode, paused_sources: Iterable[str] = ()) -> dict:
        """Return the retrieval filter for principal in the given query mode.

        Default mode:
            (private AND user_id = principal)
            OR (is_public AND is_latest)
            OR (roles contains principal.role AND is_latest)   -- only if the principal has a role
            AND source NOT IN paused

        Explicit mode:
            source = mode.source AND version = mode.version AND is_public AND source NOT IN paused

        Args:
            principal (Principal): The caller.
            mode (QueryMode): Default or explicit version selection.
            paused_sources (Iterable[str]): Sources excluded from every retrieval.

        Returns:
            dict: The filter, ready to pass to RAGClientInterface.do_query().
        """
        must_not = self.build_paused_clause(paused_sources)

        if mode.is_explicit:
            query_filter: dict = {
                "must": [
                    _match("source", mode.source),
                    _match("version", mode.version),
                    _match("is_public", True),
                ],
            }
        else:
            branches = [
                {"must": [_match("access", AccessLevel.PRIVATE.value), _match("user_id", principal.id)]},
                {"must": [_match("is_public", True), _match("is_latest", True)]},
            ]
            if principal.role is not None:
                branches.append({
                    "must": [
                        _match("access", AccessLevel.ROLES.value),
                        _match("roles", principal.role.value),
                        _match("is_latest", True),
                    ],
                })
            query_filter = {"should": branches}

        if must_not:
            query_filter["must_not"] = must_not
        return query_filter

    def build_paused_clause(self, paused_sources: Iterable[str]) -> list[dict]:
        paused = sorted(set(paused_sources))
        return [_match_any("source", paused)] if paused else []

    ##########################################
    ######### MAINTENANCE FILTERS ############
    ##########################################

    def build_shared_source_filter(self, source: str | None = None, version: int | None = None, latest_only: bool = False) -> dict:
        """Filter over shared (public and roles) chunks, optionally narrowed to one source/version."""
        must = [_match_any("access", [AccessLevel.PUBLIC.value, AccessLevel.ROLES.value])]
        if source is not None:
            must.append(_match("source", source))
        if version is not None:
            must.append(_match("version", version))
        if latest_only:
            must.append(_match("is_latest", True))
        return {"must": must}

    def build_private_filter(self, owner_id: str, source: str | None = None, from_chunk_index: int | None = None) -> dict:
        """Filter over the private chunks of one owner, optionally narrowed to one source and to chunks from an index on."""
        must = [_match("access", AccessLevel.PRIVATE.value), _match("user_id", owner_id)]
        if source is not None:
            must.append(_match("source", source))
        if from_chunk_index is not None:
            must.append(_at_least("chunk_index", from_chunk_index))
        return {"must": must}
