import pytest

from shared.access.AccessPolicyEngine import AccessPolicyEngine
from shared.exceptions.errors import InvalidInput
from shared.models.access import Principal, QueryMode, Role
from tests.fakes.qdrant import matches_filter


def _chunk(source, access, user_id="admin-1", roles=(), version=None, is_latest=False):
    return {
        "source": source,
        "access": access,
        "user_id": user_id,
        "is_public": access == "public",
        "roles": list(roles),
        "version": version,
        "is_latest": is_latest,
    }


CHUNKS = {
    "own_private": _chunk("notes.txt", "private", user_id="u1"),
    "foreign_private": _chunk("diary.txt", "private", user_id="u2"),
    "public_latest": _chunk("handbook.pdf", "public", version=2, is_latest=True),
    "public_old": _chunk("handbook.pdf", "public", version=1),
    "sales_latest": _chunk("pricing.pdf", "roles", roles=["sales"], version=1, is_latest=True),
    "developer_latest": _chunk("runbook.pdf", "roles", roles=["developer"], version=1, is_latest=True),
    "paused_public": _chunk("old-policy.pdf", "public", version=1, is_latest=True),
}


def _visible(query_filter):
    return {name for name, payload in CHUNKS.items() if matches_filter(payload, query_filter)}


class TestAccessPolicyEngine:
    """Test suite for the retrieval filter builder."""

    @pytest.fixture
    def policy(self):
        return AccessPolicyEngine()

    def test_default_mode_for_sales_user(self, policy):
        principal = Principal(id="u1", role=Role.SALES)
        query_filter = policy.build_filter(principal, QueryMode(), {"old-policy.pdf"})
        assert _visible(query_filter) == {"own_private", "public_latest", "sales_latest"}

    def test_sales_user_sees_only_latest_sales_chunk(self, policy):
        chunks = [CHUNKS["foreign_private"], CHUNKS["sales_latest"], CHUNKS["public_old"]]
        query_filter = policy.build_filter(Principal(id="u1", role=Role.SALES), QueryMode())
        assert [matches_filter(chunk, query_filter) for chunk in chunks] == [False, True, False]

    def test_principal_without_role_gets_no_roles_branch(self, policy):
        query_filter = policy.build_filter(Principal(id="u1"), QueryMode())
        assert len(query_filter["should"]) == 2
        assert _visible(query_filter) == {"own_private", "public_latest", "paused_public"}

    def test_no_paused_clause_when_nothing_is_paused(self, policy):
        query_filter = policy.build_filter(Principal(id="u1"), QueryMode(), set())
        assert "must_not" not in query_filter

    def test_explicit_mode_selects_one_public_version(self, policy):
        principal = Principal(id="u1", role=Role.SALES)
        query_filter = policy.build_filter(principal, QueryMode(source="handbook.pdf", version=1))
        assert _visible(query_filter) == {"public_old"}

    def test_explicit_mode_excludes_role_documents(self, policy):
        principal = Principal(id="u1", role=Role.SALES)
        query_filter = policy.build_filter(principal, QueryMode(source="pricing.pdf", version=1))
        assert _visible(query_filter) == set()

    def test_paused_source_is_excluded_in_explicit_mode(self, policy):
        query_filter = policy.build_filter(Principal(id="u1"), QueryMode(source="handbook.pdf", version=2), ["handbook.pdf"])
        assert _visible(query_filter) == set()

    def test_paused_source_is_excluded_for_private_owner(self, policy):
        query_filter = policy.build_filter(Principal(id="u1"), QueryMode(), ["notes.txt"])
        assert "own_private" not in _visible(query_filter)

    def test_equal_inputs_give_equal_filters(self, policy):
        principal = Principal(id="u1", role=Role.DEVELOPER)
        first = policy.build_filter(principal, QueryMode(), ["b.pdf", "a.pdf"])
        second = policy.build_filter(principal, QueryMode(), {"a.pdf", "b.pdf"})
        assert first == second
        assert first["must_not"] == [{"key": "source", "match": {"any": ["a.pdf", "b.pdf"]}}]

    def test_shared_source_filter_ignores_private_chunks(self, policy):
        visible = _visible(policy.build_shared_source_filter())
        assert "own_private" not in visible
        assert {"public_latest", "public_old", "sales_latest"} <= visible

    def test_private_filter_is_scoped_to_owner(self, policy):
        assert _visible(policy.build_private_filter("u1")) == {"own_private"}
        assert _visible(policy.build_private_filter("u1", "diary.txt")) == set()


class TestQueryMode:
    """Test suite for QueryMode.from_request."""

    def test_no_selection_is_default_mode(self):
        mode = QueryMode.from_request(None, None)
        assert not mode.is_explicit

    def test_blank_fields_are_default_mode(self):
        assert not QueryMode.from_request("  ", "").is_explicit

    def test_string_version_is_parsed(self):
        mode = QueryMode.from_request("handbook.pdf", "3")
        assert mode.is_explicit
        assert (mode.source, mode.version) == ("handbook.pdf", 3)

    @pytest.mark.parametrize("source,version", [
        ("handbook.pdf", None),
        (None, 2),
        ("handbook.pdf", "latest"),
        ("handbook.pdf", 0),
        ("handbook.pdf", "-1"),
    ])
    def test_invalid_selection_is_rejected(self, source, version):
        with pytest.raises(InvalidInput):
            QueryMode.from_request(source, version)


class TestRole:
    def test_parse_list_drops_blanks_and_duplicates(self):
        assert Role.parse_list("sales, Developer,,sales") == [Role.SALES, Role.DEVELOPER]

    def test_unknown_role_is_invalid(self):
        with pytest.raises(InvalidInput):
            Role.parse_list("sales,janitor")
