import json

import pytest

from shared.access.PausedDocumentRegistry import DocumentStatus, PausedDocumentRegistry


class TestPausedDocumentRegistry:
    """Test suite for the file backed paused document registry."""

    @pytest.fixture
    def registry(self, helper_config):
        return PausedDocumentRegistry(helper_config=helper_config)

    async def test_missing_file_means_nothing_paused(self, registry):
        assert await registry.list() == set()
        assert await registry.is_paused("handbook.pdf") is False

    async def test_pause_is_idempotent(self, registry):
        first = await registry.set_status("handbook.pdf", DocumentStatus.PAUSED)
        second = await registry.set_status("handbook.pdf", DocumentStatus.PAUSED)
        assert first == second == {"handbook.pdf"}
        with open(registry.path, encoding="utf-8") as handle:
            assert json.load(handle) == ["handbook.pdf"]

    async def test_activate_removes_source(self, registry):
        await registry.set_status("a.pdf", DocumentStatus.PAUSED)
        await registry.set_status("b.pdf", DocumentStatus.PAUSED)
        assert await registry.set_status("a.pdf", DocumentStatus.ACTIVE) == {"b.pdf"}
        assert await registry.set_status("never-paused.pdf", DocumentStatus.ACTIVE) == {"b.pdf"}

    async def test_state_survives_a_new_instance(self, registry, helper_config):
        await registry.set_status("handbook.pdf", DocumentStatus.PAUSED)
        reopened = PausedDocumentRegistry(helper_config=helper_config)
        assert await reopened.is_paused("handbook.pdf") is True

    async def test_file_is_a_sorted_list(self, registry):
        for source in ("c.pdf", "a.pdf", "b.pdf"):
            await registry.set_status(source, DocumentStatus.PAUSED)
        with open(registry.path, encoding="utf-8") as handle:
            assert json.load(handle) == ["a.pdf", "b.pdf", "c.pdf"]

    async def test_malformed_file_is_an_error(self, registry):
        with open(registry.path, "w", encoding="utf-8") as handle:
            handle.write('{"paused": true}')
        with pytest.raises(ValueError):
            await registry.list()
