"""Administration of stored documents: version listing, deletion, pausing and latest-flag repair."""

from collections import defaultdict

from shared.access.AccessPolicyEngine import AccessPolicyEngine
from shared.access.PausedDocumentRegistry import DocumentStatus, PausedDocumentRegistry
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.ScrollPage import StoredPoint
from shared.exceptions.errors import CompassError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.KeyedLock import KeyedLock
from shared.models.access import Principal
from shared.models.documents import DocumentVersion, PrivateDocument, ReconcileReport, SharedDocument


class DocumentAdminService:
    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface,
        paused_registry: PausedDocumentRegistry,
        policy: AccessPolicyEngine | None = None,
        source_locks: KeyedLock | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_client = rag_client
        self._paused_registry = paused_registry
        self._policy = policy or AccessPolicyEngine()
        self._source_locks = source_locks if source_locks is not None else KeyedLock()

    ##########################################
    ########### SHARED DOCUMENTS #############
    ##########################################

    async def list_documents(self) -> list[SharedDocument]:
        """All shared documents with their versions, newest version first."""
        stored = await self._rag_client.do_scroll_all(
            filter=self._policy.build_shared_source_filter(),
            with_payload=["source", "version", "is_latest"],
            with_vector=False,
        )
        paused = await self._paused_registry.list()

        counts: dict[str, dict[int, int]] = defaultdict(lambda: defaultdict(int))
        latest: dict[str, set[int]] = defaultdict(set)
        for point in stored.points:
            source, version = point.payload.get("source"), point.payload.get("version")
            if source is None or version is None:
                continue
            counts[source][int(version)] += 1
            if point.payload.get("is_latest"):
                latest[source].add(int(version))

        documents = []
        for source in sorted(counts):
            status = DocumentStatus.PAUSED if source in paused else DocumentStatus.ACTIVE
            versions = [
                DocumentVersion(version=version, status=status, is_latest=version in latest[source], chunk_count=count)
                for version, count in sorted(counts[source].items(), reverse=True)
            ]
            documents.append(SharedDocument(source=source, versions=versions))
        return documents

    async def delete_document(self, source: str, version: int | None = None) -> int:
        """Delete one version, or every version, of a shared document.

        After removing a single version the remaining versions are reconciled
        so the highest one is served again.

        Returns:
            int: Number of deleted chunks; 0 when nothing matched.
        """
        async with self._source_locks.hold(source):
            deleted = await self._rag_client.do_delete_points_by_filter(
                self._policy.build_shared_source_filter(source, version=version)
            )
        self.logging.info("Deleted %d chunk(s) of '%s' (version %s).", deleted, source, version if version is not None else "all")
        if deleted and version is not None:
            await self.reconcile_latest(source)
        return deleted

    async def set_status(self, source: str, status: DocumentStatus) -> DocumentStatus:
        await self._paused_registry.set_status(source, status)
        return status

    async def reconcile_latest(self, source: str | None = None) -> ReconcileReport:
        """Repair is_latest flags so that, per shared source, exactly the highest stored version is latest.

        Args:
            source (str | None): Limit the repair to one source; None checks all.

        Returns:
            ReconcileReport: Counts of flags set, cleared and failed updates.
        """
        stored = await self._rag_client.do_scroll_all(
            filter=self._policy.build_shared_source_filter(source),
            with_payload=["source", "version", "is_latest"],
            with_vector=False,
        )
        by_source: dict[str, list[StoredPoint]] = defaultdict(list)
        for point in stored.points:
            if point.payload.get("source") is not None and point.payload.get("version") is not None:
                by_source[point.payload["source"]].append(point)

        report = ReconcileReport(sources_checked=len(by_source))
        for name, points in sorted(by_source.items()):
            async with self._source_locks.hold(name):
                await self._reconcile_source(name, points, report)

        self.logging.info(
            "Reconciled %d source(s): %d flag(s) set, %d cleared, %d failure(s).",
            report.sources_checked, report.flags_set, report.flags_cleared, report.failures,
        )
        return report

    async def _reconcile_source(self, source: str, points: list[StoredPoint], report: ReconcileReport) -> None:
        newest = max(int(point.payload["version"]) for point in points)
        for point in points:
            should_be_latest = int(point.payload["version"]) == newest
            if bool(point.payload.get("is_latest")) == should_be_latest:
                continue
            try:
                await self._rag_client.do_set_payload(point.id, {"is_latest": should_be_latest})
            except CompassError as exc:
                report.failures += 1
                self.logging.error("Could not repair is_latest on point %s of '%s': %s", point.id, source, exc)
                continue
            if should_be_latest:
                report.flags_set += 1
            else:
                report.flags_cleared += 1

    ##########################################
    ########### PRIVATE DOCUMENTS ############
    ##########################################

    async def list_private_documents(self, principal: Principal) -> list[PrivateDocument]:
        stored = await self._rag_client.do_scroll_all(
            filter=self._policy.build_private_filter(principal.id),
            with_payload=["source", "created"],
            with_vector=False,
        )
        documents: dict[str, PrivateDocument] = {}
        for point in stored.points:
            source = point.payload.get("source")
            if source is None:
                continue
            document = documents.setdefault(source, PrivateDocument(source=source, chunk_count=0, created=point.payload.get("created")))
            document.chunk_count += 1
        return [documents[source] for source in sorted(documents)]

    async def delete_private_document(self, principal: Principal, source: str) -> int:
        return await self._rag_client.do_delete_points_by_filter(self._policy.build_private_filter(principal.id, source))

    async def delete_user_documents(self, owner_id: str) -> int:
        """Remove every private chunk owned by owner_id (account deletion)."""
        deleted = await self._rag_client.do_delete_points_by_filter(self._policy.build_private_filter(owner_id))
        self.logging.info("Deleted %d private chunk(s) of user %s.", deleted, owner_id)
        return deleted
