"""Latest-flag reconciliation runner.

Repairs shared documents whose version rollover was interrupted, so that
exactly the highest stored version of every source is flagged latest again.

Usage:
    python -m services.maintenance.reconcile_runner [source]
"""

import asyncio
import sys

from services.documents.DocumentAdminService import DocumentAdminService
from shared.access.PausedDocumentRegistry import PausedDocumentRegistry
from shared.clients.rag.RAGClientManager import RAGClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.documents import ReconcileReport


async def main(source: str | None = None) -> ReconcileReport | None:
    """Boot the RAG client, run one reconciliation pass and close the client again."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    rag_client = RAGClientManager(helper_config=config).get_client()

    try:
        try:
            await rag_client.boot()
            await rag_client.do_healthcheck()
        except Exception as e:
            logger.error("Error booting RAG client %s: %s. Aborting.", rag_client.get_engine_name(), e)
            return None

        if not await rag_client.do_existence_check():
            logger.warning("Vector collection does not exist yet, nothing to reconcile.")
            return ReconcileReport()

        service = DocumentAdminService(
            helper_config=config,
            rag_client=rag_client,
            paused_registry=PausedDocumentRegistry(helper_config=config),
        )
        report = await service.reconcile_latest(source)
        logger.info(
            "Reconciliation finished: %d source(s) checked, %d set, %d cleared, %d failed.",
            report.sources_checked, report.flags_set, report.flags_cleared, report.failures,
            color="green" if not report.failures else "yellow",
        )
        return report
    finally:
        await rag_client.close()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
