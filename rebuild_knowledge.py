#!/usr/bin/env python3
"""
Rebuild a client's knowledge chunks from the raw datasets already stored.

Usage:
    python rebuild_knowledge.py <client_id> [bot_type]

Without bot_type every bot variant saved for the client is rebuilt.
"""

import logging
import sys

from tenantbot.rag.chunk_store import KnowledgeStore
from tenantbot.rag.dataset_store import DatasetStore
from tenantbot.rag.errors import StorageUnavailable, ValidationError
from tenantbot.rag.ingestion import rebuild

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def rebuild_client(client_id, bot_type=None):
    store = KnowledgeStore()
    datasets = DatasetStore()

    bot_types = [bot_type] if bot_type else datasets.list_bot_types(client_id)
    if not bot_types:
        logger.error(f"No datasets stored for client {client_id}")
        return False

    ok = True
    for bt in bot_types:
        try:
            result = rebuild(store, datasets, client_id, bt)
        except (ValidationError, StorageUnavailable) as e:
            logger.error(f"❌ {client_id}/{bt}: {e}")
            ok = False
            continue
        logger.info(
            f"✅ {client_id}/{bt}: {result['chunks_inserted']} chunks, "
            f"version {result['version']}, status {result['knowledge_status']}"
        )
        for warning in result["coverage_warnings"]:
            logger.info(f"   ⚠️  {warning}")
    return ok


if __name__ == "__main__":
    if len(sys.argv) not in (2, 3):
        print(__doc__)
        sys.exit(1)
    success = rebuild_client(sys.argv[1], sys.argv[2] if len(sys.argv) == 3 else None)
    sys.exit(0 if success else 1)
