"""Wiring: builds the pipeline components from an :class:`AppConfig`."""

import logging
from dataclasses import dataclass

from semantic_rag import vector_store as vs
from semantic_rag.config import AppConfig
from semantic_rag.embeddings import Embedder
from semantic_rag.events import LogBuffer
from semantic_rag.gdrive import DriveSource, open_drive
from semantic_rag.ingestion import Ingestor
from semantic_rag.rag_engine import RAGEngine
from semantic_rag.semantic_cache import SemanticCache
from semantic_rag.settings import SettingsStore, default_settings

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    events: LogBuffer
    settings: SettingsStore
    store: vs.PassageStore
    cache: SemanticCache
    engine: RAGEngine
    ingestor: Ingestor
    drive: DriveSource | None = None


def build_services(config: AppConfig | None = None, client=None) -> Services:
    """Open both vector indexes and assemble the pipeline around them.

    Args:
        config: Application configuration. Uses defaults if not provided.
        client: ChromaDB client to reuse; a persistent client at
            ``config.vector_store.db_path`` is opened otherwise.
    """
    cfg = config or AppConfig()
    events = LogBuffer(max_entries=cfg.log.max_entries)
    embedder = Embedder(cfg.embedding)
    store, cache_index = vs.open_stores(cfg.vector_store, client)
    cache = SemanticCache(embedder, cache_index, events, cfg.cache)

    services = Services(
        config=cfg,
        events=events,
        settings=SettingsStore(default_settings(cfg.llm)),
        store=store,
        cache=cache,
        engine=RAGEngine(embedder, store, cache, events),
        ingestor=Ingestor(embedder, store, events, cfg.chunk),
        drive=open_drive(cfg.gdrive),
    )
    events.publish(
        "info",
        "system",
        "Pipeline initialized",
        {"documents": store.count(), "cache_entries": cache_index.count()},
    )
    return services
