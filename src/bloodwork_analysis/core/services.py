# ============================================================================
# src/bloodwork_analysis/core/services.py
# ============================================================================
"""
Service wiring.

Builds every collaborator once and hands them around explicitly. There
are no module-level registries; two containers never share state.

Config keys (all optional):
    database_path, upload_dir, queue, enrichment, llm, worker_concurrency
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..config.base_config import base_settings
from ..enrichers.note_enricher import NoteEnricher
from ..extractors.field_extractor import FieldExtractor
from ..extractors.field_patterns import PatternRegistry
from ..extractors.text_extractor import TextExtractor
from ..llm.base import BaseTextClient
from ..llm.client import create_text_client
from ..results.result_store import ResultStore
from .document_store import FileDocumentStore
from .job_manager import JobManager
from .job_store import JobStore
from .orchestrator import PipelineOrchestrator
from .work_queue import WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class AnalysisServices:
    job_store: JobStore
    result_store: ResultStore
    documents: FileDocumentStore
    queue: WorkQueue
    job_manager: JobManager
    enricher: NoteEnricher
    orchestrator: PipelineOrchestrator
    text_client: Optional[BaseTextClient] = None

    async def start(self, recover: bool = True):
        await self.orchestrator.start(recover=recover)

    async def stop(self):
        await self.orchestrator.stop()
        if self.text_client is not None:
            await self.text_client.close()


def build_services(
    config: Optional[Dict[str, Any]] = None,
    text_client: Optional[BaseTextClient] = None,
    registry: Optional[PatternRegistry] = None,
) -> AnalysisServices:
    """
    Wire up stores, queue, manager, enricher and orchestrator.

    Args:
        config: Overrides for settings (see module docstring)
        text_client: Enrichment backend; created from config when omitted
        registry: Field patterns; the built-in set when omitted
    """
    config = config or {}

    database_path = config.get('database_path', base_settings.DATABASE_PATH)
    job_store = JobStore(database_path)
    result_store = ResultStore(database_path)
    documents = FileDocumentStore(config.get('upload_dir', base_settings.UPLOAD_DIR))
    queue = WorkQueue(config.get('queue'))

    job_manager = JobManager(job_store, queue, documents)

    if text_client is None:
        text_client = create_text_client(config.get('llm'))
    enricher = NoteEnricher(text_client, config.get('enrichment'))

    orchestrator = PipelineOrchestrator(
        job_manager=job_manager,
        queue=queue,
        result_store=result_store,
        enricher=enricher,
        text_extractor=TextExtractor(),
        field_extractor=FieldExtractor(registry),
        config=config,
    )

    logger.info(f"Services built (database={database_path}, enrichment={text_client.source_id})")
    return AnalysisServices(
        job_store=job_store,
        result_store=result_store,
        documents=documents,
        queue=queue,
        job_manager=job_manager,
        enricher=enricher,
        orchestrator=orchestrator,
        text_client=text_client,
    )
