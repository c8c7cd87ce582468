"""Ingestion pipeline.

Turns one uploaded document into vectors, a graph subtree and entities:

  extract text -> store metadata -> preprocess + chunk -> embed -> store vectors
  -> Document node -> Chunk nodes -> entities per chunk -> entity resolution

Each run moves the document pending -> processing -> completed | failed. The first failing
stage records its message on the document and stops the run. Writes to the vector store,
the graph and the metadata store are not transactional, a crash in between leaves the
document in "processing" where ReconciliationService finds it.
"""

import asyncio
import uuid

from shared.clients.blob.BlobClientInterface import BlobClientInterface
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import ChunkPayload, VectorPoint
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import DocumentRecord, ProcessingResult, ProcessingStatus, TextChunk, utc_now
from shared.models.errors import (
    NON_RETRYABLE_ERRORS,
    DocIntelError,
    DocumentNotFoundError,
    ExtractionFailedError,
)
from shared.models.graph import ExtractedEntity
from services.doc_processing.Chunker import Chunker
from services.doc_processing.TextExtractor import TextExtractor
from services.knowledge.EntityExtractor import EntityExtractor
from services.knowledge.EntityResolver import EntityResolver

UPSERT_BATCH_SIZE = 100  # max points per vector store upsert call
GENERIC_FAILURE_MESSAGE = "Unexpected error during document processing."
NO_CHUNKS_MESSAGE = "No text chunks generated from document."


class IngestionPipeline:
    """Runs the ingestion stages for a single document."""

    def __init__(
        self,
        helper_config: HelperConfig,
        text_extractor: TextExtractor,
        chunker: Chunker,
        embed_client: EmbedClientInterface,
        rag_client: RAGClientInterface,
        graph_client: GraphClientInterface,
        meta_client: MetaClientInterface,
        blob_client: BlobClientInterface,
        entity_extractor: EntityExtractor,
        entity_resolver: EntityResolver,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._text_extractor = text_extractor
        self._chunker = chunker
        self._embed_client = embed_client
        self._rag_client = rag_client
        self._graph_client = graph_client
        self._meta_client = meta_client
        self._blob_client = blob_client
        self._entity_extractor = entity_extractor
        self._entity_resolver = entity_resolver

    ##########################################
    ################# CORE ###################
    ##########################################

    async def do_process(self, doc_id: str, user_id: str, raise_on_failure: bool = False) -> ProcessingResult:
        """Process one document end to end.

        Args:
            doc_id (str): Document to process.
            user_id (str): Owner of the document.
            raise_on_failure (bool): Re-raise the stage error after it was recorded on the
                document, so a task queue can decide about retries.

        Returns:
            ProcessingResult: Counts on success, the error message and whether a retry
                could help on failure.
        """
        self.logging.info("Starting processing for document %s (user %s).", doc_id, user_id)
        try:
            record = await self._meta_client.do_get(doc_id, user_id)
            if record is None:
                raise DocumentNotFoundError(f"Document {doc_id} not found for user {user_id}.")
            await self._meta_client.do_update_status(doc_id, user_id, ProcessingStatus.PROCESSING)
            result = await self._run_stages(record)
            await self._meta_client.do_update_status(doc_id, user_id, ProcessingStatus.COMPLETED)
        except Exception as e:
            retryable = not isinstance(e, NON_RETRYABLE_ERRORS)
            if isinstance(e, DocIntelError):
                # the full text can carry backend urls and parser output, it stays in the log
                message = e.user_message
                self.logging.error("Processing of document %s failed: %s", doc_id, e)
            else:
                message = GENERIC_FAILURE_MESSAGE
                self.logging.exception("Processing of document %s failed unexpectedly: %s", doc_id, e)
            await self._mark_failed(doc_id, user_id, message)
            if raise_on_failure:
                raise
            return ProcessingResult(doc_id=doc_id, success=False, error=message, retryable=retryable)

        self.logging.info(
            "Document %s completed: %d chunks, %d entities.",
            doc_id, result.chunks_created, result.entities_extracted,
        )
        return result

    async def _mark_failed(self, doc_id: str, user_id: str, message: str) -> None:
        try:
            await self._meta_client.do_update_status(doc_id, user_id, ProcessingStatus.FAILED, error_message=message)
        except DocIntelError as e:
            self.logging.error("Could not mark document %s as failed: %s", doc_id, e)

    ##########################################
    ################# STAGES #################
    ##########################################

    async def _run_stages(self, record: DocumentRecord) -> ProcessingResult:
        doc_id, user_id = record.doc_id, record.user_id

        # step 1: text extraction
        self.logging.info("Step 1/8: extracting text from %s...", record.filename)
        try:
            file_bytes = await self._blob_client.do_get(record.blob_key)
        except FileNotFoundError as e:
            raise ExtractionFailedError(f"Stored file {record.blob_key} is missing.") from e
        extracted = await self._text_extractor.do_extract(file_bytes, record.mime_type)
        await self._meta_client.do_update_metadata(doc_id, user_id, extracted.metadata)

        # step 2: preprocess and chunk
        self.logging.info("Step 2/8: chunking text...")
        chunks = self._chunker.chunk(self._text_extractor.preprocess(extracted.text))
        if not chunks:
            raise ExtractionFailedError(NO_CHUNKS_MESSAGE, user_message=NO_CHUNKS_MESSAGE)

        # step 3: embed all chunks in one batched call
        self.logging.info("Step 3/8: generating embeddings for %d chunks...", len(chunks))
        vectors = await self._embed_client.do_embed_batch([chunk.text for chunk in chunks])

        # step 4: vector points, a fresh id per chunk shared with its graph node
        self.logging.info("Step 4/8: preparing vector points...")
        points = self._build_points(record, chunks, vectors)

        # step 5: remove leftovers of earlier attempts, then store vectors
        self.logging.info("Step 5/8: storing %d vectors...", len(points))
        await self._rag_client.do_initialize(vector_size=self._embed_client.get_dimensions())
        await self._rag_client.do_delete_by_document(doc_id, user_id)
        await self._graph_client.do_delete_document_subgraph(doc_id, user_id)
        for batch_start in range(0, len(points), UPSERT_BATCH_SIZE):
            await self._rag_client.do_upsert_points(points[batch_start: batch_start + UPSERT_BATCH_SIZE])

        # step 6: Document and Chunk nodes
        self.logging.info("Step 6/8: creating graph structure...")
        await self._graph_client.do_upsert_document(doc_id, user_id, record.filename)
        results = await asyncio.gather(
            *[
                self._graph_client.do_upsert_chunk(point.id, doc_id, user_id, chunk.text, chunk.chunk_index)
                for chunk, point in zip(chunks, points)
            ],
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                raise result

        # step 7: entities per chunk, co-occurrence inside each chunk
        self.logging.info("Step 7/8: extracting entities from %d chunks...", len(chunks))
        chunk_texts = {point.id: chunk.text for chunk, point in zip(chunks, points)}
        per_chunk = await self._entity_extractor.do_process_document(doc_id, user_id, list(chunk_texts.items()))
        all_entities: list[ExtractedEntity] = []
        relationships = 0
        for chunk_id, entities in per_chunk.items():
            all_entities.extend(entities)
            if len(entities) > 1:
                relationships += await self._entity_resolver.do_process_cooccurrence(chunk_texts[chunk_id], entities, user_id)

        # step 8: link new entities to those of the user's other documents
        self.logging.info("Step 8/8: resolving entities across documents...")
        same_as, similar = await self._entity_resolver.do_resolve_cross_document(doc_id, user_id, all_entities)

        return ProcessingResult(
            doc_id=doc_id,
            success=True,
            chunks_created=len(chunks),
            entities_extracted=len({entity.id for entity in all_entities}),
            relationships_found=relationships + same_as + similar,
        )

    @staticmethod
    def _build_points(record: DocumentRecord, chunks: list[TextChunk], vectors: list[list[float]]) -> list[VectorPoint]:
        created_at = utc_now().isoformat()
        return [
            VectorPoint(
                id=str(uuid.uuid4()),
                vector=vector,
                payload=ChunkPayload(
                    doc_id=record.doc_id,
                    user_id=record.user_id,
                    chunk_id=f"{record.doc_id}_{chunk.id}",
                    chunk_index=chunk.chunk_index,
                    text=chunk.text,
                    start_position=chunk.start_position,
                    end_position=chunk.end_position,
                    filename=record.filename,
                    created_at=created_at,
                ),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
