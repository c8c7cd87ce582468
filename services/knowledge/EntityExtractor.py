"""LLM-driven named entity extraction for document chunks."""

import asyncio
import uuid

from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError, LLMParseFailedError
from shared.models.graph import EntityExtractionResult, EntityRelationship, ExtractedEntity
from services.knowledge.llm_output import RawExtraction, parse_llm_json

ENTITY_NAMESPACE = uuid.UUID("6f1c3f2e-8d44-4a8e-9a57-3b0e2f6d9c11")

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 1500

EXTRACTION_PROMPT = """
You are an expert entity extraction system. Analyze the following text and extract named entities and their relationships.

Text: "{text}"

Please extract entities and return them in the following JSON format:
{{
  "entities": [
    {{
      "name": "entity name",
      "category": "PERSON|ORGANIZATION|LOCATION|DATE|MONEY|OTHER",
      "confidence": 0.0-1.0,
      "context": "surrounding context where entity appears"
    }}
  ],
  "relationships": [
    {{
      "source": "source entity name",
      "target": "target entity name",
      "relationType": "relationship type (e.g., WORKS_AT, LOCATED_IN, RELATED_TO)",
      "confidence": 0.0-1.0,
      "context": "context describing the relationship"
    }}
  ]
}}

Guidelines:
- Only extract clearly identifiable entities
- Be conservative with confidence scores
- Focus on meaningful relationships
- Use standardized category names
- Provide brief context for each entity/relationship
- Limit to most significant entities (max {max_entities} per text chunk)

Return only valid JSON, no additional text.
"""


def make_entity_key(category: str, name: str) -> str:
    """Stable id of an entity inside one document: same name and category, same id."""
    return str(uuid.uuid5(ENTITY_NAMESPACE, f"{category}:{name.strip().lower()}"))


class EntityExtractor:
    """Extracts entities from chunk text and writes them to the graph.

    extract() is pure with respect to the stores: it only talks to the LLM. The do_process_*
    methods persist the result as Entity nodes linked from their Chunk via MENTIONS.
    Entity ids are "<docId>_<key>" where key derives from category and lower-cased name,
    so repeat mentions within one document merge into a single node while the same name
    in another document stays a separate node.
    """

    def __init__(self, helper_config: HelperConfig, llm_client: LLMClientInterface, graph_client: GraphClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._llm_client = llm_client
        self._graph_client = graph_client

    ##########################################
    ############### EXTRACTION ###############
    ##########################################

    async def extract(self, chunk_text: str) -> EntityExtractionResult:
        """Extract entities and relationships from a single chunk.

        Never raises for LLM trouble: request and parse failures are logged and give an
        empty result so the surrounding document keeps processing.

        Args:
            chunk_text (str): Normalised chunk text.

        Returns:
            EntityExtractionResult: At most ENTITY_MAX_PER_CHUNK entities, relationships
                between them resolved to entity ids.
        """
        if len(chunk_text) < self._settings.entity_min_chunk_chars:
            return EntityExtractionResult()

        prompt = EXTRACTION_PROMPT.format(text=chunk_text, max_entities=self._settings.entity_max_per_chunk)
        try:
            content = await self._llm_client.do_complete(
                system_prompt=None,
                user_prompt=prompt,
                temperature=EXTRACTION_TEMPERATURE,
                max_tokens=EXTRACTION_MAX_TOKENS,
            )
            raw = parse_llm_json(content, RawExtraction)
        except LLMParseFailedError as e:
            self.logging.warning("Entity extraction response could not be parsed: %s", e)
            return EntityExtractionResult()
        except DocIntelError as e:
            self.logging.error("Entity extraction request failed: %s", e)
            return EntityExtractionResult()

        lowered_text = chunk_text.lower()
        # a repeated entity keeps its most confident mention, first-seen order is kept
        by_id: dict[str, ExtractedEntity] = {}
        for item in raw.entities:
            if not item.name:
                continue
            entity_id = make_entity_key(item.category.value, item.name)
            known = by_id.get(entity_id)
            if known is None and len(by_id) >= self._settings.entity_max_per_chunk:
                continue
            if known is not None and known.confidence >= item.confidence:
                continue
            by_id[entity_id] = ExtractedEntity(
                id=entity_id,
                name=item.name,
                category=item.category,
                confidence=item.confidence,
                context=item.context,
                position=lowered_text.find(item.name.lower()),
            )
        entities = list(by_id.values())

        by_name = {}
        for entity in entities:
            by_name.setdefault(entity.name.lower(), entity)

        relationships: list[EntityRelationship] = []
        for rel in raw.relationships:
            source = by_name.get(rel.source.lower())
            target = by_name.get(rel.target.lower())
            if source is None or target is None:
                continue
            relationships.append(EntityRelationship(
                source_entity_id=source.id,
                target_entity_id=target.id,
                relation_type=rel.relation_type,
                confidence=rel.confidence,
                context=rel.context,
            ))

        return EntityExtractionResult(entities=entities, relationships=relationships)

    ##########################################
    ############### PERSISTENCE ##############
    ##########################################

    async def do_process_chunk(self, chunk_id: str, chunk_text: str, doc_id: str, user_id: str) -> list[ExtractedEntity]:
        """Extract the entities of one chunk and merge them into the graph.

        Returns:
            list[ExtractedEntity]: The entities that were written, carrying their graph ids.
        """
        result = await self.extract(chunk_text)
        if not result.entities:
            return []

        id_map: dict[str, str] = {}
        stored: list[ExtractedEntity] = []
        for entity in result.entities:
            graph_entity = entity.model_copy(update={"id": f"{doc_id}_{entity.id}"})
            try:
                await self._graph_client.do_upsert_entity(graph_entity, chunk_id=chunk_id, doc_id=doc_id, user_id=user_id)
            except DocIntelError as e:
                self.logging.error("Could not store entity '%s' of chunk %s: %s", entity.name, chunk_id, e)
                continue
            id_map[entity.id] = graph_entity.id
            stored.append(graph_entity)

        for rel in result.relationships:
            if rel.source_entity_id in id_map and rel.target_entity_id in id_map:
                self.logging.debug(
                    "Relationship %s -[%s]-> %s (%.2f) in chunk %s",
                    id_map[rel.source_entity_id], rel.relation_type, id_map[rel.target_entity_id], rel.confidence, chunk_id,
                )

        return stored

    async def do_process_document(self, doc_id: str, user_id: str, chunks: list[tuple[str, str]]) -> dict[str, list[ExtractedEntity]]:
        """Extract entities for all chunks of a document in small concurrent batches.

        Batches of ENTITY_BATCH_SIZE chunks run concurrently, with ENTITY_BATCH_DELAY seconds
        between batches. A failing chunk is logged and skipped.

        Args:
            doc_id (str): Document id.
            user_id (str): Owner of the document.
            chunks (list[tuple[str, str]]): (chunk graph id, chunk text) in chunk order.

        Returns:
            dict[str, list[ExtractedEntity]]: Stored entities per chunk id, in chunk order.
        """
        batch_size = max(1, self._settings.entity_batch_size)
        per_chunk: dict[str, list[ExtractedEntity]] = {}

        for batch_start in range(0, len(chunks), batch_size):
            batch = chunks[batch_start: batch_start + batch_size]
            results = await asyncio.gather(
                *[self.do_process_chunk(chunk_id, text, doc_id, user_id) for chunk_id, text in batch],
                return_exceptions=True,
            )
            for (chunk_id, _), result in zip(batch, results):
                if isinstance(result, Exception):
                    self.logging.error("Entity extraction failed for chunk %s: %s", chunk_id, result)
                    per_chunk[chunk_id] = []
                else:
                    per_chunk[chunk_id] = result

            if batch_start + batch_size < len(chunks) and self._settings.entity_batch_delay > 0:
                await asyncio.sleep(self._settings.entity_batch_delay)

        total = sum(len(entities) for entities in per_chunk.values())
        self.logging.info("Extracted %d entities from %d chunks of document %s.", total, len(chunks), doc_id)
        return per_chunk
