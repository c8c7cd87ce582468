"""Entity resolution: co-occurrence, cross-document matching and clustering.

All three passes only ever add edges. Entities of different documents are never merged,
duplicates are linked with SAME_AS (duplicate -> primary) and near matches with SIMILAR_TO.
The scores are heuristics, false positives and negatives are expected.
"""

import itertools
import re

from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError
from shared.models.graph import EntityCategory, ExtractedEntity, StoredEntity

_PUNCTUATION = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")

PROFESSIONAL_TERMS = frozenset({
    "dr", "prof", "professor", "ceo", "cfo", "cto", "coo", "president", "director", "manager",
    "engineer", "attorney", "lawyer", "judge", "senator", "minister", "officer", "chairman",
    "founder", "partner", "analyst", "consultant", "doctor", "nurse", "md", "phd",
})

INDUSTRY_TERMS = frozenset({
    "bank", "banking", "capital", "financial", "finance", "insurance", "tech", "technologies",
    "technology", "software", "systems", "labs", "pharma", "pharmaceuticals", "health",
    "healthcare", "hospital", "medical", "university", "college", "institute", "energy",
    "oil", "motors", "airlines", "consulting", "media", "telecom", "logistics", "foods",
})

CLUSTER_TERM_SCORE = 0.5
CLUSTER_CONTAINMENT_SCORE = 0.55


def _normalize(name: str) -> str:
    return _SPACES.sub(" ", _PUNCTUATION.sub(" ", name.lower())).strip()


def _words(name: str) -> set[str]:
    return set(_normalize(name).split())


def entity_similarity(name_a: str, category_a: EntityCategory | str, name_b: str, category_b: EntityCategory | str) -> float:
    """Heuristic similarity of two entity names.

    Exact case-insensitive match scores 1.0. For PERSON one name's tokens being a subset of
    the other's scores 0.9, for ORGANIZATION one punctuation-stripped name contained in the
    other scores 0.85. Everything else falls back to the Jaccard index of the word sets.
    Entities of different categories always score 0.

    Args:
        name_a (str): First entity name.
        category_a (EntityCategory | str): First entity category.
        name_b (str): Second entity name.
        category_b (EntityCategory | str): Second entity category.

    Returns:
        float: Similarity in [0, 1].
    """
    category_a = EntityCategory.parse(getattr(category_a, "value", category_a))
    category_b = EntityCategory.parse(getattr(category_b, "value", category_b))
    if category_a != category_b:
        return 0.0

    if name_a.strip().lower() == name_b.strip().lower():
        return 1.0

    words_a = _words(name_a)
    words_b = _words(name_b)
    if not words_a or not words_b:
        return 0.0

    if category_a == EntityCategory.PERSON and (words_a <= words_b or words_b <= words_a):
        return 0.9

    if category_a == EntityCategory.ORGANIZATION:
        norm_a, norm_b = _normalize(name_a), _normalize(name_b)
        if norm_a in norm_b or norm_b in norm_a:
            return 0.85

    return len(words_a & words_b) / len(words_a | words_b)


class EntityResolver:
    """Creates COOCCURS_WITH, SAME_AS and SIMILAR_TO edges between entities of one user."""

    def __init__(self, helper_config: HelperConfig, graph_client: GraphClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._graph_client = graph_client

    ##########################################
    ############## CO-OCCURRENCE #############
    ##########################################

    def cooccurrence_confidence(self, confidence_a: float, confidence_b: float, distance: int) -> float:
        """min(confidences) plus a proximity bonus that shrinks with character distance."""
        bonus = min(self._settings.cooccurrence_max_bonus, self._settings.cooccurrence_proximity_scale / max(distance, 1))
        return max(0.0, min(1.0, min(confidence_a, confidence_b) + bonus))

    async def do_process_cooccurrence(self, chunk_text: str, entities: list[ExtractedEntity], user_id: str) -> int:
        """Link every pair of entities found in the same chunk.

        Only entities whose name occurs in the chunk text take part, the distance between
        their first occurrences drives the proximity bonus.

        Returns:
            int: Number of edges written.
        """
        lowered_text = chunk_text.lower()
        located: list[tuple[ExtractedEntity, int]] = []
        for entity in entities:
            position = lowered_text.find(entity.name.lower()) if entity.name else -1
            if position >= 0:
                located.append((entity, position))

        created = 0
        for (entity_a, pos_a), (entity_b, pos_b) in itertools.combinations(located, 2):
            if entity_a.id == entity_b.id:
                continue
            confidence = self.cooccurrence_confidence(entity_a.confidence, entity_b.confidence, abs(pos_a - pos_b))
            try:
                await self._graph_client.do_create_cooccurrence_edge(entity_a.id, entity_b.id, user_id, confidence)
                created += 1
            except DocIntelError as e:
                self.logging.error("Co-occurrence edge %s / %s failed: %s", entity_a.id, entity_b.id, e)
        return created

    ##########################################
    ######### CROSS-DOCUMENT MATCHING ########
    ##########################################

    async def do_resolve_cross_document(self, doc_id: str, user_id: str, new_entities: list[ExtractedEntity]) -> tuple[int, int]:
        """Compare freshly extracted entities against the user's entities from other documents.

        Candidates are fetched per category, so only same-category pairs are ever compared.
        Similarity above ENTITY_SAME_AS_THRESHOLD links new -> existing with SAME_AS,
        above ENTITY_SIMILAR_TO_THRESHOLD with SIMILAR_TO.

        Args:
            doc_id (str): The document the new entities come from.
            user_id (str): Owner of the entities.
            new_entities (list[ExtractedEntity]): Entities just written for doc_id.

        Returns:
            tuple[int, int]: Number of SAME_AS and SIMILAR_TO edges written.
        """
        same_as_count = 0
        similar_count = 0
        candidates_by_category: dict[EntityCategory, list[StoredEntity]] = {}
        seen: set[str] = set()

        for entity in new_entities:
            if entity.id in seen:
                continue
            seen.add(entity.id)

            if entity.category not in candidates_by_category:
                try:
                    candidates_by_category[entity.category] = await self._graph_client.do_get_entities(
                        user_id, category=entity.category.value, exclude_doc_id=doc_id,
                    )
                except DocIntelError as e:
                    self.logging.error("Could not load %s entities for resolution: %s", entity.category.value, e)
                    candidates_by_category[entity.category] = []

            for candidate in candidates_by_category[entity.category]:
                score = entity_similarity(entity.name, entity.category, candidate.name, candidate.category)
                try:
                    if score > self._settings.entity_same_as_threshold:
                        await self._graph_client.do_create_same_as_edge(entity.id, candidate.entity_id, user_id, score)
                        same_as_count += 1
                    elif score > self._settings.entity_similar_to_threshold:
                        await self._graph_client.do_create_similarity_edge(entity.id, candidate.entity_id, user_id, score, "name_similarity")
                        similar_count += 1
                except DocIntelError as e:
                    self.logging.error("Resolution edge %s / %s failed: %s", entity.id, candidate.entity_id, e)

        self.logging.info(
            "Cross-document resolution for %s: %d SAME_AS, %d SIMILAR_TO.", doc_id, same_as_count, similar_count,
        )
        return same_as_count, similar_count

    ##########################################
    ############### CLUSTERING ###############
    ##########################################

    @staticmethod
    def cluster_signal(entity_a: StoredEntity, entity_b: StoredEntity) -> tuple[float, str] | None:
        """Weak relatedness signal between two same-category entities, or None."""
        if entity_a.category != entity_b.category:
            return None

        if entity_a.category == EntityCategory.PERSON:
            if _words(entity_a.name) & _words(entity_b.name) & PROFESSIONAL_TERMS:
                return CLUSTER_TERM_SCORE, "professional_terms"
        elif entity_a.category == EntityCategory.ORGANIZATION:
            if _words(entity_a.name) & _words(entity_b.name) & INDUSTRY_TERMS:
                return CLUSTER_TERM_SCORE, "industry_terms"
        elif entity_a.category == EntityCategory.LOCATION:
            norm_a, norm_b = _normalize(entity_a.name), _normalize(entity_b.name)
            if norm_a and norm_b and norm_a != norm_b and (norm_a in norm_b or norm_b in norm_a):
                return CLUSTER_CONTAINMENT_SCORE, "location_containment"
        return None

    async def do_cluster_entities(self, user_id: str) -> int:
        """Secondary pass adding weak SIMILAR_TO edges between related entities of a user.

        Returns:
            int: Number of edges written.
        """
        entities = await self._graph_client.do_get_entities(user_id)
        by_category: dict[EntityCategory, list[StoredEntity]] = {}
        for entity in entities:
            by_category.setdefault(entity.category, []).append(entity)

        created = 0
        for category in (EntityCategory.PERSON, EntityCategory.ORGANIZATION, EntityCategory.LOCATION):
            for entity_a, entity_b in itertools.combinations(by_category.get(category, []), 2):
                signal = self.cluster_signal(entity_a, entity_b)
                if signal is None:
                    continue
                score, method = signal
                try:
                    await self._graph_client.do_create_similarity_edge(entity_a.entity_id, entity_b.entity_id, user_id, score, method)
                    created += 1
                except DocIntelError as e:
                    self.logging.error("Cluster edge %s / %s failed: %s", entity_a.entity_id, entity_b.entity_id, e)

        self.logging.info("Entity clustering for user %s created %d SIMILAR_TO edges.", user_id, created)
        return created
