"""Cross-document topic modeling over a user's document titles."""

import uuid

from shared.clients.graph.GraphClientInterface import GraphClientInterface
from shared.clients.llm.LLMClientInterface import LLMClientInterface
from shared.clients.meta.MetaClientInterface import MetaClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.errors import DocIntelError, LLMParseFailedError
from shared.models.graph import ExtractedTopic, TopicAssignment, TopicModelingResult
from services.knowledge.llm_output import RawTopics, parse_llm_json

TOPIC_TEMPERATURE = 0.3
TOPIC_MAX_TOKENS = 1500
PLACEHOLDER_TOPIC_NAMES = frozenset({"untitled topic"})

TOPIC_PROMPT = """
You are an expert topic modeling system. Analyze the following document titles/names and identify the main topics they represent.

Document titles:
{titles}

Please identify up to {max_topics} distinct topics that these documents cover. Return your analysis in the following JSON format:

{{
  "topics": [
    {{
      "name": "Topic Name",
      "description": "Brief description of what this topic covers",
      "keywords": ["keyword1", "keyword2", "keyword3"],
      "confidence": 0.0-1.0
    }}
  ]
}}

Guidelines:
- Create broad, meaningful topic categories
- Each topic should be distinct and non-overlapping
- Include 3-5 relevant keywords per topic
- Confidence should reflect how well-defined the topic is
- Focus on themes, subjects, or content areas
- Return only valid JSON, no additional text

Topic examples: "Technology & Software", "Business & Finance", "Research & Academic", "Legal Documents", "Marketing & Communications", etc.
"""


def topic_relevance(document_text: str, topic: ExtractedTopic) -> float:
    """Relevance of a document text proxy to a topic.

    0.5 if the topic name occurs in the text, plus 0.4 times the share of keywords that
    occur, plus 0.1 times the share of description words that are longer than three
    characters and occur. Capped at 1.
    """
    doc_lower = document_text.lower()
    relevance = 0.0

    if topic.name and topic.name.lower() in doc_lower:
        relevance += 0.5

    if topic.keywords:
        matches = sum(1 for keyword in topic.keywords if keyword.lower() in doc_lower)
        relevance += (matches / len(topic.keywords)) * 0.4

    desc_words = topic.description.lower().split()
    if desc_words:
        matches = sum(1 for word in desc_words if len(word) > 3 and word in doc_lower)
        relevance += (matches / len(desc_words)) * 0.1

    return min(1.0, relevance)


class TopicModeler:
    """Asks the LLM for topics spanning a user's documents and links documents to them.

    The per-document text is a proxy: the title found during extraction, else the filename.
    Topics are not deduplicated across runs.
    """

    def __init__(
        self,
        helper_config: HelperConfig,
        llm_client: LLMClientInterface,
        graph_client: GraphClientInterface,
        meta_client: MetaClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._settings = helper_config.get_pipeline_settings()
        self._llm_client = llm_client
        self._graph_client = graph_client
        self._meta_client = meta_client

    ##########################################
    ############### EXTRACTION ###############
    ##########################################

    async def _get_document_texts(self, user_id: str) -> dict[str, str]:
        documents = await self._graph_client.do_get_documents(user_id)
        if not documents:
            return {}

        records = await self._meta_client.do_get_many([d["docId"] for d in documents], user_id)
        texts: dict[str, str] = {}
        for doc in documents:
            record = records.get(doc["docId"])
            title = record.metadata.title if record and record.metadata else None
            proxy = title or doc.get("filename")
            if proxy:
                texts[doc["docId"]] = proxy
        return texts

    async def _extract_topics_with_llm(self, document_texts: list[str], max_topics: int) -> list[ExtractedTopic]:
        titles = "\n".join(f"{i + 1}. {text}" for i, text in enumerate(document_texts))
        prompt = TOPIC_PROMPT.format(titles=titles, max_topics=max_topics)
        try:
            content = await self._llm_client.do_complete(
                system_prompt=None,
                user_prompt=prompt,
                temperature=TOPIC_TEMPERATURE,
                max_tokens=TOPIC_MAX_TOKENS,
            )
            raw = parse_llm_json(content, RawTopics)
        except LLMParseFailedError as e:
            self.logging.warning("Topic response could not be parsed: %s", e)
            return []
        except DocIntelError as e:
            self.logging.error("Topic extraction request failed: %s", e)
            return []

        topics = []
        for item in raw.topics:
            if not item.name or item.name.lower() in PLACEHOLDER_TOPIC_NAMES:
                continue
            topics.append(ExtractedTopic(
                id=str(uuid.uuid4()),
                name=item.name,
                description=item.description,
                keywords=item.keywords,
                confidence=item.confidence,
            ))
        return topics[:max_topics]

    async def extract_topics(self, user_id: str, max_topics: int | None = None) -> TopicModelingResult:
        """Extract topics for a user and score every document against them.

        Args:
            user_id (str): The user whose documents are modelled.
            max_topics (int | None): Upper bound of topics, TOPIC_MAX_TOPICS when None.

        Returns:
            TopicModelingResult: Topics and the assignments whose relevance exceeds
                TOPIC_MIN_RELEVANCE. Empty when the user has no documents or the LLM fails.
        """
        max_topics = max_topics or self._settings.topic_max_topics
        document_texts = await self._get_document_texts(user_id)
        if not document_texts:
            return TopicModelingResult()

        topics = await self._extract_topics_with_llm(list(document_texts.values()), max_topics)

        assignments: list[TopicAssignment] = []
        for doc_id, text in document_texts.items():
            for topic in topics:
                relevance = topic_relevance(text, topic)
                if relevance > self._settings.topic_min_relevance:
                    assignments.append(TopicAssignment(doc_id=doc_id, topic_id=topic.id, relevance=relevance))

        return TopicModelingResult(topics=topics, document_topics=assignments)

    ##########################################
    ############## PERSISTENCE ###############
    ##########################################

    async def do_process(self, user_id: str, max_topics: int | None = None) -> TopicModelingResult:
        """Run extract_topics() and write Topic nodes and CATEGORIZES edges."""
        self.logging.info("Topic modeling for user %s...", user_id)
        result = await self.extract_topics(user_id, max_topics)
        if not result.topics:
            self.logging.info("No topics extracted for user %s.", user_id)
            return result

        stored_ids: set[str] = set()
        for topic in result.topics:
            try:
                await self._graph_client.do_upsert_topic(topic, user_id)
                stored_ids.add(topic.id)
            except DocIntelError as e:
                self.logging.error("Could not store topic '%s': %s", topic.name, e)

        for assignment in result.document_topics:
            if assignment.topic_id not in stored_ids:
                continue
            try:
                await self._graph_client.do_create_topic_edge(assignment.topic_id, assignment.doc_id, user_id, assignment.relevance)
            except DocIntelError as e:
                self.logging.error("Could not link topic %s to document %s: %s", assignment.topic_id, assignment.doc_id, e)

        self.logging.info(
            "Topic modeling completed: %d topics, %d document-topic relationships.",
            len(result.topics), len(result.document_topics),
        )
        return result
