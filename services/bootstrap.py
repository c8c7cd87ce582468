"""Composition root shared by the API server and the ingestion runner."""

from dataclasses import dataclass

from shared.helper.HelperConfig import HelperConfig
from shared.clients.ClientInterface import ClientInterface
from shared.clients.ClientManager import ClientManager
from services.doc_processing.Chunker import Chunker
from services.doc_processing.TextExtractor import TextExtractor
from services.doc_ingestion.DocumentService import DocumentService
from services.doc_ingestion.IngestionPipeline import IngestionPipeline
from services.doc_ingestion.ReconciliationService import ReconciliationService
from services.knowledge.DocumentSimilarityAnalyzer import DocumentSimilarityAnalyzer
from services.knowledge.EntityExtractor import EntityExtractor
from services.knowledge.EntityResolver import EntityResolver
from services.knowledge.TopicModeler import TopicModeler
from services.retrieval.RetrievalEngine import RetrievalEngine
from services.tasks.TaskQueue import TaskQueue

CLIENT_TYPES = ("embed", "llm", "rag", "graph", "blob", "meta")


@dataclass
class Services:
    clients: dict[str, ClientInterface]
    task_queue: TaskQueue
    pipeline: IngestionPipeline
    document_service: DocumentService
    retrieval_engine: RetrievalEngine
    entity_resolver: EntityResolver
    topic_modeler: TopicModeler
    similarity_analyzer: DocumentSimilarityAnalyzer
    reconciliation_service: ReconciliationService


async def load_clients(helper_config: HelperConfig) -> dict[str, ClientInterface]:
    """Instantiate and boot the configured client of every client type.

    Args:
        helper_config (HelperConfig): Configuration, {TYPE}_ENGINE selects each engine.

    Returns:
        dict[str, ClientInterface]: Booted clients keyed by client type.
    """
    logging = helper_config.get_logger()
    clients = {client_type: ClientManager(helper_config, client_type).get_client() for client_type in CLIENT_TYPES}
    logging.info("Booting all clients...")
    for client in clients.values():
        await client.boot()
    logging.info("All clients booted successfully.")
    return clients


async def close_clients(helper_config: HelperConfig, clients: dict[str, ClientInterface]) -> None:
    logging = helper_config.get_logger()
    for client_type, client in clients.items():
        try:
            await client.close()
        except Exception as e:
            logging.warning("Closing %s client failed: %s", client_type, e)
    logging.info("All clients closed.")


def build_services(helper_config: HelperConfig, clients: dict[str, ClientInterface]) -> Services:
    """Wire all services on top of booted clients. The task queue is created but not started."""
    embed_client = clients["embed"]
    llm_client = clients["llm"]
    rag_client = clients["rag"]
    graph_client = clients["graph"]
    blob_client = clients["blob"]
    meta_client = clients["meta"]

    entity_extractor = EntityExtractor(helper_config, llm_client=llm_client, graph_client=graph_client)
    entity_resolver = EntityResolver(helper_config, graph_client=graph_client)
    pipeline = IngestionPipeline(
        helper_config,
        text_extractor=TextExtractor(helper_config),
        chunker=Chunker(helper_config),
        embed_client=embed_client,
        rag_client=rag_client,
        graph_client=graph_client,
        meta_client=meta_client,
        blob_client=blob_client,
        entity_extractor=entity_extractor,
        entity_resolver=entity_resolver,
    )
    task_queue = TaskQueue(helper_config)

    return Services(
        clients=clients,
        task_queue=task_queue,
        pipeline=pipeline,
        document_service=DocumentService(
            helper_config,
            meta_client=meta_client,
            blob_client=blob_client,
            rag_client=rag_client,
            graph_client=graph_client,
            pipeline=pipeline,
            task_queue=task_queue,
        ),
        retrieval_engine=RetrievalEngine(
            helper_config,
            embed_client=embed_client,
            rag_client=rag_client,
            meta_client=meta_client,
            llm_client=llm_client,
            graph_client=graph_client,
        ),
        entity_resolver=entity_resolver,
        topic_modeler=TopicModeler(helper_config, llm_client=llm_client, graph_client=graph_client, meta_client=meta_client),
        similarity_analyzer=DocumentSimilarityAnalyzer(
            helper_config, embed_client=embed_client, rag_client=rag_client, graph_client=graph_client,
        ),
        reconciliation_service=ReconciliationService(
            helper_config,
            meta_client=meta_client,
            rag_client=rag_client,
            graph_client=graph_client,
            pipeline=pipeline,
            task_queue=task_queue,
        ),
    )


async def check_connections(helper_config: HelperConfig, clients: dict[str, ClientInterface]) -> dict[str, bool]:
    """Probe every backend once. Failures are logged, the caller decides whether they are fatal.

    Returns:
        dict[str, bool]: Reachability per client type.
    """
    logging = helper_config.get_logger()
    results: dict[str, bool] = {}
    for client_type, client in clients.items():
        try:
            results[client_type] = await client.do_healthcheck()
        except Exception as e:
            logging.warning("Healthcheck of %s client raised: %s", client_type, e)
            results[client_type] = False
        if not results[client_type]:
            logging.warning("%s client '%s' is not reachable.", client_type, client.__class__.__name__)
    return results
