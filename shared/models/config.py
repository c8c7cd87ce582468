from pydantic import BaseModel, model_validator


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string", "number", "bool", and "list".
        default (str | int | bool | list | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None


class PipelineSettings(BaseModel):
    """
    Tunables of the processing and retrieval pipeline.

    Each field is read from the env key of the same name in upper case
    (see HelperConfig.get_pipeline_settings). The defaults are the values
    the heuristics were tuned with.
    """

    # chunking
    chunk_size: int = 500
    chunk_overlap: int = 50

    # embeddings
    embed_dimensions: int = 1536
    embed_batch_size: int = 100
    embed_batch_delay: float = 0.1

    # entity extraction
    entity_min_chunk_chars: int = 50
    entity_max_per_chunk: int = 10
    entity_batch_size: int = 3
    entity_batch_delay: float = 1.0

    # entity resolution
    entity_same_as_threshold: float = 0.8
    entity_similar_to_threshold: float = 0.6
    cooccurrence_proximity_scale: float = 10.0
    cooccurrence_max_bonus: float = 0.3

    # topics and document similarity
    topic_max_topics: int = 8
    topic_min_relevance: float = 0.3
    doc_similarity_threshold: float = 0.3
    doc_similarity_reuse_vectors: bool = False

    # retrieval
    search_min_score: float = 0.2
    answer_temperature: float = 0.3
    answer_max_tokens: int = 1000

    # uploads and background work
    max_file_size_mb: int = 10
    task_workers: int = 2
    task_max_attempts: int = 2
    task_retry_delay: float = 5.0
    task_retention: int = 1000
    stale_processing_minutes: int = 30

    @model_validator(mode="after")
    def _check_chunk_window(self) -> "PipelineSettings":
        if self.chunk_size <= 0:
            raise ValueError("CHUNK_SIZE must be positive.")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"CHUNK_OVERLAP ({self.chunk_overlap}) must be >= 0 and smaller than CHUNK_SIZE ({self.chunk_size})."
            )
        return self
