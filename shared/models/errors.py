"""Exception hierarchy shared by clients, services and the API layer."""


class DocIntelError(Exception):
    """Base class of all expected failures.

    Attributes:
        user_message: Short, human readable text that is safe to return to an end user.
            Provider bodies and stack traces only ever go to the log.
    """

    user_message = "An internal error occurred."

    def __init__(self, message: str | None = None, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class UnsupportedFormatError(DocIntelError):
    user_message = "This file type is not supported."


class ExtractionFailedError(DocIntelError):
    user_message = "Text could not be extracted from this file."


class FileTooLargeError(DocIntelError):
    user_message = "The file is too large."


class EmbeddingFailedError(DocIntelError):
    user_message = "Embedding the document failed."


class BackendUnavailableError(DocIntelError):
    user_message = "A backend service is currently unavailable."


class StoreUnavailableError(BackendUnavailableError):
    user_message = "A data store is currently unavailable."


class LLMRequestFailedError(DocIntelError):
    user_message = "The language model request failed."


class LLMParseFailedError(DocIntelError):
    user_message = "The language model returned an unexpected response."


class DocumentNotFoundError(DocIntelError):
    user_message = "Document not found."


# failures a retry cannot fix
NON_RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    UnsupportedFormatError,
    ExtractionFailedError,
    FileTooLargeError,
    DocumentNotFoundError,
)
