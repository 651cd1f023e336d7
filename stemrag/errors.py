# =============================================================================
# Errors
# =============================================================================
# Every failure the query chain can surface. Callers catch RAGError to handle
# any of them; the CLI turns them into a stage-identifying message.


class RAGError(Exception):
    """Base class for all errors raised by the query chain."""


# -----------------------------------------------------------------------------
# Models (embedding and generation)
# -----------------------------------------------------------------------------

class ModelError(RAGError):
    """A model could not be used."""


class ModelLoadError(ModelError):
    """An embedding or generation model failed to initialize."""


class EmbeddingError(ModelError):
    """Text-to-vector inference failed."""


class GenerationError(ModelError):
    """The generation backend failed to produce an answer."""


# -----------------------------------------------------------------------------
# Vector index
# -----------------------------------------------------------------------------

class VectorIndexError(RAGError):
    """The vector index could not answer a search."""


class IndexConnectionError(VectorIndexError):
    """Transport failure while talking to the vector index."""


class IndexQueryError(VectorIndexError):
    """The index rejected the query (unknown collection, bad filter, ...)."""


# -----------------------------------------------------------------------------
# Templates
# -----------------------------------------------------------------------------

class TemplateError(RAGError):
    """Base class for prompt template problems."""


class TemplateSyntaxError(TemplateError):
    """Malformed template source, detected at parse time."""

    def __init__(self, message, line=None):
        self.line = line
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)


class TemplateRenderError(TemplateError):
    """A template could not be rendered against the given context."""


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------

class PipelineError(RAGError):
    """Misuse of a generation pipeline."""


class NoContextError(PipelineError):
    """execute() was called before any context was loaded."""


class UnknownTemplateError(PipelineError):
    """execute() was called with a template name that was never registered."""


# -----------------------------------------------------------------------------
# Payloads and stages
# -----------------------------------------------------------------------------

class PayloadDecodeError(RAGError):
    """
    A payload value could not be parsed as the expected nested JSON.

    This one is recoverable: the decoder records it inside an Invalid
    result instead of raising it, and processing continues.
    """


class StageError(RAGError):
    """
    A fatal failure in one stage of the query chain.

    Attributes:
        stage: Name of the stage that failed (e.g. "search")
        cause: The original exception
    """

    def __init__(self, stage, cause):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} stage failed: {cause}")
