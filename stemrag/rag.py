# =============================================================================
# Query Orchestration
# =============================================================================
# Runs one question through the whole chain, one stage after another:
#
#   embed -> search -> build context -> render -> generate
#
# Each stage needs the previous stage's output, so nothing runs in
# parallel. Any fatal failure stops the chain and is re-raised as a
# StageError naming the stage; there are no partial answers.

from dataclasses import dataclass
from typing import List

from stemrag.context import Context, ContextBuilder
from stemrag.embedding import EmbeddingService, create_embedding_service
from stemrag.errors import RAGError, StageError
from stemrag.generation import create_generator
from stemrag.pipeline import GenerationPipeline, Response
from stemrag.prompts import load_template_source
from stemrag.retrieval import SearchResult, VectorIndexClient, create_qdrant_client, format_results
from stemrag.templates import DEFAULT_ROLE_FORMAT, TemplateEngine


@dataclass
class Resources:
    """
    The long-lived pieces of the chain, created once per process.

    The models only run inference, so one Resources can be shared by
    several query chains. A GenerationPipeline can't: make one per chain.
    """
    embedder: EmbeddingService
    index: VectorIndexClient
    generator: object = None

    def close(self):
        self.index.close()


@dataclass
class QueryResult:
    """Everything one run of the chain produced."""
    question: str
    collection: str
    results: List[SearchResult]
    context: Context = None
    prompt: str = None
    response: Response = None


def _log(logger, message):
    if logger:
        logger.info(message)
    else:
        print(message)


def load_resources(config, logger=None, with_generator=True):
    """
    Load the embedding model, connect to Qdrant, and load the generator.

    Args:
        config: Configuration dictionary
        logger: Optional logger for tracking progress
        with_generator: Set to False when no answer will be generated
                        (search/render only) to skip loading the model

    Returns:
        Resources: The loaded resources

    Raises:
        ModelLoadError: If a model fails to initialize
    """
    embedder = create_embedding_service(config, logger)
    index = VectorIndexClient(create_qdrant_client(config))
    generator = create_generator(config, logger) if with_generator else None

    return Resources(embedder=embedder, index=index, generator=generator)


def create_pipeline(config, generator, logger=None):
    """
    Build a GenerationPipeline with the configured query template registered.

    Args:
        config: Configuration dictionary ('generation' and 'prompt' sections)
        generator: The generation backend
        logger: Optional logger

    Returns:
        GenerationPipeline: Ready for load_context()/execute()
    """
    generation = config.get('generation', {})
    engine = TemplateEngine(role_format=generation.get('role_format', DEFAULT_ROLE_FORMAT))

    pipeline = GenerationPipeline(
        generator,
        max_tokens=generation.get('max_tokens', 7500),
        engine=engine,
        logger=logger,
    )
    pipeline.register_template(_template_name(config), load_template_source(config))

    return pipeline


def _template_name(config):
    return config.get('prompt', {}).get('template_name', 'query')


def _stage(name, func, *args, **kwargs):
    try:
        return func(*args, **kwargs)
    except RAGError as e:
        raise StageError(name, e) from e


def _check_question(question):
    if not question or not question.strip():
        raise ValueError("The question must not be empty")


def search_only(question, collection, resources, config, logger=None, filter=None):
    """
    Embed the question and search the collection.

    Args:
        question: The user's question
        collection: Qdrant collection name
        resources: Loaded Resources
        config: Configuration dictionary (uses retrieval.top_k)
        logger: Optional logger for tracking progress
        filter: Optional Qdrant filter

    Returns:
        list: SearchResult objects, highest score first

    Raises:
        StageError: If embedding or search fails
    """
    _check_question(question)
    top_k = config.get('retrieval', {}).get('top_k', 5)

    _log(logger, "Step 1: Embedding the question...")
    vector = _stage('embedding', resources.embedder.generate_embedding, question)

    _log(logger, f"Step 2: Searching '{collection}' (top {top_k})...")
    results = _stage('search', resources.index.search, collection, vector, top_k, filter)
    _log(logger, f"Found {len(results)} results")

    return results


def run_query(question, collection, resources, config, logger=None, filter=None,
              pipeline=None, generate=True):
    """
    Answer a question from a collection.

    Args:
        question: The user's question
        collection: Qdrant collection name
        resources: Loaded Resources
        config: Configuration dictionary
        logger: Optional logger for tracking progress
        filter: Optional Qdrant filter
        pipeline: Optional GenerationPipeline to reuse (must not be shared
                  with another concurrently running chain)
        generate: Set to False to stop after rendering the prompt

    Returns:
        QueryResult: The search results, context, prompt and (when
                     generate is True) the response

    Raises:
        ValueError: If the question is empty
        StageError: If any stage fails
    """
    results = search_only(question, collection, resources, config, logger, filter)

    _log(logger, "Step 3: Building the prompt context...")
    builder = ContextBuilder(logger=logger)
    context = _stage('context', builder.build, question, results)
    _log(logger, f"Context has {len(context['payloads'])} excerpts")

    if pipeline is None:
        pipeline = _stage('render', create_pipeline, config, resources.generator, logger)

    name = _template_name(config)
    pipeline.load_context(context)

    _log(logger, "Step 4: Rendering the prompt...")
    prompt = _stage('render', pipeline.render, name)

    result = QueryResult(
        question=question,
        collection=collection,
        results=results,
        context=context,
        prompt=prompt,
    )

    if not generate:
        return result

    if resources.generator is None:
        raise StageError('generation', RAGError("No generation model loaded"))

    _log(logger, "Step 5: Generating the answer...")
    result.response = _stage('generation', pipeline.generate, prompt)
    _log(logger, "Answer generated")

    return result


def format_answer(result):
    """
    Format a QueryResult for display: the answer, then one line per hit.

    Args:
        result: A QueryResult with a response

    Returns:
        str: Display text
    """
    lines = [f"Response: {result.response.content.strip() if result.response else ''}"]
    listing = format_results(result.results)
    if listing:
        lines.append("")
        lines.append(listing)
    return "\n".join(lines)
