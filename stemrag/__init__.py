# =============================================================================
# STEM RAG - Source Package
# =============================================================================
# This package contains all modules for the question-answering chain:
#   - config.py      : Configuration loading and merging
#   - errors.py      : Error types for every stage
#   - embedding.py   : Turn the question into a vector (sentence-transformers)
#   - retrieval.py   : Search the Qdrant collection
#   - payloads.py    : Unwrap JSON-encoded search payloads
#   - context.py     : Build the template context from the question and hits
#   - templates.py   : Parse and render role-structured prompt templates
#   - prompts.py     : The built-in query template
#   - generation.py  : Local model backends (llama.cpp, OpenAI-compatible)
#   - pipeline.py    : Templates + generator, execute() -> Response
#   - rag.py         : Run the whole chain for one question
#   - run_tracker.py : Track runs in ./runs folder
