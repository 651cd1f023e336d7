# =============================================================================
# STEM RAG - Main CLI Entry Point
# =============================================================================
# Answers a question from excerpts stored in a Qdrant collection, using a
# locally-run language model.
#
# Usage:
#   python main.py ask "your question" --collection docs     # Full answer
#   python main.py search "your question" --collection docs  # Hits only
#   python main.py render "your question" --collection docs  # Prompt only
#
# All commands support:
#   --config FILE    Load a custom config file
#   --top-k N        Override the number of results to retrieve

import argparse
import json
import sys

from stemrag.config import load_config, print_config
from stemrag.errors import RAGError
from stemrag.rag import format_answer, load_resources, run_query, search_only
from stemrag.retrieval import format_results
from stemrag.run_tracker import (
    create_run,
    get_logger,
    save_config,
    save_response,
    save_results,
)


# =============================================================================
# Helpers
# =============================================================================

def build_config(args):
    """Load the config and apply the CLI overrides."""
    cli_overrides = {}
    if args.top_k is not None:
        cli_overrides['retrieval'] = {'top_k': args.top_k}
    if args.collection:
        cli_overrides.setdefault('retrieval', {})['collection'] = args.collection
    if args.template_file:
        cli_overrides['prompt'] = {'template_file': args.template_file}

    config = load_config(args.config, cli_overrides)

    if args.verbose:
        print("\nConfiguration:")
        print_config(config)
        print()

    return config


def start_tracking(args, config):
    """Create a run folder and logger if --track was given."""
    if not args.track:
        return None, None

    run_dir = create_run(config, args.command)
    logger = get_logger(run_dir)
    save_config(run_dir, config)
    return run_dir, logger


def parse_filter(raw):
    if not raw:
        return None
    return json.loads(raw)


# =============================================================================
# Command Handlers
# =============================================================================

def cmd_ask(args, config):
    """
    Handle the 'ask' command: the full chain, printing the answer followed
    by the retrieved results.
    """
    collection = config['retrieval']['collection']
    query_filter = parse_filter(args.filter)
    run_dir, logger = start_tracking(args, config)

    resources = load_resources(config, logger)
    try:
        result = run_query(
            args.question, collection, resources, config, logger,
            filter=query_filter,
        )
    finally:
        resources.close()

    if run_dir:
        save_results(run_dir, args.question, collection, result.results)
        save_response(run_dir, result, metadata={
            'embedding_model': resources.embedder.model_name,
            'generation_model': getattr(resources.generator, 'model_name', None),
            'max_tokens': config.get('generation', {}).get('max_tokens'),
        })

    print()
    print(format_answer(result))

    return 0


def cmd_search(args, config):
    """Handle the 'search' command: embed and search, no generation."""
    collection = config['retrieval']['collection']
    query_filter = parse_filter(args.filter)
    run_dir, logger = start_tracking(args, config)

    resources = load_resources(config, logger, with_generator=False)
    try:
        results = search_only(
            args.question, collection, resources, config, logger,
            filter=query_filter,
        )
    finally:
        resources.close()

    if run_dir:
        save_results(run_dir, args.question, collection, results)

    print()
    print(format_results(results) or "No results.")

    return 0


def cmd_render(args, config):
    """Handle the 'render' command: print the prompt the model would get."""
    collection = config['retrieval']['collection']
    query_filter = parse_filter(args.filter)
    run_dir, logger = start_tracking(args, config)

    resources = load_resources(config, logger, with_generator=False)
    try:
        result = run_query(
            args.question, collection, resources, config, logger,
            filter=query_filter, generate=False,
        )
    finally:
        resources.close()

    if run_dir:
        save_results(run_dir, args.question, collection, result.results)
        save_response(run_dir, result)

    print()
    print(result.prompt)

    return 0


COMMANDS = {
    'ask': cmd_ask,
    'search': cmd_search,
    'render': cmd_render,
}


# =============================================================================
# Main Entry Point
# =============================================================================

def build_parser():
    parser = argparse.ArgumentParser(
        description='STEM RAG - Answer questions from indexed Slack excerpts',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py ask "What is a hash table?" --collection docs
  python main.py search "hash table" --collection docs --top-k 10
  python main.py render "What is a hash table?" --collection docs
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    helps = {
        'ask': 'Answer a question (embed -> search -> generate)',
        'search': 'Show the excerpts retrieved for a question',
        'render': 'Show the prompt that would be sent to the model',
    }

    for name, help_text in helps.items():
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            'question',
            help='The question to ask the index'
        )
        sub.add_argument(
            '--collection', '-C',
            help='The Qdrant collection to query (default: retrieval.collection)'
        )
        sub.add_argument(
            '--config', '-c',
            help='Path to custom config YAML file'
        )
        sub.add_argument(
            '--top-k', '-k',
            type=int,
            help='Number of results to retrieve'
        )
        sub.add_argument(
            '--filter', '-f',
            help='Qdrant filter as JSON, e.g. \'{"must": [{"key": "channel", "match": {"value": "general"}}]}\''
        )
        sub.add_argument(
            '--template-file',
            help='Use a custom prompt template file'
        )
        sub.add_argument(
            '--track', '-t',
            action='store_true',
            help='Create a run folder to track this operation'
        )
        sub.add_argument(
            '--verbose', '-v',
            action='store_true',
            help='Print detailed configuration'
        )

    return parser


def main(argv=None):
    """
    Main entry point - parse arguments and run the appropriate command.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = build_config(args)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not config.get('retrieval', {}).get('collection'):
        print("Error: no collection given (use --collection)", file=sys.stderr)
        return 1

    try:
        return COMMANDS[args.command](args, config)
    except RAGError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (ValueError, OSError) as e:
        # Empty question, negative --top-k, a --filter that isn't JSON,
        # or an unreadable template file
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
