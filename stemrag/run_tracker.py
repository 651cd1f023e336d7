# =============================================================================
# Run Tracker Module
# =============================================================================
# Saves what a query run did (config, search hits, prompt, answer, log) to
# a timestamped folder under ./runs so answers can be inspected later.

import json
import logging
from datetime import datetime
from pathlib import Path

import yaml

from stemrag.config import get_project_root


def create_run(config, run_name=None, runs_dir=None):
    """
    Create a new run folder with a timestamp.

    Each run gets its own folder like: runs/20260128_143022_ask/

    Args:
        config: The configuration dictionary used for this run
        run_name: Optional custom name to append to the folder name
        runs_dir: Parent folder (default: <project root>/runs)

    Returns:
        Path: The path to the newly created run folder
    """
    runs_dir = Path(runs_dir) if runs_dir else get_project_root() / 'runs'
    runs_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    folder_name = f"{timestamp}_{run_name}" if run_name else timestamp

    run_dir = runs_dir / folder_name
    run_dir.mkdir(exist_ok=True)
    (run_dir / 'results').mkdir(exist_ok=True)

    print(f"Created run folder: {run_dir}")

    return run_dir


def save_config(run_dir, config):
    """
    Save the merged configuration used for this run.

    Args:
        run_dir: Path to the run folder
        config: The configuration dictionary to save
    """
    config_path = Path(run_dir) / 'config.yaml'

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)


def save_results(run_dir, query, collection, results, query_number=1):
    """
    Save search results for a query to runs/TIMESTAMP/results/query_001.json

    Args:
        run_dir: Path to the run folder
        query: The search query string
        collection: The collection that was searched
        results: List of SearchResult objects
        query_number: Number used in the file name

    Returns:
        Path: The written file
    """
    results_dir = Path(run_dir) / 'results'
    results_dir.mkdir(exist_ok=True)
    results_path = results_dir / f"query_{query_number:03d}.json"

    data = {
        'query': query,
        'collection': collection,
        'timestamp': datetime.now().isoformat(),
        'num_results': len(results),
        'results': [r.to_dict() for r in results],
    }

    with open(results_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    return results_path


def save_response(run_dir, query_result, metadata=None):
    """
    Save the rendered prompt and the generated answer.

    Args:
        run_dir: Path to the run folder
        query_result: A QueryResult from run_query()
        metadata: Optional dict with additional metadata (model, max_tokens...)

    Returns:
        Path: The written file
    """
    response_path = Path(run_dir) / 'response.json'

    data = {
        'question': query_result.question,
        'collection': query_result.collection,
        'prompt': query_result.prompt,
        'response': query_result.response.content if query_result.response else None,
        'context': query_result.context.to_dict() if query_result.context is not None else None,
        'timestamp': datetime.now().isoformat(),
    }

    if metadata:
        data['metadata'] = metadata

    with open(response_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)

    return response_path


def get_logger(run_dir, name='stemrag', level=logging.INFO):
    """
    Create a logger that writes to both console and a log file in the run folder.

    Args:
        run_dir: Path to the run folder
        name: Name for the logger
        level: Logging level for both handlers

    Returns:
        logging.Logger: A configured logger instance
    """
    log_path = Path(run_dir) / 'run.log'

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear any existing handlers (in case this is called multiple times)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_handler = logging.FileHandler(log_path, encoding='utf-8')
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    logger.info(f"Logging to: {log_path}")

    return logger
