# =============================================================================
# Configuration Loading and Merging
# =============================================================================
# This module loads YAML config files and merges them with command-line
# overrides. Everything stays a plain dictionary.

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv


# Secrets that may also come from the environment (or a .env file)
SECRET_ENV_VARS = {
    'openai_api_key': 'OPENAI_API_KEY',
    'qdrant_api_key': 'QDRANT_API_KEY',
}


def get_project_root():
    """
    Get the root directory of the project.
    This is the folder containing main.py and the configs/ directory.

    Returns:
        Path: The project root directory
    """
    return Path(__file__).parent.parent


def load_yaml_file(file_path):
    """
    Load a YAML file and return its contents as a dictionary.

    Args:
        file_path: Path to the YAML file

    Returns:
        dict: The parsed YAML contents, or empty dict if file doesn't exist
    """
    path = Path(file_path)
    if not path.exists():
        return {}

    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def deep_merge(base, override):
    """
    Recursively merge two dictionaries.
    Values in 'override' take precedence over values in 'base'.

    Args:
        base: The base dictionary (default values)
        override: The override dictionary (custom values)

    Returns:
        dict: A new dictionary with merged values

    Example:
        base = {'a': 1, 'b': {'x': 10, 'y': 20}}
        override = {'b': {'x': 99}}
        result = {'a': 1, 'b': {'x': 99, 'y': 20}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def load_config(config_path=None, cli_overrides=None):
    """
    Load configuration from YAML files and merge with CLI overrides.

    The loading order is:
    1. configs/base.yaml (default values)
    2. Custom config file (if provided via --config)
    3. CLI overrides (highest priority)

    Args:
        config_path: Optional path to a custom config YAML file
        cli_overrides: Optional dict of CLI argument overrides

    Returns:
        dict: The merged configuration dictionary

    Raises:
        FileNotFoundError: If config_path is given but doesn't exist
    """
    base_config_path = get_project_root() / 'configs' / 'base.yaml'
    config = load_yaml_file(base_config_path)

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        config = deep_merge(config, load_yaml_file(config_path))

    if cli_overrides:
        config = deep_merge(config, cli_overrides)

    return config


def get_secrets():
    """
    Load API keys and other secrets.

    configs/secrets.yaml wins when it exists. Anything it doesn't define
    is read from the environment, after loading a .env file if present.
    None of the secrets are required for the fully local setup
    (sentence-transformers + llama.cpp + an unauthenticated Qdrant).

    Returns:
        dict: Secrets by name (e.g. openai_api_key); missing ones are None
    """
    load_dotenv()

    secrets_path = get_project_root() / 'configs' / 'secrets.yaml'
    secrets = load_yaml_file(secrets_path)

    for name, env_var in SECRET_ENV_VARS.items():
        if not secrets.get(name):
            secrets[name] = os.getenv(env_var)

    return secrets


def resolve_path(path_str):
    """
    Convert a relative path string to an absolute Path object.
    Relative paths are resolved from the project root; "~" is expanded.

    Args:
        path_str: A path string (can be relative or absolute)

    Returns:
        Path: An absolute Path object
    """
    path = Path(path_str).expanduser()

    if path.is_absolute():
        return path

    return get_project_root() / path


# =============================================================================
# Helper function to print config for debugging
# =============================================================================
def print_config(config, indent=0):
    """
    Pretty-print a configuration dictionary.

    Args:
        config: The configuration dictionary to print
        indent: Current indentation level (used internally for recursion)
    """
    prefix = "  " * indent
    for key, value in config.items():
        if isinstance(value, dict):
            print(f"{prefix}{key}:")
            print_config(value, indent + 1)
        else:
            print(f"{prefix}{key}: {value}")
