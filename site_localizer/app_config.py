"""Application configuration module for the site localizer."""
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

import yaml
from dotenv import load_dotenv

from site_localizer.logging_config import setup_logger
from site_localizer.script_localizer import Dialect
from site_localizer.translation_client import DEFAULT_API_URL, DEFAULT_DELAY, DEFAULT_TIMEOUT

DEFAULT_TARGET_LANGUAGES = "lv,ru"
DEFAULT_FILE_PATTERNS = ['**/*.html', '**/*.js']
DEFAULT_IGNORE_DIRS = ['node_modules', 'dist', '.git', '.github']
DEFAULT_LOG_FILE_PATH = 'logs/localization.log'


@dataclass
class AppConfig:
    """Application configuration dataclass."""
    # Core paths
    project_root: str
    output_dir: str
    cache_file: str

    # Translation service
    api_url: str
    api_key: str
    source_language: str
    target_languages: List[str]
    request_timeout: float
    request_delay: float
    max_requests_per_minute: int

    # Discovery and parsing
    file_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_FILE_PATTERNS))
    ignore_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_DIRS))
    script_dialect: Dialect = Dialect.JSX | Dialect.TYPESCRIPT

    # Processing settings
    dry_run: bool = False
    log_file_path: str = DEFAULT_LOG_FILE_PATH


def _compute_project_root() -> str:
    """The project root is the directory being localized; defaults to the working directory."""
    return os.path.abspath(os.environ.get('LOCALIZER_PROJECT_ROOT', os.getcwd()))


def _load_dotenv_files(project_root: str) -> None:
    """Load .env files from project root or docker directory."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        load_dotenv(dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        load_dotenv(dotenv_path_docker_dir)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """Load the YAML configuration file, falling back to an empty mapping on any problem."""
    default_config_path = os.path.join(project_root, 'config.yaml')
    config_file = os.environ.get('TRANSLATOR_CONFIG_FILE', default_config_path)

    if not os.path.isabs(config_file):
        config_file = os.path.abspath(config_file)

    config = {}
    try:
        if not os.path.exists(config_file):
            print(f"Warning: Configuration file '{config_file}' not found. Using default configuration.",
                  file=sys.stderr)
            return config

        if not os.access(config_file, os.R_OK):
            print(f"Error: Configuration file '{config_file}' exists but is not readable. Check file permissions.",
                  file=sys.stderr)
            return config

        with open(config_file, 'r', encoding='utf-8') as config_file_stream:
            loaded_config = yaml.safe_load(config_file_stream)
            if loaded_config is None:
                print(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.",
                      file=sys.stderr)
            elif isinstance(loaded_config, dict):
                config = loaded_config
                print(f"Successfully loaded configuration from: {config_file}", file=sys.stderr)
            else:
                print(f"Error: Configuration file '{config_file}' must contain a YAML dictionary. Using defaults.",
                      file=sys.stderr)

    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML in configuration file '{config_file}': {e}", file=sys.stderr)
        print("Please check your YAML syntax. Using default configuration.", file=sys.stderr)
    except (OSError, IOError) as e:
        print(f"Error: Could not read configuration file '{config_file}': {e}", file=sys.stderr)
        print("Using default configuration.", file=sys.stderr)

    return config


def _resolve_path(project_root: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(project_root, path)


def _setup_logger_from_config(config: Dict[str, Any], project_root: str) -> logging.Logger:
    """Set up logger based on configuration."""
    log_config = config.get('logging', {}) or {}
    log_level_str = str(log_config.get('log_level', 'INFO')).upper()
    log_file_path = _resolve_path(project_root, log_config.get('log_file_path', DEFAULT_LOG_FILE_PATH))
    log_to_console = log_config.get('log_to_console', True)
    return setup_logger(log_level_str, log_file_path, log_to_console)


def _log_dotenv_status(logger: logging.Logger, project_root: str) -> None:
    """Log the status of .env file loading."""
    dotenv_path_project_root = os.path.join(project_root, '.env')
    dotenv_path_docker_dir = os.path.join(project_root, 'docker', '.env')

    if os.path.exists(dotenv_path_project_root):
        logger.info("Loaded environment variables from: %s", dotenv_path_project_root)
    elif os.path.exists(dotenv_path_docker_dir):
        logger.info("Loaded environment variables from: %s", dotenv_path_docker_dir)
    else:
        logger.info(
            "No .env file found in project root ('%s') or in docker/ ('%s'). Relying on system environment variables if any.",
            dotenv_path_project_root,
            dotenv_path_docker_dir
        )


def parse_language_list(value: Union[str, List[str], None]) -> List[str]:
    """Split a comma-separated string (or list) of language codes, dropping blanks."""
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [str(code).strip() for code in value if str(code).strip()]


def load_app_config() -> AppConfig:
    """
    Load application configuration from YAML file and environment variables.

    Environment variables win over the YAML file, which wins over defaults.

    Returns:
        AppConfig: The loaded application configuration.
    """
    project_root = _compute_project_root()

    _load_dotenv_files(project_root)

    config = _load_yaml_config(project_root)
    # A project_root key in the YAML file only applies when the environment does not set one.
    if 'project_root' in config and 'LOCALIZER_PROJECT_ROOT' not in os.environ:
        project_root = os.path.abspath(config['project_root'])

    logger = _setup_logger_from_config(config, project_root)
    _log_dotenv_status(logger, project_root)

    api_url = os.environ.get('TRANSLATE_API_URL') or config.get('translate_api_url', DEFAULT_API_URL)
    api_key = os.environ.get('TRANSLATE_API_KEY') or config.get('translate_api_key', '') or ''

    target_languages = parse_language_list(
        os.environ.get('TARGET_LANGS') or config.get('target_languages', DEFAULT_TARGET_LANGUAGES)
    )
    if not target_languages:
        logger.warning("No target languages configured; falling back to '%s'.", DEFAULT_TARGET_LANGUAGES)
        target_languages = parse_language_list(DEFAULT_TARGET_LANGUAGES)

    log_config = config.get('logging', {}) or {}

    return AppConfig(
        project_root=project_root,
        output_dir=_resolve_path(project_root, config.get('output_dir', 'dist')),
        cache_file=_resolve_path(project_root, config.get('cache_file', '.translation-cache.json')),
        api_url=api_url,
        api_key=api_key,
        source_language=config.get('source_language', 'en'),
        target_languages=target_languages,
        request_timeout=float(config.get('request_timeout', DEFAULT_TIMEOUT)),
        request_delay=float(config.get('request_delay', DEFAULT_DELAY)),
        max_requests_per_minute=int(config.get('max_requests_per_minute', 0)),
        file_patterns=list(config.get('file_patterns', DEFAULT_FILE_PATTERNS)),
        ignore_dirs=list(config.get('ignore_dirs', DEFAULT_IGNORE_DIRS)),
        script_dialect=Dialect.from_names(config.get('script_dialect', ['jsx', 'typescript'])),
        dry_run=bool(config.get('dry_run', False)),
        log_file_path=_resolve_path(project_root, log_config.get('log_file_path', DEFAULT_LOG_FILE_PATH))
    )
