"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'notion': {
        'token': '${NOTION_TOKEN}',
        'base_url': 'https://api.notion.com',
        'api_version': '2022-06-28',
        'max_retries': 3,
        'initial_retry_delay': 1.0,
        'max_retry_delay': 4.0,
        'page_size': 100,
        'timeout': 30,
    },
    'note': {
        'base_url': 'https://note.com/api',
        'session_cookie': '${NOTE_SESSION_V5}',
        'xsrf_token': '${NOTE_XSRF_TOKEN}',
        'all_cookies': '${NOTE_ALL_COOKIES}',
        'timeout': 30,
    },
    'conversion': {
        'max_recursion_depth': 10,
        'unsupported_block_warning': True,
        'min_heading_level': 1,
    },
    'images': {
        'supported_formats': ['image/jpeg', 'image/png', 'image/gif', 'image/webp'],
        'max_size_bytes': 10 * 1024 * 1024,
        'timeout': 30,
        'show_progress': False,
    },
    'import': {
        'save_as_draft': True,
        'tags': [],
        'report_path': None,
    },
    'logging': {
        'level': None,
        'file': None,
    },
}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Load configuration from a YAML file merged over the defaults.

        Environment variables written as ``${NAME}`` are substituted after
        merging, so defaults such as ``${NOTION_TOKEN}`` resolve too. Without
        a path only the defaults (and environment) are used.

        Args:
            config_path: Optional path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        file_data: Dict[str, Any] = {}

        if config_path:
            if not os.path.exists(config_path):
                raise FileNotFoundError(f"Configuration file not found: {config_path}")

            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)

            if loaded is not None and not isinstance(loaded, dict):
                raise ValueError("Configuration file must contain a dictionary")
            file_data = loaded or {}

        merged = deep_merge(DEFAULT_CONFIG, file_data)
        return cls._substitute_env_vars_recursive(merged)

    @classmethod
    def validate(cls, config: Dict[str, Any], require_note_auth: bool = False) -> None:
        """
        Validate configuration for required fields and value ranges.

        Args:
            config: Configuration dictionary to validate
            require_note_auth: Also require note.com credentials (import command)

        Raises:
            ValueError: If validation fails
        """
        cls._validate_required_field(config, 'notion.token')
        cls._validate_url(get_nested(config, 'notion.base_url'), 'notion.base_url')
        cls._validate_url(get_nested(config, 'note.base_url'), 'note.base_url')

        if require_note_auth and resolved_value(get_nested(config, 'note.all_cookies')) is None:
            cls._validate_required_field(config, 'note.session_cookie')

        for path in ('notion.max_retries', 'notion.page_size', 'conversion.max_recursion_depth',
                     'images.max_size_bytes'):
            value = get_nested(config, path)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{path} must be a positive integer")

        page_size = get_nested(config, 'notion.page_size')
        if page_size > 100:
            raise ValueError("notion.page_size must not exceed 100")

        for path in ('notion.initial_retry_delay', 'notion.max_retry_delay',
                     'notion.timeout', 'note.timeout', 'images.timeout'):
            value = get_nested(config, path)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{path} must be a positive number")

        if get_nested(config, 'notion.max_retry_delay') < get_nested(config, 'notion.initial_retry_delay'):
            raise ValueError("notion.max_retry_delay must be >= notion.initial_retry_delay")

        min_heading = get_nested(config, 'conversion.min_heading_level')
        if min_heading not in (1, 2, 3):
            raise ValueError("conversion.min_heading_level must be 1, 2 or 3")

        formats = get_nested(config, 'images.supported_formats')
        if not isinstance(formats, list) or not formats:
            raise ValueError("images.supported_formats must be a non-empty list")
        for mime_type in formats:
            if not isinstance(mime_type, str) or not mime_type.startswith('image/'):
                raise ValueError(f"images.supported_formats contains a non-image type: {mime_type}")

        tags = get_nested(config, 'import.tags')
        if not isinstance(tags, list):
            raise ValueError("import.tags must be a list")

        if not isinstance(get_nested(config, 'import.save_as_draft'), bool):
            raise ValueError("import.save_as_draft must be a boolean")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration with CLI arguments. CLI arguments take precedence.

        Args:
            config: Base configuration dictionary
            args: Parsed CLI arguments

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)
        for section in ('import', 'logging', 'conversion'):
            merged.setdefault(section, {})

        if getattr(args, 'tags', None):
            merged['import']['tags'] = [tag.strip() for tag in args.tags.split(',') if tag.strip()]

        if getattr(args, 'publish', None) is not None:
            merged['import']['save_as_draft'] = not args.publish

        if getattr(args, 'report_path', None):
            merged['import']['report_path'] = args.report_path

        if getattr(args, 'max_depth', None):
            merged['conversion']['max_recursion_depth'] = args.max_depth

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: Any, field_name: str) -> None:
        """Validate URL format."""
        if not isinstance(url, str):
            raise ValueError(f"{field_name} must be a URL string")
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``override`` merged in, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def resolved_value(value: Any) -> Any:
    """Return ``value`` unless it is empty or an unsubstituted ${VAR} reference."""
    if value is None or value == '':
        return None
    if isinstance(value, str) and ConfigLoader.ENV_VAR_PATTERN.search(value):
        return None
    return value


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "notion.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config
    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'deep_merge', 'get_nested', 'resolved_value']
