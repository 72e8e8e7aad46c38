"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'confluence': {
        'base_url': None,
        'auth_type': 'basic',
        'username': None,
        'password': None,
        'api_token': None,
        'verify_ssl': True,
    },
    'export': {
        'output_directory': './exports',
        'frontmatter': True,
        'include_attachments': False,
        'asset_directory': 'assets',
        'exported_by': 'confluence-markdown-exporter',
    },
    'conversion': {
        'parser_strategy': 'soup',
        'match_by_macro_id': True,
        'heading_style': 'ATX',
        'plantuml_as_diagram_reference': True,
        'emit_code_options': True,
    },
    'advanced': {
        'request_timeout': 30,
        'max_retries': 3,
        'retry_backoff_factor': 2.0,
        'rate_limit': 0.0,
        'max_workers': 5,
    },
    'logging': {
        'level': None,
        'file': None,
    },
}

PARSER_STRATEGIES = ('soup', 'regex')
HEADING_STYLES = ('ATX', 'ATX_CLOSED', 'SETEXT', 'UNDERLINED')


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary merged over the defaults

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)

        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Return ``config`` deep-merged over DEFAULT_CONFIG."""
        return _deep_merge(DEFAULT_CONFIG, config or {})

    @classmethod
    def validate(cls, config: Dict[str, Any], require_connection: bool = True) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate
            require_connection: Whether Confluence connection settings are required

        Raises:
            ValueError: If validation fails
        """
        if require_connection:
            cls._validate_required_field(config, 'confluence.base_url')
            auth_type = get_nested(config, 'confluence.auth_type', 'basic')

            if auth_type == 'basic':
                cls._validate_required_field(config, 'confluence.username')
                cls._validate_required_field(config, 'confluence.password')
            elif auth_type == 'bearer':
                cls._validate_required_field(config, 'confluence.api_token')
            else:
                raise ValueError("confluence.auth_type must be 'basic' or 'bearer'")

            cls._validate_url(get_nested(config, 'confluence.base_url'), 'confluence.base_url')

        output_dir = get_nested(config, 'export.output_directory')
        if not output_dir:
            raise ValueError("Missing required configuration: export.output_directory")
        if os.path.exists(output_dir) and not os.path.isdir(output_dir):
            raise ValueError(f"export.output_directory '{output_dir}' is not a directory")

        parser_strategy = get_nested(config, 'conversion.parser_strategy', 'soup')
        if parser_strategy not in PARSER_STRATEGIES:
            raise ValueError(f"conversion.parser_strategy must be one of: {', '.join(PARSER_STRATEGIES)}")

        heading_style = get_nested(config, 'conversion.heading_style', 'ATX')
        if heading_style not in HEADING_STYLES:
            raise ValueError(f"conversion.heading_style must be one of: {', '.join(HEADING_STYLES)}")

        for field in ('export.frontmatter', 'export.include_attachments',
                      'conversion.match_by_macro_id', 'conversion.plantuml_as_diagram_reference',
                      'conversion.emit_code_options'):
            value = get_nested(config, field)
            if value is not None and not isinstance(value, bool):
                raise ValueError(f"{field} must be a boolean")

        timeout = get_nested(config, 'advanced.request_timeout', 30)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("advanced.request_timeout must be a positive number")

        max_retries = get_nested(config, 'advanced.max_retries', 3)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ValueError("advanced.max_retries must be a non-negative integer")

        rate_limit = get_nested(config, 'advanced.rate_limit', 0.0)
        if not isinstance(rate_limit, (int, float)) or rate_limit < 0:
            raise ValueError("advanced.rate_limit must be a non-negative number")

        max_workers = get_nested(config, 'advanced.max_workers', 5)
        if not isinstance(max_workers, int) or max_workers < 1:
            raise ValueError("advanced.max_workers must be a positive integer")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('confluence', 'export', 'conversion', 'logging'):
            if merged.get(section) is None:
                merged[section] = {}

        if getattr(args, 'output_dir', None):
            merged['export']['output_directory'] = args.output_dir

        if getattr(args, 'parser', None):
            merged['conversion']['parser_strategy'] = args.parser

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        if getattr(args, 'include_attachments', False):
            merged['export']['include_attachments'] = True

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
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        # Unsubstituted environment variables
        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "confluence.base_url")
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


__all__ = ['ConfigLoader', 'get_nested', 'DEFAULT_CONFIG']
