"""Configuration management."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

# Load .env file if it exists
env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

CONFIG_FILE = Path(__file__).parent.parent / 'config' / 'config.yaml'


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def load_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from YAML file and environment variables."""
    config_file = config_file or CONFIG_FILE

    # Load from YAML
    if config_file.exists():
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
    else:
        config = {}

    # Override with environment variables
    config['SECRET_KEY'] = os.getenv('SECRET_KEY', config.get('secret_key', 'dev-secret-key-change-in-production'))
    config['ANTHROPIC_API_KEY'] = os.getenv('ANTHROPIC_API_KEY', config.get('anthropic_api_key', ''))
    config['LLM_MODEL'] = os.getenv('LLM_MODEL', config.get('llm_model', 'claude-sonnet-4-5'))
    config['LLM_MAX_TOKENS'] = int(os.getenv('LLM_MAX_TOKENS', config.get('llm_max_tokens', 4096)))
    config['LLM_TIMEOUT_SECONDS'] = float(os.getenv('LLM_TIMEOUT_SECONDS', config.get('llm_timeout_seconds', 60)))
    config['STORAGE_BACKEND'] = os.getenv('STORAGE_BACKEND', config.get('storage_backend', 'json')).lower()
    config['DATA_DIR'] = os.getenv('DATA_DIR', config.get('data_dir', 'data'))
    config['MAX_UPLOAD_SIZE'] = int(os.getenv('MAX_UPLOAD_SIZE', config.get('max_upload_size', 10 * 1024 * 1024)))
    config['DEBUG'] = _as_bool(os.getenv('DEBUG', config.get('debug', False)))
    config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', config.get('log_level', 'INFO')).upper()
    config['HOST'] = os.getenv('HOST', config.get('host', '0.0.0.0'))
    config['PORT'] = int(os.getenv('PORT', config.get('port', 8000)))

    if config['STORAGE_BACKEND'] not in ('json', 'memory'):
        raise ValueError(f"STORAGE_BACKEND must be 'json' or 'memory', got {config['STORAGE_BACKEND']!r}")

    return config