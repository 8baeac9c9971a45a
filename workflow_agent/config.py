"""
Workflow Agent Configuration
============================
Loads server configuration from a JSON file merged over defaults, then
applies environment overrides. Input fields are parsed once here and stay
fixed for the life of the server.
"""

import json
import os

from .validation import parse_input_fields

DEFAULT_CONFIG = {
    "host": "0.0.0.0",
    "port": 4000,
    "authentication": {
        "scheme": "none",
        "api_key": None,
    },
    "agent": {
        "name": "Workflow Agent",
        "description": "Answers questions and runs an automation workflow on request.",
        "protocolVersion": "0.3.0",
        "version": "0.1.0",
        "url": None,
        "capabilities": {
            "streaming": True,
            "pushNotifications": False,
        },
        "skills": [],
        "defaultInputModes": ["text/plain"],
        "defaultOutputModes": ["text/plain", "application/json"],
    },
    "workflow": {
        "webhook_url": "",
        "timeout_seconds": None,
        "define_input_fields": "fields",
        "input_fields_json": None,
        "input_fields": [],
    },
    "model": {
        "api_base": "http://localhost:11434/v1",
        "model": "",
        "api_key": "",
        "temperature": 0.1,
        "max_tool_rounds": 8,
        "timeout_seconds": None,
    },
}

ENV_OVERRIDES = {
    "WORKFLOW_AGENT_WEBHOOK_URL": ("workflow", "webhook_url"),
    "WORKFLOW_AGENT_MODEL_API_BASE": ("model", "api_base"),
    "WORKFLOW_AGENT_MODEL": ("model", "model"),
    "WORKFLOW_AGENT_MODEL_API_KEY": ("model", "api_key"),
}


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""
    pass


def load_config(config_path: str | None = None, environ: dict | None = None) -> dict:
    """Load config from file, merging with defaults.

    The returned dict carries the parsed input fields under
    ``config["workflow"]["fields"]`` as a tuple of InputFieldConfig.
    """
    config = json.loads(json.dumps(DEFAULT_CONFIG))

    if config_path:
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        if not isinstance(user_config, dict):
            raise ConfigError(f"Config file {config_path} must contain a JSON object")
        _deep_merge(config, user_config)

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        if env.get(var):
            config[section][key] = env[var]

    resolve_input_fields(config)
    return config


def resolve_input_fields(config: dict) -> dict:
    """Parse the workflow input field declarations into ``workflow.fields``."""
    workflow = config.setdefault("workflow", {})
    try:
        workflow["fields"] = parse_input_fields(
            workflow.get("define_input_fields", "fields"),
            workflow.get("input_fields_json"),
            workflow.get("input_fields"),
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e
    return config


def _deep_merge(base: dict, override: dict):
    """Merge override into base in-place, recursing into dicts."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
