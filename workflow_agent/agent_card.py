"""
Agent Card Generation
=====================
Builds the A2A Agent Card from the operator-supplied ``agent`` section of
the configuration. The card is built once at startup and served as-is.
"""

import json
from typing import Any

from .config import ConfigError

SKILL_DEFAULTS = {
    "tags": [],
    "examples": [],
    "inputModes": ["text"],
    "outputModes": ["text", "task-status"],
}


def build_agent_card(config: dict) -> dict:
    """Build an A2A Agent Card from configuration."""
    agent = config.get("agent", {})
    url = agent.get("url") or f"http://localhost:{config.get('port', 4000)}"

    card = {
        "name": agent.get("name", "Workflow Agent"),
        "description": agent.get("description", ""),
        "protocolVersion": agent.get("protocolVersion", "0.3.0"),
        "version": agent.get("version", "0.1.0"),
        "url": url,
        "capabilities": dict(agent.get("capabilities") or {}),
        "skills": parse_skills(agent.get("skills", [])),
        "defaultInputModes": list(agent.get("defaultInputModes") or ["text/plain"]),
        "defaultOutputModes": list(agent.get("defaultOutputModes") or ["text/plain"]),
    }

    security = _build_security_section(config)
    if security:
        card.update(security)

    return card


def parse_skills(skills: Any) -> list[dict]:
    """Normalize skills given as a JSON string or a list of dicts."""
    if isinstance(skills, str):
        try:
            skills = json.loads(skills) if skills.strip() else []
        except json.JSONDecodeError as e:
            raise ConfigError(f"Failed to parse skills JSON: {e}") from e

    if not isinstance(skills, list):
        raise ConfigError("Agent skills must be a JSON array")

    result = []
    for idx, skill in enumerate(skills):
        if not isinstance(skill, dict):
            raise ConfigError(f"Skill #{idx + 1} must be an object")
        skill_id = skill.get("id") or f"skill_{idx + 1}"
        normalized = {
            "id": skill_id,
            "name": skill.get("name", skill_id.replace("_", " ").title()),
            "description": skill.get("description", ""),
        }
        for key, default in SKILL_DEFAULTS.items():
            normalized[key] = list(skill.get(key) or default)
        result.append(normalized)
    return result


def _build_security_section(config: dict) -> dict:
    """Describe the API key requirement, if one is configured."""
    auth_config = config.get("authentication", {})
    if auth_config.get("scheme", "none") == "none" or not auth_config.get("api_key"):
        return {}
    return {
        "securitySchemes": {
            "apiKey": {"type": "apiKey", "in": "header", "name": "X-API-KEY"},
        },
        "security": [{"apiKey": []}],
    }
