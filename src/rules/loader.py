"""
Rules file loader.

The rules file is plain YAML, or a markdown document whose first ```yaml
fenced block holds the rules. Missing keys fall back to the model defaults.
"""

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from src.rules.models import Rules

_YAML_FENCE = re.compile(r"^\s*```yaml\s*$(.*?)^\s*```", re.MULTILINE | re.DOTALL)


def _yaml_source(content: str) -> str:
    match = _YAML_FENCE.search(content)
    return match.group(1) if match else content


def parse_rules(content: str) -> Rules:
    """
    Parse rules text.

    Raises:
        ValueError: If the YAML or the schema is invalid
    """
    try:
        data: Any = yaml.safe_load(_yaml_source(content))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax in rules file: {e}") from e

    try:
        return Rules.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Rules validation failed:\n{e}") from e


def load_rules(path: Path | str) -> Rules:
    """
    Load and validate the rules file at `path`.

    Raises:
        FileNotFoundError: If the file is missing
        ValueError: If the YAML or the schema is invalid
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Rules file not found at: {path}")
    return parse_rules(path.read_text())
