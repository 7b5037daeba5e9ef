"""
Schema validation for ralph.

prd.json and the reviewer's verdict report are both written by external
agents, so every read and every write of them is checked against a schema in
ralph/schemas/. A failure names the schema and the JSON path of the most
relevant error.
"""

import json
from functools import lru_cache
from pathlib import Path

import jsonschema
from jsonschema.exceptions import best_match


class ValidationError(Exception):
    """Document missing, unparseable, or not matching its schema."""

    def __init__(self, schema_name: str, message: str, path: str | None = None):
        self.schema_name = schema_name
        self.path = path
        super().__init__(f"[{schema_name}] {message}" + (f" at {path}" if path else ""))


SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


@lru_cache(maxsize=None)
def _validator(schema_name: str):
    schema_path = SCHEMAS_DIR / f"{schema_name}.schema.json"
    if not schema_path.is_file():
        raise ValidationError(schema_name, f"Schema file not found: {schema_path}")
    schema = json.loads(schema_path.read_text())
    cls = jsonschema.validators.validator_for(schema)
    cls.check_schema(schema)
    return cls(schema)


def validate(data: dict, schema_name: str) -> None:
    """Raise ValidationError unless data matches the named schema ("prd" or "review")."""
    error = best_match(_validator(schema_name).iter_errors(data))
    if error is None:
        return
    where = "/".join(str(p) for p in error.absolute_path) or "(root)"
    raise ValidationError(schema_name, error.message, where)


def parse_and_validate(text: str, schema_name: str, source: str = "<string>") -> dict:
    """Parse JSON text and validate it.

    Raises:
        ValidationError: If the text is not JSON or doesn't match the schema
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValidationError(schema_name, f"{source} is not valid JSON ({e})") from None
    validate(data, schema_name)
    return data


def validate_file(filepath: Path, schema_name: str) -> dict:
    """
    Read a JSON file and validate it.

    Returns:
        Parsed and validated data

    Raises:
        ValidationError: If file missing, invalid, or doesn't match schema
    """
    try:
        text = filepath.read_text()
    except FileNotFoundError:
        raise ValidationError(schema_name, f"File not found: {filepath}") from None
    except OSError as e:
        raise ValidationError(schema_name, f"Cannot read {filepath}: {e}") from None
    return parse_and_validate(text, schema_name, str(filepath))


def validate_before_write(data: dict, schema_name: str, filepath: Path) -> None:
    """Refuse to persist a document that would fail the next read."""
    try:
        validate(data, schema_name)
    except ValidationError as e:
        raise ValidationError(schema_name, f"Refusing to write invalid data to {filepath}: {e}") from None
