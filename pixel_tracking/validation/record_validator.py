"""
Record Validator — Checks persisted tracker records against JSON Schema.

Buffers written by an older build, or by the browser side, are loaded
through here so that one malformed entry drops that entry only instead of
the whole buffer. Uses JSON Schema Draft 2020-12.
"""

import json
import structlog
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from jsonschema import Draft202012Validator

logger = structlog.get_logger(__name__)

DEFAULT_SCHEMA_DIR = Path(__file__).parent / "schemas"


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)


class RecordValidator:
    """
    Validates records against the schema with the configured title.
    The schema is loaded from disk once and kept in memory.
    """

    def __init__(self, schema_dir: Optional[str] = None, title: str = "EventRecord"):
        self.schema_dir = Path(schema_dir) if schema_dir else DEFAULT_SCHEMA_DIR
        self.title = title
        self._validator: Optional[Draft202012Validator] = None
        self._load_schema()

    def _load_schema(self):
        if not self.schema_dir.exists():
            logger.warning("schema_dir_not_found", path=str(self.schema_dir))
            return

        for schema_file in sorted(self.schema_dir.glob("*.json")):
            try:
                with open(schema_file) as f:
                    schema = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(
                    "schema_load_error",
                    file=schema_file.name,
                    error=str(e),
                )
                continue

            if schema.get("title") == self.title:
                Draft202012Validator.check_schema(schema)
                self._validator = Draft202012Validator(schema)
                logger.debug("schema_loaded", title=self.title, file=schema_file.name)
                return

        logger.warning("schema_not_found", title=self.title, path=str(self.schema_dir))

    def validate(self, record) -> ValidationResult:
        if self._validator is None:
            # No schema loaded, only the shape is checked
            if isinstance(record, dict):
                return ValidationResult(is_valid=True)
            return ValidationResult(is_valid=False, errors=["$: record is not an object"])

        errors = [
            f"{error.json_path}: {error.message}"
            for error in self._validator.iter_errors(record)
        ]
        return ValidationResult(is_valid=not errors, errors=errors)
