"""
Rubric parser module.

Parses a lab's stored rubric blob (a JSON object or its text form) into the
validated Rubric model. Missing settings take their defaults; unknown keys
are ignored.
"""

import json
from pathlib import Path
from typing import Any, Mapping

from pydantic import ValidationError

from dissection_grader.models import Rubric


class RubricParseError(Exception):
    """Raised when rubric parsing fails."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class RubricParser:
    """
    Parses rubric blobs into the Rubric model.

    Accepts:
    1. None or an empty string: every setting takes its default
    2. A mapping, as stored in the lab's rubric column
    3. JSON text of such a mapping
    """

    def parse(self, blob: Mapping[str, Any] | str | None) -> Rubric:
        """
        Parse a rubric blob.

        Args:
            blob: The stored rubric configuration.

        Returns:
            Validated, immutable Rubric.

        Raises:
            RubricParseError: If the blob is not an object or a setting is invalid.
        """
        if blob is None:
            return Rubric()

        if isinstance(blob, str):
            blob = self._load_json(blob)

        if not isinstance(blob, Mapping):
            raise RubricParseError(
                f"Rubric must be a JSON object, got {type(blob).__name__}"
            )

        try:
            return Rubric.model_validate(dict(blob))
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or None
            raise RubricParseError(first["msg"], field) from e

    def parse_file(self, path: Path) -> Rubric:
        """
        Parse a rubric stored as a JSON file.

        Raises:
            RubricParseError: If the file cannot be read or parsed.
        """
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise RubricParseError(f"Cannot read rubric file {path}: {e}") from e
        return self.parse(content)

    def _load_json(self, content: str) -> Any:
        """Decode JSON text; blank text means an empty rubric."""
        if not content.strip():
            return {}
        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            raise RubricParseError(
                f"Invalid JSON at line {e.lineno}, column {e.colno}: {e.msg}"
            ) from e
