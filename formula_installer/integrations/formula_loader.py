"""
Formula descriptor loading from JSON files.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from ..core.errors import FormulaNotFoundError, ValidationError, ValidationErrorKind
from ..models.formula import Formula
from ..utils.logging import get_logger


class FormulaLoader:
    """Reads formula descriptors from a file path or a directory of <name>.json files."""

    def __init__(self, formula_dir: Path):
        self.logger = get_logger(__name__)
        self.formula_dir = Path(formula_dir)

    def resolve(self, reference: str) -> Path:
        """Map a formula name or path to its descriptor file."""
        path = Path(reference)
        if path.is_file():
            return path
        candidate = self.formula_dir / f"{reference}.json"
        if candidate.is_file():
            return candidate
        raise FormulaNotFoundError(reference)

    def load_descriptor(self, reference: str) -> Dict[str, Any]:
        path = self.resolve(reference)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ValidationError(ValidationErrorKind.MALFORMED_FIELD,
                                  f"{path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(ValidationErrorKind.MALFORMED_FIELD,
                                  f"{path} must contain a JSON object, got {type(data).__name__}")
        self.logger.debug(f"Loaded formula descriptor {path}")
        return data

    def load(self, reference: str) -> Formula:
        return Formula.from_descriptor(self.load_descriptor(reference))

    def available(self) -> List[str]:
        if not self.formula_dir.is_dir():
            return []
        return sorted(path.stem for path in self.formula_dir.glob("*.json"))
