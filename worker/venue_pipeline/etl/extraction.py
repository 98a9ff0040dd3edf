"""Turn raw text-generation output into validated enrichment fields.

Three independent steps, each with its own result type:

1. ``repair_json`` restores a leading ``{`` dropped by reply seeding and a
   trailing ``}`` lost to truncation, and strips code fences. It never
   invents a body: a reply with nothing between the braces fails to parse.
2. ``parse_json`` decodes the repaired text and insists on a JSON object.
3. ``validate_fields`` checks the object against ``EnrichmentFields``.

``validate_extraction`` chains them and reports which step failed, so
"could not parse" is never confused with "parsed but invalid".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from venue_pipeline.models import EnrichmentFields

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class RepairResult:
    text: str
    added_leading_brace: bool = False
    added_trailing_brace: bool = False

    @property
    def repaired(self) -> bool:
        return self.added_leading_brace or self.added_trailing_brace

    @property
    def empty(self) -> bool:
        return not self.text[1:-1].strip()


@dataclass(frozen=True)
class ParseResult:
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ValidationResult:
    fields: Optional[EnrichmentFields] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.fields is not None


@dataclass(frozen=True)
class ExtractionResult:
    fields: Optional[EnrichmentFields] = None
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.fields is not None


def repair_json(raw: str) -> RepairResult:
    text = _CODE_FENCE.sub("", (raw or "").strip()).strip()
    added_leading = not text.startswith("{")
    if added_leading:
        text = "{" + text
    added_trailing = not text.endswith("}")
    if added_trailing:
        text = text + "}"
    return RepairResult(text=text, added_leading_brace=added_leading, added_trailing_brace=added_trailing)


def parse_json(text: str) -> ParseResult:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        return ParseResult(error=f"invalid JSON: {exc}")
    if not isinstance(data, dict):
        return ParseResult(error=f"expected a JSON object, got {type(data).__name__}")
    return ParseResult(data=data)


def validate_fields(data: Dict[str, Any]) -> ValidationResult:
    try:
        return ValidationResult(fields=EnrichmentFields.model_validate(data))
    except ValidationError as exc:
        errors = [f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in exc.errors()]
        return ValidationResult(errors=errors)


def validate_extraction(raw: str) -> ExtractionResult:
    repaired = repair_json(raw)
    if repaired.empty:
        return ExtractionResult(failed_step="parse", error="reply has no content")
    parsed = parse_json(repaired.text)
    if not parsed.ok:
        return ExtractionResult(failed_step="parse", error=parsed.error)
    validated = validate_fields(parsed.data or {})
    if not validated.ok:
        return ExtractionResult(failed_step="validate", error="; ".join(validated.errors))
    return ExtractionResult(fields=validated.fields)
