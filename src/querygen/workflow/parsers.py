"""
Response parsers for the workflow's LLM calls.

Each parser takes raw model output (thinking blocks are stripped here, so
callers pass the response untouched) and returns a small typed result.
Output that does not follow the requested format yields None or an empty
result instead of raising, so a malformed answer is just "no signal".
"""

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from querygen.domain.base_enums import CacheCategory, PipelineStatus
from querygen.domain.graph_nodes import Concept
from querygen.utils.text import last_non_empty_line, strip_thinking_tokens

FAILURE_MARKER = "failed attempt:"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_SQL_BLOCK = re.compile(r"<sql>([\s\S]*?)</sql>", re.IGNORECASE)
_DESCRIPTION_BLOCK = re.compile(r"<description>([\s\S]*?)</description>", re.IGNORECASE)
_PUNCTUATION = "`'\".,;:*"


@dataclass(frozen=True)
class CacheVerdict:
    category: CacheCategory
    index: Optional[int] = None


@dataclass(frozen=True)
class Selection:
    """Outcome of a table or column selection prompt."""

    failed: bool = False
    reason: Optional[str] = None
    tables: List[str] = field(default_factory=list)
    columns: Optional[Dict[str, List[str]]] = None


@dataclass(frozen=True)
class SemanticVerdict:
    valid: bool
    reason: str = ""


def _failure(text: str) -> Optional[Selection]:
    if text.lower().startswith(FAILURE_MARKER):
        return Selection(failed=True, reason=text[len(FAILURE_MARKER):].strip())
    return None


def parse_cache_verdict(text: str, candidate_count: int) -> Optional[CacheVerdict]:
    """
    Parse `"<category> <index>"` with a 0-based index.

    Returns a NOT_RELEVANT verdict for "not-relevant", None when the answer is
    unparsable or the index falls outside [0, candidate_count).

    Example:
        >>> parse_cache_verdict("as-is 0", 2)
        CacheVerdict(category=<CacheCategory.AS_IS: 'as-is'>, index=0)
    """
    parts = strip_thinking_tokens(text).split()
    if not parts:
        return None

    try:
        category = CacheCategory(parts[0].strip(_PUNCTUATION).lower())
    except ValueError:
        return None

    if category == CacheCategory.NOT_RELEVANT:
        return CacheVerdict(category=category)

    if len(parts) < 2:
        return None
    try:
        index = int(parts[1].strip(_PUNCTUATION))
    except ValueError:
        return None

    if not 0 <= index < candidate_count:
        return None
    return CacheVerdict(category=category, index=index)


def parse_table_selection(text: str) -> Selection:
    """
    Parse a comma separated table list from the last line of the answer.

    An answer starting with the failure marker becomes a failed selection
    carrying the model's reason.
    """
    output = strip_thinking_tokens(text)
    failure = _failure(output)
    if failure is not None:
        return failure

    tables = [name.strip().strip(_PUNCTUATION) for name in last_non_empty_line(output).split(",")]
    return Selection(tables=[name for name in tables if name])


def parse_column_selection(text: str) -> Selection:
    """
    Parse a `{table: [columns]}` JSON object embedded anywhere in the answer.

    `columns` is None when no well-formed mapping of lists of strings is found.
    """
    output = strip_thinking_tokens(text)
    failure = _failure(output)
    if failure is not None:
        return failure

    match = _JSON_OBJECT.search(output)
    if not match:
        return Selection()
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return Selection()

    if not isinstance(data, dict):
        return Selection()
    for columns in data.values():
        if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
            return Selection()
    return Selection(tables=list(data.keys()), columns=data)


def parse_error_category(text: str) -> Optional[PipelineStatus]:
    """Map the triage answer to TABLE_ERROR or QUERY_ERROR; None when it is neither."""
    answer = last_non_empty_line(strip_thinking_tokens(text)).strip(_PUNCTUATION).lower()
    categories = {
        PipelineStatus.TABLE_ERROR.value: PipelineStatus.TABLE_ERROR,
        PipelineStatus.QUERY_ERROR.value: PipelineStatus.QUERY_ERROR,
    }
    if answer in categories:
        return categories[answer]

    found = [status for value, status in categories.items() if value in answer]
    return found[0] if len(found) == 1 else None


def parse_semantic_verdict(text: str) -> Optional[SemanticVerdict]:
    """
    Parse `valid` or `invalid: <reason>` from the last line of the answer.

    Example:
        >>> parse_semantic_verdict("invalid: salary is not converted to USD")
        SemanticVerdict(valid=False, reason='salary is not converted to USD')
    """
    line = last_non_empty_line(strip_thinking_tokens(text))
    lowered = line.lower().lstrip(_PUNCTUATION)

    if lowered.startswith("invalid"):
        _, _, reason = line.partition(":")
        return SemanticVerdict(valid=False, reason=reason.strip())
    if lowered.rstrip(_PUNCTUATION) == "valid":
        return SemanticVerdict(valid=True)
    return None


def parse_generated_sql(text: str) -> Tuple[Optional[str], Optional[str]]:
    """Contents of the `<sql>` and `<description>` tags, stripped; None when absent or empty."""
    output = strip_thinking_tokens(text)
    sql_match = _SQL_BLOCK.search(output)
    description_match = _DESCRIPTION_BLOCK.search(output)

    sql = sql_match.group(1).strip() if sql_match else None
    description = description_match.group(1).strip() if description_match else None
    return sql or None, description or None


def parse_concept(text: str) -> Optional[Concept]:
    """
    Parse the concept JSON (`concept`, `description`, `domain`, `confidence`).

    Returns None when no JSON object is found, the concept name is missing
    or the values fail validation.
    """
    match = _JSON_OBJECT.search(strip_thinking_tokens(text))
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict) or not data.get("concept"):
        return None
    try:
        return Concept(
            name=str(data["concept"]),
            description=str(data.get("description") or ""),
            domain=str(data.get("domain") or ""),
            confidence=float(data.get("confidence", 0.0)),
        )
    except (TypeError, ValueError, PydanticValidationError):
        return None
