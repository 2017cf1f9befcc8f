"""
HybridFlow Validator - Pre-execution argument checks

Validation runs before the cache, the circuit breaker, and the handler.
A failure short-circuits the call with a structured ``validation_error``
result and is never retried.

Two layers:
1. Structural: the tool's pydantic ``argument_model`` (required fields,
   types, enum membership via ``Literal``)
2. Semantic: per-tool checks such as "the time expression names both a date
   and a time" or "the requested date is not in the past"
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import SemanticCheck, ToolContext
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

PAST_REFERENCE_PATTERN = re.compile(r"\b(yesterday|last\s+week|last\s+month|ago)\b", re.IGNORECASE)
DATE_COMPONENT_PATTERN = re.compile(
    r"\b(today|tomorrow|tonight|next|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"
    r"|\d{4}-\d{2}-\d{2}",
    re.IGNORECASE,
)
TIME_COMPONENT_PATTERN = re.compile(
    r"\d{1,2}:\d{2}|\b\d{1,2}\s*(am|pm)\b|\bat\s+\d",
    re.IGNORECASE,
)
ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")


class Validator:
    """
    Stateless argument validator backed by the tool registry

    Example:
        validator = Validator(registry)
        args = validator.validate("add_pet", {"pet_name": "Rex", "pet_type": "dog"}, ctx)
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def validate(
        self,
        tool_name: str,
        arguments: Any,
        context: ToolContext,
    ) -> Dict[str, Any]:
        """Return normalized arguments or raise ValidationError."""
        spec = self.registry.get(tool_name)
        if spec is None:
            raise ValidationError(f"Unknown tool: {tool_name}", tool_name)

        if not isinstance(arguments, dict):
            raise ValidationError(
                f"Arguments for {tool_name} must be an object, got {type(arguments).__name__}",
                tool_name,
            )

        normalized = dict(arguments)
        if spec.argument_model is not None:
            try:
                model = spec.argument_model.model_validate(arguments)
            except PydanticValidationError as e:
                fields = []
                problems = []
                for err in e.errors():
                    loc = ".".join(str(part) for part in err.get("loc", ())) or "arguments"
                    fields.append(loc)
                    problems.append(f"{loc}: {err.get('msg', 'invalid')}")
                raise ValidationError(
                    f"Invalid arguments for {tool_name}: {'; '.join(problems)}",
                    tool_name,
                    fields=fields,
                ) from e
            normalized.update(model.model_dump(exclude_unset=True))

        for check in spec.validators:
            check(normalized, context)

        return normalized


# =============================================================================
# Rule helpers
# =============================================================================

def require_fields(*names: str) -> SemanticCheck:
    """Fields must be present and, for strings, non-blank."""

    def check(arguments: Dict[str, Any], context: ToolContext) -> None:
        missing = []
        for name in names:
            value = arguments.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        if missing:
            raise ValidationError(
                f"Missing required field(s): {', '.join(missing)}", fields=missing
            )

    return check


def enum_member(name: str, allowed: Iterable[str]) -> SemanticCheck:
    """Field, when present, must be one of ``allowed`` (case-insensitive)."""
    allowed_values = tuple(allowed)
    lowered = {a.lower() for a in allowed_values}

    def check(arguments: Dict[str, Any], context: ToolContext) -> None:
        value = arguments.get(name)
        if value is None:
            return
        if str(value).lower() not in lowered:
            raise ValidationError(
                f"{name} must be one of: {', '.join(allowed_values)}", fields=[name]
            )

    return check


def check_time_expression(name: str) -> SemanticCheck:
    """A free-text appointment time must be in the future and name a date and a time."""

    def check(arguments: Dict[str, Any], context: ToolContext) -> None:
        value = arguments.get(name)
        if not isinstance(value, str) or not value.strip():
            return
        if PAST_REFERENCE_PATTERN.search(value):
            raise ValidationError(
                "Cannot book appointments in the past", fields=[name]
            )
        if not DATE_COMPONENT_PATTERN.search(value):
            raise ValidationError(
                f"{name} must include a date (e.g. 'tomorrow', 'monday', '2025-01-15')",
                fields=[name],
            )
        if not TIME_COMPONENT_PATTERN.search(value):
            raise ValidationError(
                f"{name} must include a time (e.g. '14:00', '2pm', 'at 3')",
                fields=[name],
            )

    return check


def reject_past_date(
    name: str,
    today: Optional[Callable[[str], date]] = None,
) -> SemanticCheck:
    """Explicit ISO dates in the field must not precede today in the conversation timezone."""
    today_fn = today or _today_in

    def check(arguments: Dict[str, Any], context: ToolContext) -> None:
        value = arguments.get(name)
        if not isinstance(value, str):
            return
        current = today_fn(context.timezone)
        for match in ISO_DATE_PATTERN.findall(value):
            try:
                requested = date_parser.isoparse(match).date()
            except ValueError:
                raise ValidationError(f"{name} contains an invalid date: {match}", fields=[name])
            if requested < current:
                raise ValidationError(
                    f"Requested date {match} is in the past", fields=[name]
                )

    return check


def _today_in(timezone: str) -> date:
    try:
        tz = ZoneInfo(timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"[Validator] Unknown timezone {timezone!r}, using UTC")
        tz = ZoneInfo("UTC")
    return datetime.now(tz).date()
