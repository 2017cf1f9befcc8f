"""
HybridFlow Tools Module

Tool registration, validation and resilient execution:
- ToolRegistry / ToolSpec: named tools with dependencies, timeouts and cache policies
- Validator: pydantic argument models plus semantic checks
- ToolExecutor: validate -> cache -> breaker -> timeout -> retry, in waves
- BOOKING_TOOL_POLICIES: defaults for the appointment-booking tool family

Usage:
    from hybridflow.tools import ToolRegistry, BOOKING_TOOL_POLICIES

    registry = ToolRegistry(BOOKING_TOOL_POLICIES)
    registry.register_handler("book_appointment", book_appointment)
"""

from .models import (
    CachePolicy,
    InjectionRule,
    ParsedToolResult,
    ToolCall,
    ToolContext,
    ToolResult,
    ToolSpec,
)
from .registry import ToolPolicy, ToolRegistry
from .validation import (
    Validator,
    check_time_expression,
    enum_member,
    reject_past_date,
    require_fields,
)
from .catalog import ACTION_TOOLS, BOOKING_FOLLOW_UPS, BOOKING_TOOL_POLICIES, FollowUpRule
from .executor import ToolExecutor

__all__ = [
    "CachePolicy",
    "InjectionRule",
    "ParsedToolResult",
    "ToolCall",
    "ToolContext",
    "ToolResult",
    "ToolSpec",
    "ToolPolicy",
    "ToolRegistry",
    "Validator",
    "check_time_expression",
    "enum_member",
    "reject_past_date",
    "require_fields",
    "ACTION_TOOLS",
    "BOOKING_FOLLOW_UPS",
    "BOOKING_TOOL_POLICIES",
    "FollowUpRule",
    "ToolExecutor",
]
