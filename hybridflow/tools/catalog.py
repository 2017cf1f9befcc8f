"""
HybridFlow Tool Catalog - Execution policies for the appointment-booking tool family

Handlers are supplied by the deployment; this module only describes how each
tool is executed: argument models, timeout tiers, cache rules, dependencies,
and auto-injection rules.

Usage:
    registry = ToolRegistry(policies=BOOKING_TOOL_POLICIES)
    registry.register_handler("book_appointment", handlers.book_appointment)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import CachePolicy, InjectionRule, ToolContext
from .registry import ToolPolicy
from .validation import check_time_expression, reject_past_date, require_fields

# ── Timeout tiers (seconds) ──

FAST_TIMEOUT = 5.0
STANDARD_TIMEOUT = 15.0
SLOW_TIMEOUT = 30.0
STAFF_LOOKUP_TIMEOUT = 45.0

PetType = Literal["dog", "cat", "other"]
PetSize = Literal["S", "M", "L", "XL"]


class _Arguments(BaseModel):
    model_config = ConfigDict(extra="allow")


class CustomerFullNameArgs(_Arguments):
    full_name: str = Field(description="The name of the customer")


class CustomerInfoArgs(_Arguments):
    full_name: str = Field(description="The name of the customer")
    phone_number: str = Field(description="Phone number without the country code")


class CustomerPhoneArgs(_Arguments):
    phone_number: str = Field(description="Phone number without the country code")


class BookAppointmentArgs(_Arguments):
    appointment_time: str = Field(
        description="English time expression with a date and a time, e.g. 'tomorrow at 14:00'"
    )
    service_name: str = Field(description="Service name, fuzzy matched")
    location_id: Optional[str] = Field(default=None, description="Location id from get_location_choices")
    staff_id: Optional[str] = Field(default=None, description="Staff id from get_staff_list")
    pet_size: Optional[PetSize] = None
    pet_name: Optional[str] = None
    pet_type: Optional[PetType] = None
    notes: Optional[str] = None


class AvailableTimesArgs(_Arguments):
    appointment_date: str = Field(description="'today', 'tomorrow', or YYYY-MM-DD")
    service_name: str
    pet_size: Optional[str] = None


class CustomerAppointmentsArgs(_Arguments):
    status: Literal["upcoming", "past", "all"] = "upcoming"
    limit: Optional[int] = None


class CancelAppointmentArgs(_Arguments):
    appointment_id: str = Field(description="Appointment id from get_customer_appointments")
    cancellation_reason: Optional[str] = None


class RescheduleAppointmentArgs(_Arguments):
    appointment_id: str = Field(description="Appointment id from get_customer_appointments")
    new_appointment_text_time: str
    duration: Optional[int] = None


class AddPetArgs(_Arguments):
    pet_name: str
    pet_type: PetType
    breed: Optional[str] = None
    size: Optional[PetSize] = None
    age_years: Optional[float] = None
    weight_kg: Optional[float] = None


class ServiceListArgs(_Arguments):
    pet_type: Literal["dog", "cat", "other", "all"] = "all"


class LocationChoicesArgs(_Arguments):
    service_name: str


class StaffListArgs(_Arguments):
    service_name: str
    location_id: Optional[str] = None
    appointment_time: Optional[str] = None
    duration_minutes: Optional[int] = None


def _current_minute_key(arguments: Dict[str, Any], context: ToolContext) -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M")


def _customer_info_arguments(state: Any) -> Dict[str, Any]:
    return {"full_name": state.full_name, "phone_number": state.phone_number}


def _full_name_arguments(state: Any) -> Dict[str, Any]:
    return {"full_name": state.full_name}


BOOKING_TOOL_POLICIES: Dict[str, ToolPolicy] = {
    "get_current_datetime": ToolPolicy(
        description="Current date/time in the company's timezone.",
        timeout=FAST_TIMEOUT,
        cache_policy=CachePolicy(ttl=60.0, key_builder=_current_minute_key),
    ),
    "get_customer_full_name": ToolPolicy(
        description="Record the customer's name.",
        argument_model=CustomerFullNameArgs,
        timeout=FAST_TIMEOUT,
        injection=InjectionRule(
            requires_state=("full_name",),
            build_arguments=_full_name_arguments,
        ),
    ),
    "get_customer_info": ToolPolicy(
        description="Record the customer's name and phone number.",
        argument_model=CustomerInfoArgs,
        timeout=STANDARD_TIMEOUT,
        validators=(require_fields("full_name", "phone_number"),),
        injection=InjectionRule(
            requires_state=("full_name", "phone_number"),
            build_arguments=_customer_info_arguments,
        ),
    ),
    # Never injected: a phone number must come from the customer.
    "get_customer_phone_number": ToolPolicy(
        description="Record the customer's phone number.",
        argument_model=CustomerPhoneArgs,
        timeout=STANDARD_TIMEOUT,
    ),
    "get_customer_pets": ToolPolicy(
        description="The customer's registered pets.",
        timeout=STANDARD_TIMEOUT,
        cache_policy=CachePolicy(ttl=300.0),
    ),
    "get_customer_appointments": ToolPolicy(
        description="The customer's appointments, including ids for cancel/reschedule.",
        argument_model=CustomerAppointmentsArgs,
        timeout=STANDARD_TIMEOUT,
        injection=InjectionRule(),
    ),
    "get_service_list": ToolPolicy(
        description="Services with descriptions and prices.",
        argument_model=ServiceListArgs,
        timeout=STANDARD_TIMEOUT,
        cache_policy=CachePolicy(ttl=300.0, key_fields=("pet_type",), defaults={"pet_type": "all"}),
    ),
    "get_locations": ToolPolicy(
        description="Company locations with addresses and hours.",
        timeout=STANDARD_TIMEOUT,
        cache_policy=CachePolicy(ttl=60.0),
    ),
    "get_location_choices": ToolPolicy(
        description="Locations offering a service.",
        argument_model=LocationChoicesArgs,
        timeout=SLOW_TIMEOUT,
        cache_policy=CachePolicy(ttl=60.0, key_fields=("service_name",)),
    ),
    "get_staff_list": ToolPolicy(
        description="Staff qualified for a service, filtered by availability.",
        argument_model=StaffListArgs,
        timeout=STAFF_LOOKUP_TIMEOUT,
        cache_policy=CachePolicy(
            ttl=30.0,
            key_fields=("service_name", "location_id", "appointment_time"),
        ),
    ),
    "add_pet": ToolPolicy(
        description="Register a new pet for the customer.",
        argument_model=AddPetArgs,
        timeout=STANDARD_TIMEOUT,
        validators=(require_fields("pet_name"),),
    ),
    "get_available_times": ToolPolicy(
        description="Free time ranges for a service on a date.",
        argument_model=AvailableTimesArgs,
        timeout=SLOW_TIMEOUT,
        validators=(
            require_fields("service_name", "appointment_date"),
            reject_past_date("appointment_date"),
        ),
    ),
    "book_appointment": ToolPolicy(
        description="Book an appointment. May return needs_selection or a conflict.",
        argument_model=BookAppointmentArgs,
        timeout=SLOW_TIMEOUT,
        validators=(
            require_fields("service_name", "appointment_time"),
            check_time_expression("appointment_time"),
            reject_past_date("appointment_time"),
        ),
    ),
    "reschedule_appointment": ToolPolicy(
        description="Move an existing appointment to a new time.",
        argument_model=RescheduleAppointmentArgs,
        dependencies=("get_customer_appointments",),
        timeout=SLOW_TIMEOUT,
        validators=(
            require_fields("appointment_id", "new_appointment_text_time"),
            reject_past_date("new_appointment_text_time"),
        ),
    ),
    "cancel_appointment": ToolPolicy(
        description="Cancel an existing appointment.",
        argument_model=CancelAppointmentArgs,
        dependencies=("get_customer_appointments",),
        timeout=SLOW_TIMEOUT,
        validators=(require_fields("appointment_id"),),
    ),
}

# Tools whose success may be confirmed to the customer.
ACTION_TOOLS = frozenset({
    "book_appointment",
    "reschedule_appointment",
    "cancel_appointment",
    "add_pet",
})


class FollowUpRule:
    """
    Force a follow-up call when a tool result asks for one.

    ``book_appointment`` reports a conflict with ready-made
    ``get_available_times_params``; the customer should see real alternative
    slots rather than a bare refusal.
    """

    def __init__(self, source_tool: str, flag: str, params_key: str, target_tool: str):
        self.source_tool = source_tool
        self.flag = flag
        self.params_key = params_key
        self.target_tool = target_tool

    def arguments_from(self, name: str, data: Any) -> Optional[Dict[str, Any]]:
        if name != self.source_tool or not isinstance(data, dict):
            return None
        if not data.get(self.flag):
            return None
        params = data.get(self.params_key)
        return dict(params) if isinstance(params, dict) else None


BOOKING_FOLLOW_UPS = (
    FollowUpRule(
        source_tool="book_appointment",
        flag="conflict",
        params_key="get_available_times_params",
        target_tool="get_available_times",
    ),
)
