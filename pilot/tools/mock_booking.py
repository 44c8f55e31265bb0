"""Deterministic in-memory booking backend for demos and tests.

Every booking tool in the built-in catalog has a handler here. Outputs come
from fixtures and a small amount of per-process state (created bookings,
seat assignments, check-ins) so multi-step conversations behave realistically.
Nothing leaves the process.
"""

from __future__ import annotations

import copy
import functools
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from .executor import RegistryToolExecutor, ToolFailure

AUDIT_LOG_LIMIT = 500


@dataclass
class MockBookingState:
    """Mutable state behind the mock handlers."""

    operation_counter: int = 0
    pnr_counter: int = 0
    bookings: dict[str, dict[str, Any]] = field(default_factory=dict)
    selected_flight: str | None = None
    quoted_changes: set[tuple[str, str]] = field(default_factory=set)
    audit_log: deque[dict[str, Any]] = field(default_factory=lambda: deque(maxlen=AUDIT_LOG_LIMIT))


# ─── Fixture Data ──────────────────────────────────────────────────────────

FLIGHT_FIXTURES: dict[str, dict[str, Any]] = {
    "F3100": {
        "flight_number": "F3100",
        "origin": "RUH",
        "destination": "JED",
        "departure": "08:00",
        "arrival": "09:45",
        "fares": {"FLY": 299.0, "FLY_PLUS": 449.0, "FLY_MAX": 649.0},
    },
    "F3101": {
        "flight_number": "F3101",
        "origin": "RUH",
        "destination": "JED",
        "departure": "14:30",
        "arrival": "16:15",
        "fares": {"FLY": 349.0, "FLY_PLUS": 499.0, "FLY_MAX": 699.0},
    },
    "F3102": {
        "flight_number": "F3102",
        "origin": "RUH",
        "destination": "JED",
        "departure": "21:00",
        "arrival": "22:45",
        "fares": {"FLY": 259.0, "FLY_PLUS": 409.0, "FLY_MAX": 609.0},
    },
    "F3200": {
        "flight_number": "F3200",
        "origin": "JED",
        "destination": "RUH",
        "departure": "10:15",
        "arrival": "12:00",
        "fares": {"FLY": 289.0, "FLY_PLUS": 439.0, "FLY_MAX": 639.0},
    },
    "F3400": {
        "flight_number": "F3400",
        "origin": "RUH",
        "destination": "DXB",
        "departure": "07:10",
        "arrival": "09:20",
        "fares": {"FLY": 599.0, "FLY_PLUS": 799.0, "FLY_MAX": 1099.0},
    },
}

SAVED_TRAVELER_FIXTURES: list[dict[str, str]] = [
    {
        "firstName": "Ahmed",
        "lastName": "Al-Rashid",
        "dateOfBirth": "1985-03-14",
        "gender": "MALE",
        "documentNumber": "P1234567",
        "nationality": "SA",
    },
    {
        "firstName": "Sara",
        "lastName": "Al-Rashid",
        "dateOfBirth": "1988-11-02",
        "gender": "FEMALE",
        "documentNumber": "P7654321",
        "nationality": "SA",
    },
]

BOOKING_FIXTURES: dict[str, dict[str, Any]] = {
    "ABC123": {
        "pnr": "ABC123",
        "status": "CONFIRMED",
        "flight_number": "F3100",
        "date": "2026-11-02",
        "fare_family": "FLY",
        "contact_email": "ahmed@example.com",
        "passengers": [
            {"firstName": "Ahmed", "lastName": "Al-Rashid", "seat": "12A", "checked_in": False,
             "meals": [], "extra_baggage_kg": 0, "status": "ACTIVE"},
            {"firstName": "Sara", "lastName": "Al-Rashid", "seat": "12B", "checked_in": False,
             "meals": [], "extra_baggage_kg": 0, "status": "ACTIVE"},
        ],
    },
    "XYZ789": {
        "pnr": "XYZ789",
        "status": "CONFIRMED",
        "flight_number": "F3400",
        "date": "2026-11-10",
        "fare_family": "FLY_PLUS",
        "contact_email": "omar@example.com",
        "passengers": [
            {"firstName": "Omar", "lastName": "Haddad", "seat": "3C", "checked_in": True,
             "meals": ["VGML"], "extra_baggage_kg": 0, "status": "ACTIVE"},
        ],
    },
}

MEAL_FIXTURES = [
    {"code": "CHML", "name": "Chicken machboos", "price": 35.0},
    {"code": "VGML", "name": "Vegetarian mezze", "price": 30.0},
    {"code": "KSML", "name": "Kids meal", "price": 25.0},
]

BAGGAGE_PRICES = {20: 120.0, 25: 150.0, 30: 180.0}
CHANGE_FEE = 100.0
DEFAULT_CONTACT_EMAIL = "customer@example.com"
SEAT_ROWS = range(1, 31)
SEAT_LETTERS = "ABCDEF"


_STATE = MockBookingState()
# Handlers run on the orchestrator worker pool, one per concurrent session.
_STATE_LOCK = threading.RLock()


def reset_mock_booking_state() -> None:
    """Reset all mock booking state (recommended before each test)."""

    global _STATE
    with _STATE_LOCK:
        _STATE = MockBookingState(bookings=copy.deepcopy(BOOKING_FIXTURES))


reset_mock_booking_state()


def get_audit_log() -> list[dict[str, Any]]:
    with _STATE_LOCK:
        return [dict(entry) for entry in _STATE.audit_log]


def _serialized(handler: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(handler)
    def wrapper(arguments: dict[str, Any], context: Mapping[str, Any] | None = None) -> Any:
        with _STATE_LOCK:
            return handler(arguments, context or {})

    return wrapper


def _record_audit(tool_name: str, arguments: dict[str, Any], *, success: bool, note: str) -> None:
    _STATE.operation_counter += 1
    _STATE.audit_log.append(
        {
            "operation_id": f"op_{_STATE.operation_counter:04d}",
            "tool": tool_name,
            "arguments": dict(arguments),
            "success": success,
            "note": note,
        }
    )


def _require(arguments: dict[str, Any], key: str) -> str:
    value = str(arguments.get(key) or "").strip()
    if not value:
        raise ToolFailure(f"Missing {key}")
    return value


def _booking(arguments: dict[str, Any]) -> dict[str, Any]:
    pnr = _require(arguments, "pnr").upper()
    booking = _STATE.bookings.get(pnr)
    if booking is None:
        raise ToolFailure(f"Booking {pnr} not found")
    return booking


def _flight(flight_number: str) -> dict[str, Any]:
    flight = FLIGHT_FIXTURES.get(flight_number.upper())
    if flight is None:
        raise ToolFailure(f"Flight {flight_number} not found")
    return flight


def _passengers(booking: dict[str, Any], name: str | None) -> list[dict[str, Any]]:
    active = [p for p in booking["passengers"] if p["status"] == "ACTIVE"]
    if not name:
        return active
    wanted = name.strip().lower()
    matches = [p for p in active if p["firstName"].lower() == wanted]
    if not matches:
        raise ToolFailure(f"Passenger {name} not found on booking {booking['pnr']}")
    return matches


def _occupied_seats(flight_number: str) -> set[str]:
    seats = set()
    for booking in _STATE.bookings.values():
        if booking["flight_number"] != flight_number:
            continue
        seats.update(p["seat"] for p in booking["passengers"] if p.get("seat") and p["status"] == "ACTIVE")
    # Fixed background occupancy: every third row's middle seats.
    seats.update(f"{row}{letter}" for row in SEAT_ROWS if row % 3 == 0 for letter in "BE")
    return seats


def _summary(booking: dict[str, Any]) -> dict[str, Any]:
    flight = FLIGHT_FIXTURES.get(booking["flight_number"], {})
    return {
        "pnr": booking["pnr"],
        "status": booking["status"],
        "flight": {k: flight.get(k) for k in ("flight_number", "origin", "destination", "departure", "arrival")},
        "date": booking["date"],
        "fare_family": booking["fare_family"],
        "passengers": copy.deepcopy(booking["passengers"]),
    }


# ─── Handlers ──────────────────────────────────────────────────────────────

@_serialized
def mock_search_flights(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    destination = _require(arguments, "destination").upper()
    origin = str(arguments.get("origin") or "RUH").upper()
    date = str(arguments.get("date") or "")
    passengers = int(arguments.get("passengers") or 1)
    flights = [
        {**{k: v for k, v in f.items() if k != "fares"}, "lowest_fare": min(f["fares"].values()) * passengers}
        for f in FLIGHT_FIXTURES.values()
        if f["origin"] == origin and f["destination"] == destination
    ]
    _record_audit("search_flights", arguments, success=True, note=f"{len(flights)}_results")
    return {"origin": origin, "destination": destination, "date": date, "passengers": passengers, "flights": flights}


@_serialized
def mock_select_flight(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    flight = _flight(_require(arguments, "flight_number"))
    _STATE.selected_flight = flight["flight_number"]
    _record_audit("select_flight", arguments, success=True, note="selected")
    return {"selected": flight["flight_number"], "fares": dict(flight["fares"])}


@_serialized
def mock_get_saved_travelers(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    user_id = str(context.get("userId") or "").strip()
    if not user_id:
        _record_audit("get_saved_travelers", arguments, success=False, note="signed_out")
        raise ToolFailure("Saved travelers are only available to signed-in users")
    _record_audit("get_saved_travelers", arguments, success=True, note="listed")
    return {"userId": user_id, "travelers": copy.deepcopy(SAVED_TRAVELER_FIXTURES)}


@_serialized
def mock_create_booking(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    flight = _flight(_require(arguments, "flight_number"))
    fare_family = str(arguments.get("fare_family") or "FLY").upper()
    if fare_family not in flight["fares"]:
        raise ToolFailure(f"Unknown fare family {fare_family}")
    raw_passengers = arguments.get("passengers")
    if not isinstance(raw_passengers, list) or not raw_passengers:
        raise ToolFailure("At least one passenger is required")

    _STATE.pnr_counter += 1
    pnr = f"PLT{_STATE.pnr_counter:03d}"
    passengers = []
    for raw in raw_passengers:
        if not isinstance(raw, dict):
            raise ToolFailure("Passenger entries must be objects")
        passengers.append(
            {
                "firstName": str(raw.get("firstName", "")),
                "lastName": str(raw.get("lastName", "")),
                "seat": None,
                "checked_in": False,
                "meals": [],
                "extra_baggage_kg": 0,
                "status": "ACTIVE",
            }
        )
    _STATE.bookings[pnr] = {
        "pnr": pnr,
        "status": "CONFIRMED",
        "flight_number": flight["flight_number"],
        "date": str(arguments.get("date") or "2026-11-02"),
        "fare_family": fare_family,
        "contact_email": arguments.get("contact_email") or context.get("userEmail") or DEFAULT_CONTACT_EMAIL,
        "user_id": context.get("userId"),
        "search_id": context.get("lastSearchId"),
        "passengers": passengers,
    }
    _record_audit("create_booking", arguments, success=True, note="created")
    booking = _STATE.bookings[pnr]
    return {
        **_summary(booking),
        "contact_email": booking["contact_email"],
        "total": flight["fares"][fare_family] * len(passengers),
    }


@_serialized
def mock_get_booking(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    _record_audit("get_booking", arguments, success=True, note="found")
    return _summary(booking)


@_serialized
def mock_cancel_specific_passenger(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passenger = _passengers(booking, _require(arguments, "passenger_name"))[0]
    passenger["status"] = "CANCELLED"
    remaining = [p["firstName"] for p in booking["passengers"] if p["status"] == "ACTIVE"]
    if not remaining:
        booking["status"] = "CANCELLED"
    _record_audit("cancel_specific_passenger", arguments, success=True, note="cancelled")
    return {"pnr": booking["pnr"], "cancelled": passenger["firstName"], "remaining_passengers": remaining}


@_serialized
def mock_calculate_change_fees(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    new_flight = _flight(_require(arguments, "new_flight_number"))
    old_flight = FLIGHT_FIXTURES[booking["flight_number"]]
    travellers = len(_passengers(booking, None))
    fare = booking["fare_family"]
    difference = max(new_flight["fares"][fare] - old_flight["fares"][fare], 0.0) * travellers
    fee = 0.0 if fare == "FLY_MAX" else CHANGE_FEE * travellers
    _STATE.quoted_changes.add((booking["pnr"], new_flight["flight_number"]))
    _record_audit("calculate_change_fees", arguments, success=True, note="quoted")
    return {
        "pnr": booking["pnr"],
        "new_flight_number": new_flight["flight_number"],
        "fare_difference": difference,
        "change_fee": fee,
        "total": difference + fee,
    }


@_serialized
def mock_change_flight(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    new_flight = _flight(_require(arguments, "new_flight_number"))
    if (booking["pnr"], new_flight["flight_number"]) not in _STATE.quoted_changes:
        raise ToolFailure("Change fees must be calculated before changing flights")
    booking["flight_number"] = new_flight["flight_number"]
    for passenger in booking["passengers"]:
        passenger["seat"] = None
        passenger["checked_in"] = False
    _record_audit("change_flight", arguments, success=True, note="changed")
    return _summary(booking)


@_serialized
def mock_get_seat_map(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    occupied = _occupied_seats(booking["flight_number"])
    rows = [
        {"row": row, "seats": [{"seat": f"{row}{letter}", "available": f"{row}{letter}" not in occupied}
                               for letter in SEAT_LETTERS]}
        for row in SEAT_ROWS
    ]
    _record_audit("get_seat_map", arguments, success=True, note="listed")
    return {"pnr": booking["pnr"], "flight_number": booking["flight_number"], "rows": rows}


def _seat_for_preference(flight_number: str, preference: str) -> str:
    letters = {"window": "AF", "aisle": "CD", "middle": "BE"}.get(preference.lower(), SEAT_LETTERS)
    occupied = _occupied_seats(flight_number)
    for row in SEAT_ROWS:
        for letter in letters:
            seat = f"{row}{letter}"
            if seat not in occupied:
                return seat
    raise ToolFailure(f"No {preference} seats available")


@_serialized
def mock_change_seat(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passenger = _passengers(booking, _require(arguments, "passenger_name"))[0]
    new_seat = str(arguments.get("new_seat") or "").strip().upper()
    if new_seat:
        if new_seat in _occupied_seats(booking["flight_number"]) and new_seat != passenger["seat"]:
            raise ToolFailure(f"Seat {new_seat} is not available")
    else:
        preference = str(arguments.get("preference") or "").strip()
        if not preference:
            raise ToolFailure("Provide new_seat or preference")
        new_seat = _seat_for_preference(booking["flight_number"], preference)
    previous = passenger["seat"]
    passenger["seat"] = new_seat
    _record_audit("change_seat", arguments, success=True, note="changed")
    return {"pnr": booking["pnr"], "passenger": passenger["firstName"], "previous_seat": previous, "new_seat": new_seat}


@_serialized
def mock_get_available_meals(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    _record_audit("get_available_meals", arguments, success=True, note="listed")
    return {"pnr": booking["pnr"], "meals": copy.deepcopy(MEAL_FIXTURES)}


@_serialized
def mock_add_meal(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passenger = _passengers(booking, _require(arguments, "passenger_name"))[0]
    code = _require(arguments, "meal_code").upper()
    meal = next((m for m in MEAL_FIXTURES if m["code"] == code), None)
    if meal is None:
        raise ToolFailure(f"Meal {code} is not available")
    passenger["meals"].append(code)
    _record_audit("add_meal", arguments, success=True, note="added")
    return {"pnr": booking["pnr"], "passenger": passenger["firstName"], "meal": dict(meal)}


@_serialized
def mock_add_baggage(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passenger = _passengers(booking, _require(arguments, "passenger_name"))[0]
    try:
        weight = int(arguments.get("weight_kg"))
    except (TypeError, ValueError) as err:
        raise ToolFailure("weight_kg must be an integer") from err
    price = BAGGAGE_PRICES.get(weight)
    if price is None:
        raise ToolFailure(f"Baggage of {weight}kg is not offered; choose 20, 25 or 30")
    passenger["extra_baggage_kg"] += weight
    _record_audit("add_baggage", arguments, success=True, note="added")
    return {"pnr": booking["pnr"], "passenger": passenger["firstName"], "weight_kg": weight, "price": price}


@_serialized
def mock_check_in(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passengers = _passengers(booking, arguments.get("passenger_name"))
    checked_in = []
    for passenger in passengers:
        if not passenger["seat"]:
            passenger["seat"] = _seat_for_preference(booking["flight_number"], "any")
        passenger["checked_in"] = True
        checked_in.append({"passenger": passenger["firstName"], "seat": passenger["seat"]})
    _record_audit("check_in", arguments, success=True, note=f"{len(checked_in)}_checked_in")
    return {"pnr": booking["pnr"], "checked_in": checked_in}


@_serialized
def mock_get_boarding_pass(arguments: dict[str, Any], context: Mapping[str, Any]) -> dict[str, Any]:
    booking = _booking(arguments)
    passenger = _passengers(booking, _require(arguments, "passenger_name"))[0]
    if not passenger["checked_in"]:
        raise ToolFailure(f"{passenger['firstName']} is not checked in")
    flight = FLIGHT_FIXTURES[booking["flight_number"]]
    _record_audit("get_boarding_pass", arguments, success=True, note="issued")
    return {
        "pnr": booking["pnr"],
        "passenger": f"{passenger['firstName']} {passenger['lastName']}",
        "flight_number": flight["flight_number"],
        "origin": flight["origin"],
        "destination": flight["destination"],
        "date": booking["date"],
        "departure": flight["departure"],
        "seat": passenger["seat"],
        "barcode": f"M1{booking['pnr']}{flight['flight_number']}{passenger['seat']}",
    }


# ─── Tool Dispatcher ───────────────────────────────────────────────────────

TOOL_REGISTRY: dict[str, Any] = {
    "search_flights": mock_search_flights,
    "select_flight": mock_select_flight,
    "get_saved_travelers": mock_get_saved_travelers,
    "create_booking": mock_create_booking,
    "get_booking": mock_get_booking,
    "cancel_specific_passenger": mock_cancel_specific_passenger,
    "calculate_change_fees": mock_calculate_change_fees,
    "change_flight": mock_change_flight,
    "get_seat_map": mock_get_seat_map,
    "change_seat": mock_change_seat,
    "get_available_meals": mock_get_available_meals,
    "add_meal": mock_add_meal,
    "add_baggage": mock_add_baggage,
    "check_in": mock_check_in,
    "get_boarding_pass": mock_get_boarding_pass,
}


def create_mock_booking_executor() -> RegistryToolExecutor:
    """Executor backed by the mock booking handlers."""
    return RegistryToolExecutor(TOOL_REGISTRY)
