"""Built-in airline booking tools."""

from __future__ import annotations

from .catalog import (
    ArrayField,
    IntegerField,
    ObjectField,
    StringField,
    ToolCatalog,
    ToolDefinition,
)


_PNR = StringField(description="6-character booking reference code (PNR)")


def _pnr_tool(name: str, description: str, **extra) -> ToolDefinition:
    """Tool keyed by a PNR plus extra fields; a `_required` suffix marks a required field."""
    properties = {"pnr": _PNR}
    required = ["pnr"]
    for key, node in extra.items():
        if key.endswith("_required"):
            key = key[: -len("_required")]
            required.append(key)
        properties[key] = node
    return ToolDefinition(
        name=name,
        description=description,
        parameters=ObjectField(properties=properties, required=tuple(required)),
    )


_PASSENGER = ObjectField(
    properties={
        "firstName": StringField(description="First name"),
        "lastName": StringField(description="Last name"),
        "dateOfBirth": StringField(description="Date of birth in YYYY-MM-DD format"),
        "gender": StringField(description="MALE or FEMALE", enum=("MALE", "FEMALE")),
        "documentNumber": StringField(description="Passport or national ID number"),
        "nationality": StringField(description="2-letter country code, e.g. SA, AE"),
    },
    required=("firstName", "lastName", "dateOfBirth", "gender", "documentNumber", "nationality"),
)


BOOKING_TOOLS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="search_flights",
        description=(
            "Finds available flights between two cities on a specific date. "
            "Use this when the user wants to search for or book a new flight."
        ),
        parameters=ObjectField(
            properties={
                "origin": StringField(description="IATA code of the departure airport, e.g. RUH for Riyadh"),
                "destination": StringField(description="IATA code of the arrival airport, e.g. JED for Jeddah"),
                "date": StringField(description="Travel date in YYYY-MM-DD format"),
                "passengers": IntegerField(description="Number of passengers (default: 1)"),
            },
            required=("destination",),
        ),
    ),
    ToolDefinition(
        name="select_flight",
        description=(
            "Selects a specific flight from search results. Use only when the user "
            "first picks a flight, e.g. \"I'll take F3100\"."
        ),
        parameters=ObjectField(
            properties={"flight_number": StringField(description="Flight number to select, e.g. F3100")},
            required=("flight_number",),
        ),
    ),
    ToolDefinition(
        name="get_saved_travelers",
        description=(
            "Retrieves the user's saved travelers. Use this to show saved passengers "
            "before booking. Returns an empty list for anonymous users."
        ),
    ),
    ToolDefinition(
        name="create_booking",
        description=(
            "Creates a booking and returns a PNR confirmation. Every passenger needs "
            "all identity fields; collect them from get_saved_travelers or the user."
        ),
        parameters=ObjectField(
            properties={
                "flight_number": StringField(description="Flight number to book, e.g. F3100"),
                "fare_family": StringField(
                    description="Fare class; defaults to FLY",
                    enum=("FLY", "FLY_PLUS", "FLY_MAX"),
                ),
                "passengers": ArrayField(items=_PASSENGER, description="Passengers travelling on the booking"),
                "contact_email": StringField(description="Email for the booking confirmation"),
            },
            required=("flight_number", "passengers"),
        ),
    ),
    _pnr_tool(
        "get_booking",
        "Retrieves booking details by PNR. Use this to look up existing reservations.",
    ),
    _pnr_tool(
        "cancel_specific_passenger",
        (
            "Cancels one passenger from a group booking, leaving the others active. "
            "Always confirm with the user before cancelling."
        ),
        passenger_name_required=StringField(description="First name of the passenger to remove"),
    ),
    _pnr_tool(
        "calculate_change_fees",
        "Calculates the fare difference and fees for moving a booking to a different flight.",
        new_flight_number_required=StringField(description="Flight number to change to"),
    ),
    _pnr_tool(
        "change_flight",
        "Moves an existing booking to a different flight. Requires a prior fee calculation.",
        new_flight_number_required=StringField(description="Flight number to change to"),
        passenger_name=StringField(description="Specific passenger to move, if not all"),
    ),
    _pnr_tool(
        "get_seat_map",
        "Retrieves the seat map with available and occupied seats for a booking's flight.",
        passenger_name=StringField(description="Passenger to show seat options for"),
    ),
    _pnr_tool(
        "change_seat",
        "Changes a passenger's seat. Ask for an aisle or window preference if none was given.",
        passenger_name_required=StringField(description="First name of the passenger"),
        new_seat=StringField(description="New seat number, e.g. 12A"),
        preference=StringField(description="Seat preference", enum=("window", "aisle", "middle")),
    ),
    _pnr_tool(
        "get_available_meals",
        "Lists the meal options available for a booking.",
    ),
    _pnr_tool(
        "add_meal",
        "Adds a meal selection for a passenger.",
        passenger_name_required=StringField(description="First name of the passenger"),
        meal_code_required=StringField(description="Code of the meal to add"),
    ),
    _pnr_tool(
        "add_baggage",
        "Adds extra checked baggage allowance for a passenger.",
        passenger_name_required=StringField(description="First name of the passenger"),
        weight_kg_required=IntegerField(description="Baggage weight in kilograms (typically 20, 25 or 30)"),
    ),
    _pnr_tool(
        "check_in",
        "Performs online check-in for passengers on a booking.",
        passenger_name=StringField(description="Specific passenger to check in, otherwise all eligible"),
    ),
    _pnr_tool(
        "get_boarding_pass",
        "Retrieves the boarding pass for a checked-in passenger.",
        passenger_name_required=StringField(description="First name of the passenger"),
    ),
)

BOOKING_CATALOG = ToolCatalog(BOOKING_TOOLS)
