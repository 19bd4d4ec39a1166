"""Representative endpoint descriptors.

The full per-API catalogs are generated elsewhere. This module carries the
four WSF cache-flush-date endpoints the monitor depends on, plus a few data
endpoints that exercise each part of the pipeline: path placeholders, date
parameters, legacy-encoded date fields and both service families.
"""

from __future__ import annotations

from datetime import date

from pydantic import Field

from wsdottie.contracts import InputContract, OutputContract
from wsdottie.dates import WsdotDateTime
from wsdottie.models.endpoint import CachePolicy, EndpointDescriptor

WSF_DOMAINS = ("fares", "vessels", "terminals", "schedule")


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


class VesselIdInput(InputContract):
    VesselID: int = Field(gt=0)


class VesselLocation(OutputContract):
    VesselID: int
    VesselName: str | None
    Mmsi: int | None = None
    DepartingTerminalID: int | None
    DepartingTerminalName: str | None
    ArrivingTerminalID: int | None
    ArrivingTerminalName: str | None
    Latitude: float
    Longitude: float
    Speed: float
    Heading: float
    InService: bool
    AtDock: bool
    LeftDock: WsdotDateTime | None
    Eta: WsdotDateTime | None
    ScheduledDeparture: WsdotDateTime | None
    OpRouteAbbrev: list[str] = []
    TimeStamp: WsdotDateTime


class FareLineItemsInput(InputContract):
    TripDate: date
    DepartingTerminalID: int = Field(gt=0)
    ArrivingTerminalID: int = Field(gt=0)
    RoundTrip: bool


class FareLineItem(OutputContract):
    FareLineItemID: int
    FareLineItem: str | None
    Category: str | None
    DirectionIndependent: bool
    Amount: float


class RoadwayLocation(OutputContract):
    Description: str | None
    RoadName: str | None
    Direction: str | None
    MilePost: float
    Latitude: float
    Longitude: float


class BorderCrossing(OutputContract):
    BorderCrossingLocation: RoadwayLocation | None
    CrossingName: str | None
    Time: WsdotDateTime
    WaitTime: int


# ---------------------------------------------------------------------------
# Descriptors
# ---------------------------------------------------------------------------


def flush_date_endpoint(domain: str) -> EndpointDescriptor:
    """The scalar "something changed" timestamp for one WSF data domain."""
    return EndpointDescriptor(
        endpoint_id=f"wsf-{domain}:cacheFlushDate",
        url_template=f"/ferries/api/{domain}/rest/cacheflushdate",
        input_contract=None,
        output_contract=WsdotDateTime,
        cache_policy=CachePolicy.FIVE_MINUTE_UPDATES,
        domain=None,  # Never cached under its own domain
    )


FLUSH_DATE_ENDPOINTS: dict[str, EndpointDescriptor] = {
    domain: flush_date_endpoint(domain) for domain in WSF_DOMAINS
}

VESSEL_LOCATIONS = EndpointDescriptor(
    endpoint_id="wsf-vessels:vesselLocations",
    url_template="/ferries/api/vessels/rest/vessellocations",
    input_contract=None,
    output_contract=list[VesselLocation],
    cache_policy=CachePolicy.REALTIME_UPDATES,
    domain="vessels",
)

VESSEL_LOCATIONS_BY_ID = EndpointDescriptor(
    endpoint_id="wsf-vessels:vesselLocationsByVesselId",
    url_template="/ferries/api/vessels/rest/vessellocations/{VesselID}",
    input_contract=VesselIdInput,
    output_contract=VesselLocation,
    cache_policy=CachePolicy.REALTIME_UPDATES,
    sample_params={"VesselID": 18},
    domain="vessels",
)

FARE_LINE_ITEMS = EndpointDescriptor(
    endpoint_id="wsf-fares:fareLineItems",
    url_template=(
        "/ferries/api/fares/rest/farelineitems/"
        "{TripDate}/{DepartingTerminalID}/{ArrivingTerminalID}/{RoundTrip}"
    ),
    input_contract=FareLineItemsInput,
    output_contract=list[FareLineItem],
    cache_policy=CachePolicy.DAILY_STATIC,
    sample_params={
        "TripDate": date(2025, 9, 1),
        "DepartingTerminalID": 3,
        "ArrivingTerminalID": 7,
        "RoundTrip": False,
    },
    domain="fares",
)

BORDER_CROSSINGS = EndpointDescriptor(
    endpoint_id="wsdot-border-crossings:getBorderCrossings",
    url_template="/Traffic/api/BorderCrossings/BorderCrossingsREST.svc/GetBorderCrossingsAsJson",
    input_contract=None,
    output_contract=list[BorderCrossing],
    cache_policy=CachePolicy.MINUTE_UPDATES,
)

ENDPOINTS: dict[str, EndpointDescriptor] = {
    descriptor.endpoint_id: descriptor
    for descriptor in (
        *FLUSH_DATE_ENDPOINTS.values(),
        VESSEL_LOCATIONS,
        VESSEL_LOCATIONS_BY_ID,
        FARE_LINE_ITEMS,
        BORDER_CROSSINGS,
    )
}
