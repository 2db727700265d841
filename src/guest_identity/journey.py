from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Dict, Iterator, List, Mapping, Optional

from .extract import CrmField, LeadFormField, ReservationField, SourceTable
from .models import CustomerJourney, JourneyEvent, JourneyEventType, RawRecord, Source
from .normalization import parse_date, parse_datetime, parse_number, parse_time

logger = logging.getLogger(__name__)

DEFAULT_JOURNEY_SOURCES = (Source.LEAD_FORM, Source.CRM)


def _lead_events(table: SourceTable, record: RawRecord) -> Iterator[JourneyEvent]:
    event_date = parse_date(table.get_value(record, LeadFormField.DATE))
    if event_date is None:
        return
    yield JourneyEvent(
        type=JourneyEventType.SITE_LEAD,
        date=event_date,
        time=parse_time(table.get_value(record, LeadFormField.TIME)),
        details={
            "form_name": table.get_text(record, LeadFormField.FORM_NAME),
            "utm_source": table.get_text(record, LeadFormField.UTM_SOURCE),
            "button_text": table.get_text(record, LeadFormField.BUTTON_TEXT),
            "quantity": parse_number(table.get_value(record, LeadFormField.QUANTITY)),
        },
    )


def _crm_events(table: SourceTable, record: RawRecord) -> Iterator[JourneyEvent]:
    deal_id = table.get_text(record, CrmField.DEAL_ID)

    created = parse_date(table.get_value(record, CrmField.DEAL_CREATE_DATE))
    if created is not None:
        yield JourneyEvent(
            type=JourneyEventType.CRM_DEAL_CREATED,
            date=created,
            details={
                "deal_id": deal_id,
                "deal_name": table.get_text(record, CrmField.DEAL_NAME),
                "stage": table.get_text(record, CrmField.DEAL_STATUS),
                "responsible": table.get_text(record, CrmField.DEAL_RESPONSIBLE),
            },
        )

    closed = parse_date(table.get_value(record, CrmField.DEAL_CLOSE_DATE))
    if closed is not None:
        yield JourneyEvent(
            type=JourneyEventType.CRM_DEAL_CLOSED,
            date=closed,
            details={
                "deal_id": deal_id,
                "budget": parse_number(table.get_value(record, CrmField.DEAL_BUDGET)),
            },
        )

    booked = parse_date(table.get_value(record, CrmField.BOOKING_DATE))
    if booked is not None:
        yield JourneyEvent(
            type=JourneyEventType.RESERVATION_CREATED,
            date=booked,
            details={
                "deal_id": deal_id,
                "bar": table.get_text(record, CrmField.BOOKING_BAR),
                "arrival_time": table.get_text(record, CrmField.ARRIVAL_TIME),
                "guests": parse_number(table.get_value(record, CrmField.GUESTS_COUNT)),
                "via": "crm",
            },
        )


def _reservation_events(table: SourceTable, record: RawRecord) -> Iterator[JourneyEvent]:
    raw = table.get_value(record, ReservationField.DATETIME)
    reserved_at = parse_datetime(raw)
    if reserved_at is None:
        return
    # a date-only cell has no clock; an explicit 00:00 is kept
    has_clock = parse_time(raw) is not None
    yield JourneyEvent(
        type=JourneyEventType.RESERVATION_CREATED,
        date=reserved_at.date(),
        time=reserved_at.time() if has_clock else None,
        details={
            "reservation_id": table.get_text(record, ReservationField.RESERVE_ID),
            "status": table.get_text(record, ReservationField.STATUS),
            "amount": parse_number(table.get_value(record, ReservationField.AMOUNT)),
            "guests": parse_number(table.get_value(record, ReservationField.GUESTS)),
            "via": "reservation",
        },
    )


EVENT_FACTORIES = {
    Source.LEAD_FORM: _lead_events,
    Source.CRM: _crm_events,
    Source.RESERVATION: _reservation_events,
}


def order_events(events: List[JourneyEvent]) -> List[JourneyEvent]:
    """Sort events chronologically and stamp whole-day gaps between neighbours."""
    ordered = sorted(events, key=JourneyEvent.sort_key)
    for idx, event in enumerate(ordered):
        if idx == 0:
            event.days_since_previous = 0
        else:
            event.days_since_previous = (event.date - ordered[idx - 1].date).days
    return ordered


def build_journeys(
    tables: Mapping[Source, SourceTable],
    include_reservations: bool = False,
    sources: Optional[List[Source]] = None,
) -> List[CustomerJourney]:
    """
    Walk the raw records of each journey source and assemble a timeline per
    identity key. Customers without any dated event are left out.
    """
    selected = list(sources or DEFAULT_JOURNEY_SOURCES)
    if include_reservations and Source.RESERVATION not in selected:
        selected.append(Source.RESERVATION)

    events_by_key: "OrderedDict[str, List[JourneyEvent]]" = OrderedDict()
    counts: Dict[Source, int] = {}
    for source in selected:
        factory = EVENT_FACTORIES.get(source)
        table = tables.get(source)
        if factory is None or table is None:
            continue
        added = 0
        for record in table.records:
            key = table.identity_key(record)
            if not key:
                continue
            for event in factory(table, record):
                events_by_key.setdefault(key, []).append(event)
                added += 1
        counts[source] = added
        logger.info("%s contributed %d journey events", source.value, added)

    journeys = [
        CustomerJourney(customer_id=key, events=order_events(events))
        for key, events in events_by_key.items()
        if events
    ]
    logger.info(
        "Built %d customer journeys with %d events",
        len(journeys),
        sum(counts.values()),
    )
    return journeys
