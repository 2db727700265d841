from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple


class Source(str, Enum):
    LEDGER = "LEDGER"
    LEAD_FORM = "LEAD_FORM"
    CRM = "CRM"
    RESERVATION = "RESERVATION"


RESOLUTION_ORDER: Tuple[Source, ...] = (
    Source.LEDGER,
    Source.LEAD_FORM,
    Source.CRM,
    Source.RESERVATION,
)


def _iso(value: Optional[date]) -> str:
    return value.isoformat() if value else ""


def _clock(value: Optional[time]) -> str:
    return value.strftime("%H:%M") if value else ""


@dataclass(frozen=True)
class RawRecord:
    source: Source
    cells: Tuple[Any, ...]
    row_id: str = ""

    def cell(self, index: Optional[int]) -> Optional[Any]:
        if index is None or index < 0 or index >= len(self.cells):
            return None
        return self.cells[index]


@dataclass(frozen=True)
class LeadFormSubmission:
    date: Optional[date]
    time: Optional[time] = None
    form_name: str = ""
    utm_source: str = ""
    utm_medium: str = ""
    utm_campaign: str = ""
    referrer: str = ""
    button_text: str = ""
    quantity: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": _iso(self.date),
            "time": _clock(self.time),
            "form_name": self.form_name,
            "utm_source": self.utm_source,
            "utm_medium": self.utm_medium,
            "utm_campaign": self.utm_campaign,
            "referrer": self.referrer,
            "button_text": self.button_text,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class CrmDeal:
    deal_id: str
    name: str = ""
    stage: str = ""
    budget: float = 0
    create_date: Optional[date] = None
    close_date: Optional[date] = None
    source: str = ""
    city: str = ""
    lead_type: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deal_id": self.deal_id,
            "name": self.name,
            "stage": self.stage,
            "budget": self.budget,
            "create_date": _iso(self.create_date),
            "close_date": _iso(self.close_date),
            "source": self.source,
            "city": self.city,
            "lead_type": self.lead_type,
        }


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    row_ref: str = ""
    reserved_at: Optional[datetime] = None
    status: str = ""
    amount: float = 0
    guests: float = 0
    comment: str = ""
    channel: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "row_ref": self.row_ref,
            "reserved_at": self.reserved_at.isoformat(sep=" ") if self.reserved_at else "",
            "status": self.status,
            "amount": self.amount,
            "guests": self.guests,
            "comment": self.comment,
            "channel": self.channel,
        }


def _undated_last(value: Optional[Any]) -> Tuple[bool, Any]:
    return (value is None, value or 0)


@dataclass
class CustomerProfile:
    id: str
    name: str = ""
    phone: str = ""
    email: str = ""
    visits_count: int = 0
    total_amount: float = 0
    avg_check: float = 0
    first_visit_date: Optional[date] = None
    last_visit_date: Optional[date] = None
    first_source: str = ""
    first_utm_source: str = ""
    first_utm_medium: str = ""
    first_utm_campaign: str = ""
    first_source_date: Optional[date] = None
    crm_deals: List[CrmDeal] = field(default_factory=list)
    reservations: List[Reservation] = field(default_factory=list)
    lead_form_submissions: List[LeadFormSubmission] = field(default_factory=list)
    sources: Set[Source] = field(default_factory=set)

    @property
    def has_attribution(self) -> bool:
        return bool(self.first_source)

    def fill_blanks(self, name: str, phone: str, email: str) -> None:
        self.name = self.name or name
        self.phone = self.phone or phone
        self.email = self.email or email

    def finalize(self) -> None:
        self.avg_check = self.total_amount / self.visits_count if self.visits_count > 0 else 0
        self.crm_deals.sort(key=lambda deal: _undated_last(deal.create_date))
        self.reservations.sort(key=lambda reservation: _undated_last(reservation.reserved_at))
        self.lead_form_submissions.sort(key=lambda submission: _undated_last(submission.date))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "visits_count": self.visits_count,
            "total_amount": self.total_amount,
            "avg_check": self.avg_check,
            "first_visit_date": _iso(self.first_visit_date),
            "last_visit_date": _iso(self.last_visit_date),
            "first_source": self.first_source,
            "first_utm_source": self.first_utm_source,
            "first_utm_medium": self.first_utm_medium,
            "first_utm_campaign": self.first_utm_campaign,
            "first_source_date": _iso(self.first_source_date),
            "crm_deals": [deal.to_dict() for deal in self.crm_deals],
            "reservations": [reservation.to_dict() for reservation in self.reservations],
            "lead_form_submissions": [
                submission.to_dict() for submission in self.lead_form_submissions
            ],
            "sources": sorted(source.value for source in self.sources),
        }


class JourneyEventType(str, Enum):
    SITE_LEAD = "SITE_LEAD"
    CRM_DEAL_CREATED = "CRM_DEAL_CREATED"
    CRM_DEAL_CLOSED = "CRM_DEAL_CLOSED"
    RESERVATION_CREATED = "RESERVATION_CREATED"


@dataclass
class JourneyEvent:
    type: JourneyEventType
    date: date
    time: Optional[time] = None
    details: Dict[str, Any] = field(default_factory=dict)
    days_since_previous: int = 0

    def sort_key(self) -> Tuple[date, time]:
        # missing time sorts as midnight but is never written back
        return (self.date, self.time or time())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "date": _iso(self.date),
            "time": _clock(self.time),
            "details": dict(self.details),
            "days_since_previous": self.days_since_previous,
        }


@dataclass
class CustomerJourney:
    customer_id: str
    events: List[JourneyEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_id": self.customer_id,
            "events": [event.to_dict() for event in self.events],
        }


@dataclass
class SourceQuality:
    total_records: int = 0
    missing_phones: int = 0
    missing_emails: int = 0
    duplicate_phones: Set[str] = field(default_factory=set)
    invalid_phones: List[str] = field(default_factory=list)
    invalid_emails: List[str] = field(default_factory=list)
    non_standard_phones: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "missing_phones": self.missing_phones,
            "missing_emails": self.missing_emails,
            "duplicate_phones": sorted(self.duplicate_phones),
            "invalid_phones": list(self.invalid_phones),
            "invalid_emails": list(self.invalid_emails),
            "non_standard_phones": list(self.non_standard_phones),
        }


@dataclass
class QualityReport:
    sources: Dict[Source, SourceQuality] = field(default_factory=dict)
    cross_source_matches: Dict[Tuple[Source, Source], int] = field(default_factory=dict)

    def for_source(self, source: Source) -> SourceQuality:
        return self.sources.setdefault(source, SourceQuality())

    @property
    def duplicate_phones(self) -> Set[str]:
        merged: Set[str] = set()
        for quality in self.sources.values():
            merged |= quality.duplicate_phones
        return merged

    @property
    def invalid_phones(self) -> List[str]:
        return _concat(quality.invalid_phones for quality in self.sources.values())

    @property
    def invalid_emails(self) -> List[str]:
        return _concat(quality.invalid_emails for quality in self.sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sources": {source.value: quality.to_dict() for source, quality in self.sources.items()},
            "duplicate_phones": sorted(self.duplicate_phones),
            "invalid_phones": self.invalid_phones,
            "invalid_emails": self.invalid_emails,
            "cross_source_matches": {
                f"{left.value}->{right.value}": count
                for (left, right), count in self.cross_source_matches.items()
            },
        }


def _concat(groups: Iterable[List[str]]) -> List[str]:
    out: List[str] = []
    for group in groups:
        out.extend(group)
    return out
