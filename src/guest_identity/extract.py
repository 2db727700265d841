from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

import pandas as pd

from .config_loader import LayoutsConfig
from .models import RawRecord, Source
from .normalization import coerce_text, normalize_email, normalize_phone

logger = logging.getLogger(__name__)


class LedgerField(Enum):
    NAME = "name"
    PHONE = "phone"
    EMAIL = "email"
    VISITS_COUNT = "visits_count"
    TOTAL_AMOUNT = "total_amount"
    FIRST_VISIT = "first_visit"
    LAST_VISIT = "last_visit"


class LeadFormField(Enum):
    NAME = "name"
    PHONE = "phone"
    REFERRER = "referrer"
    EMAIL = "email"
    DATE = "date"
    QUANTITY = "quantity"
    FORM_NAME = "form_name"
    TIME = "time"
    UTM_CAMPAIGN = "utm_campaign"
    UTM_SOURCE = "utm_source"
    UTM_MEDIUM = "utm_medium"
    BUTTON_TEXT = "button_text"


class ReservationField(Enum):
    ID = "id"
    RESERVE_ID = "reserve_id"
    NAME = "name"
    PHONE = "phone"
    EMAIL = "email"
    DATETIME = "datetime"
    STATUS = "status"
    COMMENT = "comment"
    AMOUNT = "amount"
    GUESTS = "guests"
    SOURCE = "source"


class CrmField(Enum):
    """Known CRM export fields; the value is the default second-row header label."""

    DEAL_ID = "Deal.ID"
    DEAL_NAME = "Deal.Name"
    DEAL_RESPONSIBLE = "Deal.Responsible"
    DEAL_STATUS = "Deal.Status"
    DEAL_BUDGET = "Deal.Budget"
    DEAL_CREATE_DATE = "Deal.CreateDate"
    DEAL_CLOSE_DATE = "Deal.CloseDate"
    CONTACT_NAME = "Contact.Name"
    CONTACT_PHONE = "Contact.Phone"
    CONTACT_EMAIL = "Contact.Email"
    BOOKING_BAR = "Deal.Bar"
    BOOKING_DATE = "Deal.BookingDate"
    ARRIVAL_TIME = "Deal.ArrivalTime"
    GUESTS_COUNT = "Deal.GuestsCount"
    UTM_SOURCE = "Deal.UTM_SOURCE"
    UTM_MEDIUM = "Deal.UTM_MEDIUM"
    UTM_CAMPAIGN = "Deal.UTM_CAMPAIGN"
    DEAL_SOURCE = "Deal.DealSource"
    LEAD_TYPE = "Deal.LeadType"
    CITY_TAG = "Deal.CityTag"


LEDGER_COLUMNS: Dict[LedgerField, int] = {
    LedgerField.NAME: 0,
    LedgerField.PHONE: 1,
    LedgerField.EMAIL: 2,
    LedgerField.VISITS_COUNT: 3,
    LedgerField.TOTAL_AMOUNT: 4,
    LedgerField.FIRST_VISIT: 5,
    LedgerField.LAST_VISIT: 6,
}

LEAD_FORM_COLUMNS: Dict[LeadFormField, int] = {
    LeadFormField.NAME: 0,
    LeadFormField.PHONE: 1,
    LeadFormField.REFERRER: 2,
    LeadFormField.EMAIL: 6,
    LeadFormField.DATE: 7,
    LeadFormField.QUANTITY: 8,
    LeadFormField.FORM_NAME: 10,
    LeadFormField.TIME: 11,
    LeadFormField.UTM_CAMPAIGN: 16,
    LeadFormField.UTM_SOURCE: 17,
    LeadFormField.UTM_MEDIUM: 19,
    LeadFormField.BUTTON_TEXT: 23,
}

RESERVATION_COLUMNS: Dict[ReservationField, int] = {
    member: position for position, member in enumerate(ReservationField)
}

# (name, phone, email) per source
CONTACT_FIELDS: Dict[Source, Tuple[Enum, Enum, Enum]] = {
    Source.LEDGER: (LedgerField.NAME, LedgerField.PHONE, LedgerField.EMAIL),
    Source.LEAD_FORM: (LeadFormField.NAME, LeadFormField.PHONE, LeadFormField.EMAIL),
    Source.CRM: (CrmField.CONTACT_NAME, CrmField.CONTACT_PHONE, CrmField.CONTACT_EMAIL),
    Source.RESERVATION: (ReservationField.NAME, ReservationField.PHONE, ReservationField.EMAIL),
}


@dataclass(frozen=True)
class CrmLayout:
    labels: Dict[CrmField, str]
    email_token: str = "email"


@dataclass(frozen=True)
class SourceLayouts:
    ledger: Dict[LedgerField, int]
    lead_form: Dict[LeadFormField, int]
    reservation: Dict[ReservationField, int]
    crm: CrmLayout

    @classmethod
    def default(cls) -> "SourceLayouts":
        return cls.from_config(LayoutsConfig())

    @classmethod
    def from_config(cls, config: LayoutsConfig) -> "SourceLayouts":
        labels = {member: member.value for member in CrmField}
        for name, label in config.crm_labels.items():
            labels[_member(CrmField, name, "crm_labels")] = label.strip()
        return cls(
            ledger=_positions(LEDGER_COLUMNS, LedgerField, config.ledger, "ledger"),
            lead_form=_positions(LEAD_FORM_COLUMNS, LeadFormField, config.lead_form, "lead_form"),
            reservation=_positions(
                RESERVATION_COLUMNS, ReservationField, config.reservation, "reservation"
            ),
            crm=CrmLayout(labels=labels, email_token=config.crm_email_token.lower()),
        )


def _member(enum_cls: Type[Enum], name: str, section: str) -> Enum:
    try:
        return enum_cls[name.upper()]
    except KeyError:
        known = ", ".join(member.name for member in enum_cls)
        raise ValueError(f"layouts.{section}: unknown field {name!r} (known: {known})") from None


def _positions(
    defaults: Mapping[Any, int],
    enum_cls: Type[Enum],
    overrides: Mapping[str, int],
    section: str,
) -> Dict[Any, int]:
    positions = dict(defaults)
    for name, index in overrides.items():
        if index < 0:
            raise ValueError(f"layouts.{section}.{name}: column index must be >= 0")
        positions[_member(enum_cls, name, section)] = index
    return positions


@dataclass
class SourceTable:
    source: Source
    records: List[RawRecord] = field(default_factory=list)
    field_map: Dict[Enum, int] = field(default_factory=dict)
    headers: Tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.records)

    def get_value(self, record: RawRecord, field_id: Enum) -> Optional[Any]:
        return record.cell(self.field_map.get(field_id))

    def get_text(self, record: RawRecord, field_id: Enum) -> str:
        return coerce_text(self.get_value(record, field_id))

    def contact(self, record: RawRecord) -> Tuple[str, str, str]:
        """Return ``(name, normalized_phone, normalized_email)`` for a record."""
        name_field, phone_field, email_field = CONTACT_FIELDS[self.source]
        return (
            self.get_text(record, name_field),
            normalize_phone(self.get_value(record, phone_field)),
            normalize_email(self.get_value(record, email_field)),
        )

    def identity_key(self, record: RawRecord) -> str:
        _, phone, email = self.contact(record)
        return phone or email


def warn_missing(path: Optional[str], label: str) -> bool:
    if not path or not os.path.exists(path):
        logger.warning("%s path missing: %s", label, path)
        return True
    return False


def read_table(path: Optional[str], label: str = "Source") -> Optional[List[List[str]]]:
    """Load a CSV export as raw rows, headers included; ``None`` when the file is missing."""
    if warn_missing(path, label):
        return None
    try:
        df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
    except pd.errors.EmptyDataError:
        logger.info("%s export is empty: %s", label, path)
        return []
    except (pd.errors.ParserError, OSError, UnicodeDecodeError) as exc:
        logger.warning("Unable to read %s export %s: %s", label, path, exc)
        return None
    return df.values.tolist()


def _as_rows(rows: Any) -> List[Sequence[Any]]:
    if isinstance(rows, pd.DataFrame):
        return rows.values.tolist()
    try:
        return list(rows)
    except TypeError:
        logger.warning("Ignoring table of unsupported type %s", type(rows).__name__)
        return []


def _as_cells(row: Any) -> Optional[Tuple[Any, ...]]:
    if row is None:
        return None
    if isinstance(row, str):
        return (row,)
    try:
        return tuple(row)
    except TypeError:
        return None


def _is_blank(cells: Tuple[Any, ...]) -> bool:
    return all(not coerce_text(cell) for cell in cells)


def _records(source: Source, rows: Sequence[Any], start: int) -> List[RawRecord]:
    records: List[RawRecord] = []
    for idx in range(start, len(rows)):
        cells = _as_cells(rows[idx])
        if cells is None:
            logger.debug("%s row %d is not a sequence of cells; skipped", source.value, idx)
            continue
        if not cells or _is_blank(cells):
            continue
        records.append(RawRecord(source=source, cells=cells, row_id=str(idx)))
    return records


def _header_texts(row: Any) -> Tuple[str, ...]:
    cells = _as_cells(row) or ()
    return tuple(coerce_text(cell) for cell in cells)


def _extract_flat(source: Source, rows: Any, positions: Mapping[Enum, int]) -> SourceTable:
    if rows is None:
        logger.info("%s table not available; continuing without it", source.value)
        return SourceTable(source=source)
    materialized = _as_rows(rows)
    if not materialized:
        logger.info("%s table is empty", source.value)
        return SourceTable(source=source)
    records = _records(source, materialized, start=1)
    logger.info("%s: extracted %d records", source.value, len(records))
    return SourceTable(
        source=source,
        records=records,
        field_map=dict(positions),
        headers=_header_texts(materialized[0]),
    )


def extract_ledger(rows: Any, layout: Optional[Mapping[LedgerField, int]] = None) -> SourceTable:
    return _extract_flat(Source.LEDGER, rows, layout or LEDGER_COLUMNS)


def extract_lead_forms(
    rows: Any, layout: Optional[Mapping[LeadFormField, int]] = None
) -> SourceTable:
    return _extract_flat(Source.LEAD_FORM, rows, layout or LEAD_FORM_COLUMNS)


def extract_reservations(
    rows: Any, layout: Optional[Mapping[ReservationField, int]] = None
) -> SourceTable:
    return _extract_flat(Source.RESERVATION, rows, layout or RESERVATION_COLUMNS)


def build_crm_field_map(headers: Sequence[str], layout: CrmLayout) -> Dict[Enum, int]:
    header_index: Dict[str, int] = {}
    for idx, header in enumerate(headers):
        if header:
            header_index[header] = idx

    field_map: Dict[Enum, int] = {}
    for member, label in layout.labels.items():
        if member is CrmField.CONTACT_EMAIL:
            continue
        if label in header_index:
            field_map[member] = header_index[label]

    token = layout.email_token
    for idx, header in enumerate(headers):
        if header and token in header.lower():
            field_map[CrmField.CONTACT_EMAIL] = idx
            break
    else:
        # no header carries the token; fall back to the exact email label
        email_label = layout.labels.get(CrmField.CONTACT_EMAIL)
        if email_label in header_index:
            field_map[CrmField.CONTACT_EMAIL] = header_index[email_label]
    return field_map


def extract_crm(rows: Any, layout: Optional[CrmLayout] = None) -> SourceTable:
    """
    Read a CRM export with a two-row header.

    Row 1 holds block labels, row 2 the field names, data starts on row 3.
    Fields are resolved by name, so reordering or adding columns in the
    export does not break extraction.
    """
    if rows is None:
        logger.info("CRM table not available; continuing without it")
        return SourceTable(source=Source.CRM)
    layout = layout or SourceLayouts.default().crm
    materialized = _as_rows(rows)
    if len(materialized) < 3:
        logger.info("CRM table has no data below its two header rows")
        return SourceTable(source=Source.CRM)

    headers = _header_texts(materialized[1])
    field_map = build_crm_field_map(headers, layout)
    for member in (CrmField.CONTACT_PHONE, CrmField.CONTACT_EMAIL, CrmField.DEAL_ID):
        if member in field_map:
            logger.debug("CRM field %s -> column %d", member.value, field_map[member])
        else:
            logger.info("CRM export has no %s column", member.name)

    records = _records(Source.CRM, materialized, start=2)
    logger.info("CRM: extracted %d records", len(records))
    return SourceTable(source=Source.CRM, records=records, field_map=field_map, headers=headers)


def extract_table(source: Source, rows: Any, layouts: Optional[SourceLayouts] = None) -> SourceTable:
    layouts = layouts or SourceLayouts.default()
    if source is Source.LEDGER:
        return extract_ledger(rows, layouts.ledger)
    if source is Source.LEAD_FORM:
        return extract_lead_forms(rows, layouts.lead_form)
    if source is Source.RESERVATION:
        return extract_reservations(rows, layouts.reservation)
    return extract_crm(rows, layouts.crm)
