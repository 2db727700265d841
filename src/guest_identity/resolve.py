from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date
from typing import Dict, List, Mapping, Optional

from .extract import CrmField, LedgerField, LeadFormField, ReservationField, SourceTable
from .models import (
    RESOLUTION_ORDER,
    CrmDeal,
    CustomerProfile,
    LeadFormSubmission,
    RawRecord,
    Reservation,
    Source,
)
from .normalization import parse_date, parse_datetime, parse_number, parse_time

logger = logging.getLogger(__name__)

DIRECT_SOURCE = "direct"
CRM_SOURCE = "crm"


def should_replace_attribution(profile: CustomerProfile, candidate_date: Optional[date]) -> bool:
    """
    First-touch rule: the first attribution sticks unless a strictly earlier
    dated record shows up. Ties keep the record seen first.
    """
    if not profile.has_attribution:
        return True
    if candidate_date is None:
        return False
    if profile.first_source_date is None:
        return True
    return candidate_date < profile.first_source_date


class IdentityResolver:
    """
    Merge per-source records into one profile per identity key.

    Sources are consumed in a fixed order (ledger, lead forms, CRM,
    reservations); the ledger seeds visit aggregates and later sources only
    enrich. A resolver instance holds the state of a single pass.
    """

    def __init__(self) -> None:
        self.profiles: "OrderedDict[str, CustomerProfile]" = OrderedDict()
        self.processed: Dict[Source, int] = {source: 0 for source in RESOLUTION_ORDER}

    def _profile_for(self, table: SourceTable, record: RawRecord) -> Optional[CustomerProfile]:
        name, phone, email = table.contact(record)
        key = phone or email
        if not key:
            logger.debug("%s row %s has no phone or email; skipped", table.source.value, record.row_id)
            return None
        profile = self.profiles.get(key)
        if profile is None:
            profile = CustomerProfile(id=key, name=name, phone=phone, email=email)
            self.profiles[key] = profile
        else:
            profile.fill_blanks(name, phone, email)
        profile.sources.add(table.source)
        self.processed[table.source] += 1
        return profile

    def merge_ledger(self, table: SourceTable) -> None:
        for record in table.records:
            profile = self._profile_for(table, record)
            if profile is None:
                continue
            # a repeated ledger row for the same key overwrites the aggregates
            profile.visits_count = int(parse_number(table.get_value(record, LedgerField.VISITS_COUNT)))
            profile.total_amount = parse_number(table.get_value(record, LedgerField.TOTAL_AMOUNT))
            profile.first_visit_date = parse_date(table.get_value(record, LedgerField.FIRST_VISIT))
            profile.last_visit_date = parse_date(table.get_value(record, LedgerField.LAST_VISIT))

    def merge_lead_forms(self, table: SourceTable) -> None:
        for record in table.records:
            profile = self._profile_for(table, record)
            if profile is None:
                continue
            submission = LeadFormSubmission(
                date=parse_date(table.get_value(record, LeadFormField.DATE)),
                time=parse_time(table.get_value(record, LeadFormField.TIME)),
                form_name=table.get_text(record, LeadFormField.FORM_NAME),
                utm_source=table.get_text(record, LeadFormField.UTM_SOURCE),
                utm_medium=table.get_text(record, LeadFormField.UTM_MEDIUM),
                utm_campaign=table.get_text(record, LeadFormField.UTM_CAMPAIGN),
                referrer=table.get_text(record, LeadFormField.REFERRER),
                button_text=table.get_text(record, LeadFormField.BUTTON_TEXT),
                quantity=parse_number(table.get_value(record, LeadFormField.QUANTITY)),
            )
            profile.lead_form_submissions.append(submission)
            if should_replace_attribution(profile, submission.date):
                profile.first_source = submission.referrer or DIRECT_SOURCE
                profile.first_utm_source = submission.utm_source
                profile.first_utm_medium = submission.utm_medium
                profile.first_utm_campaign = submission.utm_campaign
                profile.first_source_date = submission.date

    def merge_crm(self, table: SourceTable) -> None:
        for record in table.records:
            profile = self._profile_for(table, record)
            if profile is None:
                continue
            create_date = parse_date(table.get_value(record, CrmField.DEAL_CREATE_DATE))
            deal_source = table.get_text(record, CrmField.DEAL_SOURCE)
            deal_id = table.get_text(record, CrmField.DEAL_ID)
            if deal_id:
                profile.crm_deals.append(
                    CrmDeal(
                        deal_id=deal_id,
                        name=table.get_text(record, CrmField.DEAL_NAME),
                        stage=table.get_text(record, CrmField.DEAL_STATUS),
                        budget=parse_number(table.get_value(record, CrmField.DEAL_BUDGET)),
                        create_date=create_date,
                        close_date=parse_date(table.get_value(record, CrmField.DEAL_CLOSE_DATE)),
                        source=deal_source,
                        city=table.get_text(record, CrmField.CITY_TAG),
                        lead_type=table.get_text(record, CrmField.LEAD_TYPE),
                    )
                )

            utm_source = table.get_text(record, CrmField.UTM_SOURCE)
            if utm_source and should_replace_attribution(profile, create_date):
                profile.first_source = deal_source or CRM_SOURCE
                profile.first_utm_source = utm_source
                profile.first_utm_medium = table.get_text(record, CrmField.UTM_MEDIUM)
                profile.first_utm_campaign = table.get_text(record, CrmField.UTM_CAMPAIGN)
                profile.first_source_date = create_date

    def merge_reservations(self, table: SourceTable) -> None:
        for record in table.records:
            profile = self._profile_for(table, record)
            if profile is None:
                continue
            profile.reservations.append(
                Reservation(
                    reservation_id=table.get_text(record, ReservationField.RESERVE_ID),
                    row_ref=table.get_text(record, ReservationField.ID),
                    reserved_at=parse_datetime(table.get_value(record, ReservationField.DATETIME)),
                    status=table.get_text(record, ReservationField.STATUS),
                    amount=parse_number(table.get_value(record, ReservationField.AMOUNT)),
                    guests=parse_number(table.get_value(record, ReservationField.GUESTS)),
                    comment=table.get_text(record, ReservationField.COMMENT),
                    channel=table.get_text(record, ReservationField.SOURCE),
                )
            )

    def merge(self, table: SourceTable) -> None:
        handlers = {
            Source.LEDGER: self.merge_ledger,
            Source.LEAD_FORM: self.merge_lead_forms,
            Source.CRM: self.merge_crm,
            Source.RESERVATION: self.merge_reservations,
        }
        handlers[table.source](table)

    def finalize(self) -> List[CustomerProfile]:
        for profile in self.profiles.values():
            profile.finalize()
        logger.info(
            "Resolved %d customer profiles (ledger=%d, lead_form=%d, crm=%d, reservation=%d)",
            len(self.profiles),
            self.processed[Source.LEDGER],
            self.processed[Source.LEAD_FORM],
            self.processed[Source.CRM],
            self.processed[Source.RESERVATION],
        )
        return list(self.profiles.values())


def resolve(tables: Mapping[Source, SourceTable]) -> List[CustomerProfile]:
    resolver = IdentityResolver()
    for source in RESOLUTION_ORDER:
        table = tables.get(source)
        if table is None:
            logger.info("No %s records supplied to resolution", source.value)
            continue
        if table.source is not source:
            raise ValueError(f"table registered as {source.value} holds {table.source.value} records")
        resolver.merge(table)
    return resolver.finalize()
