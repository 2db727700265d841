import logging
from itertools import combinations
from typing import Dict, Mapping, Optional, Set

from .config_loader import QualityConfig
from .extract import SourceTable
from .models import RESOLUTION_ORDER, QualityReport, Source, SourceQuality
from .normalization import is_standard_phone_safe, is_valid_email_safe

logger = logging.getLogger(__name__)


def pct(n, d):
    return round((n / d * 100.0), 2) if d else 0.0


def assess_source(table: SourceTable, settings: QualityConfig) -> SourceQuality:
    """
    Count missing identity fields and flag suspicious phones for one source.

    Duplicates are tracked within the source only; a phone that repeats more
    than twice is still reported once.
    """
    quality = SourceQuality(total_records=len(table.records))
    seen_phones: Set[str] = set()
    for record in table.records:
        _, phone, email = table.contact(record)
        if not phone:
            quality.missing_phones += 1
        if not email:
            quality.missing_emails += 1
        elif settings.validate_email_syntax and not is_valid_email_safe(email):
            quality.invalid_emails.append(email)

        if not phone:
            continue
        if phone in seen_phones:
            quality.duplicate_phones.add(phone)
        seen_phones.add(phone)

        if not settings.min_phone_length <= len(phone) <= settings.max_phone_length:
            quality.invalid_phones.append(phone)
        elif (
            settings.check_numbering_plan
            and len(phone) == settings.min_phone_length
            and not is_standard_phone_safe(phone, settings.phone_region)
        ):
            quality.non_standard_phones.append(phone)
    return quality


def _identity_keys(table: SourceTable) -> Set[str]:
    keys: Set[str] = set()
    for record in table.records:
        key = table.identity_key(record)
        if key:
            keys.add(key)
    return keys


def assess_quality(
    tables: Mapping[Source, SourceTable], settings: Optional[QualityConfig] = None
) -> QualityReport:
    settings = settings or QualityConfig()
    report = QualityReport()
    keys_by_source: Dict[Source, Set[str]] = {}

    for source in RESOLUTION_ORDER:
        table = tables.get(source) or SourceTable(source=source)
        try:
            report.sources[source] = assess_source(table, settings)
            keys_by_source[source] = _identity_keys(table)
        except (TypeError, ValueError) as exc:
            logger.warning("Quality assessment failed for %s: %s", source.value, exc)
            report.sources[source] = SourceQuality(total_records=len(table.records))
            keys_by_source[source] = set()

    for left, right in combinations(RESOLUTION_ORDER, 2):
        report.cross_source_matches[(left, right)] = len(keys_by_source[left] & keys_by_source[right])

    for source, quality in report.sources.items():
        logger.info(
            "%s quality: %d records, %.2f%% without phone, %.2f%% without email, "
            "%d duplicate phones, %d invalid phones",
            source.value,
            quality.total_records,
            pct(quality.missing_phones, quality.total_records),
            pct(quality.missing_emails, quality.total_records),
            len(quality.duplicate_phones),
            len(quality.invalid_phones),
        )
    return report
