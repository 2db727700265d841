import json
import sys
from types import SimpleNamespace

import pandas as pd
import pytest

from guest_identity.config_loader import load_pipeline_config
from guest_identity.models import Source
from guest_identity.pipeline import (
    build,
    journeys_frame,
    load_tables,
    main,
    profiles_frame,
    quality_frame,
    run_pass,
)


def write_inputs(tmp_path):
    ledger = tmp_path / "ledger.csv"
    ledger.write_text(
        "Name,Phone,Email,Visits,Total,First visit,Last visit\n"
        'Anna,"+7 (999) 123-45-67",anna@gmail.com,3,9000,2024-03-01,2024-05-01\n',
        encoding="utf-8",
    )

    lead = [""] * 24
    lead[1] = "89991234567"
    lead[7] = "2024-02-01"
    lead[11] = "12:00"
    lead[17] = "google"
    leads = tmp_path / "leads.csv"
    leads.write_text(",".join(["col"] * 24) + "\n" + ",".join(lead) + "\n", encoding="utf-8")

    crm = tmp_path / "crm.csv"
    crm.write_text(
        "Deal,Deal,Contact,Contact\n"
        "Deal.ID,Deal.CreateDate,Contact.Phone,Contact.Email\n"
        "10,2024-02-10,9991234567,\n"
        "11,2024-03-01,,\n",
        encoding="utf-8",
    )
    return {"ledger_csv": str(ledger), "lead_form_csv": str(leads), "crm_csv": str(crm)}


def make_args(tmp_path, **overrides):
    values = dict(
        config=None,
        ledger_csv=None,
        lead_form_csv=None,
        crm_csv=None,
        reservations_csv=None,
        out_dir=str(tmp_path / "out"),
        phone_region=None,
        include_reservations=None,
        log_level=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_load_tables_tolerates_missing_files(tmp_path):
    config = load_pipeline_config(make_args(tmp_path, ledger_csv=str(tmp_path / "absent.csv")))
    tables = load_tables(config)
    assert set(tables) == {Source.LEDGER, Source.LEAD_FORM, Source.CRM, Source.RESERVATION}
    assert all(len(table) == 0 for table in tables.values())


def test_build_runs_full_pass(tmp_path):
    args = make_args(tmp_path, **write_inputs(tmp_path))
    result = build(args)

    assert [profile.id for profile in result.profiles] == ["9991234567"]
    profile = result.profiles[0]
    assert profile.avg_check == 3000
    assert profile.first_utm_source == "google"
    assert [deal.deal_id for deal in profile.crm_deals] == ["10"]

    assert len(result.journeys) == 1
    events = result.journeys[0].events
    assert [event.type.value for event in events] == ["SITE_LEAD", "CRM_DEAL_CREATED"]
    assert events[1].days_since_previous == 9

    crm_quality = result.quality.sources[Source.CRM]
    assert crm_quality.total_records == 2
    assert crm_quality.missing_phones == 1
    assert result.quality.cross_source_matches[(Source.LEDGER, Source.CRM)] == 1


def test_run_pass_is_repeatable(tmp_path):
    args = make_args(tmp_path, **write_inputs(tmp_path))
    config = load_pipeline_config(args)
    tables = load_tables(config)
    first = run_pass(tables, config)
    second = run_pass(tables, config)
    assert [p.to_dict() for p in first.profiles] == [p.to_dict() for p in second.profiles]
    assert [j.to_dict() for j in first.journeys] == [j.to_dict() for j in second.journeys]


def test_frames_shape(tmp_path):
    result = build(make_args(tmp_path, **write_inputs(tmp_path)))

    profiles = profiles_frame(result.profiles)
    assert profiles.loc[0, "customer_id"] == "9991234567"
    assert profiles.loc[0, "crm_deal_count"] == 1
    assert profiles.loc[0, "sources"] == "CRM|LEAD_FORM|LEDGER"
    assert json.loads(profiles.loc[0, "crm_deals_json"])[0]["deal_id"] == "10"

    journeys = journeys_frame(result.journeys)
    assert list(journeys["position"]) == [0, 1]
    assert list(journeys["days_since_previous"]) == [0, 9]

    quality = quality_frame(result.quality).set_index("metric")
    assert quality.loc["Total records", "CRM"] == 2
    assert quality.loc["Missing phone", "CRM"] == 1


def test_empty_frames():
    assert profiles_frame([]).empty
    assert journeys_frame([]).empty


def test_main_writes_outputs(tmp_path, monkeypatch):
    paths = write_inputs(tmp_path)
    out_dir = tmp_path / "out"
    monkeypatch.delenv("GUEST_IDENTITY_LOG_LEVEL", raising=False)
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "guest-identity",
            "--ledger-csv",
            paths["ledger_csv"],
            "--lead-form-csv",
            paths["lead_form_csv"],
            "--crm-csv",
            paths["crm_csv"],
            "--out-dir",
            str(out_dir),
        ],
    )
    assert main() == 0

    customers = pd.read_csv(out_dir / "unified_customers.csv", dtype=str)
    assert list(customers["customer_id"]) == ["9991234567"]
    journeys = pd.read_csv(out_dir / "customer_journeys.csv", dtype=str)
    assert list(journeys["event"]) == ["SITE_LEAD", "CRM_DEAL_CREATED"]
    assert (out_dir / "data_quality.csv").exists()


def test_yaml_config_feeds_pipeline(tmp_path):
    paths = write_inputs(tmp_path)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "\n".join(
            [
                "inputs:",
                f"  ledger_csv: {paths['ledger_csv']}",
                "journey:",
                "  include_reservations: true",
                "quality:",
                "  phone_region: KZ",
                "logging:",
                "  level: info",
            ]
        ),
        encoding="utf-8",
    )
    config = load_pipeline_config(make_args(tmp_path, config=str(config_path)))
    assert config.inputs.ledger_csv == paths["ledger_csv"]
    assert config.journey.include_reservations is True
    assert config.quality.phone_region == "KZ"
    assert config.logging.level == "INFO"

    override = load_pipeline_config(
        make_args(tmp_path, config=str(config_path), include_reservations=False, phone_region="RU")
    )
    assert override.journey.include_reservations is False
    assert override.quality.phone_region == "RU"


def test_invalid_phone_bounds_rejected(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("quality:\n  min_phone_length: 12\n  max_phone_length: 10\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_pipeline_config(make_args(tmp_path, config=str(config_path)))


if __name__ == "__main__":
    pytest.main(["-q"])
