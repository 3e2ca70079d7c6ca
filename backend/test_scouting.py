"""Scouting report shaping and storage, plus the team delete cascade."""

import uuid

import pytest

import scouting
from conftest import FailingConnection
from operations import DEFAULT_TEAM_ID, PartialOperationError, StepLedger, delete_team_cascade


def test_normalize_name_keeps_signs():
    assert scouting.normalize_name("  3-4 Split + ") == "3-4split+"
    assert scouting.normalize_name("Cover 3\tSky") == "cover3sky"
    assert scouting.normalize_name(None) == ""


def test_split_beaters():
    assert scouting.split_beaters(" 3-4, 4-3 ,, Bear ") == ["3-4", "4-3", "Bear"]
    assert scouting.split_beaters(["Tite", " "]) == ["Tite"]
    assert scouting.split_beaters("") == []


def test_beats_matches_whole_normalized_names():
    assert scouting.beats("4-3 Over, 3 - 4", "3-4")
    assert not scouting.beats("4-3 Over", "4-3")
    assert not scouting.beats(None, "4-3")


def test_shape_report_tolerates_bad_json():
    report = scouting.shape_report({
        "team_id": "t1", "opponent_id": "o1",
        "fronts": "[not json", "coverages": '{"a": 1}', "blitzes": '["Mike Fire", {"notes": "x"}]',
        "fronts_pct": '{"3-4": "40", "4-3": null}', "coverages_pct": "[]",
        "overall_blitz_pct": "abc", "notes": None,
    })
    assert report["fronts"] == []
    assert report["coverages"] == []
    assert [b["name"] for b in report["blitzes"]] == ["Mike Fire"]
    assert report["fronts_pct"] == {"3-4": 40.0, "4-3": 0.0}
    assert report["coverages_pct"] == {}
    assert report["overall_blitz_pct"] == 0.0
    assert report["notes"] == ""


def test_shape_report_accepts_camel_case_options():
    report = scouting.shape_report({"fronts": [{"name": "3-4", "dominateDown": "1st", "fieldArea": "Red zone"}]})
    assert report["fronts"] == [{"name": "3-4", "dominate_down": "1st", "field_area": "Red zone", "notes": ""}]


def test_shape_report_of_nothing_is_empty():
    assert scouting.shape_report(None) == scouting.empty_report()


def test_clean_report_input_drops_umbrella_names():
    cleaned = scouting.clean_report_input({
        "fronts": [{"name": "Even"}, {"name": "3-4"}],
        "coverages": [{"name": "Cover 3"}, {"name": "Cover 3 Sky"}],
        "blitzes": [{"name": "safety"}, {"name": "Mike Fire"}],
        "fronts_pct": {"ODD": 30, "3-4": 70},
        "coverages_pct": {"cover 0": 10, "Cover 3 Sky": 90},
        "blitz_pct": {"Corner": 50, "Mike Fire": 50},
    })
    assert [f["name"] for f in cleaned["fronts"]] == ["3-4"]
    assert [c["name"] for c in cleaned["coverages"]] == ["Cover 3 Sky"]
    assert [b["name"] for b in cleaned["blitzes"]] == ["Mike Fire"]
    assert cleaned["fronts_pct"] == {"3-4": 70.0}
    assert cleaned["coverages_pct"] == {"Cover 3 Sky": 90.0}
    assert cleaned["blitz_pct"] == {"Mike Fire": 50.0}


def test_percentages_sorted_descending_then_by_name():
    report = {"fronts_pct": {"Tite": 20, "4-3": 40, "3-4": 40}, "coverages_pct": {"Quarters": 55}}
    assert scouting.front_percentages(report) == [("3-4", 40), ("4-3", 40), ("Tite", 20)]
    assert scouting.coverage_percentages(report) == [("Quarters", 55)]
    assert scouting.front_percentages({}) == []


def test_save_report_upserts_one_row_per_opponent(conn, team_id, opponent_id):
    assert scouting.get_report(conn, team_id, opponent_id) is None

    first = scouting.save_report(conn, team_id, opponent_id, {"fronts_pct": {"3-4": 100}, "notes": "Heavy"})
    assert first["fronts_pct"] == {"3-4": 100.0}
    second = scouting.save_report(conn, team_id, opponent_id, {"fronts_pct": {"4-3": 100}, "motion_percentage": 25})
    assert second["fronts_pct"] == {"4-3": 100.0}
    assert second["notes"] == ""
    assert second["motion_percentage"] == 25.0

    count = conn.execute("SELECT COUNT(*) FROM scouting_reports WHERE team_id = ?", (team_id,)).fetchone()[0]
    assert count == 1
    listed = scouting.list_reports(conn, team_id)
    assert [r["opponent_name"] for r in listed] == ["Central Tigers"]


# ── team delete cascade ──────────────────────────────────

def _populate(conn, team_id, opponent_id):
    scouting.save_report(conn, team_id, opponent_id, {"fronts_pct": {"3-4": 100}})
    conn.execute(
        "INSERT INTO terminology (id, team_id, category, concept, label) VALUES (?, ?, 'formations', 'trips', 'Rip')",
        (str(uuid.uuid4()), team_id),
    )
    conn.execute(
        "INSERT INTO playpool (id, team_id, opponent_id, category) VALUES (?, ?, ?, 'run_game')",
        (str(uuid.uuid4()), team_id, opponent_id),
    )
    conn.commit()


def _count(conn, table, team_id):
    return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE team_id = ?", (team_id,)).fetchone()[0]


def test_delete_team_cascade_removes_everything(conn, team_id, opponent_id):
    _populate(conn, team_id, opponent_id)
    counts = delete_team_cascade(conn, team_id)
    assert counts == {"terminology": 1, "opponents": 1, "scouting_reports": 1, "playpool": 1, "teams": 1}
    for table in ("terminology", "opponents", "scouting_reports", "playpool"):
        assert _count(conn, table, team_id) == 0
    assert conn.execute("SELECT COUNT(*) FROM teams WHERE id = ?", (team_id,)).fetchone()[0] == 0


def test_delete_team_cascade_reports_partial_progress(conn, team_id, opponent_id):
    _populate(conn, team_id, opponent_id)
    flaky = FailingConnection(conn, "DELETE FROM scouting_reports")
    ledger = StepLedger("delete_account", team_id=team_id)
    with pytest.raises(PartialOperationError) as exc:
        delete_team_cascade(flaky, team_id, ledger)
    assert exc.value.completed == ["delete terminology", "delete opponents"]
    assert exc.value.failed_step == "delete scouting_reports"
    assert "delete opponents" in str(exc.value)
    # earlier steps stay applied, later ones never ran
    assert _count(conn, "terminology", team_id) == 0
    assert _count(conn, "scouting_reports", team_id) == 1
    assert conn.execute("SELECT COUNT(*) FROM teams WHERE id = ?", (team_id,)).fetchone()[0] == 1


def test_delete_team_cascade_refuses_template_team(conn):
    with pytest.raises(ValueError):
        delete_team_cascade(conn, DEFAULT_TEAM_ID)
