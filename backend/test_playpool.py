"""Play pool selection, display and regeneration."""

import random

import pytest

import playpool
import scouting
import terminology
from playpool import (
    SessionContext,
    StaleVersionError,
    active_plays,
    clamp_play_counts,
    format_play,
    front_quotas,
    plan_regeneration,
    select_replacements,
)
from scouting import ScoutingReportMissing


def _template(pid, category="run_game", fronts="", concept="Inside Zone"):
    return {"id": pid, "category": category, "formation": "Doubles", "concept": concept, "front_beaters": fronts}


def _run_templates():
    vs_34 = [_template(f"a{i}", fronts="3-4, Bear") for i in range(10)]
    vs_43 = [_template(f"b{i}", fronts="4-3") for i in range(10)]
    neither = [_template(f"c{i}", fronts="Tite") for i in range(5)]
    return vs_34 + vs_43 + neither


REPORT = {"fronts_pct": {"3-4": 40, "4-3": 60}}


# ── format_play ──────────────────────────────────────────

def test_format_play_joins_fields_in_call_order():
    play = {
        "formation": "Trips", "tag": "Tight", "strength": "Right", "motion_shift": "Jet",
        "concept": "Mesh", "run_concept": None, "run_direction": "", "pass_screen_concept": "  ",
        "screen_direction": "Left",
    }
    assert format_play(play) == "Trips Tight Right Jet Mesh Left"


def test_format_play_custom_edit_wins():
    assert format_play({"formation": "Trips", "concept": "Mesh", "customized_edit": "Bang 8 Special"}) == "Bang 8 Special"


def test_format_play_blank_custom_edit_falls_back():
    assert format_play({"formation": "Ace", "concept": "Power", "customized_edit": "   "}) == "Ace Power"


def test_format_play_is_total():
    assert format_play({}) == ""
    assert format_play(None) == ""
    assert format_play({"formation": 12}) == "12"


# ── active_plays ─────────────────────────────────────────

def test_active_plays_puts_locked_first_and_caps_unlocked():
    rows = [{"id": f"u{i}", "is_locked": 0} for i in range(25)]
    rows.insert(5, {"id": "L1", "is_locked": 1})
    rows.append({"id": "L2", "is_locked": 1})
    shown, hidden = active_plays(rows, cap=20)
    assert [r["id"] for r in shown[:2]] == ["L1", "L2"]
    assert [r["id"] for r in shown[2:]] == [f"u{i}" for i in range(18)]
    assert hidden == 7


def test_active_plays_never_hides_locked_rows():
    rows = [{"id": f"L{i}", "is_locked": 1} for i in range(22)] + [{"id": "u0", "is_locked": 0}]
    shown, hidden = active_plays(rows, cap=20)
    assert len(shown) == 22
    assert all(r["is_locked"] for r in shown)
    assert hidden == 1


# ── play counts ──────────────────────────────────────────

def test_clamp_play_counts_defaults_and_bounds():
    counts = clamp_play_counts({"run_game": 40, "rpo_game": 2, "quick_game": -3, "shot_plays": "junk"})
    assert counts["run_game"] == 20
    assert counts["rpo_game"] == 5
    assert counts["quick_game"] == 0
    assert counts["shot_plays"] == 15
    assert counts["screen_game"] == 15
    assert set(counts) == set(playpool.CATEGORIES)


def test_session_context_play_counts_reads_preferences():
    ctx = SessionContext(team_id="t", preferences={"play_counts": {"run_game": 8}})
    assert ctx.play_counts()["run_game"] == 8
    assert ctx.play_counts()["dropback_game"] == 15


# ── front quotas ─────────────────────────────────────────

def test_front_quotas_weighted_by_percentage():
    # ceil gives 8 + 5 = 13; the extra play comes off the 60% front
    assert front_quotas(12, {"3-4": 40, "4-3": 60}) == {"4-3": 7, "3-4": 5}


def test_front_quotas_caps_rounding_overflow():
    raw = front_quotas(10, {"A": 33, "B": 33, "C": 34}, cap=False)
    assert raw == {"C": 4, "A": 4, "B": 4}
    capped = front_quotas(10, {"A": 33, "B": 33, "C": 34})
    assert sum(capped.values()) == 10
    assert capped == {"C": 3, "A": 3, "B": 4}


def test_front_quotas_skips_zero_fronts():
    assert front_quotas(10, {"3-4": 0, "4-3": 100}) == {"4-3": 10}
    assert front_quotas(10, {}) == {}


# ── selection ────────────────────────────────────────────

def test_select_replacements_weights_run_game_by_front():
    sel = select_replacements("run_game", 12, _run_templates(), REPORT, random.Random(3))
    assert len(sel.plays) == 12
    assert sel.by_front == {"4-3": 7, "3-4": 5}
    assert sel.filler == 0
    drawn_43 = [p for p in sel.plays if p["_drawn_for"] == "4-3"]
    assert all(p["id"].startswith("b") for p in drawn_43)
    assert len({p["id"] for p in sel.plays}) == 12


def test_select_replacements_tops_up_when_beaters_run_out():
    templates = [_template("a0", fronts="3-4"), _template("a1", fronts="3-4")] + \
        [_template(f"c{i}", fronts="Tite") for i in range(10)]
    sel = select_replacements("run_game", 10, templates, {"fronts_pct": {"3-4": 100}}, random.Random(1))
    assert len(sel.plays) == 10
    assert sel.by_front == {"3-4": 2}
    assert sel.filler == 8


def test_select_replacements_other_categories_ignore_fronts():
    templates = [_template(f"q{i}", category="quick_game") for i in range(8)] + _run_templates()
    sel = select_replacements("quick_game", 5, templates, REPORT, random.Random(2))
    assert len(sel.plays) == 5
    assert all(p["category"] == "quick_game" for p in sel.plays)
    assert sel.by_front == {}


def test_select_replacements_excludes_ids_and_never_exceeds_needed():
    templates = [_template(f"q{i}", category="quick_game") for i in range(4)]
    sel = select_replacements("quick_game", 10, templates, None, random.Random(2), exclude_ids={"q0"})
    assert sorted(p["id"] for p in sel.plays) == ["q1", "q2", "q3"]


# ── regeneration planning ────────────────────────────────

def test_plan_regeneration_keeps_locked_and_fills_to_target():
    existing = [
        {"id": f"L{i}", "category": "run_game", "play_id": f"b{i}", "is_locked": 1} for i in range(3)
    ] + [
        {"id": f"U{i}", "category": "run_game", "play_id": f"a{i}", "is_locked": 0} for i in range(6)
    ]
    plan = plan_regeneration({"run_game": 15}, existing, _run_templates(), REPORT, random.Random(9))
    sel = plan.selections["run_game"]
    assert [r["id"] for r in plan.kept_locked["run_game"]] == ["L0", "L1", "L2"]
    assert sorted(plan.delete_ids) == [f"U{i}" for i in range(6)]
    assert len(sel.plays) == 12
    assert sel.by_front == {"4-3": 7, "3-4": 5}
    assert not {"b0", "b1", "b2"} & {p["id"] for p in sel.plays}
    assert len(plan.kept_locked["run_game"]) + len(plan.inserts) == 15
    assert plan.shortfall == {}


def test_plan_regeneration_discards_unlocked_even_when_locked_cover_target():
    existing = [{"id": f"L{i}", "category": "quick_game", "is_locked": 1} for i in range(6)] + \
        [{"id": "U0", "category": "quick_game", "is_locked": 0}]
    plan = plan_regeneration({"quick_game": 5}, existing, [], None, random.Random(0))
    assert plan.delete_ids == ["U0"]
    assert plan.inserts == []


def test_plan_regeneration_records_shortfall():
    templates = [_template(f"s{i}", category="screen_game") for i in range(3)]
    plan = plan_regeneration({"screen_game": 10}, [], templates, None, random.Random(0))
    assert len(plan.inserts) == 3
    assert plan.shortfall == {"screen_game": 7}


def test_plan_regeneration_only_touches_requested_categories():
    existing = [{"id": "U0", "category": "shot_plays", "is_locked": 0}]
    plan = plan_regeneration({"run_game": 2}, existing, _run_templates(), REPORT, random.Random(0))
    assert plan.delete_ids == []


# ── storage ──────────────────────────────────────────────

def _save_report(conn, ctx):
    return scouting.save_report(conn, ctx.team_id, ctx.opponent_id, {
        "fronts": [{"name": "3-4"}, {"name": "4-3"}],
        "fronts_pct": {"3-4": 40, "4-3": 60},
        "coverages_pct": {"Cover 3 Sky": 70},
    })


def test_regenerate_requires_scouting_report(conn, ctx):
    with pytest.raises(ScoutingReportMissing):
        playpool.regenerate_play_pool(conn, ctx)


def test_regenerate_requires_opponent(conn, team_id):
    with pytest.raises(ValueError):
        playpool.regenerate_play_pool(conn, SessionContext(team_id=team_id))


def test_regenerate_fills_every_category_from_master_pool(conn, ctx):
    _save_report(conn, ctx)
    summary = playpool.regenerate_play_pool(conn, ctx, rng=random.Random(11))
    assert summary["inserted"] == {cat: 15 for cat in playpool.CATEGORIES}
    assert summary["shortfall"] == {}
    assert summary["analysis"].startswith("Successfully rebuilt playpool")

    rows = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)
    assert len(rows) == 15 * len(playpool.CATEGORIES)
    for row in rows:
        assert row["is_enabled"] == 1 and row["is_locked"] == 0 and row["version"] == 1
        assert row["team_id"] == ctx.team_id and row["opponent_id"] == ctx.opponent_id
        assert row["play_id"]


def test_regenerate_preserves_locked_rows(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, rng=random.Random(1))
    run_rows = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id, "run_game")
    locked_ids = [r["id"] for r in run_rows[:3]]
    for pid in locked_ids:
        playpool.toggle_flag(conn, ctx.team_id, pid, "is_locked")
    old_unlocked = {r["id"] for r in run_rows[3:]}

    summary = playpool.regenerate_play_pool(conn, ctx, {"run_game": 15}, rng=random.Random(2))
    assert summary["kept_locked"] == {"run_game": 3}
    assert summary["inserted"] == {"run_game": 12}

    after = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id, "run_game")
    after_ids = {r["id"] for r in after}
    assert set(locked_ids) <= after_ids
    assert not old_unlocked & after_ids
    assert len(after) == 15
    # other categories untouched by a run-only rebuild
    assert len(playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id, "quick_game")) == 15


def test_regenerate_uses_team_terminology(conn, ctx):
    _save_report(conn, ctx)
    terminology.save_category(conn, ctx.team_id, "run_game", [{"concept": "inside_zone", "label": "Tiger"}])
    playpool.regenerate_play_pool(conn, ctx, {"run_game": 20, "rpo_game": 20}, rng=random.Random(5))
    concepts = {r["concept"] for r in playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)}
    assert "Inside Zone" not in concepts


def test_pool_view_formats_calls(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, {"screen_game": 4}, rng=random.Random(4))
    view = playpool.pool_view(conn, ctx)
    assert view["screen_game"]["label"] == "Screen Game"
    assert len(view["screen_game"]["plays"]) == 4
    assert all(p["call"] for p in view["screen_game"]["plays"])
    assert view["run_game"]["plays"] == []


def test_update_play_bumps_version_and_detects_conflicts(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, {"quick_game": 1}, rng=random.Random(4))
    play = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)[0]

    updated = playpool.update_play(conn, ctx.team_id, play["id"], {"customized_edit": "Bunch Snag Hot"}, 1)
    assert updated["version"] == 2
    assert format_play(updated) == "Bunch Snag Hot"

    with pytest.raises(StaleVersionError) as exc:
        playpool.update_play(conn, ctx.team_id, play["id"], {"notes": "late edit"}, expected_version=1)
    assert exc.value.current == 2

    # no expected version: last write wins
    assert playpool.update_play(conn, ctx.team_id, play["id"], {"notes": "late edit"})["version"] == 3


def test_update_play_ignores_unknown_fields_and_missing_rows(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, {"quick_game": 1}, rng=random.Random(4))
    play = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)[0]
    updated = playpool.update_play(conn, ctx.team_id, play["id"], {"team_id": "someone-else", "is_favorite": True})
    assert updated["team_id"] == ctx.team_id
    assert updated["is_favorite"] == 1
    assert playpool.update_play(conn, ctx.team_id, "missing", {"notes": "x"}) is None


def test_toggle_and_delete(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, {"shot_plays": 2}, rng=random.Random(4))
    play = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)[0]
    assert playpool.toggle_flag(conn, ctx.team_id, play["id"], "is_enabled")["is_enabled"] == 0
    with pytest.raises(ValueError):
        playpool.toggle_flag(conn, ctx.team_id, play["id"], "is_secret")
    assert playpool.delete_play(conn, ctx.team_id, play["id"]) is True
    assert playpool.delete_play(conn, ctx.team_id, play["id"]) is False


def test_calls_by_category_skips_disabled(conn, ctx):
    _save_report(conn, ctx)
    playpool.regenerate_play_pool(conn, ctx, {"dropback_game": 3}, rng=random.Random(4))
    rows = playpool.list_pool_rows(conn, ctx.team_id, ctx.opponent_id)
    playpool.toggle_flag(conn, ctx.team_id, rows[0]["id"], "is_enabled")
    calls = playpool.calls_by_category(conn, ctx)
    assert len(calls["dropback_game"]) == 2
    assert len(playpool.calls_by_category(conn, ctx, enabled_only=False)["dropback_game"]) == 3
