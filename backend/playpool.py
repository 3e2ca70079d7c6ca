"""
Play pool — selection, regeneration and display rules.

A team's play pool is scoped to one opponent and split by category. Coaches
lock the plays they want to keep; regeneration throws away everything else in
the requested categories and draws fresh plays from the master pool until each
category is back at its target. Run plays are drawn in proportion to how often
the opponent shows each front, per the scouting report.

Everything here takes an explicit SessionContext (team, opponent,
preferences); nothing reads ambient state.
"""

import logging
import math
import random
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import scouting
import terminology
from operations import StepLedger
from scouting import ScoutingReportMissing

logger = logging.getLogger("playpool")

CATEGORIES = ["run_game", "rpo_game", "quick_game", "dropback_game", "shot_plays", "screen_game"]

CATEGORY_LABELS = {
    "run_game": "Run Game",
    "rpo_game": "RPO Game",
    "quick_game": "Quick Game",
    "dropback_game": "Dropback Game",
    "shot_plays": "Shot Plays",
    "screen_game": "Screen Game",
}

DEFAULT_PLAY_COUNT = 15
MAX_PLAYS_PER_CATEGORY = 20
MIN_PLAYS_PER_CATEGORY = {"rpo_game": 5}

# Order matters: this is the order a call is read out in the huddle.
DISPLAY_FIELDS = (
    "formation", "tag", "strength", "motion_shift", "concept",
    "run_concept", "run_direction", "pass_screen_concept", "screen_direction",
)
BEATER_FIELDS = ("front_beaters", "coverage_beaters", "blitz_beaters")
EDITABLE_FIELDS = DISPLAY_FIELDS + BEATER_FIELDS + ("customized_edit", "notes")
FLAG_FIELDS = ("is_enabled", "is_locked", "is_favorite")


class StaleVersionError(Exception):
    """Write attempted against a play row that changed since it was read."""

    def __init__(self, play_id: str, expected: int, current: int):
        self.play_id = play_id
        self.expected = expected
        self.current = current
        super().__init__(f"Play {play_id} is at version {current}, not {expected}")


@dataclass
class SessionContext:
    """Who is asking and about which opponent, plus their saved preferences."""

    team_id: str
    opponent_id: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def play_counts(self) -> Dict[str, int]:
        return clamp_play_counts(self.preferences.get("play_counts"))


def clamp_play_counts(counts: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
    """Per-category targets, defaulted and clamped to [min, 20]."""
    counts = counts or {}
    result = {}
    for cat in CATEGORIES:
        raw = counts.get(cat, DEFAULT_PLAY_COUNT)
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = DEFAULT_PLAY_COUNT
        low = MIN_PLAYS_PER_CATEGORY.get(cat, 0)
        result[cat] = max(low, min(MAX_PLAYS_PER_CATEGORY, value))
    return result


# ============================================================
# DISPLAY
# ============================================================

def _field(play: Any, name: str) -> str:
    try:
        value = play[name]
    except (KeyError, IndexError, TypeError):
        return ""
    if value is None:
        return ""
    return str(value).strip()


def _flag(play: Any, name: str) -> bool:
    try:
        return bool(play[name])
    except (KeyError, IndexError, TypeError):
        return False


def format_play(play: Any) -> str:
    """The call as the coach reads it. A custom edit wins over the built call."""
    custom = _field(play, "customized_edit")
    if custom:
        return custom
    return " ".join(part for part in (_field(play, f) for f in DISPLAY_FIELDS) if part)


def active_plays(rows: List[Any], cap: int = MAX_PLAYS_PER_CATEGORY) -> Tuple[List[Any], int]:
    """Locked rows first, then unlocked rows in stored order up to `cap`.

    Returns (shown, hidden_count). Locked rows are always shown, even past
    the cap; only unlocked overflow is hidden.
    """
    locked = [r for r in rows if _flag(r, "is_locked")]
    unlocked = [r for r in rows if not _flag(r, "is_locked")]
    room = max(0, cap - len(locked))
    shown = locked + unlocked[:room]
    return shown, len(rows) - len(shown)


# ============================================================
# SELECTION
# ============================================================

def front_quotas(needed: int, fronts_pct: Any, cap: bool = True) -> Dict[str, int]:
    """How many replacement run plays to draw per front.

    Each front gets ceil(needed * pct / 100). Rounding up on every front can
    ask for more than `needed`; with cap=True the excess comes off one play
    at a time, most used fronts first, so the quotas sum to at most `needed`.
    """
    items = fronts_pct.items() if isinstance(fronts_pct, dict) else fronts_pct
    ordered = sorted(((str(n), float(p)) for n, p in items if p and float(p) > 0),
                     key=lambda kv: (-kv[1], kv[0]))
    quotas = {name: math.ceil(round(needed * pct / 100, 6)) for name, pct in ordered}
    if cap:
        overflow = sum(quotas.values()) - max(needed, 0)
        while overflow > 0:
            for name, _ in ordered:
                if overflow <= 0:
                    break
                if quotas[name] > 0:
                    quotas[name] -= 1
                    overflow -= 1
    return quotas


@dataclass
class Selection:
    plays: List[dict] = field(default_factory=list)
    by_front: Dict[str, int] = field(default_factory=dict)
    filler: int = 0


def select_replacements(
    category: str,
    needed: int,
    templates: Iterable[dict],
    report: Optional[dict],
    rng: random.Random,
    exclude_ids: Iterable[str] = (),
) -> Selection:
    """Draw up to `needed` distinct templates of one category."""
    excluded = set(exclude_ids)
    pool = [t for t in templates if t.get("category") == category and t.get("id") not in excluded]
    selection = Selection()
    if needed <= 0 or not pool:
        return selection

    taken = set()
    if category == "run_game" and report:
        for front, quota in front_quotas(needed, report.get("fronts_pct") or {}).items():
            room = needed - len(selection.plays)
            if room <= 0:
                break
            beaters = [t for t in pool if t["id"] not in taken and scouting.beats(t.get("front_beaters"), front)]
            picks = rng.sample(beaters, min(quota, len(beaters), room))
            for t in picks:
                taken.add(t["id"])
                selection.plays.append(dict(t, _drawn_for=front))
            selection.by_front[front] = len(picks)

    rest = [t for t in pool if t["id"] not in taken]
    fill = rng.sample(rest, min(needed - len(selection.plays), len(rest)))
    selection.plays.extend(dict(t, _drawn_for=None) for t in fill)
    selection.filler = len(fill)
    return selection


@dataclass
class RegenerationPlan:
    targets: Dict[str, int]
    kept_locked: Dict[str, List[dict]] = field(default_factory=dict)
    delete_ids: List[str] = field(default_factory=list)
    selections: Dict[str, Selection] = field(default_factory=dict)
    shortfall: Dict[str, int] = field(default_factory=dict)

    @property
    def inserts(self) -> List[dict]:
        return [p for cat in self.targets for p in self.selections.get(cat, Selection()).plays]


def plan_regeneration(
    targets: Dict[str, int],
    existing_rows: Iterable[Any],
    templates: List[dict],
    report: Optional[dict],
    rng: random.Random,
) -> RegenerationPlan:
    """Decide what to keep, delete and draw. No I/O."""
    rows = [dict(r) for r in existing_rows]
    plan = RegenerationPlan(targets=dict(targets))
    for cat, target in targets.items():
        in_cat = [r for r in rows if r.get("category") == cat]
        locked = [r for r in in_cat if r.get("is_locked")]
        plan.kept_locked[cat] = locked
        plan.delete_ids.extend(r["id"] for r in in_cat if not r.get("is_locked"))

        needed = max(0, target - len(locked))
        locked_templates = {r.get("play_id") for r in locked if r.get("play_id")}
        selection = select_replacements(cat, needed, templates, report, rng, locked_templates)
        plan.selections[cat] = selection
        if len(selection.plays) < needed:
            plan.shortfall[cat] = needed - len(selection.plays)
            logger.warning("Master pool short for %s: wanted %d, drew %d",
                           cat, needed, len(selection.plays))
    return plan


# ============================================================
# STORAGE
# ============================================================

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def list_pool_rows(conn: sqlite3.Connection, team_id: str, opponent_id: str, category: Optional[str] = None) -> List[dict]:
    sql = "SELECT * FROM playpool WHERE team_id = ? AND opponent_id = ?"
    params: list = [team_id, opponent_id]
    if category:
        sql += " AND category = ?"
        params.append(category)
    sql += " ORDER BY category, sort_order, created_at"
    return [dict(r) for r in conn.execute(sql, params).fetchall()]


def pool_view(conn: sqlite3.Connection, ctx: SessionContext) -> Dict[str, dict]:
    """Active view per category: visible rows (with formatted calls) and hidden count."""
    rows = list_pool_rows(conn, ctx.team_id, ctx.opponent_id)
    view = {}
    for cat in CATEGORIES:
        shown, hidden = active_plays([r for r in rows if r["category"] == cat])
        view[cat] = {
            "label": CATEGORY_LABELS[cat],
            "plays": [dict(r, call=format_play(r)) for r in shown],
            "hidden_count": hidden,
        }
    return view


def _row_for_insert(play: dict, ctx: SessionContext, order: int, now: str) -> tuple:
    drawn_for = play.get("_drawn_for")
    note = f"Selected vs {drawn_for}" if drawn_for else "Selected to fill the category"
    return (
        str(uuid.uuid4()), ctx.team_id, ctx.opponent_id, play.get("id"), play["category"],
        *(play.get(f) or "" for f in DISPLAY_FIELDS),
        *(play.get(f) or "" for f in BEATER_FIELDS),
        note, order, now, now,
    )


_INSERT_SQL = f"""
    INSERT INTO playpool (id, team_id, opponent_id, play_id, category,
        {", ".join(DISPLAY_FIELDS)}, {", ".join(BEATER_FIELDS)},
        notes, sort_order, created_at, updated_at, is_enabled, is_locked, is_favorite, version)
    VALUES ({", ".join("?" * (5 + len(DISPLAY_FIELDS) + len(BEATER_FIELDS) + 4))}, 1, 0, 0, 1)
"""


def regenerate_play_pool(
    conn: sqlite3.Connection,
    ctx: SessionContext,
    targets: Optional[Dict[str, Any]] = None,
    rng: Optional[random.Random] = None,
) -> dict:
    """Rebuild the pool for ctx's opponent, keeping locked plays.

    Unlocked rows in the requested categories are deleted for good; there is
    no undo.
    """
    if not ctx.opponent_id:
        raise ValueError("No opponent selected")
    report = scouting.get_report(conn, ctx.team_id, ctx.opponent_id)
    if report is None:
        raise ScoutingReportMissing(ctx.team_id, ctx.opponent_id)

    clamped = clamp_play_counts(targets if targets is not None else ctx.preferences.get("play_counts"))
    if targets is not None:
        clamped = {cat: n for cat, n in clamped.items() if cat in targets}
    rng = rng or random.Random()

    existing = list_pool_rows(conn, ctx.team_id, ctx.opponent_id)
    templates = [dict(r) for r in conn.execute("SELECT * FROM master_play_pool ORDER BY id").fetchall()]
    plan = plan_regeneration(clamped, existing, templates, report, rng)

    maps = terminology.build_label_map(
        terminology.get_default_terminology(conn),
        terminology.get_team_terminology(conn, ctx.team_id),
    )
    now = _now()
    next_order = max((r.get("sort_order") or 0 for r in existing), default=0) + 1
    insert_rows = [
        _row_for_insert(terminology.translate_template(p, maps), ctx, next_order + i, now)
        for i, p in enumerate(plan.inserts)
    ]

    ledger = StepLedger("regenerate_play_pool", team_id=ctx.team_id, opponent_id=ctx.opponent_id)

    def delete_unlocked():
        if plan.delete_ids:
            marks = ", ".join("?" * len(plan.delete_ids))
            conn.execute(f"DELETE FROM playpool WHERE is_locked = 0 AND id IN ({marks})", plan.delete_ids)
        conn.commit()

    def insert_new():
        conn.executemany(_INSERT_SQL, insert_rows)
        conn.commit()

    ledger.run("delete unlocked plays", delete_unlocked)
    ledger.run("insert replacement plays", insert_new)

    kept = {cat: len(rows) for cat, rows in plan.kept_locked.items()}
    inserted = {cat: len(sel.plays) for cat, sel in plan.selections.items()}
    fronts = scouting.front_percentages(report)
    analysis = (
        "Successfully rebuilt playpool:\n"
        f"- Kept {sum(kept.values())} locked plays\n"
        f"- Drew {sum(inserted.values())} new plays from the master pool\n"
        f"- Run plays weighted by fronts: {', '.join(f'{n} ({p:g}%)' for n, p in fronts) or 'none'}"
    )
    if plan.shortfall:
        analysis += "\n- Under-filled: " + ", ".join(f"{c} (-{n})" for c, n in plan.shortfall.items())
    logger.info("Regenerated play pool team=%s opponent=%s kept=%s inserted=%s",
                ctx.team_id, ctx.opponent_id, kept, inserted)
    return {
        "targets": clamped,
        "kept_locked": kept,
        "inserted": inserted,
        "run_by_front": plan.selections.get("run_game", Selection()).by_front,
        "shortfall": plan.shortfall,
        "analysis": analysis,
    }


def get_play(conn: sqlite3.Connection, team_id: str, play_id: str) -> Optional[dict]:
    row = conn.execute("SELECT * FROM playpool WHERE id = ? AND team_id = ?", (play_id, team_id)).fetchone()
    return dict(row) if row else None


def update_play(
    conn: sqlite3.Connection,
    team_id: str,
    play_id: str,
    updates: Dict[str, Any],
    expected_version: Optional[int] = None,
) -> Optional[dict]:
    """Apply field/flag updates. Returns None when the play doesn't exist.

    With expected_version the write only lands if the row is still at that
    version; otherwise the last writer wins.
    """
    allowed = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS + FLAG_FIELDS}
    for flag in FLAG_FIELDS:
        if flag in allowed:
            allowed[flag] = 1 if allowed[flag] else 0
    current = get_play(conn, team_id, play_id)
    if not current:
        return None

    set_clauses = [f"{k} = ?" for k in allowed] + ["version = version + 1", "updated_at = ?"]
    params = list(allowed.values()) + [_now(), play_id, team_id]
    sql = f"UPDATE playpool SET {', '.join(set_clauses)} WHERE id = ? AND team_id = ?"
    if expected_version is not None:
        sql += " AND version = ?"
        params.append(expected_version)
    cur = conn.execute(sql, params)
    conn.commit()
    if cur.rowcount == 0:
        latest = get_play(conn, team_id, play_id)
        if latest is None:
            return None
        raise StaleVersionError(play_id, expected_version, latest["version"])
    return get_play(conn, team_id, play_id)


def toggle_flag(conn: sqlite3.Connection, team_id: str, play_id: str, flag: str,
                expected_version: Optional[int] = None) -> Optional[dict]:
    if flag not in FLAG_FIELDS:
        raise ValueError(f"Unknown flag: {flag}")
    current = get_play(conn, team_id, play_id)
    if not current:
        return None
    version = current["version"] if expected_version is None else expected_version
    return update_play(conn, team_id, play_id, {flag: not current[flag]}, expected_version=version)


def delete_play(conn: sqlite3.Connection, team_id: str, play_id: str) -> bool:
    cur = conn.execute("DELETE FROM playpool WHERE id = ? AND team_id = ?", (play_id, team_id))
    conn.commit()
    return cur.rowcount > 0


def calls_by_category(conn: sqlite3.Connection, ctx: SessionContext, enabled_only: bool = True) -> Dict[str, List[str]]:
    """Formatted calls from the active view, for prompts."""
    result = {}
    for cat, section in pool_view(conn, ctx).items():
        plays = section["plays"]
        if enabled_only:
            plays = [p for p in plays if p.get("is_enabled")]
        result[cat] = [p["call"] for p in plays if p["call"]]
    return result
