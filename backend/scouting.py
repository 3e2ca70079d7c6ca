"""
Scouting reports: storage and shaping.

One report per (team, opponent). Lists of named fronts/coverages/blitzes and
name -> percentage maps are stored as JSON text; everything read back goes
through shape_report so callers always see the same structure, whatever was
stored.
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("scouting")

# Umbrella labels the scouting page offers but that never match a beater.
EXCLUDED_FRONTS = {"even", "odd"}
EXCLUDED_COVERAGES = {"cover 0", "cover 1", "cover 2", "cover 3", "cover 4"}
EXCLUDED_BLITZES = {"inside", "outside", "corner", "safety"}

LIST_FIELDS = ("fronts", "coverages", "blitzes")
PCT_FIELDS = ("fronts_pct", "coverages_pct", "blitz_pct")


class ScoutingReportMissing(Exception):
    """No scouting report exists for the requested team/opponent pair."""

    def __init__(self, team_id: str, opponent_id: str):
        self.team_id = team_id
        self.opponent_id = opponent_id
        super().__init__(f"No scouting report for team {team_id} vs opponent {opponent_id}")


def normalize_name(name: Optional[str]) -> str:
    """Lowercase and drop whitespace; keeps + and - so '3-4 Split +' stays distinct."""
    if not name:
        return ""
    return "".join(str(name).lower().split())


def split_beaters(text: Optional[str]) -> List[str]:
    if not text:
        return []
    if isinstance(text, (list, tuple)):
        items = text
    else:
        items = str(text).split(",")
    return [str(b).strip() for b in items if str(b).strip()]


def beats(beater_text: Optional[str], defense_name: str) -> bool:
    target = normalize_name(defense_name)
    return any(normalize_name(b) == target for b in split_beaters(beater_text))


def _to_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _decode(value: Any, expected: type):
    if isinstance(value, (str, bytes)):
        try:
            value = json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return expected()
    return value if isinstance(value, expected) else expected()


def _shape_option(item: Any) -> Optional[dict]:
    if isinstance(item, str):
        item = {"name": item}
    if not isinstance(item, dict) or not str(item.get("name") or "").strip():
        return None
    return {
        "name": str(item["name"]).strip(),
        "dominate_down": item.get("dominate_down") or item.get("dominateDown") or "",
        "field_area": item.get("field_area") or item.get("fieldArea") or "",
        "notes": item.get("notes") or "",
    }


def empty_report(team_id: str = "", opponent_id: str = "") -> dict:
    return {
        "team_id": team_id,
        "opponent_id": opponent_id,
        "fronts": [],
        "coverages": [],
        "blitzes": [],
        "fronts_pct": {},
        "coverages_pct": {},
        "blitz_pct": {},
        "overall_blitz_pct": 0.0,
        "motion_percentage": 0.0,
        "notes": "",
        "updated_at": None,
    }


def shape_report(row: Any) -> dict:
    """Turn a stored row (or any dict-like) into the canonical report dict.

    Malformed JSON columns decode to empty collections instead of raising.
    """
    d = dict(row) if row is not None else {}
    report = empty_report(d.get("team_id") or "", d.get("opponent_id") or "")
    for field in LIST_FIELDS:
        items = _decode(d.get(field), list)
        report[field] = [opt for opt in (_shape_option(i) for i in items) if opt]
    for field in PCT_FIELDS:
        raw = _decode(d.get(field), dict)
        report[field] = {str(k): _to_number(v) for k, v in raw.items()}
    report["overall_blitz_pct"] = _to_number(d.get("overall_blitz_pct"))
    report["motion_percentage"] = _to_number(d.get("motion_percentage"))
    report["notes"] = d.get("notes") if isinstance(d.get("notes"), str) else ""
    report["updated_at"] = d.get("updated_at")
    return report


def clean_report_input(report: dict) -> dict:
    """Strip umbrella names from option lists and percentage maps before saving."""
    cleaned = shape_report(report)
    rules = (
        ("fronts", "fronts_pct", EXCLUDED_FRONTS),
        ("coverages", "coverages_pct", EXCLUDED_COVERAGES),
        ("blitzes", "blitz_pct", EXCLUDED_BLITZES),
    )
    for list_field, pct_field, excluded in rules:
        cleaned[list_field] = [o for o in cleaned[list_field] if o["name"].lower() not in excluded]
        cleaned[pct_field] = {k: v for k, v in cleaned[pct_field].items() if k.lower() not in excluded}
    return cleaned


def _sorted_pct(pct: Dict[str, float]) -> List[Tuple[str, float]]:
    return sorted(pct.items(), key=lambda kv: (-kv[1], kv[0]))


def front_percentages(report: dict) -> List[Tuple[str, float]]:
    return _sorted_pct(report.get("fronts_pct") or {})


def coverage_percentages(report: dict) -> List[Tuple[str, float]]:
    return _sorted_pct(report.get("coverages_pct") or {})


# ============================================================
# STORAGE
# ============================================================

def get_report(conn: sqlite3.Connection, team_id: str, opponent_id: str) -> Optional[dict]:
    row = conn.execute(
        "SELECT * FROM scouting_reports WHERE team_id = ? AND opponent_id = ?",
        (team_id, opponent_id),
    ).fetchone()
    return shape_report(row) if row else None


def list_reports(conn: sqlite3.Connection, team_id: str) -> List[dict]:
    rows = conn.execute("""
        SELECT sr.*, o.name AS opponent_name
        FROM scouting_reports sr
        LEFT JOIN opponents o ON o.id = sr.opponent_id
        WHERE sr.team_id = ?
        ORDER BY sr.updated_at DESC
    """, (team_id,)).fetchall()
    results = []
    for r in rows:
        report = shape_report(r)
        report["opponent_name"] = r["opponent_name"]
        results.append(report)
    return results


def save_report(conn: sqlite3.Connection, team_id: str, opponent_id: str, report: dict) -> dict:
    """Insert or replace the report for (team, opponent)."""
    cleaned = clean_report_input({**report, "team_id": team_id, "opponent_id": opponent_id})
    now = datetime.now(timezone.utc).isoformat()
    existing = conn.execute(
        "SELECT id FROM scouting_reports WHERE team_id = ? AND opponent_id = ?",
        (team_id, opponent_id),
    ).fetchone()
    values = (
        json.dumps(cleaned["fronts"]), json.dumps(cleaned["coverages"]), json.dumps(cleaned["blitzes"]),
        json.dumps(cleaned["fronts_pct"]), json.dumps(cleaned["coverages_pct"]), json.dumps(cleaned["blitz_pct"]),
        cleaned["overall_blitz_pct"], cleaned["motion_percentage"], cleaned["notes"], now,
    )
    if existing:
        conn.execute("""
            UPDATE scouting_reports SET fronts = ?, coverages = ?, blitzes = ?, fronts_pct = ?,
                coverages_pct = ?, blitz_pct = ?, overall_blitz_pct = ?, motion_percentage = ?,
                notes = ?, updated_at = ?
            WHERE id = ?
        """, values + (existing["id"],))
    else:
        conn.execute("""
            INSERT INTO scouting_reports (fronts, coverages, blitzes, fronts_pct, coverages_pct, blitz_pct,
                overall_blitz_pct, motion_percentage, notes, updated_at, id, team_id, opponent_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, values + (str(uuid.uuid4()), team_id, opponent_id))
    conn.commit()
    logger.info(
        "Saved scouting report team=%s opponent=%s (%d fronts, %d coverages, %d blitzes)",
        team_id, opponent_id, len(cleaned["fronts"]), len(cleaned["coverages"]), len(cleaned["blitzes"]),
    )
    return get_report(conn, team_id, opponent_id)
