"""
Team terminology: the labels a team uses for shared play concepts.

The default team owns the full library. A team's rows for a category are a
subset of the default team's concepts, each with its own label. Saving a
category copies the selected concepts from the default team, overlays the
team's labels and replaces whatever the team had before. Restoring deletes
the team's rows so reads fall back to the library.
"""

import logging
import sqlite3
import uuid
from typing import Dict, Iterable, List, Optional

from operations import DEFAULT_TEAM_ID, StepLedger

logger = logging.getLogger("terminology")

CATEGORIES = [
    "formations", "form_tags", "motions", "pass_protections", "concept_tags", "rpo_tag",
    "run_game", "quick_game", "dropback_game", "shot_plays", "screen_game",
]

# Play field -> terminology category, for fields whose vocabulary doesn't
# depend on the play's category.
FIELD_CATEGORIES = {
    "formation": "formations",
    "tag": "form_tags",
    "motion_shift": "motions",
    "run_concept": "run_game",
    "pass_screen_concept": "screen_game",
}

# Play category -> terminology category for the play's `concept` field.
# RPOs are run plays with a tag, so they read the run game vocabulary.
CONCEPT_CATEGORIES = {
    "run_game": "run_game",
    "rpo_game": "run_game",
    "quick_game": "quick_game",
    "dropback_game": "dropback_game",
    "shot_plays": "shot_plays",
    "screen_game": "screen_game",
}


class TerminologyError(ValueError):
    pass


def _rows(conn: sqlite3.Connection, team_id: str, category: Optional[str] = None) -> List[dict]:
    if category:
        rows = conn.execute(
            "SELECT * FROM terminology WHERE team_id = ? AND category = ? ORDER BY concept",
            (team_id, category),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM terminology WHERE team_id = ? ORDER BY category, concept",
            (team_id,),
        ).fetchall()
    return [dict(r) for r in rows]


def get_default_terminology(conn: sqlite3.Connection, category: Optional[str] = None) -> List[dict]:
    return _rows(conn, DEFAULT_TEAM_ID, category)


def get_team_terminology(conn: sqlite3.Connection, team_id: str, category: Optional[str] = None) -> List[dict]:
    """Team rows, falling back to the library for any category the team hasn't customized."""
    own = _rows(conn, team_id, category)
    for r in own:
        r["is_default"] = team_id == DEFAULT_TEAM_ID
    if team_id == DEFAULT_TEAM_ID:
        return own

    covered = {r["category"] for r in own}
    wanted = [category] if category else CATEGORIES
    fallback = []
    for cat in wanted:
        if cat in covered:
            continue
        for r in get_default_terminology(conn, cat):
            r["is_default"] = True
            fallback.append(r)
    return own + fallback


def _merge_selections(template_rows: List[dict], selections: Iterable[dict], team_id: str, category: str) -> List[dict]:
    labels: Dict[str, str] = {}
    for sel in selections:
        concept = (sel.get("concept") or "").strip()
        if concept:
            labels[concept] = (sel.get("label") or "").strip()

    merged = []
    for item in template_rows:
        if item["concept"] not in labels:
            continue
        merged.append({
            "id": str(uuid.uuid4()),
            "team_id": team_id,
            "category": category,
            "concept": item["concept"],
            "label": labels[item["concept"]] or item["label"],
            "image_url": item.get("image_url"),
        })
    unknown = set(labels) - {m["concept"] for m in merged}
    if unknown:
        logger.warning("Ignoring %s concepts not in the library: %s", category, sorted(unknown))
    return merged


def save_category(conn: sqlite3.Connection, team_id: str, category: str, selections: Iterable[dict]) -> List[dict]:
    """Replace a team's terminology for one category with the selected concepts.

    Full replace, not a diff: the last save for a team/category wins.
    """
    if category not in CATEGORIES:
        raise TerminologyError(f"Unknown terminology category: {category}")
    if team_id == DEFAULT_TEAM_ID:
        raise TerminologyError("The default team's library is edited through the admin tools")

    template_rows = get_default_terminology(conn, category)
    if not template_rows:
        raise TerminologyError(f"No default {category} found to copy from")
    items = _merge_selections(template_rows, selections, team_id, category)
    old_labels = effective_labels(conn, team_id)

    ledger = StepLedger("save_terminology", team_id=team_id, category=category)

    def delete_existing():
        conn.execute("DELETE FROM terminology WHERE team_id = ? AND category = ?", (team_id, category))
        conn.commit()

    def insert_items():
        conn.executemany(
            "INSERT INTO terminology (id, team_id, category, concept, label, image_url) VALUES (?, ?, ?, ?, ?, ?)",
            [(i["id"], i["team_id"], i["category"], i["concept"], i["label"], i["image_url"]) for i in items],
        )
        conn.commit()

    ledger.run("delete existing", delete_existing)
    ledger.run("insert selected", insert_items)
    ledger.run("relabel pool", lambda: relabel_pool(conn, team_id, old_labels, effective_labels(conn, team_id)))
    logger.info("Saved %d %s terms for team %s", len(items), category, team_id)
    return _rows(conn, team_id, category)


def restore_defaults(conn: sqlite3.Connection, team_id: str, category: Optional[str] = None) -> int:
    """Delete a team's terminology (all categories, or one) so reads use the library.

    Existing pool rows are relabeled back to the library names.
    """
    if team_id == DEFAULT_TEAM_ID:
        raise TerminologyError("Already using the default terminology")
    old_labels = effective_labels(conn, team_id)
    ledger = StepLedger("restore_terminology", team_id=team_id, category=category or "all")

    def delete_rows():
        if category:
            cur = conn.execute("DELETE FROM terminology WHERE team_id = ? AND category = ?", (team_id, category))
        else:
            cur = conn.execute("DELETE FROM terminology WHERE team_id = ?", (team_id,))
        conn.commit()
        return cur.rowcount

    removed = ledger.run("delete team terms", delete_rows)
    ledger.run("relabel pool", lambda: relabel_pool(conn, team_id, old_labels, effective_labels(conn, team_id)))
    logger.info("Restored default terminology for team %s (%s): %d rows removed",
                team_id, category or "all categories", removed)
    return removed


# ============================================================
# LABEL TRANSLATION
# ============================================================

def build_label_map(default_rows: Iterable[dict], team_rows: Iterable[dict]) -> Dict[str, Dict[str, str]]:
    """{category: {library label (lowercase): team label}} for concepts the team has."""
    team_labels = {(r["category"], r["concept"]): r["label"] for r in team_rows if r.get("label")}
    maps: Dict[str, Dict[str, str]] = {}
    for d in default_rows:
        if not d.get("concept") or not d.get("label"):
            continue
        team_label = team_labels.get((d["category"], d["concept"]))
        if team_label:
            maps.setdefault(d["category"], {})[d["label"].lower()] = team_label
    return maps


def _translate(value: Optional[str], mapping: Dict[str, str]) -> Optional[str]:
    if not value:
        return value
    return mapping.get(value.lower(), value)


def translate_template(play: dict, maps: Dict[str, Dict[str, str]]) -> dict:
    """Copy of a master-pool play with library labels replaced by the team's."""
    out = dict(play)
    for field, cat in FIELD_CATEGORIES.items():
        out[field] = _translate(play.get(field), maps.get(cat, {}))
    concept_cat = CONCEPT_CATEGORIES.get(play.get("category"), play.get("category"))
    out["concept"] = _translate(play.get("concept"), maps.get(concept_cat, {}))
    return out


# ============================================================
# POOL RELABELING
# ============================================================

def effective_labels(conn: sqlite3.Connection, team_id: str) -> Dict[str, Dict[str, str]]:
    """{category: {concept: label}} as the team currently sees it."""
    labels: Dict[str, Dict[str, str]] = {}
    for d in get_default_terminology(conn):
        if d.get("concept") and d.get("label"):
            labels.setdefault(d["category"], {})[d["concept"]] = d["label"]
    if team_id != DEFAULT_TEAM_ID:
        for r in _rows(conn, team_id):
            if r.get("label"):
                labels.setdefault(r["category"], {})[r["concept"]] = r["label"]
    return labels


def relabel_maps(old_labels: Dict[str, Dict[str, str]], new_labels: Dict[str, Dict[str, str]]) -> Dict[str, Dict[str, str]]:
    """{category: {old label (lowercase): new label}} for concepts whose label changed."""
    maps: Dict[str, Dict[str, str]] = {}
    for cat, concepts in new_labels.items():
        for concept, label in concepts.items():
            old = old_labels.get(cat, {}).get(concept)
            if old and old != label:
                maps.setdefault(cat, {})[old.lower()] = label
    return maps


def relabel_pool(
    conn: sqlite3.Connection,
    team_id: str,
    old_labels: Dict[str, Dict[str, str]],
    new_labels: Dict[str, Dict[str, str]],
) -> int:
    """Rewrite the team's existing pool rows from old labels to new ones.

    Locked rows are relabeled too. Returns the number of rows changed.
    """
    maps = relabel_maps(old_labels, new_labels)
    if not maps:
        return 0

    fields = list(FIELD_CATEGORIES) + ["concept"]
    rows = conn.execute(
        f"SELECT id, category, {', '.join(fields)} FROM playpool WHERE team_id = ?",
        (team_id,),
    ).fetchall()
    changed = 0
    for row in rows:
        row = dict(row)
        updated = translate_template(row, maps)
        diff = {f: updated[f] for f in fields if updated[f] != row[f]}
        if not diff:
            continue
        sets = ", ".join(f"{f} = ?" for f in diff)
        conn.execute(
            f"UPDATE playpool SET {sets}, version = version + 1 WHERE id = ?",
            list(diff.values()) + [row["id"]],
        )
        changed += 1
    conn.commit()
    logger.info("Relabeled %d pool rows for team %s", changed, team_id)
    return changed
