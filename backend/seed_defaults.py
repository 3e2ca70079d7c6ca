"""
Gameplan Default Library Seeder
Inserts the template team, its terminology library, the scouting terminology
(fronts / coverages / blitzes) and the master play pool.

Usage:
    python seed_defaults.py

Safe to run repeatedly: every row has a fixed id and is inserted with
INSERT OR IGNORE, so coach edits to existing rows are never overwritten.
"""

import logging
import os
import sqlite3

from dotenv import load_dotenv

from operations import DEFAULT_TEAM_ID

logger = logging.getLogger("seed_defaults")

# ============================================================
# TERMINOLOGY LIBRARY
# ============================================================

# category -> [(concept, default label)]
TERMINOLOGY = {
    "formations": [
        ("doubles", "Doubles"), ("trips", "Trips"), ("bunch", "Bunch"),
        ("empty", "Empty"), ("ace", "Ace"), ("pistol", "Pistol"),
    ],
    "form_tags": [
        ("tight", "Tight"), ("nasty", "Nasty"), ("wide", "Wide"), ("flex", "Flex"),
    ],
    "motions": [
        ("jet", "Jet"), ("orbit", "Orbit"), ("zip", "Zip"), ("yo_yo", "Yo-Yo"), ("shift", "Shift"),
    ],
    "pass_protections": [
        ("half_slide", "Half Slide"), ("full_slide", "Full Slide"), ("max", "Max"), ("bob", "BOB"),
    ],
    "concept_tags": [
        ("alert", "Alert"), ("check", "Check"), ("hot", "Hot"),
    ],
    "rpo_tag": [
        ("glance", "Glance"), ("bubble", "Bubble"), ("stick", "Stick"), ("now", "Now"),
    ],
    "run_game": [
        ("inside_zone", "Inside Zone"), ("outside_zone", "Outside Zone"), ("power", "Power"),
        ("counter", "Counter"), ("duo", "Duo"), ("trap", "Trap"), ("iso", "Iso"), ("toss", "Toss"),
    ],
    "quick_game": [
        ("slant", "Slant"), ("stick", "Stick"), ("hitch", "Hitch"),
        ("spacing", "Spacing"), ("snag", "Snag"), ("quick_out", "Quick Out"),
    ],
    "dropback_game": [
        ("mesh", "Mesh"), ("dagger", "Dagger"), ("y_cross", "Y-Cross"),
        ("flood", "Flood"), ("levels", "Levels"), ("smash", "Smash"),
    ],
    "shot_plays": [
        ("four_verts", "Four Verticals"), ("post_wheel", "Post Wheel"), ("yankee", "Yankee"),
        ("sluggo", "Sluggo"), ("double_move", "Double Move"), ("switch_verts", "Switch Verts"),
    ],
    "screen_game": [
        ("bubble", "Bubble"), ("tunnel", "Tunnel"), ("rb_slip", "RB Slip"),
        ("jailbreak", "Jailbreak"), ("middle", "Middle Screen"),
    ],
}

# ============================================================
# SCOUTING TERMINOLOGY
# ============================================================

# Even/Odd, Cover 0-4 and the four generic blitz names are umbrella labels:
# coaches can pick them on the scouting page but they never match a beater.
SCOUTING_TERMS = [
    ("front", "Even", "Generic four-down front"),
    ("front", "Odd", "Generic three-down front"),
    ("front", "4-3", "Four down linemen, three linebackers"),
    ("front", "3-4", "Three down linemen, four linebackers"),
    ("front", "4-2-5", "Nickel front with two linebackers"),
    ("front", "3-3-5", "Stack front with three safeties"),
    ("front", "4-3 Under", "Shade to the weak side"),
    ("front", "4-3 Over", "Shade to the strong side"),
    ("front", "Bear", "Both guards and center covered"),
    ("front", "Tite", "Odd front with 4i techniques"),
    ("coverage", "Cover 0", None),
    ("coverage", "Cover 1", None),
    ("coverage", "Cover 2", None),
    ("coverage", "Cover 3", None),
    ("coverage", "Cover 4", None),
    ("coverage", "Cover 1 Robber", "Man with a hole player"),
    ("coverage", "Cover 2 Man", "Two deep, man under"),
    ("coverage", "Tampa 2", "Mike runs the middle"),
    ("coverage", "Cover 3 Sky", "Safety rotates to the flat"),
    ("coverage", "Cover 3 Buzz", "Safety rotates to the hook"),
    ("coverage", "Quarters", "Four deep match"),
    ("coverage", "Cover 6", "Quarter-quarter-half"),
    ("blitz", "Inside", None),
    ("blitz", "Outside", None),
    ("blitz", "Corner", None),
    ("blitz", "Safety", None),
    ("blitz", "Mike Fire", "Mike through the A gap"),
    ("blitz", "Double A Gap", "Both backers in the A gaps"),
    ("blitz", "Edge Fire", "Outside backer off the edge"),
    ("blitz", "Nickel Cat", "Nickel from the slot"),
    ("blitz", "Zero Pressure", "Six rush, no deep help"),
]

# ============================================================
# MASTER PLAY POOL
# ============================================================

# run concept -> (fronts it beats, blitzes it beats)
RUN_CONCEPTS = [
    ("Inside Zone", "4-3, 4-2-5, 4-3 Over", "Edge Fire"),
    ("Outside Zone", "3-4, 4-3 Under, 3-3-5", "Double A Gap"),
    ("Power", "3-4, 4-3, Bear", "Nickel Cat"),
    ("Counter", "4-3, 4-2-5, 3-3-5", "Edge Fire"),
    ("Duo", "4-3, 3-4, Tite", "Mike Fire"),
    ("Trap", "3-4, 3-3-5, Tite", "Double A Gap"),
    ("Iso", "4-3, 4-3 Over", ""),
    ("Toss", "4-2-5, 3-3-5, Bear", "Mike Fire"),
]
RUN_FORMATIONS = [("Doubles", "Right"), ("Trips", "Left"), ("Pistol", "Right")]

RPO_CONCEPTS = [
    ("Inside Zone", "4-2-5, 4-3"),
    ("Power", "3-4, Bear"),
    ("Counter", "3-3-5, 4-3"),
    ("Duo", "3-4, Tite"),
]
RPO_TAGS = [("Glance", "Cover 3 Sky, Cover 1 Robber"), ("Bubble", "Quarters, Cover 2 Man"),
            ("Stick", "Cover 3 Buzz, Tampa 2")]

# pass concept -> (coverages it beats, blitzes it beats)
QUICK_CONCEPTS = [
    ("Slant", "Cover 1 Robber, Cover 3 Sky", "Zero Pressure, Nickel Cat"),
    ("Stick", "Cover 3 Buzz, Quarters", "Edge Fire"),
    ("Hitch", "Cover 3 Sky, Cover 6", "Zero Pressure"),
    ("Spacing", "Tampa 2, Cover 3 Buzz", "Mike Fire"),
    ("Snag", "Cover 2 Man, Quarters", ""),
    ("Quick Out", "Cover 3 Sky, Cover 1 Robber", "Nickel Cat"),
]
DROPBACK_CONCEPTS = [
    ("Mesh", "Cover 1 Robber, Cover 2 Man", "Mike Fire"),
    ("Dagger", "Cover 3 Sky, Quarters", ""),
    ("Y-Cross", "Cover 3 Buzz, Cover 6", ""),
    ("Flood", "Cover 3 Sky, Cover 3 Buzz", "Edge Fire"),
    ("Levels", "Tampa 2, Quarters", "Double A Gap"),
    ("Smash", "Tampa 2, Cover 6", ""),
]
SHOT_CONCEPTS = [
    ("Four Verticals", "Cover 3 Sky, Cover 3 Buzz", ""),
    ("Post Wheel", "Quarters, Cover 6", ""),
    ("Yankee", "Cover 1 Robber, Quarters", ""),
    ("Sluggo", "Cover 2 Man, Cover 1 Robber", "Zero Pressure"),
    ("Double Move", "Cover 1 Robber, Cover 3 Sky", "Zero Pressure"),
    ("Switch Verts", "Tampa 2, Cover 3 Buzz", ""),
]
PASS_FORMATIONS = [("Doubles", "Right"), ("Trips", "Right"), ("Bunch", "Left"), ("Empty", "Left")]

SCREEN_CONCEPTS = [
    ("Bubble", "Quarters, Cover 3 Buzz", "Nickel Cat"),
    ("Tunnel", "Cover 1 Robber, Cover 2 Man", "Edge Fire"),
    ("RB Slip", "Cover 3 Sky", "Mike Fire, Double A Gap"),
    ("Jailbreak", "Cover 2 Man, Cover 1 Robber", "Zero Pressure"),
    ("Middle Screen", "Tampa 2", "Double A Gap, Edge Fire"),
]


def _play(pid, category, formation, strength, *, tag="", motion="", concept="", run_concept="",
          run_direction="", screen="", screen_direction="", fronts="", coverages="", blitzes=""):
    return (pid, category, formation, tag, strength, motion, concept, run_concept, run_direction,
            screen, screen_direction, fronts, coverages, blitzes)


def master_plays():
    """All master pool rows as insert tuples, with stable ids."""
    plays = []
    n = 0
    for concept, fronts, blitzes in RUN_CONCEPTS:
        for formation, strength in RUN_FORMATIONS:
            n += 1
            direction = "Right" if n % 2 else "Left"
            plays.append(_play(f"run-{n:03d}", "run_game", formation, strength,
                               concept=concept, run_direction=direction,
                               fronts=fronts, blitzes=blitzes))
    n = 0
    for concept, fronts in RPO_CONCEPTS:
        for tag, coverages in RPO_TAGS:
            for formation, strength in RUN_FORMATIONS[:2]:
                n += 1
                plays.append(_play(f"rpo-{n:03d}", "rpo_game", formation, strength, tag=tag,
                                   concept=concept, fronts=fronts, coverages=coverages))
    for prefix, category, concepts in (
        ("quick", "quick_game", QUICK_CONCEPTS),
        ("drop", "dropback_game", DROPBACK_CONCEPTS),
        ("shot", "shot_plays", SHOT_CONCEPTS),
    ):
        n = 0
        for concept, coverages, blitzes in concepts:
            for formation, strength in PASS_FORMATIONS:
                n += 1
                motion = "Jet" if category == "shot_plays" and n % 3 == 0 else ""
                plays.append(_play(f"{prefix}-{n:03d}", category, formation, strength, motion=motion,
                                   concept=concept, coverages=coverages, blitzes=blitzes))
    n = 0
    for concept, coverages, blitzes in SCREEN_CONCEPTS:
        for formation, strength in PASS_FORMATIONS:
            n += 1
            plays.append(_play(f"screen-{n:03d}", "screen_game", formation, strength, screen=concept,
                               screen_direction=strength, coverages=coverages, blitzes=blitzes))
    return plays


# ============================================================
# SEED FUNCTION
# ============================================================

def seed(conn: sqlite3.Connection) -> dict:
    """Insert any missing library rows. Returns how many rows were new per table."""
    counts = {}

    cur = conn.execute(
        "INSERT OR IGNORE INTO teams (id, name, join_code) VALUES (?, ?, NULL)",
        (DEFAULT_TEAM_ID, "Default Template Team"),
    )
    counts["teams"] = cur.rowcount

    rows = [
        (f"default-{category}-{concept}", DEFAULT_TEAM_ID, category, concept, label)
        for category, items in TERMINOLOGY.items()
        for concept, label in items
    ]
    before = conn.total_changes
    conn.executemany(
        "INSERT OR IGNORE INTO terminology (id, team_id, category, concept, label) VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    counts["terminology"] = conn.total_changes - before

    before = conn.total_changes
    conn.executemany(
        "INSERT OR IGNORE INTO scouting_terminology (id, category, name, description, is_enabled) VALUES (?, ?, ?, ?, 1)",
        [(f"{cat}-{name.lower().replace(' ', '-')}", cat, name, desc) for cat, name, desc in SCOUTING_TERMS],
    )
    counts["scouting_terminology"] = conn.total_changes - before

    before = conn.total_changes
    conn.executemany("""
        INSERT OR IGNORE INTO master_play_pool (id, category, formation, tag, strength, motion_shift,
            concept, run_concept, run_direction, pass_screen_concept, screen_direction,
            front_beaters, coverage_beaters, blitz_beaters)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, master_plays())
    counts["master_play_pool"] = conn.total_changes - before

    conn.commit()
    if any(counts.values()):
        logger.info("Seeded default library: %s", counts)
    return counts


def main():
    _backend_dir = os.path.dirname(os.path.abspath(__file__))
    load_dotenv(os.path.join(_backend_dir, ".env"), override=True)

    # Importing main creates the schema (and seeds) on the configured DB_FILE.
    from main import DB_FILE, get_db, init_db

    init_db()
    conn = get_db()
    counts = seed(conn)
    conn.close()
    print(f"Connected to database: {DB_FILE}")
    for table, n in counts.items():
        print(f"  {table:22s} +{n}")
    print("\nDone!")


if __name__ == "__main__":
    main()
