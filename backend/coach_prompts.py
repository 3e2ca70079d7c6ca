"""
Coach Prompt Core — prompt assembly and response coercion
==========================================================
Every prompt the API sends to the model is built here, and every model answer
is coerced here into the shape the routes return. Demo-mode builders produce
the same shapes without calling the provider.

Imported by main.py for scouting analysis, game plans and play review.
"""

import logging
import re
from typing import Dict, List, Optional

from llm_client import Malformed, Parsed
from playpool import CATEGORY_LABELS, format_play

logger = logging.getLogger("coach_prompts")


def _pct(value: float) -> str:
    return f"{value:g}%"


# ─────────────────────────────────────────────────────────
# A) SCOUTING ANALYSIS: streamed bullet sections
# ─────────────────────────────────────────────────────────
ANALYSIS_SECTIONS = ["QUICK HITS", "BASE DEFENSE", "COVERAGE BREAKDOWN", "PRESSURE SCHEMES", "ATTACK PLAN"]

SCOUTING_ANALYST_SYSTEM = (
    "You are an experienced offensive coordinator breaking down defensive tendencies. "
    "Be direct and specific. Format your response exactly as shown in the prompt, with each "
    "bullet point on its own line and a blank line between points. Use ### for section headers. "
    "Make sure to incorporate any additional notes from the user into your analysis."
)


def _option_lines(options: List[dict], pct: Dict[str, float], suffix: str = "") -> str:
    lines = []
    for opt in options:
        lines.append(f"• {opt['name']}: {_pct(pct.get(opt['name'], 0))}{suffix}")
        lines.append(f"  - Down: {opt.get('dominate_down') or 'n/a'}")
        lines.append(f"  - Area: {opt.get('field_area') or 'n/a'}")
    return "\n".join(lines) if lines else "• None reported"


def build_scouting_analysis_prompt(report: dict) -> str:
    notes = (report.get("notes") or "").strip()
    notes_block = (
        "ADDITIONAL NOTES (IMPORTANT - incorporate these insights into your analysis):\n" + notes
        if notes else ""
    )
    layout = "\n\n".join(
        f"### {section}\n\n• First point\n\n• Second point" for section in ANALYSIS_SECTIONS
    )
    return f"""As an experienced offensive coordinator, analyze this defense and provide a quick, actionable scouting report. Focus on exploitable tendencies and key matchups.

BASE STRUCTURE:
{_option_lines(report.get("fronts", []), report.get("fronts_pct", {}))}

COVERAGE SHELLS:
{_option_lines(report.get("coverages", []), report.get("coverages_pct", {}))}

PRESSURE:
Overall Blitz Rate: {_pct(report.get("overall_blitz_pct", 0))}
{_option_lines(report.get("blitzes", []), report.get("blitz_pct", {}), " of pressures")}

{notes_block}

Provide your analysis in the following format, ensuring each bullet point is on its own line with a line break after it:

{layout}

Remember:
1. Start each bullet point with "• "
2. Put each bullet point on its own line
3. Add a blank line between bullet points
4. Keep insights clear and actionable
5. Directly incorporate any information from the ADDITIONAL NOTES section into your analysis"""


def validate_analysis(text: str) -> dict:
    """Check a finished analysis for its section headers. Logs, never blocks."""
    upper = (text or "").upper()
    missing = [s for s in ANALYSIS_SECTIONS if f"### {s}" not in upper]
    warnings = []
    if missing:
        warnings.append(f"Missing {len(missing)}/{len(ANALYSIS_SECTIONS)} sections: {', '.join(missing)}")
    if "•" not in (text or ""):
        warnings.append("No bullet points found")
    for w in warnings:
        logger.warning("validate_analysis: %s", w)
    return {"valid": not warnings, "warnings": warnings, "missing_sections": missing}


def mock_scouting_analysis(report: dict) -> str:
    fronts = sorted(report.get("fronts_pct", {}).items(), key=lambda kv: -kv[1])
    coverages = sorted(report.get("coverages_pct", {}).items(), key=lambda kv: -kv[1])
    top_front = f"{fronts[0][0]} ({_pct(fronts[0][1])})" if fronts else "no front data"
    top_cov = f"{coverages[0][0]} ({_pct(coverages[0][1])})" if coverages else "no coverage data"
    blitz = _pct(report.get("overall_blitz_pct", 0))
    return (
        f"### QUICK HITS\n\n• Base front: {top_front}\n\n• Primary shell: {top_cov}\n\n"
        f"• Blitz rate: {blitz}\n\n• Demo mode: set ANTHROPIC_API_KEY for a full breakdown\n\n"
        f"### BASE DEFENSE\n\n• Lean on run concepts that beat {fronts[0][0] if fronts else 'their base front'}\n\n"
        f"### COVERAGE BREAKDOWN\n\n• Build the dropback menu around {coverages[0][0] if coverages else 'their base shell'}\n\n"
        f"### PRESSURE SCHEMES\n\n• Expect pressure on {blitz} of snaps\n\n"
        f"### ATTACK PLAN\n\n• Stay on schedule with the run game\n"
    )


# ─────────────────────────────────────────────────────────
# B) GAME PLAN: JSON sections filled from the play pool
# ─────────────────────────────────────────────────────────
# section key -> (label, guideline, default size, play pool categories for demo mode)
GAMEPLAN_SECTIONS = {
    "openingScript": ("Opening Script", "Mix of runs and passes to establish tempo", 15, None),
    "basePackage1": ("Base Package 1", "Core plays grouped by formation families", 10, None),
    "basePackage2": ("Base Package 2", "Core plays grouped by formation families", 10, None),
    "basePackage3": ("Base Package 3", "Core plays grouped by formation families", 10, None),
    "firstDowns": ("First Downs", "Reliable plays that typically gain 4+ yards", 10, ["run_game", "rpo_game", "quick_game"]),
    "shortYardage": ("Short Yardage", "High percentage plays for 3rd/4th and short", 5, ["run_game", "rpo_game"]),
    "thirdAndLong": ("Third and Long", "Pass plays designed for 7+ yards", 5, ["dropback_game", "quick_game"]),
    "redZone": ("Red Zone", "High percentage scoring plays inside the 20", 5, ["quick_game", "run_game", "rpo_game"]),
    "goalline": ("Goalline", "Plays from inside the 5-yard line", 3, ["run_game"]),
    "backedUp": ("Backed Up", "Safe plays when starting inside own 10-yard line", 3, ["run_game", "quick_game"]),
    "screens": ("Screens", "Various screen plays", 5, ["screen_game"]),
    "playAction": ("Play Action", "Play action passes", 5, ["shot_plays", "dropback_game"]),
    "deepShots": ("Deep Shots", "Vertical passing plays", 5, ["shot_plays"]),
}

OFFENSIVE_COORDINATOR_SYSTEM = (
    "You are an expert football offensive coordinator helping to organize plays into a game plan. "
    "You will return only valid JSON."
)


def default_section_sizes() -> Dict[str, int]:
    return {key: entry[2] for key, entry in GAMEPLAN_SECTIONS.items()}


def build_gameplan_prompt(calls: List[str], sizes: Dict[str, int]) -> str:
    requirements = "\n".join(
        f"- {GAMEPLAN_SECTIONS[k][0]}: {n} plays" for k, n in sizes.items() if k in GAMEPLAN_SECTIONS
    )
    guidelines = "\n".join(
        f"{i}. {GAMEPLAN_SECTIONS[k][0]}: {GAMEPLAN_SECTIONS[k][1]}"
        for i, k in enumerate(GAMEPLAN_SECTIONS, 1)
    )
    keys = list(sizes)
    example = ",\n".join(f'  "{k}": ["play", "play"]' for k in keys[:2])
    return f"""You are an expert football offensive coordinator. Given the following play pool, create a game plan by organizing these plays into different sections. Each section should have exactly the number of plays specified in the requirements below. Only use plays from the provided play pool.

Play Pool:
{chr(10).join(calls)}

Section Requirements:
{requirements}

Guidelines:
{guidelines}

Return the game plan as a JSON object with each section as a key and an array of plays as the value. Use these keys: {", ".join(keys)}. Example format:
{{
{example},
  ...
}}"""


def _canonical_calls(pool_calls: List[str]) -> Dict[str, str]:
    return {_squash(c): c for c in pool_calls}


def _squash(text: str) -> str:
    return re.sub(r"\s+", " ", str(text)).strip().lower()


def _known_calls(items, canonical: Dict[str, str], limit: Optional[int] = None) -> List[str]:
    out: List[str] = []
    if not isinstance(items, list):
        return out
    for item in items:
        if limit is not None and len(out) >= limit:
            break
        if isinstance(item, dict):
            item = item.get("call") or format_play(item)
        if not isinstance(item, str):
            continue
        call = canonical.get(_squash(item))
        if call and call not in out:
            out.append(call)
    return out


def coerce_gameplan(parsed: Parsed, sizes: Dict[str, int], pool_calls: List[str]) -> dict:
    """Sections of known plays, each cut to its size; Malformed -> all empty."""
    sections = {k: [] for k in sizes}
    if isinstance(parsed, Malformed):
        logger.warning("Game plan response unusable: %s", parsed.reason)
        return {"sections": sections, "malformed": True}
    canonical = _canonical_calls(pool_calls)
    value = parsed.value
    dropped = 0
    for key, size in sizes.items():
        raw = value.get(key)
        sections[key] = _known_calls(raw, canonical, size)
        if isinstance(raw, list):
            dropped += max(0, len(raw) - len(sections[key]))
    if dropped:
        logger.info("Game plan: dropped %d plays not in the pool or over section size", dropped)
    return {"sections": sections, "malformed": False}


def mock_gameplan(calls_by_category: Dict[str, List[str]], sizes: Dict[str, int]) -> dict:
    """Deterministic plan for demo mode: round-robin through the section's categories."""
    everything = [c for cat in CATEGORY_LABELS for c in calls_by_category.get(cat, [])]
    sections = {}
    for key, size in sizes.items():
        sources = GAMEPLAN_SECTIONS.get(key, (None, None, 0, None))[3]
        if sources:
            lists = [list(calls_by_category.get(cat, [])) for cat in sources]
            pool = []
            while any(lists):
                for lst in lists:
                    if lst:
                        pool.append(lst.pop(0))
        else:
            pool = everything
        sections[key] = list(dict.fromkeys(pool))[:size]
    return {"sections": sections, "malformed": False}


# ─────────────────────────────────────────────────────────
# C) PLAY REVIEW: model picks the best calls per category
# ─────────────────────────────────────────────────────────
PLAY_SELECTION_SYSTEM = """You are an AI assistant for an offensive football coordinator.
You analyze a scouting report and select the most effective plays from the team's play pool.
Prioritize plays that beat the most frequently used fronts, coverages and blitzes, and that fit
the downs and field areas where the opponent uses them. Return only valid JSON."""


def build_play_selection_prompt(report: dict, calls_by_category: Dict[str, List[str]]) -> str:
    pool_lines = []
    for cat, calls in calls_by_category.items():
        pool_lines.append(f"{cat.upper()} ({CATEGORY_LABELS.get(cat, cat)}):")
        pool_lines.extend(f"- {c}" for c in calls)
    keys = ", ".join(f'"{c}": [...]' for c in calls_by_category)
    return f"""SCOUTING REPORT:

FRONTS:
{_option_lines(report.get("fronts", []), report.get("fronts_pct", {}))}

COVERAGES:
{_option_lines(report.get("coverages", []), report.get("coverages_pct", {}))}

PRESSURE:
Overall Blitz Rate: {_pct(report.get("overall_blitz_pct", 0))}
{_option_lines(report.get("blitzes", []), report.get("blitz_pct", {}), " of pressures")}

{("ADDITIONAL NOTES:" + chr(10) + report["notes"]) if report.get("notes") else ""}

PLAY POOL:
{chr(10).join(pool_lines)}

For each play category select the plays, copied exactly from the pool, that are most effective
against this defense, and briefly explain why.

Return a JSON object: {{{keys}, "analysis": "..."}}"""


def coerce_play_selection(parsed: Parsed, calls_by_category: Dict[str, List[str]]) -> dict:
    selections = {cat: [] for cat in calls_by_category}
    if isinstance(parsed, Malformed):
        logger.warning("Play selection response unusable: %s", parsed.reason)
        return {"selections": selections, "analysis": "", "malformed": True}
    value = parsed.value
    for cat, calls in calls_by_category.items():
        selections[cat] = _known_calls(value.get(cat), _canonical_calls(calls))
    analysis = value.get("analysis")
    return {
        "selections": selections,
        "analysis": analysis if isinstance(analysis, str) else "",
        "malformed": False,
    }


def mock_play_selection(report: dict, calls_by_category: Dict[str, List[str]]) -> dict:
    selections = {cat: calls[:5] for cat, calls in calls_by_category.items()}
    top = sorted(report.get("fronts_pct", {}).items(), key=lambda kv: -kv[1])
    analysis = "Demo mode: first five plays per category."
    if top:
        analysis += f" Most common front: {top[0][0]}."
    return {"selections": selections, "analysis": analysis, "malformed": False}


__all__ = [
    "ANALYSIS_SECTIONS", "GAMEPLAN_SECTIONS",
    "build_scouting_analysis_prompt", "validate_analysis", "mock_scouting_analysis",
    "default_section_sizes", "build_gameplan_prompt", "coerce_gameplan", "mock_gameplan",
    "build_play_selection_prompt", "coerce_play_selection", "mock_play_selection",
]
