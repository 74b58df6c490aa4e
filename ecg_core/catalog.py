from __future__ import annotations
from typing import Dict, Iterable

RHYTHMS: Dict[str, str] = {
    "sinus": "Sinus rhythm",
    "afib": "Atrial fibrillation",
    "aflutter": "Atrial flutter",
    "svt": "Supraventricular tachycardia",
    "vtach": "Ventricular tachycardia",
    "vfib": "Ventricular fibrillation",
    "junctional": "Junctional rhythm",
    "paced": "Paced rhythm",
    "asystole": "Asystole",
    "other": "Other",
}

AXES: Dict[str, str] = {
    "normal": "Normal axis",
    "left": "Left axis deviation",
    "right": "Right axis deviation",
    "extreme": "Indeterminate axis",
}

INTERVALS: tuple[str, ...] = ("normal", "prolonged", "short", "wide", "na")

PR_INTERVALS: Dict[str, str] = {
    "normal": "Normal",
    "prolonged": "Prolonged (1st degree AV block)",
    "short": "Short (pre-excitation)",
    "na": "Not applicable",
}

QRS_DURATIONS: Dict[str, str] = {
    "normal": "Normal",
    "wide": "Wide",
}

QT_INTERVALS: Dict[str, str] = {
    "normal": "Normal",
    "short": "Short",
    "prolonged": "Prolonged",
}

FINDINGS: Dict[str, str] = {
    "normal": "Normal ECG",
    # chambers
    "lvh": "Left ventricular hypertrophy",
    "rvh": "Right ventricular hypertrophy",
    "lae": "Left atrial enlargement",
    "rae": "Right atrial enlargement",
    # conduction
    "rbbb": "Right bundle branch block",
    "lbbb": "Left bundle branch block",
    "lafb": "Left anterior fascicular block",
    "lpfb": "Left posterior fascicular block",
    "interatrial_block": "Interatrial block",
    "avb_1st": "1st degree AV block",
    "avb_2nd_type1": "2nd degree AV block type I (Wenckebach)",
    "avb_2nd_type2": "2nd degree AV block type II",
    "avb_3rd": "3rd degree AV block",
    "sab_2nd_type1": "2nd degree SA block type I",
    "sab_2nd_type2": "2nd degree SA block type II",
    "sab_3rd": "3rd degree SA block",
    # occlusion MI and fibrosis
    "oca": "Occlusion myocardial infarction",
    "pathological_q": "Pathological Q wave",
    "fragmented_qrs": "Fragmented QRS",
    "ste": "ST elevation",
    "hyperacute_t": "Hyperacute T wave",
    "std_v1v4": "ST depression V1-V4",
    "aslanger": "Aslanger pattern",
    "de_winter": "de Winter pattern",
    "subtle_ste": "Subtle ST elevation",
    "terminal_qrs_distortion": "Terminal QRS distortion",
    "sgarbossa_modified": "Modified Sgarbossa criteria",
    "wellens": "Wellens pattern",
    # repolarisation
    "secondary_t_wave": "Secondary T wave change",
    "primary_t_wave": "Primary T wave change",
    "early_repolarization": "Early repolarization",
    "giant_negative_t": "Giant negative T wave",
    # other
    "hyperkalemia": "Hyperkalemia",
    "hypokalemia": "Hypokalemia",
    "digitalis": "Digitalis effect",
    "preexcitation": "Ventricular pre-excitation",
    "long_qt": "Long QT",
    "brugada": "Brugada pattern",
    "spodick_sign": "Spodick sign",
    "pq_depression": "PQ depression",
    "low_voltage": "Low voltage",
    "pacemaker_normal": "Pacemaker functioning normally",
    "pacemaker_sense_failure": "Pacemaker sensing failure",
    "pacemaker_pace_failure": "Pacemaker pacing failure",
}

# compound findings carry a wall or chamber suffix, e.g. oca_inferior
COMPOUND_PREFIXES: tuple[str, ...] = ("oca_", "ste_", "pathological_q_", "fragmented_qrs_", "pacemaker_")

WALLS: Dict[str, str] = {
    "anterior": "anterior",
    "inferior": "inferior",
    "lateral": "lateral",
    "septal": "septal",
    "posterior": "posterior",
    "atrio": "atrium",
    "ventriculo": "ventricle",
}

ELECTRODE_SWAPS: Dict[str, str] = {
    "la_ra": "LA/RA reversal",
    "la_ll": "LA/LL reversal",
    "ra_ll": "RA/LL reversal",
    "v1_v2": "V1/V2 reversal",
    "v2_v3": "V2/V3 reversal",
    "precordial_other": "Other precordial reversal",
    "other": "Other",
}

DIFFICULTIES: tuple[str, ...] = ("easy", "medium", "hard")

CATEGORIES: tuple[str, ...] = (
    "arrhythmia",
    "ischemia",
    "structural",
    "emergency",
    "normal",
    "routine",
    "advanced",
    "rare",
    "other",
)


def is_known_finding(tag: str) -> bool:
    if tag in FINDINGS:
        return True
    return any(tag.startswith(p) and len(tag) > len(p) for p in COMPOUND_PREFIXES)


def finding_label(tag: str) -> str:
    if tag in FINDINGS:
        return FINDINGS[tag]
    for prefix in COMPOUND_PREFIXES:
        if tag.startswith(prefix):
            base = FINDINGS.get(prefix.rstrip("_"), prefix.rstrip("_"))
            suffix = tag[len(prefix):]
            return f"{base} ({WALLS.get(suffix, suffix)})"
    return tag


def label_set(tags: Iterable[str], table: Dict[str, str] | None = None, empty: str = "None") -> str:
    """Render a tag set as a stable, comma separated label list."""
    ordered = sorted(tags)
    if not ordered:
        return empty
    if table is None:
        return ", ".join(finding_label(t) for t in ordered)
    return ", ".join(table.get(t, t) for t in ordered)
