"""
Split a freeform listing description into the eight display sections of the
property page (overview, interior, exterior, parking, HOA, schools, taxes,
other).

The text is cut into units (lines, then sentences). Each unit is routed by
an ordered list of ``(category, pattern)`` rules, first match wins. A line
that is only a section name ("Interior Features:") opens that section until
the next header or blank line; units no rule claims go to the open section,
otherwise to ``other``, so no unit is lost. A header with nothing under it is
kept as a unit itself.

Units shaped like ``Label: Value`` keep their label; everything else is
stored under the generic ``Detail`` label with the unit text as value.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple, TypedDict


class DescriptionItem(TypedDict):
    label: str
    value: str


class PropertySection(TypedDict):
    title: str
    items: List[DescriptionItem]


ParsedPropertyDetails = Dict[str, PropertySection]

SECTION_TITLES: Dict[str, str] = {
    "overview": "Property Overview",
    "interior": "Interior Features",
    "exterior": "Exterior Features",
    "parking": "Parking & Garage",
    "hoa": "HOA & Association",
    "schools": "School Information",
    "taxes": "Tax Information",
    "other": "Additional Information",
}
CATEGORY_ORDER: Tuple[str, ...] = tuple(SECTION_TITLES)
FALLBACK_CATEGORY = "other"
GENERIC_LABEL = "Detail"

HEADER_ALIASES: Dict[str, str] = {
    "overview": "overview",
    "property overview": "overview",
    "property details": "overview",
    "summary": "overview",
    "interior": "interior",
    "interior features": "interior",
    "interior details": "interior",
    "exterior": "exterior",
    "exterior features": "exterior",
    "exterior details": "exterior",
    "lot & exterior": "exterior",
    "parking": "parking",
    "garage": "parking",
    "parking & garage": "parking",
    "parking and garage": "parking",
    "hoa": "hoa",
    "association": "hoa",
    "hoa & association": "hoa",
    "hoa and association": "hoa",
    "community": "hoa",
    "schools": "schools",
    "school": "schools",
    "school information": "schools",
    "nearby schools": "schools",
    "taxes": "taxes",
    "tax": "taxes",
    "tax information": "taxes",
    "other": "other",
    "additional information": "other",
    "additional details": "other",
}

# Fact labels the overview owns even though their words appear in other vocabularies.
_OVERVIEW_FACT_RE = re.compile(
    r"^(?:total\s+|full\s+|half\s+|\d+/\d+\s+)?"
    r"(?:bedrooms?(?:\s+possible)?|bathrooms?|rooms|year built|(?:living\s+|total\s+)?square feet|sq\.?\s*ft|"
    r"living area|property (?:sub)?type|ownership|list(?:ing)? price|price|status|mls(?: #| number)?|stories)"
    r"\s*:",
    re.IGNORECASE,
)

CATEGORY_RULES: List[Tuple[str, re.Pattern]] = [
    ("overview", _OVERVIEW_FACT_RE),
    (
        "parking",
        re.compile(r"\b(?:garages?|carports?|driveways?|parking|car spaces?|covered spaces?)\b", re.IGNORECASE),
    ),
    (
        "hoa",
        re.compile(
            r"\b(?:hoa|associations?|dues|condo fees?|community fees?|pets? allowed|cats|dogs|amenities)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "schools",
        re.compile(
            r"\b(?:schools?|school district|elementary|junior high|academy|isd|usd)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "taxes",
        re.compile(
            r"\b(?:tax(?:es)?|assessed value|assessments?|millage|parcel)\b"
            r"|\$\s?[\d,]+(?:\.\d+)?\s*(?:/\s*(?:yr|year)|per year|a year|annually)",
            re.IGNORECASE,
        ),
    ),
    (
        "interior",
        re.compile(
            r"\b(?:kitchens?|bedrooms?|bathrooms?|primary suite|master suite|floor(?:s|ing)|hardwood|carpet(?:ed|ing)?|"
            r"appliances?|counter(?:top)?s?|cabinet(?:s|ry)?|granite|quartz|fireplaces?|closets?|"
            r"living room|dining|family room|den|office|basement|attic|laundry|washer|dryer|dishwasher|"
            r"microwave|refrigerator|oven|pantry|island|loft|heating|cooling|hvac|central air|a/c|"
            r"ceilings?|interior|furnished|storage|exercise room|sitting room)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "exterior",
        re.compile(
            r"\b(?:roof(?:ing)?|siding|yards?|backyard|pool|spa|hot tub|patios?|decks?|porch(?:es)?|fenc(?:e|ed|ing)|"
            r"lot(?: size)?|acres?|acreage|landscap(?:e|ed|ing)|gardens?|lawn|sprinklers?|irrigation|balcon(?:y|ies)|"
            r"lanai|exterior|construction|structure type|foundation|brick|stucco|gutters|shed|outdoor)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "overview",
        re.compile(
            r"\b(?:home|house|residence|property|condo|townhome|townhouse|duplex|listing|built|beds?|baths?|bd|ba|"
            r"sq\.?\s*ft|sqft|square feet|stories|story|single[- ]family|multi[- ]family|move[- ]in|"
            r"beautiful|charming|stunning|welcome)\b",
            re.IGNORECASE,
        ),
    ),
]

_LABEL_VALUE_RE = re.compile(r"^(?P<label>[A-Za-z][^:]{0,39}?)\s*:\s*(?P<value>\S.*)$")
_MAX_LABEL_WORDS = 6
_MONEY_LABEL_RE = re.compile(r"\b(?:fees?|dues|tax amount|taxes|assessed value|price)\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^\d[\d,]*(?:\.\d+)?$")

_YES_FEATURES_RE = re.compile(
    r"^(?:office|exercise room|storage|sitting room|balcony/porch/lanai|den|loft|basement|fireplace|pool)$",
    re.IGNORECASE,
)
_APPLIANCE_WORDS = (
    r"(?:double oven|wall oven|oven|range hood|range|cooktop|microwave|dishwasher|wine refrigerator|refrigerator|"
    r"freezer|ice maker|washer|dryer|garbage disposal|disposal)"
)
_APPLIANCE_LIST_RE = re.compile(
    rf"^{_APPLIANCE_WORDS}(?:\s*(?:,|&|/|\band\b)\s*{_APPLIANCE_WORDS})*$",
    re.IGNORECASE,
)
APPLIANCES_LABEL = "Appliances"

_BULLET_RE = re.compile(r"^\s*(?:[-*•·▪●◦]+|\d{1,2}[.)])\s+")
_INLINE_BULLET_RE = re.compile(r"\s+[•·▪●◦]\s+")
_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
_ABBREVIATIONS = frozenset(
    {"sq", "ft", "st", "ave", "rd", "dr", "blvd", "ln", "ct", "hwy", "mt", "apt", "approx", "no", "incl", "est",
     "mr", "mrs", "ms", "jr", "sr", "vs", "e.g", "i.e"}
)


def empty_sections() -> ParsedPropertyDetails:
    return {key: {"title": title, "items": []} for key, title in SECTION_TITLES.items()}


def _split_sentences(line: str) -> List[str]:
    parts: List[str] = []
    start = 0
    for match in _SENTENCE_BOUNDARY_RE.finditer(line):
        candidate = line[start:match.start()]
        words = candidate.split()
        last_word = words[-1] if words else ""
        if last_word.endswith(".") and last_word.rstrip(".").lower() in _ABBREVIATIONS:
            continue
        parts.append(candidate)
        start = match.end()
    parts.append(line[start:])
    return parts


def _clean_unit(unit: str) -> str:
    text = _BULLET_RE.sub("", unit).strip()
    if text.endswith(".") and not text.endswith(".."):
        text = text[:-1].rstrip()
    return text


def _header_category(line: str) -> Optional[str]:
    """Section for a header-only line, e.g. ``Interior Features:`` or ``## Schools``."""
    if _BULLET_RE.match(line):
        return None
    stripped = line.strip()
    is_markdown = stripped.startswith("#")
    text = stripped.lstrip("#").strip().strip("*").strip()
    has_colon = text.endswith(":")
    key = " ".join(text.rstrip(":").split()).lower()
    category = HEADER_ALIASES.get(key)
    if category is None:
        return None
    if has_colon or is_markdown or text.isupper() or " " in key:
        return category
    return None


def classify_unit(text: str) -> Optional[str]:
    """First category whose rule matches, or None when no vocabulary claims the unit."""
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return None


def _format_money(label: str, value: str) -> str:
    if not _MONEY_LABEL_RE.search(label) or not _BARE_NUMBER_RE.match(value):
        return value
    amount = float(value.replace(",", ""))
    if amount.is_integer():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def build_item(unit: str) -> DescriptionItem:
    match = _LABEL_VALUE_RE.match(unit)
    if match and not match.group("value").startswith("//"):
        label = match.group("label").strip()
        if len(label.split()) <= _MAX_LABEL_WORDS:
            value = match.group("value").strip()
            return {"label": label, "value": _format_money(label, value)}
    if _YES_FEATURES_RE.match(unit):
        return {"label": unit, "value": "Yes"}
    if _APPLIANCE_LIST_RE.match(unit):
        return {"label": APPLIANCES_LABEL, "value": unit}
    return {"label": GENERIC_LABEL, "value": unit}


def _add_item(section: PropertySection, item: DescriptionItem) -> None:
    if item["label"] == APPLIANCES_LABEL:
        for existing in section["items"]:
            if existing["label"] == APPLIANCES_LABEL:
                existing["value"] = f"{existing['value']}, {item['value']}"
                return
    section["items"].append(item)


def _header_text(line: str) -> str:
    return line.strip().lstrip("#").strip().strip("*").strip().rstrip(":").strip()


def iter_units(description: str) -> List[Tuple[str, Optional[str]]]:
    """Cut the text into ``(unit, header_section)`` pairs.

    ``header_section`` is the section opened by the closest header line above
    the unit, or None. A header with nothing under it is kept as a unit of
    its own.
    """
    units: List[Tuple[str, Optional[str]]] = []
    active: Optional[str] = None
    empty_header: Optional[str] = None

    def close_header() -> None:
        nonlocal empty_header
        if empty_header:
            units.append((empty_header, active))
        empty_header = None

    for raw_line in description.splitlines():
        if not raw_line.strip():
            close_header()
            active = None
            continue
        header = _header_category(raw_line)
        if header is not None:
            close_header()
            active = header
            empty_header = _header_text(raw_line)
            continue
        for piece in _INLINE_BULLET_RE.split(raw_line):
            for sentence in _split_sentences(piece.strip()):
                unit = _clean_unit(sentence)
                if unit:
                    units.append((unit, active))
                    empty_header = None
    close_header()
    return units


def parse_description(description: Optional[str]) -> ParsedPropertyDetails:
    """Parse a description into all eight sections (empty ones included)."""
    sections = empty_sections()
    if not description or not isinstance(description, str):
        return sections

    for unit, header_section in iter_units(description):
        category = classify_unit(unit) or header_section or FALLBACK_CATEGORY
        _add_item(sections[category], build_item(unit))
    return sections


def visible_sections(parsed: ParsedPropertyDetails) -> List[str]:
    """Keys of the sections worth rendering, in display order."""
    return [key for key in CATEGORY_ORDER if parsed.get(key, {}).get("items")]
