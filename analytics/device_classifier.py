"""
Heuristic device classification for visitor analytics.

Two independent signals are combined:

* the user-agent string, which gives a coarse brand (iPhone, Samsung, ...)
  and, when no screen size was reported, a fallback category;
* the reported screen geometry, which is trusted over the user agent for the
  desktop/mobile/tablet split.

Every decision is an ordered list of ``(predicate, result)`` rules evaluated
top to bottom, first match wins. Nothing here raises on odd input.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, TypedDict

DESKTOP = "desktop"
MOBILE = "mobile"
TABLET = "tablet"
CATEGORIES = (DESKTOP, MOBILE, TABLET)

IPHONE = "iPhone"
SAMSUNG = "Samsung"
REALME = "Realme"
REDMI = "Redmi"
ANDROID = "Android"
UNKNOWN = "Unknown"
BRANDS = (IPHONE, SAMSUNG, REALME, REDMI, ANDROID, UNKNOWN)


class DeviceClassification(TypedDict):
    category: str
    brand: str


@dataclass(frozen=True)
class ResolutionThresholds:
    """Hand-tuned cut-offs for the resolution rules (pixels, ratios, pixel area)."""

    mobile_max_width: int = 600
    tall_aspect_ratio: float = 1.5
    tall_max_area: int = 1_000_000
    mobile_max_area: int = 500_000
    desktop_min_width: int = 1024
    landscape_min_width: int = 768
    landscape_max_aspect_ratio: float = 1.2

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ResolutionThresholds":
        """Read overrides such as ``DEVICE_MOBILE_MAX_WIDTH=640``; bad values keep the default."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = environ.get(f"DEVICE_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            cast = float if f.type in (float, "float") else int
            try:
                overrides[f.name] = cast(raw)
            except ValueError:
                continue
        return cls(**overrides)


DEFAULT_THRESHOLDS = ResolutionThresholds()

# --- brand -------------------------------------------------------------------

BrandRule = Tuple[Callable[[str], bool], str]


def _contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda ua: any(needle in ua for needle in needles)


# Order matters: a Samsung UA also contains "android" and must stay Samsung.
BRAND_RULES: List[BrandRule] = [
    (_contains_any("iphone"), IPHONE),
    (_contains_any("samsung", "sm-", "galaxy"), SAMSUNG),
    (_contains_any("realme", "rmx"), REALME),
    (_contains_any("redmi", "mi ", "xiaomi", "mi-"), REDMI),
    (_contains_any("android"), ANDROID),
]


def detect_brand(user_agent: Optional[str]) -> str:
    ua = (user_agent or "").lower()
    if not ua:
        return UNKNOWN
    for predicate, brand in BRAND_RULES:
        if predicate(ua):
            return brand
    return UNKNOWN


# --- resolution --------------------------------------------------------------

# Predicates receive (width, height, aspect_ratio, area, thresholds).
ResolutionRule = Tuple[Callable[[float, float, float, float, ResolutionThresholds], bool], str]

RESOLUTION_RULES: List[ResolutionRule] = [
    (lambda w, h, ar, area, t: w < t.mobile_max_width, MOBILE),
    (lambda w, h, ar, area, t: ar > t.tall_aspect_ratio and area < t.tall_max_area, MOBILE),
    (lambda w, h, ar, area, t: area < t.mobile_max_area, MOBILE),
    (
        lambda w, h, ar, area, t: t.mobile_max_width <= w < t.desktop_min_width and ar <= t.tall_aspect_ratio,
        TABLET,
    ),
    (lambda w, h, ar, area, t: w >= t.desktop_min_width, DESKTOP),
    (lambda w, h, ar, area, t: w >= t.landscape_min_width and ar < t.landscape_max_aspect_ratio, DESKTOP),
    (lambda w, h, ar, area, t: w < t.landscape_min_width, MOBILE),
]


def has_geometry(width: Optional[float], height: Optional[float]) -> bool:
    try:
        return bool(width) and bool(height) and float(width) > 0 and float(height) > 0
    except (TypeError, ValueError):
        return False


def classify_by_resolution(
    width: Optional[float],
    height: Optional[float],
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> str:
    """Screen-size heuristic. Missing or non-positive dimensions fail open to desktop."""
    if not has_geometry(width, height):
        return DESKTOP
    w, h = float(width), float(height)
    aspect_ratio = h / w
    area = w * h
    for predicate, category in RESOLUTION_RULES:
        if predicate(w, h, aspect_ratio, area, thresholds):
            return category
    return DESKTOP


# --- user agent --------------------------------------------------------------

TABLET_UA_RE = re.compile(r"(tablet|ipad|playbook|silk)|(android(?!.*mobi))", re.IGNORECASE)
MOBILE_UA_RE = re.compile(
    r"mobile|android|ip(hone|od)|iemobile|blackberry|kindle|silk-accelerated|(hpw|web)os|opera m(obi|ini)",
    re.IGNORECASE,
)

CATEGORY_UA_RULES: List[Tuple[re.Pattern, str]] = [
    (TABLET_UA_RE, TABLET),
    (MOBILE_UA_RE, MOBILE),
]

BROWSER_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (lambda ua: "Edg" in ua, "Edge"),
    (lambda ua: "OPR/" in ua or "Opera" in ua, "Opera"),
    (lambda ua: "Brave" in ua, "Brave"),
    (lambda ua: "Chrome" in ua or "CriOS" in ua, "Chrome"),
    (lambda ua: "Firefox" in ua or "FxiOS" in ua, "Firefox"),
    (lambda ua: "Safari" in ua, "Safari"),
]

# iOS/Android are checked before macOS/Linux: their UAs mention "Mac OS X" and "Linux".
OS_RULES: List[Tuple[Callable[[str], bool], str]] = [
    (lambda ua: "Windows NT 10" in ua, "Windows 10/11"),
    (lambda ua: "Windows NT 6.3" in ua, "Windows 8.1"),
    (lambda ua: "Windows NT 6.2" in ua, "Windows 8"),
    (lambda ua: "Windows NT 6.1" in ua, "Windows 7"),
    (lambda ua: "Windows" in ua, "Windows"),
    (lambda ua: "iPhone" in ua or "iPad" in ua or "iPod" in ua, "iOS"),
    (lambda ua: "Android" in ua, "Android"),
    (lambda ua: "Mac OS X" in ua, "macOS"),
    (lambda ua: "Linux" in ua, "Linux"),
]


def _first_match(rules: Sequence[Tuple[Callable[[str], bool], str]], user_agent: str, default: str) -> str:
    for predicate, label in rules:
        if predicate(user_agent):
            return label
    return default


def detect_category_from_user_agent(user_agent: Optional[str]) -> str:
    ua = user_agent or ""
    for pattern, category in CATEGORY_UA_RULES:
        if pattern.search(ua):
            return category
    return DESKTOP


def detect_browser(user_agent: Optional[str]) -> str:
    return _first_match(BROWSER_RULES, user_agent or "", UNKNOWN)


def detect_os(user_agent: Optional[str]) -> str:
    return _first_match(OS_RULES, user_agent or "", UNKNOWN)


# --- combined ----------------------------------------------------------------

# Substring fallbacks used when detect_brand() has nothing to say.
FALLBACK_LABELS: Tuple[Tuple[str, str], ...] = (("iphone", IPHONE), ("android", ANDROID))
TRACKING_FALLBACK_LABELS: Tuple[Tuple[str, str], ...] = (
    ("iphone", IPHONE),
    ("ipad", "iPad"),
    ("android", ANDROID),
)


def classify(
    user_agent: Optional[str],
    screen_width: Optional[float],
    screen_height: Optional[float],
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> DeviceClassification:
    """Category from geometry when known, otherwise from the user agent; brand from the user agent."""
    if has_geometry(screen_width, screen_height):
        category = classify_by_resolution(screen_width, screen_height, thresholds)
    else:
        category = detect_category_from_user_agent(user_agent)
    return DeviceClassification(category=category, brand=detect_brand(user_agent))


def resolve_device_label(
    user_agent: Optional[str],
    category: str,
    fallbacks: Sequence[Tuple[str, str]] = FALLBACK_LABELS,
) -> str:
    """The value stored in ``visitors.device_type``.

    Handheld devices are labelled by brand alone ("Samsung", not "Samsung
    mobile"); desktops stay ``desktop``.
    """
    if category not in (MOBILE, TABLET):
        return category
    brand = detect_brand(user_agent)
    if brand != UNKNOWN:
        return brand
    ua = (user_agent or "").lower()
    for needle, label in fallbacks:
        if needle in ua:
            return label
    return category


def describe_visitor_device(
    user_agent: Optional[str],
    screen_width: Optional[float],
    screen_height: Optional[float],
    thresholds: ResolutionThresholds = DEFAULT_THRESHOLDS,
) -> str:
    """Device label recorded at visit time.

    A mobile user agent wins over a desktop-sized screen (phones in "desktop
    site" mode report large viewports).
    """
    category = classify(user_agent, screen_width, screen_height, thresholds)["category"]
    if category == DESKTOP and MOBILE_UA_RE.search(user_agent or ""):
        return resolve_device_label(user_agent, MOBILE)
    return resolve_device_label(user_agent, category, TRACKING_FALLBACK_LABELS)
