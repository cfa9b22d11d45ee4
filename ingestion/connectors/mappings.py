"""Lookup tables used by the adapters to classify upstream data."""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from ingestion.models.domain import Category, Severity

# First matching row wins; keywords are matched as substrings of the lowercased feed category.
FEED_CATEGORY_KEYWORDS: Tuple[Tuple[Category, Tuple[str, ...]], ...] = (
    (Category.WEATHER, ("weather", "storm", "rain", "flood", "temperature", "wind")),
    (Category.TRAFFIC, ("traffic", "road", "closure", "accident", "delay")),
    (Category.PUBLIC_SAFETY, ("safety", "police", "fire", "emergency", "crime")),
    (Category.HEALTH, ("health", "medical", "hospital")),
    (Category.UTILITY, ("utility", "power", "water", "gas", "outage")),
)

FEED_SEVERITY_KEYWORDS: Tuple[Tuple[Severity, Tuple[str, ...]], ...] = (
    (Severity.CRITICAL, ("critical", "emergency", "danger")),
    (Severity.HIGH, ("warning", "severe", "high")),
    (Severity.MEDIUM, ("watch", "advisory", "moderate")),
)

# WMO weather interpretation codes.
WEATHER_CONDITIONS = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Fog",
    51: "Drizzle",
    53: "Drizzle",
    55: "Drizzle",
    56: "Freezing drizzle",
    57: "Freezing drizzle",
    61: "Rain",
    63: "Rain",
    65: "Rain",
    66: "Freezing rain",
    67: "Freezing rain",
    71: "Snow",
    73: "Snow",
    75: "Snow",
    77: "Snow grains",
    80: "Rain showers",
    81: "Rain showers",
    82: "Rain showers",
    85: "Snow showers",
    86: "Snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with hail",
}
UNKNOWN_WEATHER = "Unknown weather"

# (low, high, index_low, index_high); US EPA breakpoints.
PM25_BREAKPOINTS: Tuple[Tuple[float, float, int, int], ...] = (
    (0.0, 12.0, 0, 50),
    (12.1, 35.4, 51, 100),
    (35.5, 55.4, 101, 150),
    (55.5, 150.4, 151, 200),
    (150.5, 250.4, 201, 300),
    (250.5, 500.0, 301, 500),
)
PM10_BREAKPOINTS: Tuple[Tuple[float, float, int, int], ...] = (
    (0, 54, 0, 50),
    (55, 154, 51, 100),
    (155, 254, 101, 150),
    (255, 354, 151, 200),
    (355, 424, 201, 300),
    (425, 504, 301, 400),
    (505, 604, 401, 500),
)
AQI_MAX = 500

# (upper AQI bound, health status, recommendation)
AQI_BANDS: Tuple[Tuple[int, str, str], ...] = (
    (50, "Good", "Air quality is satisfactory, and air pollution poses little or no risk."),
    (
        100,
        "Moderate",
        "Unusually sensitive people should consider reducing prolonged or heavy outdoor exertion.",
    ),
    (
        150,
        "Unhealthy for Sensitive Groups",
        "People with respiratory or heart disease, the elderly, and children should limit prolonged outdoor exertion.",
    ),
    (
        200,
        "Unhealthy",
        "Everyone may begin to experience health effects. Avoid prolonged outdoor exertion.",
    ),
    (
        300,
        "Very Unhealthy",
        "Health alert: everyone may experience more serious health effects. Avoid all outdoor exertion.",
    ),
    (
        AQI_MAX,
        "Hazardous",
        "Health warning: emergency conditions. Everyone should avoid all outdoor exertion and remain indoors.",
    ),
)


def _first_match(text: str, table: Sequence[Tuple[object, Tuple[str, ...]]]) -> Optional[object]:
    lowered = text.lower()
    for value, keywords in table:
        if any(keyword in lowered for keyword in keywords):
            return value
    return None


def category_for(label: Optional[str]) -> Category:
    if not label:
        return Category.OTHER
    return _first_match(label, FEED_CATEGORY_KEYWORDS) or Category.OTHER  # type: ignore[return-value]


def severity_for(label: Optional[str]) -> Severity:
    if not label:
        return Severity.LOW
    return _first_match(label, FEED_SEVERITY_KEYWORDS) or Severity.LOW  # type: ignore[return-value]


def weather_condition(code: int) -> str:
    return WEATHER_CONDITIONS.get(code, UNKNOWN_WEATHER)


def weather_severity(code: int) -> Severity:
    if code <= 3:
        return Severity.LOW
    if code <= 57:
        return Severity.MEDIUM
    if code <= 77:
        return Severity.HIGH if code >= 66 else Severity.MEDIUM
    if code <= 86:
        return Severity.HIGH if code >= 82 else Severity.MEDIUM
    if code >= 95:
        return Severity.CRITICAL
    return Severity.LOW


def aqi_severity(aqi: int) -> Severity:
    if aqi <= 50:
        return Severity.LOW
    if aqi <= 100:
        return Severity.MEDIUM
    if aqi <= 150:
        return Severity.HIGH
    return Severity.CRITICAL


def aqi_band(aqi: int) -> Tuple[str, str]:
    """(health status, recommendation) for an AQI value."""
    for upper, status, recommendation in AQI_BANDS:
        if aqi <= upper:
            return status, recommendation
    _, status, recommendation = AQI_BANDS[-1]
    return status, recommendation
