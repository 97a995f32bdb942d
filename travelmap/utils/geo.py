"""Coordinate keys, city extraction and country flag helpers."""

import unicodedata

# Country names (Spanish and English spellings) -> ISO 3166-1 alpha-2
COUNTRY_TO_CODE = {
    "argentina": "AR", "república argentina": "AR",
    "españa": "ES", "spain": "ES",
    "francia": "FR", "france": "FR",
    "italia": "IT", "italy": "IT",
    "alemania": "DE", "germany": "DE",
    "portugal": "PT",
    "reino unido": "GB", "united kingdom": "GB", "uk": "GB", "england": "GB", "inglaterra": "GB",
    "estados unidos": "US", "united states": "US", "usa": "US", "eeuu": "US",
    "méxico": "MX", "mexico": "MX",
    "brasil": "BR", "brazil": "BR",
    "chile": "CL", "colombia": "CO", "perú": "PE", "peru": "PE",
    "venezuela": "VE", "ecuador": "EC", "uruguay": "UY", "paraguay": "PY",
    "bolivia": "BO", "cuba": "CU", "república dominicana": "DO",
    "puerto rico": "PR", "costa rica": "CR", "panamá": "PA", "panama": "PA",
    "guatemala": "GT", "honduras": "HN", "el salvador": "SV", "nicaragua": "NI",
    "canadá": "CA", "canada": "CA", "japón": "JP", "japan": "JP",
    "china": "CN", "corea del sur": "KR", "india": "IN",
    "australia": "AU", "nueva zelanda": "NZ", "new zealand": "NZ",
    "rusia": "RU", "russia": "RU", "países bajos": "NL", "netherlands": "NL",
    "bélgica": "BE", "belgium": "BE", "suiza": "CH", "switzerland": "CH",
    "austria": "AT", "grecia": "GR", "greece": "GR", "turquía": "TR",
    "polonia": "PL", "suecia": "SE", "noruega": "NO", "dinamarca": "DK",
    "finlandia": "FI", "irlanda": "IE", "ireland": "IE", "croacia": "HR",
    "marruecos": "MA", "morocco": "MA", "egipto": "EG", "egypt": "EG",
    "sudáfrica": "ZA", "israel": "IL", "tailandia": "TH", "singapur": "SG",
}

WORLD_FLAG = "\U0001F30D"

# Key precision: 4 decimals ≈ 11m
KEY_PRECISION = 4


def location_key(lat: float, lon: float) -> str:
    """Rounded coordinate key shared by every photo of one location group."""
    return f"{lat:.{KEY_PRECISION}f}_{lon:.{KEY_PRECISION}f}"


def extract_city(location: str | None, fallback: str) -> str:
    """City name of a "City, Region, Country" display string.

    Takes the first comma-delimited segment; multi-part names that contain
    commas are cut at the first one.
    """
    if not location:
        return fallback
    city = location.split(",")[0].strip()
    return city or fallback


def format_coordinates(lat: float, lon: float) -> str:
    return f"{lat:.4f}°, {lon:.4f}°"


def normalize_string(value: str | None) -> str:
    """Lowercase, strip accents and surrounding whitespace."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", value.lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c)).strip()


def _normalized_country_table() -> dict[str, str]:
    return {normalize_string(name): code for name, code in COUNTRY_TO_CODE.items()}


_NORMALIZED_COUNTRIES = _normalized_country_table()


def country_code_to_flag(country_code: str | None) -> str:
    """Regional-indicator emoji for an ISO alpha-2 code, world globe otherwise."""
    if not country_code or len(country_code) != 2 or not country_code.isalpha():
        return WORLD_FLAG
    return "".join(chr(127397 + ord(c)) for c in country_code.upper())


def country_name_to_code(country_name: str | None) -> str | None:
    """Resolve a country name to its ISO code, exact match first, then partial."""
    normalized = normalize_string(country_name)
    if not normalized:
        return None
    code = _NORMALIZED_COUNTRIES.get(normalized)
    if code:
        return code
    for name, candidate in _NORMALIZED_COUNTRIES.items():
        if name in normalized or normalized in name:
            return candidate
    return None


def get_country_flag(country_name: str | None, country_code: str | None = None) -> str:
    """Flag for a country: a known ISO code wins over name lookup."""
    if country_code and len(country_code) == 2:
        return country_code_to_flag(country_code)
    return country_code_to_flag(country_name_to_code(country_name))


def centroid(points: list[tuple[float, float]]) -> tuple[float, float]:
    """Arithmetic mean of (lat, lon) points."""
    lat = sum(p[0] for p in points) / len(points)
    lon = sum(p[1] for p in points) / len(points)
    return lat, lon
