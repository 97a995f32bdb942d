"""Trip statistics derived from the photo store and its groupings."""

import re

from travelmap.client.models import Photo, Stats
from travelmap.client.state import AppState
from travelmap.utils.geo import WORLD_FLAG, get_country_flag

_COORDINATE = re.compile(r"^\d+\.?\d*°$")


def _countries(state: AppState) -> list[str]:
    countries: dict[str, None] = {}
    for group in state.city_groups.values():
        if group.country:
            countries.setdefault(group.country)
    for photo in state:
        if photo.country:
            countries.setdefault(photo.country)

    # Last resort: the trailing segment of "City, Country" location strings
    if not countries:
        for photo in state:
            if not photo.location or photo.country:
                continue
            parts = photo.location.split(",")
            if len(parts) < 2:
                continue
            country = parts[-1].strip()
            if country and len(country) < 50 and not _COORDINATE.match(country):
                countries.setdefault(country)
    return list(countries)


def country_flags(state: AppState) -> dict[str, str]:
    """Country name -> flag emoji, for countries with a known flag."""
    flags = {}
    for photo in state:
        if not photo.country:
            continue
        country = photo.country.strip()
        if country in flags:
            continue
        flag = get_country_flag(country, photo.country_code)
        if flag and flag != WORLD_FLAG:
            flags[country] = flag
    return flags


def compute_stats(state: AppState) -> Stats:
    cities = {g.city for g in state.city_groups.values() if g.city}
    countries = _countries(state)
    return Stats(
        total_photos=len(state),
        total_locations=len(cities) if cities else len(state.location_groups),
        total_countries=len(countries),
        countries=countries,
        flags=country_flags(state),
    )


def photos_by_country(state: AppState, country: str) -> list[Photo]:
    country = country.strip()
    return [p for p in state if p.country and p.country.strip() == country]
