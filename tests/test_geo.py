"""Tests for coordinate keys, city extraction, flags and EXIF parsing."""

import pytest

from travelmap.utils.exif import dms_to_decimal, extract_exif
from travelmap.utils.geo import (
    WORLD_FLAG,
    centroid,
    country_code_to_flag,
    country_name_to_code,
    extract_city,
    format_coordinates,
    get_country_flag,
    location_key,
)
from travelmap.utils.image import (
    bytes_to_data_url,
    compress_data_url,
    data_url_to_bytes,
    is_data_url,
)


class TestLocationKey:
    def test_rounds_to_four_decimals(self):
        assert location_key(40.416775, -3.70379) == "40.4168_-3.7038"

    def test_nearby_points_share_a_key(self):
        assert location_key(48.85661, 2.35222) == location_key(48.85659, 2.35218)


class TestExtractCity:
    def test_first_segment(self):
        assert extract_city("Paris, France", "Madrid") == "Paris"

    def test_missing_location_uses_fallback(self):
        assert extract_city(None, "Madrid") == "Madrid"
        assert extract_city("", "Madrid") == "Madrid"

    def test_names_with_commas_are_cut(self):
        assert extract_city("Washington, D.C., United States", "Madrid") == "Washington"


class TestDmsToDecimal:
    def test_north_east_positive(self):
        assert dms_to_decimal((40, 25, 0.48), "N") == pytest.approx(40.4168, abs=1e-4)

    def test_south_west_negative(self):
        assert dms_to_decimal((3, 42, 13.68), "W") == pytest.approx(-3.7038, abs=1e-4)
        assert dms_to_decimal((33, 52, 4), b"S") < 0

    def test_invalid_triple(self):
        assert dms_to_decimal((1, 2), "N") is None
        assert dms_to_decimal(None, "N") is None


class TestFlags:
    def test_code_to_flag(self):
        assert country_code_to_flag("es") == "\U0001F1EA\U0001F1F8"

    def test_invalid_code_is_world(self):
        assert country_code_to_flag(None) == WORLD_FLAG
        assert country_code_to_flag("ESP") == WORLD_FLAG

    def test_name_lookup_ignores_accents_and_case(self):
        assert country_name_to_code("ESPAÑA") == "ES"
        assert country_name_to_code("Japon") == "JP"
        assert country_name_to_code("Atlantis") is None

    def test_code_wins_over_name(self):
        assert get_country_flag("Francia", "IT") == country_code_to_flag("IT")
        assert get_country_flag("Francia") == country_code_to_flag("FR")


def test_format_coordinates():
    assert format_coordinates(12.345678, -0.5) == "12.3457°, -0.5000°"


def test_centroid_is_unweighted_mean():
    assert centroid([(0.0, 0.0), (2.0, 4.0)]) == (1.0, 2.0)


class TestExif:
    def test_gps_and_date(self, jpeg):
        data = jpeg(gps=(48.8566, 2.3522), date="2024:05:01 10:00:00")

        meta = extract_exif(data)

        assert meta["latitude"] == pytest.approx(48.8566, abs=1e-4)
        assert meta["longitude"] == pytest.approx(2.3522, abs=1e-4)
        assert meta["date"] == "2024:05:01 10:00:00"
        assert (meta["width"], meta["height"]) == (64, 48)

    def test_southern_western_hemisphere(self, jpeg):
        meta = extract_exif(jpeg(gps=(-34.6037, -58.3816)))

        assert meta["latitude"] == pytest.approx(-34.6037, abs=1e-4)
        assert meta["longitude"] == pytest.approx(-58.3816, abs=1e-4)

    def test_no_exif(self, jpeg):
        meta = extract_exif(jpeg())

        assert meta["latitude"] is None
        assert meta["date"] is None
        assert meta["width"] == 64

    def test_not_an_image(self):
        meta = extract_exif(b"definitely not a jpeg")

        assert meta["width"] is None
        assert meta["latitude"] is None


class TestDataUrls:
    def test_round_trip(self):
        url = bytes_to_data_url(b"\x00\x01payload")

        assert is_data_url(url)
        assert data_url_to_bytes(url) == b"\x00\x01payload"

    def test_rejects_plain_urls(self):
        with pytest.raises(ValueError):
            data_url_to_bytes("https://example.com/a.jpg")

    def test_compress_shrinks_wide_images(self, jpeg):
        url = bytes_to_data_url(jpeg(width=1200, height=800, noise=True))

        smaller = compress_data_url(url, 600, 0.6)

        assert len(smaller) < len(url)

    def test_compress_keeps_undecodable_input(self):
        url = bytes_to_data_url(b"garbage")

        assert compress_data_url(url, 600, 0.6) == url
        assert compress_data_url("https://example.com/a.jpg") == "https://example.com/a.jpg"
