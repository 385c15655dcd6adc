"""
Property-based tests with hypothesis.

Invariants checked:
1. Normalization is idempotent
2. Adding a field never lowers the confidence score
3. Copy variation selection is deterministic and actually varies
4. The parser never raises on arbitrary text
"""
import pytest
from hypothesis import HealthCheck, given, settings as h_settings
from hypothesis.strategies import (
    composite,
    integers,
    lists,
    none,
    one_of,
    sampled_from,
    text,
)

from autoleads.domain.services import parser
from autoleads.domain.services.copywriting_service import select_variation
from autoleads.domain.services.display_code_service import determine_prefix, format_code, is_valid_code
from autoleads.domain.services.extraction_service import confidence_score, normalize_fields
from autoleads.domain.vehicle_draft import FuelType, Transmission, VehicleFields

# ============================================================================
# Strategies
# ============================================================================

BRANDS = one_of(none(), sampled_from(["Toyota", "honda", "mercy", "BMW", "Wuling", "vw"]))
MODELS = one_of(none(), sampled_from(["Avanza", "Jazz", "Freed PSD", "C200", "Xpander Ultimate"]))
COLORS = one_of(none(), sampled_from(["Hitam", "Silver", "Putih Metalik"]))
PLATES = one_of(none(), sampled_from(["B 1234 XYZ", "b1234xyz", "D 77 AB"]))
FEATURES = lists(sampled_from(["Velg Racing", "Spoiler", " ", "Sunroof"]), max_size=4)


@composite
def vehicle_fields(draw):
    return VehicleFields(
        brand=draw(BRANDS),
        model=draw(MODELS),
        year=draw(one_of(none(), integers(min_value=1990, max_value=2030))),
        color=draw(COLORS),
        transmission=draw(one_of(none(), sampled_from(list(Transmission)))),
        km=draw(one_of(none(), integers(min_value=0, max_value=500_000))),
        price=draw(one_of(none(), integers(min_value=1, max_value=5_000_000_000))),
        fuel_type=draw(one_of(none(), sampled_from(list(FuelType)))),
        plate_number=draw(PLATES),
        key_features=draw(FEATURES),
        notes=draw(one_of(none(), sampled_from(["Tangan pertama", "Pajak hidup"]))),
    )


OPTIONAL_UPDATES = [
    {"model": "Jazz"},
    {"km": 1000},
    {"transmission": Transmission.MATIC},
    {"color": "Merah"},
    {"key_features": ["Spoiler"]},
    {"notes": "Service record"},
]


class TestNormalizationProperties:

    @pytest.mark.unit
    @given(data=vehicle_fields())
    @h_settings(max_examples=100, suppress_health_check=[HealthCheck.too_slow])
    def test_normalize_is_idempotent(self, data):
        """Normalizing twice gives the same result as normalizing once"""
        once = normalize_fields(data)
        assert normalize_fields(once) == once

    @pytest.mark.unit
    @given(data=vehicle_fields())
    def test_normalized_plate_variants_agree(self, data):
        normalized = normalize_fields(data)
        if normalized.plate_number:
            assert normalized.plate_number_clean == normalized.plate_number.replace(" ", "")
        else:
            assert normalized.plate_number_clean is None


class TestConfidenceProperties:

    @pytest.mark.unit
    @given(data=vehicle_fields(), update=sampled_from(OPTIONAL_UPDATES))
    def test_adding_a_field_never_lowers_score(self, data, update):
        enriched = data.model_copy(update=update)
        assert confidence_score(enriched) >= confidence_score(data)

    @pytest.mark.unit
    @given(data=vehicle_fields())
    def test_score_is_bounded(self, data):
        assert 0 <= confidence_score(data) <= 18


class TestVariationProperties:

    @pytest.mark.unit
    @given(data=vehicle_fields())
    def test_selection_is_deterministic(self, data):
        first = select_variation(data)
        second = select_variation(data.model_copy())
        assert first == second

    @pytest.mark.unit
    def test_selection_varies_across_vehicles(self):
        """Twenty different listings do not all get the same style and angle"""
        pairs = {
            (variation.style.key, variation.angle.key)
            for variation in (
                select_variation(VehicleFields(brand="Toyota", model="Avanza", year=2000 + i, price=100_000_000 + i))
                for i in range(20)
            )
        }
        assert len(pairs) >= 2


class TestParserProperties:

    @pytest.mark.unit
    @given(raw=text(max_size=200))
    @h_settings(max_examples=200)
    def test_parser_never_raises(self, raw):
        fields = parser.parse_all_in_one(raw)
        if fields.year is not None:
            assert 2000 <= fields.year <= 2025

    @pytest.mark.unit
    @given(raw=text(max_size=50))
    def test_price_is_positive_or_none(self, raw):
        price = parser.parse_price(raw)
        assert price is None or price >= 0


class TestDisplayCodeProperties:

    @pytest.mark.unit
    @given(brand=BRANDS, model=MODELS, number=integers(min_value=1, max_value=99_999))
    def test_formatted_codes_are_valid(self, brand, model, number):
        code = format_code(determine_prefix(brand, model), number)
        assert is_valid_code(code)
