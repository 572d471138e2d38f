import pytest

from costpulse.models import CanonicalModel, PriceDirection
from costpulse.sources.matching import PRICE_RULES, identify_meter, identify_price_entry
from costpulse.sources.pricing import parse_pricing_items
from tests.conftest import price_item


class TestIdentifyPriceEntry:
    @pytest.mark.parametrize(
        "meter, expected",
        [
            ("gpt-4o input", (CanonicalModel.GPT_4O, PriceDirection.INPUT)),
            ("gpt-4o output", (CanonicalModel.GPT_4O, PriceDirection.OUTPUT)),
            ("gpt-4o-mini input", (CanonicalModel.GPT_4O_MINI, PriceDirection.INPUT)),
            ("gpt-4o-mini output", (CanonicalModel.GPT_4O_MINI, PriceDirection.OUTPUT)),
            ("gpt-4 turbo input", (CanonicalModel.GPT_4_TURBO, PriceDirection.INPUT)),
            ("gpt-4-turbo output", (CanonicalModel.GPT_4_TURBO, PriceDirection.OUTPUT)),
            ("gpt-4-32k input", (CanonicalModel.GPT_4, PriceDirection.INPUT)),
            ("gpt-4 output", (CanonicalModel.GPT_4, PriceDirection.OUTPUT)),
            ("gpt-35-turbo input", (CanonicalModel.GPT_35_TURBO, PriceDirection.INPUT)),
            ("GPT-35-Turbo Output", (CanonicalModel.GPT_35_TURBO, PriceDirection.OUTPUT)),
        ],
    )
    def test_known_entries(self, meter, expected):
        assert identify_price_entry(meter, "Azure OpenAI") == expected

    def test_mini_is_never_classified_as_base_model(self):
        model, _ = identify_price_entry("gpt-4o-mini-0718 input", "Azure OpenAI")
        assert model == CanonicalModel.GPT_4O_MINI

    @pytest.mark.parametrize("meter", ["dall-e-3 image", "whisper audio", "gpt-4o", "text-embedding-3 input", ""])
    def test_unmatched_entries(self, meter):
        assert identify_price_entry(meter, "Azure OpenAI") is None

    def test_none_fields(self):
        assert identify_price_entry(None, None) is None

    def test_specific_rules_come_first(self):
        order = [(r.model, r.direction) for r in PRICE_RULES]
        assert order.index((CanonicalModel.GPT_4O_MINI, PriceDirection.INPUT)) < order.index(
            (CanonicalModel.GPT_4O, PriceDirection.INPUT)
        )
        assert order.index((CanonicalModel.GPT_4O, PriceDirection.INPUT)) < order.index(
            (CanonicalModel.GPT_4, PriceDirection.INPUT)
        )


class TestIdentifyMeter:
    @pytest.mark.parametrize(
        "meter, expected",
        [
            ("gpt-4o-mini input tokens", CanonicalModel.GPT_4O_MINI),
            ("gpt-4o output tokens", CanonicalModel.GPT_4O),
            ("gpt-4 turbo input tokens", CanonicalModel.GPT_4_TURBO),
            ("gpt-4-turbo output tokens", CanonicalModel.GPT_4_TURBO),
            ("gpt-4-32k input tokens", CanonicalModel.GPT_4),
            ("gpt-35-turbo input tokens", CanonicalModel.GPT_35_TURBO),
            ("gpt-3.5-turbo output tokens", CanonicalModel.GPT_35_TURBO),
        ],
    )
    def test_known_meters(self, meter, expected):
        assert identify_meter(meter) == expected

    @pytest.mark.parametrize("meter", [None, "", "Standard S0 text records", "dall-e-3 images"])
    def test_unknown_meters(self, meter):
        assert identify_meter(meter) is None


class TestNewerFamiliesStayUnidentified:
    @pytest.mark.parametrize("meter", ["gpt-4.1 input", "gpt-4.1 output", "gpt-4.5 output", "gpt-4.1-mini input", "gpt-4.1 turbo input"])
    def test_price_entries(self, meter):
        assert identify_price_entry(meter, "Azure OpenAI") is None

    @pytest.mark.parametrize("meter", ["gpt-4.1-mini input tokens", "gpt-4.1 output tokens", "gpt-4.5 input tokens"])
    def test_meters(self, meter):
        assert identify_meter(meter) is None

    def test_gpt_4_keeps_its_own_prices(self):
        records = parse_pricing_items(
            [
                price_item("gpt-4 input", 0.00003),
                price_item("gpt-4 output", 0.00006),
                price_item("gpt-4.1 input", 0.000002),
                price_item("gpt-4.1 output", 0.000008),
            ],
            "westeurope",
        )
        assert [(r.model, r.input_price, r.output_price) for r in records] == [
            (CanonicalModel.GPT_4, 0.00003, 0.00006)
        ]
