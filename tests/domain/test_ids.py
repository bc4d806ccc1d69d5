"""
Human-facing code generation for deliveries and units.
"""

import pytest

from ppe_kernel.domain.ids import (
    SHORT_CODE_ALPHABET,
    SHORT_CODE_LENGTH,
    ShortCodeGenerator,
    UUIDIdGenerator,
    is_valid_short_code,
)


class TestShortCodeGenerator:

    def test_shape(self):
        code = ShortCodeGenerator().new_code("E")

        assert len(code) == 1 + SHORT_CODE_LENGTH
        assert code[0] == "E"
        assert all(c in SHORT_CODE_ALPHABET for c in code[1:])
        assert is_valid_short_code(code, "E")

    def test_no_ambiguous_characters(self):
        assert not set("01OIL") & set(SHORT_CODE_ALPHABET)

    @pytest.mark.parametrize("prefix", ["", "EI", "e", "7"])
    def test_bad_prefix(self, prefix):
        with pytest.raises(ValueError):
            ShortCodeGenerator().new_code(prefix)

    def test_codes_vary(self):
        generator = ShortCodeGenerator()

        assert len({generator.new_code("I") for _ in range(50)}) > 1


class TestUUIDIdGenerator:

    def test_prefix_and_uniqueness(self):
        generator = UUIDIdGenerator()

        first, second = generator.new_code("E"), generator.new_code("E")

        assert first.startswith("E-")
        assert len(first) == 2 + 32
        assert first != second
        assert not is_valid_short_code(first)


class TestIsValidShortCode:

    @pytest.mark.parametrize("code", ["E2345", "E23456X", "e23456", "E2345O"])
    def test_rejects(self, code):
        assert not is_valid_short_code(code)

    def test_prefix_mismatch(self):
        assert not is_valid_short_code("E23456", "I")
