"""
Unit tests for rubric parsing and validation.

Tests the Rubric model defaults and aliases, the blob parser with its error
cases, and the lab-level validator.
"""

import json
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from dissection_grader.models import Rubric
from dissection_grader.rubric import (
    RubricParseError,
    RubricParser,
    RubricValidationError,
    RubricValidator,
)


class TestRubricModel:
    """Tests for the Rubric model."""

    def test_defaults(self, default_rubric: Rubric) -> None:
        """Test every setting has an explicit default."""
        assert default_rubric.hint_penalty_percent == Decimal("10")
        assert default_rubric.fuzzy_match_enabled is True
        assert default_rubric.partial_credit_enabled is False
        assert default_rubric.accepted_aliases == {}
        assert default_rubric.category_weights is None
        assert default_rubric.fuzzy_min_length == 3
        assert not default_rubric.is_category_weighted

    def test_camel_case_keys(self) -> None:
        """Test the lab builder's keys are accepted."""
        rubric = Rubric.model_validate(
            {
                "hintPenaltyPercent": 25,
                "fuzzyMatch": False,
                "partialCredit": True,
                "acceptedAliases": {"s-1": ["LV", "left chamber"]},
                "categoryWeights": {"cardiovascular": 2},
            }
        )

        assert rubric.hint_penalty_percent == Decimal("25")
        assert rubric.fuzzy_match_enabled is False
        assert rubric.partial_credit_enabled is True
        assert rubric.aliases_for("s-1") == ("LV", "left chamber")
        assert rubric.category_weights == {"cardiovascular": Decimal("2")}
        assert rubric.is_category_weighted

    def test_enabled_suffix_keys(self) -> None:
        rubric = Rubric.model_validate({"fuzzyMatchEnabled": False, "partialCreditEnabled": True})

        assert rubric.fuzzy_match_enabled is False
        assert rubric.partial_credit_enabled is True

    def test_float_penalty_is_exact_decimal(self) -> None:
        rubric = Rubric.model_validate({"hintPenaltyPercent": 12.5})
        assert rubric.hint_penalty_percent == Decimal("12.5")

    def test_null_penalty_uses_default(self) -> None:
        assert Rubric.model_validate({"hintPenaltyPercent": None}).hint_penalty_percent == Decimal("10")

    def test_unknown_keys_ignored(self) -> None:
        rubric = Rubric.model_validate({"timeLimitMinutes": 30, "fuzzyMatch": True})
        assert rubric.fuzzy_match_enabled is True

    def test_single_alias_string(self) -> None:
        rubric = Rubric.model_validate({"acceptedAliases": {"s-1": "LV"}})
        assert rubric.aliases_for("s-1") == ("LV",)

    def test_aliases_for_unknown_structure(self, default_rubric: Rubric) -> None:
        assert default_rubric.aliases_for("missing") == ()

    @pytest.mark.parametrize("penalty", [-1, 101])
    def test_penalty_range(self, penalty: int) -> None:
        with pytest.raises(ValidationError):
            Rubric.model_validate({"hintPenaltyPercent": penalty})

    def test_negative_weight_rejected(self) -> None:
        with pytest.raises(ValidationError, match="cannot be negative"):
            Rubric.model_validate({"categoryWeights": {"cardiovascular": -1}})

    def test_immutable(self, default_rubric: Rubric) -> None:
        """Test that rubric is immutable."""
        with pytest.raises(ValidationError):
            default_rubric.fuzzy_match_enabled = False  # type: ignore


class TestRubricParser:
    """Tests for RubricParser."""

    def test_parse_none(self) -> None:
        """Test a lab without a rubric gets defaults."""
        assert RubricParser().parse(None) == Rubric()

    def test_parse_mapping(self) -> None:
        rubric = RubricParser().parse({"hintPenaltyPercent": 20})
        assert rubric.hint_penalty_percent == Decimal("20")

    def test_parse_json_text(self) -> None:
        content = json.dumps({"partialCredit": True, "acceptedAliases": {"s-1": ["LV"]}})
        rubric = RubricParser().parse(content)

        assert rubric.partial_credit_enabled is True
        assert rubric.aliases_for("s-1") == ("LV",)

    def test_parse_blank_text(self) -> None:
        assert RubricParser().parse("  ") == Rubric()

    def test_parse_invalid_json(self) -> None:
        with pytest.raises(RubricParseError, match="Invalid JSON"):
            RubricParser().parse("{not json")

    def test_parse_non_object(self) -> None:
        with pytest.raises(RubricParseError, match="JSON object"):
            RubricParser().parse("[1, 2]")

    def test_parse_invalid_setting_names_field(self) -> None:
        """Test validation failures report the offending key."""
        with pytest.raises(RubricParseError) as exc_info:
            RubricParser().parse({"hintPenaltyPercent": 150})

        assert exc_info.value.field in {"hintPenaltyPercent", "hint_penalty_percent"}
        assert "less than or equal to 100" in str(exc_info.value)

    def test_parse_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rubric.json"
        path.write_text(json.dumps({"fuzzyMatch": False}), encoding="utf-8")

        assert RubricParser().parse_file(path).fuzzy_match_enabled is False

    def test_parse_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RubricParseError, match="Cannot read"):
            RubricParser().parse_file(tmp_path / "missing.json")


class TestRubricValidator:
    """Tests for RubricValidator."""

    def test_validate_valid_rubric(self) -> None:
        rubric = Rubric.model_validate(
            {"acceptedAliases": {"s-1": ["LV"]}, "categoryWeights": {"cardiovascular": 2}}
        )
        is_valid, issues = RubricValidator().validate(
            rubric,
            structure_ids=["s-1", "s-2"],
            categories=["cardiovascular", "default"],
            max_points=Decimal("100"),
        )

        assert is_valid
        assert issues == []

    def test_alias_for_unknown_structure(self) -> None:
        rubric = Rubric.model_validate({"acceptedAliases": {"s-9": ["LV"]}})
        is_valid, issues = RubricValidator().validate(rubric, structure_ids=["s-1"])

        assert not is_valid
        assert any("s-9" in issue for issue in issues)

    def test_structure_check_skipped_without_ids(self) -> None:
        rubric = Rubric.model_validate({"acceptedAliases": {"s-9": ["LV"]}})
        assert RubricValidator().validate(rubric)[0]

    def test_blank_alias(self) -> None:
        rubric = Rubric.model_validate({"acceptedAliases": {"s-1": ["LV", "?!"]}})
        is_valid, issues = RubricValidator().validate(rubric)

        assert not is_valid
        assert "Alias 2" in issues[0]

    def test_weight_for_unused_category(self) -> None:
        rubric = Rubric.model_validate({"categoryWeights": {"respiratory": 1}})
        is_valid, issues = RubricValidator().validate(rubric, categories=["cardiovascular"])

        assert not is_valid
        assert any("respiratory" in issue for issue in issues)

    def test_all_weights_zero(self) -> None:
        rubric = Rubric.model_validate({"categoryWeights": {"cardiovascular": 0}})
        is_valid, issues = RubricValidator().validate(rubric, categories=["cardiovascular"])

        assert not is_valid
        assert any("weight 0" in issue for issue in issues)

    def test_unweighted_category_counts_as_one(self) -> None:
        """Test a zero weight is fine while another category weighs 1 by default."""
        rubric = Rubric.model_validate({"categoryWeights": {"cardiovascular": 0}})
        is_valid, _ = RubricValidator().validate(rubric, categories=["cardiovascular", "default"])

        assert is_valid

    def test_non_positive_max_points(self, default_rubric: Rubric) -> None:
        is_valid, issues = RubricValidator().validate(default_rubric, max_points=Decimal("0"))

        assert not is_valid
        assert "max points" in issues[0]

    def test_validate_or_raise(self) -> None:
        rubric = Rubric.model_validate({"acceptedAliases": {"s-9": ["LV"]}})

        with pytest.raises(RubricValidationError) as exc_info:
            RubricValidator().validate_or_raise(rubric, structure_ids=["s-1"])

        assert len(exc_info.value.errors) == 1

    def test_validate_or_raise_valid(self, default_rubric: Rubric) -> None:
        RubricValidator().validate_or_raise(default_rubric)  # Should not raise
