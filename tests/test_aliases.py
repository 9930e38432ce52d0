"""Tests for artist alias resolution and alias group validation."""

import pytest

from pipeline.aliases import AliasResolver, normalize_name, validate_alias_groups
from utils.exceptions import ConfigurationError

GROUPS = [
    ["Aphex Twin", "AFX", "Polygon Window"],
    ["Moodymann", "KDJ"],
]


class TestAliasResolver:
    def test_alias_resolves_to_primary(self):
        resolver = AliasResolver(GROUPS)

        assert resolver.resolve("AFX") == "Aphex Twin"
        assert resolver.resolve("KDJ") == "Moodymann"

    def test_matching_ignores_case_whitespace_and_accents(self):
        resolver = AliasResolver([["Röyksopp", "Royksopp"]])

        assert resolver.resolve("  röyksopp ") == "Röyksopp"
        assert resolver.resolve("ROYKSOPP") == "Röyksopp"

    def test_unknown_name_is_unchanged(self):
        assert AliasResolver(GROUPS).resolve("Burial") == "Burial"

    def test_empty_name_is_unchanged(self):
        assert AliasResolver(GROUPS).resolve("") == ""

    def test_aliases_for_lists_group_primary_first(self):
        resolver = AliasResolver(GROUPS)

        assert resolver.aliases_for("polygon window") == ["Aphex Twin", "AFX", "Polygon Window"]
        assert resolver.aliases_for("Burial") == ["Burial"]

    def test_first_mapping_wins_on_overlap(self):
        resolver = AliasResolver([["A", "Shared"], ["B", "Shared"]])

        assert resolver.resolve("Shared") == "A"

    def test_len_counts_groups(self):
        assert len(AliasResolver(GROUPS)) == 2


def test_normalize_name():
    assert normalize_name("  Aphex   TWIN ") == "aphex twin"
    assert normalize_name("Ãmé") == "ame"


class TestValidation:
    def test_valid_groups_have_no_issues(self):
        assert validate_alias_groups(GROUPS) == []

    def test_empty_group_is_an_error(self):
        issues = validate_alias_groups([[]])

        assert [(i.severity, i.group_index) for i in issues] == [("error", 0)]

    def test_empty_alias_is_an_error(self):
        issues = validate_alias_groups([["Primary", "", "Alias"]])

        assert any(i.severity == "error" and "position 1" in i.message for i in issues)

    def test_whitespace_is_a_warning(self):
        issues = validate_alias_groups([["Primary ", "Alias"]])

        assert [i.severity for i in issues] == ["warning"]

    def test_group_without_aliases_is_a_warning(self):
        issues = validate_alias_groups([["Lonely"]])

        assert len(issues) == 1
        assert issues[0].severity == "warning"
        assert "no aliases" in issues[0].message

    def test_name_in_two_groups_is_an_error(self):
        issues = validate_alias_groups([["A", "Shared"], ["B", "shared"]])

        errors = [i for i in issues if i.severity == "error"]
        assert len(errors) == 1
        assert errors[0].group_index == 1

    def test_primary_used_as_alias_elsewhere(self):
        issues = validate_alias_groups([["A", "X"], ["B", "A"]])

        assert any("is the primary of group 0" in i.message for i in issues)

    def test_strict_mode_raises_on_errors(self):
        with pytest.raises(ConfigurationError):
            validate_alias_groups([["A", ""]], strict=True)

    def test_strict_mode_tolerates_warnings(self):
        issues = validate_alias_groups([["Lonely"]], strict=True)

        assert len(issues) == 1

    def test_from_groups_builds_resolver_despite_warnings(self):
        resolver = AliasResolver.from_groups([["Aphex Twin ", "AFX"]])

        assert resolver.resolve("afx") == "Aphex Twin"
