"""Tests for option validation and argument helpers."""

from __future__ import annotations

import pytest

from sessionsweep.config import (
    DEFAULT_PROBE_TIMEOUT,
    EMPTY_LM_HASH,
    CollectionOptions,
    ConfigurationError,
    parse_domain_aliases,
    parse_hash,
)


class TestParseHash:
    def test_lm_and_nt(self):
        assert parse_hash("aa:bb") == ("aa", "bb")

    def test_nt_only_gets_empty_lm(self):
        assert parse_hash("8846f7eaee8fb117ad06bdd830b7586c") == (
            EMPTY_LM_HASH,
            "8846f7eaee8fb117ad06bdd830b7586c",
        )


class TestParseDomainAliases:
    def test_pairs_are_upper_cased_on_netbios_side(self):
        assert parse_domain_aliases(["corp=corp.local", " LAB = lab.corp.local "]) == {
            "CORP": "corp.local",
            "LAB": "lab.corp.local",
        }

    def test_none(self):
        assert parse_domain_aliases(None) == {}

    def test_missing_separator(self):
        with pytest.raises(ConfigurationError):
            parse_domain_aliases(["corp"])


class TestCollectionOptions:
    def test_defaults_are_valid(self):
        options = CollectionOptions().validate()
        assert options.probe_timeout == DEFAULT_PROBE_TIMEOUT
        assert not options.disable_registry_logged_on
        assert not options.dump_computer_status

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            CollectionOptions(probe_timeout=0).validate()

    def test_blank_alias(self):
        with pytest.raises(ConfigurationError):
            CollectionOptions(domain_aliases={"CORP": ""}).validate()
