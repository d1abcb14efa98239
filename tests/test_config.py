"""
Tests for configuration loading and validation.
"""

import pytest

from blastradius.config import (
    DEFAULTS, config_from_dict, find_config_file, get_default_config, load_config, save_config
)
from blastradius.errors import ConfigError
from blastradius.types import Dimension


class TestDefaults:

    def test_default_thresholds(self):
        config = get_default_config()
        assert config.threshold_for(Dimension.DATA_FLOW) == 0.5
        assert config.threshold_for("Reference") == 0.0
        assert config.plan_thresholds == DEFAULTS["plan_thresholds"]
        assert config.contracts["declared_side"] == "frontend"

    def test_defaults_are_not_shared(self):
        first = get_default_config()
        first.contracts["mappings"]["A"] = "B"
        assert get_default_config().contracts["mappings"] == {}

    def test_type_groups(self):
        config = get_default_config()
        assert config.type_group("String") == "string"
        assert config.type_group("Widget") is None


class TestConfigFromDict:

    def test_partial_sections_merge_over_defaults(self):
        config = config_from_dict({"confidence_thresholds": {"DataFlow": 0.8}})
        assert config.threshold_for("DataFlow") == 0.8
        assert config.threshold_for("Consistency") == 0.5

    def test_mappings_replace_defaults(self):
        config = config_from_dict({"contracts": {"mappings": {"UserInput": "UserDTO"}}})
        assert config.contracts["mappings"] == {"UserInput": "UserDTO"}
        assert config.contracts["route_prefixes"] == []

    def test_unknown_key_is_fatal(self):
        with pytest.raises(ConfigError):
            config_from_dict({"thresholds": {}})

    def test_type_in_two_groups_is_fatal(self):
        with pytest.raises(ConfigError) as exc:
            config_from_dict({"type_equivalence": {"a": ["int"], "b": ["int", "long"]}})
        assert "int" in str(exc.value)

    @pytest.mark.parametrize("data", [
        {"confidence_thresholds": {"DataFlow": 1.5}},
        {"confidence_thresholds": {"Telepathy": 0.5}},
        {"plan_thresholds": {"full_sync_max_impacted": -1}},
        {"plan_thresholds": {"refactor_mismatch_ratio": "half"}},
        {"contracts": {"declared_side": "middle"}},
        {"contracts": {"naming_rules": {"mobile": {}}}},
        {"contracts": {"route_prefixes": "/api"}},
        {"scan": {"jobs": 0}},
        {"critical_dependents_threshold": 0},
    ])
    def test_malformed_tables_are_fatal(self, data):
        with pytest.raises(ConfigError):
            config_from_dict(data)


class TestConfigFiles:

    def test_load_from_file(self, tmp_path):
        path = tmp_path / ".blastradius.yml"
        path.write_text("contracts:\n  route_prefixes: ['/api']\nscan:\n  jobs: 2\n")

        config = load_config(str(path))

        assert config.contracts["route_prefixes"] == ["/api"]
        assert config.scan["jobs"] == 2
        assert "manifest" in config.scan["extractor_patterns"]

    def test_no_path_gives_defaults(self):
        assert load_config(None).to_dict() == get_default_config().to_dict()

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "blastradius.yml"
        path.write_text("")
        assert load_config(str(path)).to_dict() == get_default_config().to_dict()

    def test_invalid_yaml_is_fatal(self, tmp_path):
        path = tmp_path / "blastradius.yml"
        path.write_text("contracts: [unclosed\n")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_missing_file_is_fatal(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "missing.yml"))

    def test_save_and_reload(self, tmp_path):
        config = config_from_dict({"contracts": {"mappings": {"A": "B"}}})
        path = tmp_path / "nested" / "blastradius.yaml"

        save_config(config, str(path))

        assert load_config(str(path)).to_dict() == config.to_dict()

    def test_find_config_file_walks_up(self, tmp_path):
        (tmp_path / ".blastradius.yaml").write_text("{}\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert find_config_file(str(nested)) == str(tmp_path / ".blastradius.yaml")

    def test_hidden_file_takes_precedence(self, tmp_path):
        (tmp_path / "blastradius.yml").write_text("{}\n")
        (tmp_path / ".blastradius.yml").write_text("{}\n")
        assert find_config_file(str(tmp_path)) == str(tmp_path / ".blastradius.yml")
