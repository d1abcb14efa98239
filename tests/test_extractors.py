"""
Tests for the extractor contract, registry and bundled adapters.
"""

from typing import Tuple

from blastradius.config_adapter import YamlConfigExtractor
from blastradius.extractors import Extractor, ExtractorRegistry, ExtractorRole, default_registry, run_extractor
from blastradius.manifest_adapter import ManifestExtractor
from blastradius.types import Dimension, Direction, EntityKind, Layer, ScanResult

from helpers import FRONTEND_MANIFEST, FRONTEND_ROUTE_ID, SAVE_PROFILE_ID, USER_INPUT_ID, fn


class ExplodingExtractor(Extractor):
    @property
    def name(self) -> str:
        return "exploding"

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return (ExtractorRole.REFERENCE,)

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return ("*.boom",)

    def extract(self, content: str, file_path: str) -> ScanResult:
        raise RuntimeError("parser crashed")


class StaticExtractor(Extractor):
    """Returns one function entity per line of content."""

    def __init__(self, name="static", patterns=("*.txt",)):
        self._name = name
        self._patterns = patterns

    @property
    def name(self) -> str:
        return self._name

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return (ExtractorRole.REFERENCE,)

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return self._patterns

    def extract(self, content: str, file_path: str) -> ScanResult:
        return ScanResult(file_path, tuple(fn(line, file_path) for line in content.split()))


class TestManifestExtractor:
    """Test the YAML/JSON manifest extractor."""

    def setup_method(self):
        self.extractor = ManifestExtractor()

    def test_handles_manifest_files(self):
        assert self.extractor.handles("web/api.impact.yml")
        assert self.extractor.handles("api.impact.json")
        assert not self.extractor.handles("web/api.yml")

    def test_extracts_entities_and_resolves_edge_names(self):
        result = self.extractor.extract(FRONTEND_MANIFEST, "web/api.impact.yml")

        assert result.diagnostics == ()
        by_id = {e.id: e for e in result.entities}
        assert set(by_id) == {USER_INPUT_ID, FRONTEND_ROUTE_ID, SAVE_PROFILE_ID}

        user_input = by_id[USER_INPUT_ID]
        assert user_input.language == "typescript"
        assert user_input.layer == Layer.FRONTEND
        assert (user_input.location.start_line, user_input.location.end_line) == (1, 5)
        assert [f.name for f in user_input.shape] == ["name", "email"]

        route = by_id[FRONTEND_ROUTE_ID]
        assert route.metadata == {"path": "/api/users/${id}", "method": "PUT", "status_codes": [200, 404]}

        assert {(e.source, e.target) for e in result.edges} == {
            (SAVE_PROFILE_ID, FRONTEND_ROUTE_ID),
            (SAVE_PROFILE_ID, USER_INPUT_ID),
        }
        assert all(e.dimension == Dimension.REFERENCE for e in result.edges)
        assert all(e.direction == Direction.BACKWARD for e in result.edges)

    def test_malformed_entries_are_skipped_with_warnings(self):
        content = """
entities:
  - {name: good, kind: Function}
  - {name: bad, kind: Widget}
  - just a string
edges:
  - {from: good, to: good, dimension: Reference, confidence: 0.5}
"""
        result = self.extractor.extract(content, "svc.impact.yml")

        assert [e.name for e in result.entities] == ["good"]
        assert result.edges == ()
        assert len(result.diagnostics) == 3
        assert {d.severity for d in result.diagnostics} == {"warning"}
        assert not result.has_errors

    def test_invalid_yaml_is_one_error_diagnostic(self):
        result = self.extractor.extract("entities: [unclosed", "broken.impact.yml")

        assert result.entities == ()
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].severity == "error"
        assert result.diagnostics[0].extractor == "manifest"

    def test_non_mapping_document(self):
        result = self.extractor.extract("- a\n- b\n", "list.impact.yml")
        assert result.has_errors

    def test_json_manifest(self):
        content = '{"language": "python", "entities": [{"name": "run", "kind": "Function", "id": "custom-id"}]}'
        result = self.extractor.extract(content, "tool.impact.json")
        assert [e.id for e in result.entities] == ["custom-id"]
        assert result.entities[0].location.file == "tool.impact.json"


class TestYamlConfigExtractor:
    """Test config-key declaration extraction."""

    def setup_method(self):
        self.extractor = YamlConfigExtractor()

    def test_leaf_keys_become_config_entities(self):
        content = "database:\n  url: postgres://db\n  pool:\n    size: 5\nfeatures:\n  beta: true\nempty: {}\n"
        result = self.extractor.extract(content, "config/app.yml")

        names = [e.name for e in result.entities]
        assert names == ["database.url", "database.pool.size", "features.beta", "empty"]
        assert all(e.kind == EntityKind.CONFIG_KEY for e in result.entities)
        assert result.entities[0].id == "config/app.yml::ConfigKey::database.url"
        assert result.entities[1].location.start_line == 4
        assert result.entities[1].metadata["value_type"] == "int"

    def test_invalid_yaml(self):
        result = self.extractor.extract("a: [1, 2\n", "config/app.yml")
        assert result.entities == ()
        assert result.has_errors

    def test_scalar_root_is_an_error(self):
        assert self.extractor.extract("just text", "config/app.yml").has_errors

    def test_empty_document(self):
        result = self.extractor.extract("", "config/app.yml")
        assert result.entities == () and result.diagnostics == ()


class TestRegistry:
    """Test registry lookup and the failure boundary."""

    def test_run_extractor_converts_exceptions(self):
        result = run_extractor(ExplodingExtractor(), "x", "a.boom")

        assert result.entities == ()
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].severity == "error"
        assert "parser crashed" in result.diagnostics[0].message

    def test_extract_returns_none_without_extractor(self):
        registry = ExtractorRegistry()
        registry.register(StaticExtractor())
        assert registry.extract("a b", "notes.md") is None

    def test_register_skips_duplicate_names(self):
        registry = ExtractorRegistry()
        registry.register(StaticExtractor(patterns=("*.txt",)))
        registry.register(StaticExtractor(patterns=("*.md",)))
        assert registry.names() == ["static"]
        assert registry.extractors_for("a.md") == []

    def test_results_of_several_extractors_are_combined(self):
        registry = ExtractorRegistry()
        registry.register(StaticExtractor("one"))
        registry.register(StaticExtractor("two"))
        registry.register(ExplodingExtractor(), patterns=["*.txt"])

        result = registry.extract("alpha beta", "a.txt")

        assert [e.name for e in result.entities] == ["alpha", "beta"]
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].extractor == "exploding"

    def test_default_registry_with_pattern_override(self):
        registry = default_registry({"yaml_config": ["settings/*.yaml"]})

        assert registry.names() == ["manifest", "yaml_config"]
        assert [e.name for e in registry.extractors_for("settings/app.yaml")] == ["yaml_config"]
        assert registry.extractors_for("config/app.yml") == []
        assert [e.name for e in registry.extractors_for("x/y.impact.yaml")] == ["manifest"]
