"""
YAML configuration extractor.

Declares one ConfigKey entity per leaf key path of a YAML configuration file
(``database.url``, ``features.beta.enabled``, ...). Lookup sites live in code
and are emitted as Config edges by language extractors, which address keys
with ``make_entity_id(<config file>, EntityKind.CONFIG_KEY, <dotted key>)``.
"""

import logging
from typing import List, Tuple

import yaml
from yaml.nodes import MappingNode, Node, ScalarNode

from .extractors import Extractor, ExtractorRole
from .types import Entity, EntityKind, Location, ParseDiagnostic, ScanResult, make_entity_id

logger = logging.getLogger(__name__)


class YamlConfigExtractor(Extractor):
    """Config adapter (declaration side) for YAML configuration files."""

    @property
    def name(self) -> str:
        return "yaml_config"

    @property
    def roles(self) -> Tuple[ExtractorRole, ...]:
        return (ExtractorRole.CONFIG,)

    @property
    def file_patterns(self) -> Tuple[str, ...]:
        return ("config/*.yml", "config/*.yaml", "*.config.yml", "*.config.yaml")

    def extract(self, content: str, file_path: str) -> ScanResult:
        try:
            root = yaml.compose(content, Loader=yaml.SafeLoader)
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            return ScanResult(file_path, diagnostics=(ParseDiagnostic(
                file_path=file_path,
                message=f"Invalid YAML: {getattr(e, 'problem', None) or e}",
                severity="error",
                line=mark.line + 1 if mark is not None else None,
                extractor=self.name,
            ),))

        if root is None:
            return ScanResult(file_path)
        if not isinstance(root, MappingNode):
            return ScanResult(file_path, diagnostics=(ParseDiagnostic(
                file_path=file_path,
                message="Configuration root must be a mapping",
                severity="error",
                line=root.start_mark.line + 1,
                extractor=self.name,
            ),))

        entities: List[Entity] = []
        diagnostics: List[ParseDiagnostic] = []
        self._walk(root, [], file_path, entities, diagnostics)
        return ScanResult(file_path, tuple(entities), (), tuple(diagnostics))

    def _walk(self, node: MappingNode, prefix: List[str], file_path: str,
              entities: List[Entity], diagnostics: List[ParseDiagnostic]) -> None:
        for key_node, value_node in node.value:
            if not isinstance(key_node, ScalarNode):
                diagnostics.append(ParseDiagnostic(
                    file_path=file_path,
                    message="Skipped non-scalar configuration key",
                    severity="warning",
                    line=key_node.start_mark.line + 1,
                    extractor=self.name,
                ))
                continue
            path = prefix + [str(key_node.value)]
            if isinstance(value_node, MappingNode) and value_node.value:
                self._walk(value_node, path, file_path, entities, diagnostics)
            else:
                entities.append(self._entity(path, key_node, value_node, file_path))

    def _entity(self, path: List[str], key_node: Node, value_node: Node, file_path: str) -> Entity:
        dotted = ".".join(path)
        value_type = value_node.tag.rsplit(":", 1)[-1] if value_node.tag else "unknown"
        return Entity(
            id=make_entity_id(file_path, EntityKind.CONFIG_KEY, dotted),
            kind=EntityKind.CONFIG_KEY,
            language="yaml",
            location=Location(file_path, key_node.start_mark.line + 1, value_node.end_mark.line + 1),
            name=dotted,
            metadata={"key": dotted, "value_type": value_type},
        )


default_yaml_config_extractor = YamlConfigExtractor()
