"""Load and validate pipeline definitions from YAML files."""

import logging
from collections.abc import Hashable
from pathlib import Path

import yaml
from pydantic import ValidationError

from boostsec.scan_pipeline.errors import ConfigError
from boostsec.scan_pipeline.models.definition import PipelineDefinition

logger = logging.getLogger(__name__)

_MERGE_TAG = "tag:yaml.org,2002:merge"


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects a mapping repeating one of its keys.

    Stages are keyed by name, so a repeated key would otherwise drop a stage.
    """

    def construct_mapping(
        self, node: yaml.MappingNode, deep: bool = False
    ) -> dict[object, object]:
        seen: set[object] = set()
        for key_node, _ in node.value:
            if key_node.tag == _MERGE_TAG:
                continue
            key = self.construct_object(key_node, deep=deep)
            if not isinstance(key, Hashable):
                continue
            if key in seen:
                raise yaml.constructor.ConstructorError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def parse_definition(data: object, source: str = "<document>") -> PipelineDefinition:
    """Build a validated definition from an already parsed document.

    Args:
        data: Parsed document (mapping)
        source: Where the document came from, for error messages

    Returns:
        Validated pipeline definition

    Raises:
        ConfigError: If the document doesn't match the schema or violates
            an invariant

    """
    if data is None:
        raise ConfigError(f"Empty pipeline definition: {source}")

    if not isinstance(data, dict):
        raise ConfigError(f"Pipeline definition must be a mapping: {source}")

    try:
        definition = PipelineDefinition.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid pipeline definition schema in {source}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Invalid pipeline definition in {source}: {e}") from e

    definition.validate_invariants()
    return definition


def load_definition(definition_file: Path) -> PipelineDefinition:
    """Load the pipeline definition stored in a YAML file.

    Args:
        definition_file: Path to the pipeline definition

    Returns:
        Validated pipeline definition

    Raises:
        ConfigError: If the file is missing, isn't valid YAML, or doesn't
            describe a valid pipeline

    """
    if not definition_file.exists():
        raise ConfigError(f"Pipeline definition not found: {definition_file}")

    try:
        with definition_file.open() as f:
            data = yaml.load(f, Loader=_UniqueKeyLoader)  # noqa: S506
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {definition_file}: {e}") from e

    definition = parse_definition(data, str(definition_file))
    logger.info(
        f"Loaded pipeline '{definition.name}' with stages: "
        f"{', '.join(definition.stage_names())}"
    )
    return definition


def dump_definition(definition: PipelineDefinition) -> str:
    """Render a definition back to YAML."""
    return yaml.safe_dump(definition.to_document(), sort_keys=False)
