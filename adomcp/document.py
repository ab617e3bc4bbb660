"""
Feature-switch document codec.

A feature-switch file is a JSON object with ``Id``, ``Description`` and an
``Environments`` object mapping stage names to stage configurations. The codec
keeps the whole decoded object, so fields and stages this package does not
know about survive a read-modify-write cycle untouched.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from .config import config
from .errors import MalformedDocument, UnknownStage

KNOWN_STAGES = (
    "onebox",
    "test",
    "cst",
    "dxt",
    "msit",
    "prod",
    "mc",
    "gcc",
    "gcchigh",
    "dod",
    "usnat",
    "ussec",
)

INDENT = 2


@dataclass
class FeatureSwitchDocument:
    """Decoded feature-switch file."""

    data: Dict[str, Any]
    trailing_newline: bool = False

    @property
    def id(self) -> str:
        return self.data.get("Id", "")

    @property
    def description(self) -> str:
        return self.data.get("Description", "")

    @property
    def environments(self) -> Dict[str, Any]:
        return self.data["Environments"]

    def stage_names(self) -> List[str]:
        return list(self.environments)

    def require_stage(self, stage: str) -> None:
        """Raise ``UnknownStage`` unless ``stage`` is already a key of ``Environments``."""
        if stage not in self.environments:
            raise UnknownStage(stage, self.stage_names())

    def set_stage(self, stage: str, stage_config: Dict[str, Any]) -> None:
        """Replace a stage's configuration wholesale. Never creates a stage."""
        self.require_stage(stage)
        self.environments[stage] = stage_config


def decode(raw: Union[bytes, str]) -> FeatureSwitchDocument:
    """
    Parse feature-switch file content.

    Args:
        raw: File content, UTF-8 with or without a byte order mark

    Returns:
        The decoded document

    Raises:
        MalformedDocument: If the content is not a JSON object with an
            ``Environments`` object
    """
    try:
        text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw.lstrip("\ufeff")
    except UnicodeDecodeError as e:
        raise MalformedDocument(f"Feature switch file is not UTF-8 text: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDocument(f"Feature switch file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedDocument("Feature switch file must contain a JSON object")
    if not isinstance(data.get("Environments"), dict):
        raise MalformedDocument("'Environments' section not found in feature switch configuration")

    return FeatureSwitchDocument(data=data, trailing_newline=text.endswith("\n"))


def encode(document: FeatureSwitchDocument) -> bytes:
    """
    Serialize a document deterministically.

    Keys keep their decoded order and indentation is fixed, so encoding an
    unmodified document reproduces the file it was decoded from (for files
    written in this layout).
    """
    text = json.dumps(document.data, indent=INDENT, ensure_ascii=False)
    if document.trailing_newline:
        text += "\n"
    return text.encode("utf-8")


def new_document(feature_id: str, description: str) -> FeatureSwitchDocument:
    """Build the canonical document for a new feature switch, every known stage empty."""
    return FeatureSwitchDocument(
        data={
            "Id": feature_id,
            "Description": description,
            "Environments": {stage: {} for stage in KNOWN_STAGES},
        }
    )


def feature_file_path(feature_name: str) -> str:
    """Repository path of a feature's configuration file."""
    return f"{config.feature_switch_root}/{feature_name}.json"


def branch_slug(feature_name: str) -> str:
    """Default branch name for a feature, e.g. ``MyFeature`` -> ``feature/myfeature``."""
    return "feature/" + re.sub(r"[^a-z0-9]", "-", feature_name.lower())
