"""YAML file operations service."""

import json
import logging
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

import yaml
from pydantic import BaseModel

logger = logging.getLogger("certissuer")

M = TypeVar("M", bound=BaseModel)


def _enum_representer(dumper, data):
    return dumper.represent_scalar("tag:yaml.org,2002:str", data.value)


class _Dumper(yaml.SafeDumper):
    """Safe dumper that writes Enum members as their values."""


_Dumper.add_multi_representer(Enum, _enum_representer)


def _json_default(value: Any) -> str:
    # yaml.safe_load turns ISO timestamps back into datetime objects
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class YAMLService:
    """Service for YAML file operations."""

    @staticmethod
    def load_yaml(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML file and return as dictionary.

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed YAML content as dictionary

        Raises:
            FileNotFoundError: If file doesn't exist
            yaml.YAMLError: If file is not valid YAML
        """
        if not file_path.exists():
            raise FileNotFoundError(f"YAML file not found: {file_path}")

        with open(file_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
                logger.debug(f"Loaded YAML from: {file_path}")
                return data or {}
            except yaml.YAMLError as e:
                logger.error(f"Error parsing YAML file {file_path}: {e}")
                raise

    @staticmethod
    def save_yaml(file_path: Path, data: Dict[str, Any]) -> None:
        """
        Save dictionary to YAML file.

        The document is written to a temporary file next to the target and
        renamed into place, so readers never see a partial document.

        Args:
            file_path: Path to save YAML file
            data: Data to save

        Raises:
            yaml.YAMLError: If data cannot be serialized to YAML
        """
        file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = file_path.with_suffix(file_path.suffix + ".tmp")

        with open(tmp_path, "w", encoding="utf-8") as f:
            try:
                yaml.dump(
                    data,
                    f,
                    Dumper=_Dumper,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )
            except yaml.YAMLError as e:
                logger.error(f"Error saving YAML file {file_path}: {e}")
                raise

        tmp_path.replace(file_path)
        logger.debug(f"Saved YAML to: {file_path}")

    @staticmethod
    def save_model(file_path: Path, obj: BaseModel) -> None:
        """
        Save a pydantic model as a YAML document.

        The model goes through its JSON form, so bytes fields are written the
        way the model serializes them (base64 for resources).

        Args:
            file_path: Path to save YAML file
            obj: Model instance
        """
        YAMLService.save_yaml(file_path, json.loads(obj.model_dump_json()))

    @staticmethod
    def load_model(file_path: Path, model: Type[M]) -> M:
        """
        Load a YAML document written by ``save_model``.

        Args:
            file_path: Path to YAML file
            model: Model class to validate against

        Returns:
            Model instance

        Raises:
            FileNotFoundError: If file doesn't exist
            pydantic.ValidationError: If the document does not match the model
        """
        data = YAMLService.load_yaml(file_path)
        return model.model_validate_json(json.dumps(data, default=_json_default))
