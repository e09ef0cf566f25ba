"""
Read-only registry of known extensions and contexts.

Loaded once at startup from a YAML file such as:

    extensions:
      - extension: "702"
        name: Reception
    contexts:
      - asterisk_name: from_internal
        display_name: Internal line
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from callforward.models.telephony import Context, Extension
from callforward.utils.exceptions import ConfigurationException, UnknownContextException
from callforward.utils.logger import get_logger

logger = get_logger(__name__)


class ExtensionEntry(BaseModel):
    extension: str = Field(..., min_length=1, description="Extension id, usually numeric")
    name: Optional[str] = Field(None, description="Display name")


class ContextEntry(BaseModel):
    asterisk_name: str = Field(..., min_length=1, description="Context name used by Asterisk")
    display_name: str = Field(..., description="Human readable name")


class RegistryFile(BaseModel):
    """Schema of the registry YAML file."""
    extensions: List[ExtensionEntry] = Field(default_factory=list)
    contexts: List[ContextEntry] = Field(default_factory=list)


class Registry:
    """Lookup of extensions and contexts. Never mutated after construction."""

    def __init__(self, extensions: Iterable[Extension], contexts: Iterable[Context]):
        self._extensions: Dict[str, Extension] = {}
        for exten in extensions:
            if exten.extension_id in self._extensions:
                raise ConfigurationException(f"Duplicate extension {exten.extension_id} in registry")
            self._extensions[exten.extension_id] = exten

        self._contexts: Dict[str, Context] = {}
        for ctx in contexts:
            if ctx.protocol_name in self._contexts:
                raise ConfigurationException(f"Duplicate context {ctx.protocol_name} in registry")
            self._contexts[ctx.protocol_name] = ctx

    @classmethod
    def from_dict(cls, data: dict) -> "Registry":
        try:
            parsed = RegistryFile.model_validate(data or {})
        except ValidationError as e:
            raise ConfigurationException(f"Invalid registry: {e}")
        return cls(
            extensions=[Extension(e.extension, e.name) for e in parsed.extensions],
            contexts=[Context(c.asterisk_name, c.display_name) for c in parsed.contexts],
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "Registry":
        """
        Load the registry from a YAML file.

        Raises:
            ConfigurationException: If the file cannot be read or is invalid
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationException(f"Cannot read registry file {path}: {e}")

        registry = cls.from_dict(data)
        logger.info(
            f"Registry loaded from {path}: {len(registry._extensions)} extensions, "
            f"{len(registry._contexts)} contexts"
        )
        return registry

    def extension(self, extension_id: str) -> Extension:
        """Known extensions carry their name, unknown ones are external numbers."""
        exten = self._extensions.get(extension_id)
        if exten is None:
            return Extension(extension_id)
        return exten

    def context(self, protocol_name: str) -> Context:
        ctx = self._contexts.get(protocol_name)
        if ctx is None:
            raise UnknownContextException(protocol_name)
        return ctx

    def has_context(self, protocol_name: str) -> bool:
        return protocol_name in self._contexts

    def extensions(self) -> List[Extension]:
        return sorted(self._extensions.values(), key=lambda e: e.extension_id)

    def contexts(self) -> List[Context]:
        return sorted(self._contexts.values())
