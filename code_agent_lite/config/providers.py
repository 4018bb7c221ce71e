"""Model provider configuration: pydantic models and the persisted document."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .store import JsonDocumentStore, document_path

logger = logging.getLogger(__name__)

PROVIDER_FILENAME = "provider.json"
DOCUMENT_VERSION = "1.0"

ProviderType = Literal["openai", "anthropic", "custom"]
ProviderProtocol = Literal["openai", "anthropic"]


class _ProviderFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    enabled: bool = True
    is_default: bool = Field(default=False, alias="isDefault")
    model: str
    api_key: str = Field(default="", alias="apiKey")
    base_url: Optional[str] = Field(default=None, alias="baseURL")
    temperature: Optional[float] = None
    max_tokens: Optional[int] = Field(default=None, alias="maxTokens")


class OpenAIProviderConfig(_ProviderFields):
    type: Literal["openai"] = "openai"


class AnthropicProviderConfig(_ProviderFields):
    type: Literal["anthropic"] = "anthropic"


class CustomProviderConfig(_ProviderFields):
    """Self-hosted or third-party endpoint speaking one of the known dialects."""

    type: Literal["custom"] = "custom"
    protocol: ProviderProtocol = "openai"
    base_url: str = Field(alias="baseURL")


ProviderConfig = Annotated[
    Union[OpenAIProviderConfig, AnthropicProviderConfig, CustomProviderConfig],
    Field(discriminator="type"),
]

_provider_adapter: TypeAdapter = TypeAdapter(ProviderConfig)

# Field name to storage key, for callers that pass snake_case updates
_FIELD_ALIASES = {name: info.alias for name, info in _ProviderFields.model_fields.items() if info.alias}


def parse_provider(data: Dict[str, Any]) -> ProviderConfig:
    """Validate a camelCase (or snake_case) mapping into a provider config."""
    return _provider_adapter.validate_python(data)


def dump_provider(config: ProviderConfig) -> Dict[str, Any]:
    return config.model_dump(by_alias=True, exclude_none=True)


class ProviderDocument(BaseModel):
    version: str = DOCUMENT_VERSION
    providers: List[ProviderConfig] = Field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {"version": self.version, "providers": [dump_provider(p) for p in self.providers]}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ProviderDocument":
        """Build a document, dropping entries that fail validation."""
        providers: List[ProviderConfig] = []
        for index, raw in enumerate(data.get("providers") or []):
            try:
                providers.append(parse_provider(raw))
            except ValidationError as e:
                logger.warning("Skipping invalid provider entry #%d: %s", index, e)
        return cls(version=str(data.get("version") or DOCUMENT_VERSION), providers=providers)


def _empty_document() -> Dict[str, Any]:
    return ProviderDocument().to_json()


class ProviderConfigService:
    """CRUD over the persisted provider document.

    The document is loaded lazily on first access and cached until ``reload``.
    Returned configs are copies; mutate through the service methods.
    """

    def __init__(self, store: Optional[JsonDocumentStore] = None, home: Optional[Path] = None):
        self.store = store or JsonDocumentStore(
            document_path(PROVIDER_FILENAME, home),
            default_factory=_empty_document,
            owner_only=True,
        )
        self._document: Optional[ProviderDocument] = None

    def _load(self) -> ProviderDocument:
        if self._document is None:
            self._document = ProviderDocument.from_json(self.store.load())
        return self._document

    def _save(self) -> None:
        self.store.save(self._load().to_json())

    def reload(self) -> None:
        self._document = None
        self._load()

    def get_providers(self) -> List[ProviderConfig]:
        return [p.model_copy(deep=True) for p in self._load().providers]

    def get_enabled_providers(self) -> List[ProviderConfig]:
        return [p for p in self.get_providers() if p.enabled]

    def get_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        for provider in self._load().providers:
            if provider.id == provider_id:
                return provider.model_copy(deep=True)
        return None

    def add_provider(self, data: Dict[str, Any]) -> ProviderConfig:
        """Persist a new provider. The first provider ever added becomes the default."""
        document = self._load()
        payload = dict(data)
        payload["id"] = str(uuid.uuid4())
        provider = parse_provider(payload)
        if not document.providers:
            provider.is_default = True
        elif provider.is_default:
            self._clear_default(document)
        document.providers.append(provider)
        self._save()
        logger.info("Added provider %s (%s)", provider.name, provider.type)
        return provider.model_copy(deep=True)

    def update_provider(self, provider_id: str, updates: Dict[str, Any]) -> Optional[ProviderConfig]:
        document = self._load()
        index = self._index_of(provider_id)
        if index is None:
            return None
        merged = dump_provider(document.providers[index])
        merged.update({_FIELD_ALIASES.get(k, k): v for k, v in updates.items() if k != "id"})
        updated = parse_provider(merged)
        if updated.is_default:
            self._clear_default(document)
        document.providers[index] = updated
        self._save()
        return updated.model_copy(deep=True)

    def delete_provider(self, provider_id: str) -> bool:
        document = self._load()
        index = self._index_of(provider_id)
        if index is None:
            return False
        removed = document.providers.pop(index)
        if removed.is_default:
            first_enabled = next((p for p in document.providers if p.enabled), None)
            if first_enabled is not None:
                first_enabled.is_default = True
        self._save()
        return True

    def toggle_provider(self, provider_id: str) -> Optional[ProviderConfig]:
        """Flip ``enabled``; disabling the default hands the flag to the next enabled provider."""
        document = self._load()
        index = self._index_of(provider_id)
        if index is None:
            return None
        provider = document.providers[index]
        provider.enabled = not provider.enabled
        if not provider.enabled and provider.is_default:
            successor = next((p for p in document.providers if p.enabled and p.id != provider_id), None)
            if successor is not None:
                provider.is_default = False
                successor.is_default = True
        self._save()
        return provider.model_copy(deep=True)

    def set_default_provider(self, provider_id: str) -> bool:
        document = self._load()
        index = self._index_of(provider_id)
        if index is None or not document.providers[index].enabled:
            return False
        self._clear_default(document)
        document.providers[index].is_default = True
        self._save()
        return True

    def _index_of(self, provider_id: str) -> Optional[int]:
        for index, provider in enumerate(self._load().providers):
            if provider.id == provider_id:
                return index
        return None

    @staticmethod
    def _clear_default(document: ProviderDocument) -> None:
        for provider in document.providers:
            provider.is_default = False
