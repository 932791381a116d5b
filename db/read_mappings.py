"""
SHOP - Read Model Mappings

Serialization contracts between query models and read store documents.

Conventions applied to every mapped class:
    - snake_case members become camelCase elements (first_name -> firstName)
    - enums are stored by name
    - unknown elements are ignored when reading (additive schema evolution)
    - None members are omitted when writing

Each query model registers its class map once, at startup, from the
static READ_DB_MAPPINGS list. Registration is idempotent; after
configure_read_mappings() the registry is frozen and any further
registration attempt raises MappingRegistrationError.

Usage:
    registry = configure_read_mappings()
    document = registry.serialize(customer_view)
    view = registry.deserialize(CustomerQueryModel, document)
"""
from __future__ import annotations

import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from core.errors import MappingRegistrationError
from db.query_models import BaseQueryModel, CustomerQueryModel

logger = logging.getLogger("shop.db.read_mappings")

ID_ELEMENT = "_id"
DISCRIMINATOR_ELEMENT = "_t"


def to_camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


@dataclass(frozen=True)
class ConventionPack:
    """Conventions applied to all class maps of a registry."""
    camel_case_elements: bool = True
    enum_as_string: bool = True
    ignore_extra_elements: bool = True
    ignore_if_null: bool = True


@dataclass
class MemberMap:
    member_name: str
    element_name: str
    member_type: Any


def _unwrap_optional(member_type: Any) -> Any:
    if get_origin(member_type) is Union:
        args = [a for a in get_args(member_type) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return member_type


class ReadModelClassMap:
    """
    Member-to-element mapping for one query model class.

    Maps only the members the class declares itself; inherited members
    come from the base class's map.
    """

    def __init__(self, model_type: Type, conventions: ConventionPack):
        if not dataclasses.is_dataclass(model_type):
            raise MappingRegistrationError(f"{model_type.__name__} is not a dataclass")
        self.model_type = model_type
        self.conventions = conventions
        self.members: Dict[str, MemberMap] = {}
        self.id_member: Optional[str] = None
        self.ignore_extra_elements = conventions.ignore_extra_elements
        self.is_root_class = False
        self.collection: Optional[str] = None

    def auto_map(self) -> None:
        hints = get_type_hints(self.model_type)
        inherited = set()
        for base in self.model_type.__mro__[1:]:
            if dataclasses.is_dataclass(base):
                inherited.update(f.name for f in dataclasses.fields(base))

        for f in dataclasses.fields(self.model_type):
            if f.name in inherited:
                continue
            element = to_camel_case(f.name) if self.conventions.camel_case_elements else f.name
            self.members[f.name] = MemberMap(f.name, element, hints[f.name])

    def map_id_member(self, member_name: str) -> None:
        if member_name not in self.members:
            raise MappingRegistrationError(
                f"{self.model_type.__name__} has no mapped member {member_name!r}"
            )
        self.members[member_name].element_name = ID_ELEMENT
        self.id_member = member_name

    def set_ignore_extra_elements(self, ignore: bool) -> None:
        self.ignore_extra_elements = ignore

    def set_is_root_class(self, is_root: bool) -> None:
        self.is_root_class = is_root

    def set_collection(self, collection: str) -> None:
        self.collection = collection

    def encode(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            if self.conventions.enum_as_string:
                return value.name
            return list(type(value)).index(value)
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return value

    def decode(self, member: MemberMap, raw: Any) -> Any:
        if raw is None:
            return None
        target = _unwrap_optional(member.member_type)
        if isinstance(target, type):
            if issubclass(target, Enum):
                return target[raw] if isinstance(raw, str) else list(target)[int(raw)]
            if issubclass(target, datetime):
                return datetime.fromisoformat(raw)
            if issubclass(target, date):
                return date.fromisoformat(raw)
        return raw


# One-shot setup applied to a fresh class map
ClassMapInitializer = Callable[[ReadModelClassMap], None]


class ReadModelRegistry:
    """Process-wide table of class maps."""

    def __init__(self, conventions: Optional[ConventionPack] = None):
        self.conventions = conventions or ConventionPack()
        self._class_maps: Dict[Type, ReadModelClassMap] = {}
        self._frozen = False

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    @property
    def registered_types(self) -> List[Type]:
        return list(self._class_maps)

    def freeze(self) -> None:
        self._frozen = True

    def is_registered(self, model_type: Type) -> bool:
        return model_type in self._class_maps

    def try_register_class_map(
        self,
        model_type: Type,
        initializer: Optional[ClassMapInitializer] = None,
    ) -> bool:
        """
        Register a class map unless one exists for the type.

        Returns:
            True if the map was registered by this call

        Raises:
            MappingRegistrationError: If the registry is frozen
        """
        if model_type in self._class_maps:
            return False
        if self._frozen:
            raise MappingRegistrationError(
                f"Cannot register {model_type.__name__}: read mappings are frozen"
            )

        class_map = ReadModelClassMap(model_type, self.conventions)
        if initializer is None:
            class_map.auto_map()
        else:
            initializer(class_map)
        self._class_maps[model_type] = class_map
        logger.debug(f"Registered read mapping for {model_type.__name__}")
        return True

    def lookup(self, model_type: Type) -> ReadModelClassMap:
        class_map = self._class_maps.get(model_type)
        if class_map is None:
            raise MappingRegistrationError(f"No read mapping registered for {model_type.__name__}")
        return class_map

    def _chain(self, model_type: Type) -> List[ReadModelClassMap]:
        """Registered class maps from the root class down to model_type."""
        self.lookup(model_type)
        return [
            self._class_maps[cls]
            for cls in reversed(model_type.__mro__)
            if cls in self._class_maps
        ]

    def collection_for(self, model_type: Type) -> str:
        for class_map in reversed(self._chain(model_type)):
            if class_map.collection:
                return class_map.collection
        raise MappingRegistrationError(f"No collection mapped for {model_type.__name__}")

    def document_id(self, model: Any) -> str:
        for class_map in self._chain(type(model)):
            if class_map.id_member:
                return str(getattr(model, class_map.id_member))
        raise MappingRegistrationError(f"No id member mapped for {type(model).__name__}")

    def serialize(self, model: Any) -> Dict[str, Any]:
        chain = self._chain(type(model))
        document: Dict[str, Any] = {}

        roots = [i for i, class_map in enumerate(chain) if class_map.is_root_class]
        if roots:
            document[DISCRIMINATOR_ELEMENT] = [
                class_map.model_type.__name__ for class_map in chain[roots[0]:]
            ]

        for class_map in chain:
            for member in class_map.members.values():
                value = class_map.encode(getattr(model, member.member_name))
                if value is None and class_map.conventions.ignore_if_null:
                    continue
                document[member.element_name] = value
        return document

    def deserialize(self, model_type: Type, document: Dict[str, Any]) -> Any:
        chain = self._chain(model_type)
        values: Dict[str, Any] = {}
        known = {DISCRIMINATOR_ELEMENT}

        for class_map in chain:
            for member in class_map.members.values():
                known.add(member.element_name)
                if member.element_name in document:
                    values[member.member_name] = class_map.decode(
                        member, document[member.element_name]
                    )

        extra = set(document) - known
        if extra and not chain[-1].ignore_extra_elements:
            raise ValueError(
                f"Unexpected elements for {model_type.__name__}: {sorted(extra)}"
            )
        return model_type(**values)


# =============================================================================
# MAPPING DECLARATIONS
# =============================================================================


class IReadDbMapping(ABC):
    """Declares the class map of one query model."""

    @abstractmethod
    def configure(self, registry: ReadModelRegistry) -> None:
        pass


class BaseQueryModelMap(IReadDbMapping):
    def configure(self, registry: ReadModelRegistry) -> None:
        def initialize(class_map: ReadModelClassMap) -> None:
            class_map.auto_map()
            class_map.set_ignore_extra_elements(True)
            class_map.set_is_root_class(True)
            class_map.map_id_member("id")

        registry.try_register_class_map(BaseQueryModel, initialize)


class CustomerQueryModelMap(IReadDbMapping):
    def configure(self, registry: ReadModelRegistry) -> None:
        def initialize(class_map: ReadModelClassMap) -> None:
            class_map.auto_map()
            class_map.set_ignore_extra_elements(True)
            class_map.set_collection("customers")

        registry.try_register_class_map(CustomerQueryModel, initialize)


# Applied in order by configure_read_mappings()
READ_DB_MAPPINGS: Sequence[Type[IReadDbMapping]] = (
    BaseQueryModelMap,
    CustomerQueryModelMap,
)


_registry: Optional[ReadModelRegistry] = None


def get_read_model_registry() -> ReadModelRegistry:
    """Get or create the process-wide registry."""
    global _registry
    if _registry is None:
        _registry = ReadModelRegistry()
    return _registry


def reset_read_model_registry() -> None:
    """Drop the process-wide registry (tests only)."""
    global _registry
    _registry = None


def configure_read_mappings(
    registry: Optional[ReadModelRegistry] = None,
    mappings: Sequence[Type[IReadDbMapping]] = READ_DB_MAPPINGS,
) -> ReadModelRegistry:
    """
    Apply every mapping declaration once and freeze the registry.

    Safe to call repeatedly; calls after the first are no-ops.
    """
    registry = registry if registry is not None else get_read_model_registry()
    if registry.is_frozen:
        return registry

    for mapping_type in mappings:
        mapping_type().configure(registry)
    registry.freeze()
    logger.info(f"Read mappings configured for {len(registry.registered_types)} types")
    return registry
