# registry.py: the exposed entities
#
# An Entity couples a SQLAlchemy model with its EntityDescriptor and EntityHooks.
# The EntityRegistry resolves url model names and relation names to entities.
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union
from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm.interfaces import MANYTOONE
import dynapi
from .config import get_config
from .descriptor import EntityDescriptor
from .errors import BadRequestError, ModelNotFoundError, SystemValidationError
from .hooks import EntityHooks, NO_HOOKS
from .util import entity_name


@dataclass(frozen=True, eq=False)
class Entity:
    """
    An exposed model
    """

    name: str
    model: Any
    descriptor: EntityDescriptor
    hooks: EntityHooks = NO_HOOKS

    def __repr__(self) -> str:
        return f"<Entity {self.name} ({self.model.__name__})>"

    @property
    def mapper(self):
        return sqla_inspect(self.model)

    @property
    def primary_key(self) -> str:
        """
        :return: the attribute name of the (first) primary key column
        """
        mapper = self.mapper
        return mapper.get_property_by_column(mapper.primary_key[0]).key

    @property
    def column_attributes(self) -> List[str]:
        return [attr.key for attr in self.mapper.column_attrs]

    @property
    def foreign_key_attributes(self) -> List[str]:
        return [attr.key for attr in self.mapper.column_attrs if any(column.foreign_keys for column in attr.columns)]

    @property
    def soft_delete_column(self) -> Optional[str]:
        column = get_config("SOFT_DELETE_COLUMN")
        return column if column in self.column_attributes else None

    @property
    def slug_column(self) -> Optional[str]:
        column = get_config("SLUG_COLUMN")
        return column if column in self.column_attributes else None

    def relationship(self, rel_name: str):
        """
        :return: the sqlalchemy RelationshipProperty or None
        """
        relationships = self.mapper.relationships
        return relationships[rel_name] if rel_name in relationships else None

    def is_singular(self, rel_name: str) -> bool:
        """
        :return: True if the relation holds a single instance (MANYTOONE or uselist=False)
        """
        relationship = self.relationship(rel_name)
        if relationship is None:
            return False
        return relationship.direction == MANYTOONE or not relationship.uselist

    def is_many_to_many(self, rel_name: str) -> bool:
        relationship = self.relationship(rel_name)
        return relationship is not None and relationship.secondary is not None

    def get_id(self, instance: Any) -> Any:
        return getattr(instance, self.primary_key)


def describe_model(model: Any, name: Optional[str] = None, **attributes: Any) -> EntityDescriptor:
    """
    Create a descriptor with the columns and relationships of a sqlalchemy model
    :param model: sqlalchemy declarative class
    :param name: entity name, by default the singular table name
    :param attributes: additional EntityDescriptor attributes
    """
    try:
        mapper = sqla_inspect(model)
    except NoInspectionAvailable:
        raise SystemValidationError(f"{model} is not a sqlalchemy model")
    if name is None:
        name = entity_name(getattr(model, "__tablename__", model.__name__))
    primary_key = mapper.get_property_by_column(mapper.primary_key[0]).key
    attributes.setdefault("fields", [attr.key for attr in mapper.column_attrs])
    attributes.setdefault("simplified_fields", [primary_key])
    attributes.setdefault("always_visible_fields", [primary_key])
    attributes.setdefault("relations", [rel.key for rel in mapper.relationships])
    return EntityDescriptor(name=name, **attributes)


class EntityRegistry:
    """
    The entities exposed by an api
    """

    def __init__(self) -> None:
        self._entities: Dict[str, Entity] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._entities

    def __iter__(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def __len__(self) -> int:
        return len(self._entities)

    def register(
        self,
        model: Any,
        descriptor: Union[EntityDescriptor, Mapping[str, Any], None] = None,
        hooks: Optional[EntityHooks] = None,
    ) -> Entity:
        """
        Register a sqlalchemy model
        :param model: sqlalchemy declarative class
        :param descriptor: EntityDescriptor or a mapping of descriptor attributes, derived from the model if None
        :param hooks: EntityHooks
        :return: the registered entity
        """
        if descriptor is None:
            descriptor = describe_model(model)
        elif isinstance(descriptor, Mapping):
            descriptor = describe_model(model, **descriptor)
        self.check_model(model, descriptor)
        entity = Entity(descriptor.name, model, descriptor, hooks or NO_HOOKS)
        if descriptor.name in self._entities:
            dynapi.log.warning(f"Replacing the registered entity {self._entities[descriptor.name]}")
        self._entities[descriptor.name] = entity
        return entity

    @staticmethod
    def check_model(model: Any, descriptor: EntityDescriptor) -> None:
        """
        Verify that the descriptor fields and relations exist on the model
        :raises SystemValidationError:
        """
        try:
            mapper = sqla_inspect(model)
        except NoInspectionAvailable:
            raise SystemValidationError(f"{model} is not a sqlalchemy model")
        columns = set(mapper.column_attrs.keys())
        relationships = set(mapper.relationships.keys())
        missing = [name for name in descriptor.fields if name not in columns]
        if missing:
            raise SystemValidationError(f"{descriptor.name}: {model.__name__} has no column(s) {missing}")
        missing = [name for name in descriptor.relations if name not in relationships]
        if missing:
            raise SystemValidationError(f"{descriptor.name}: {model.__name__} has no relationship(s) {missing}")
        missing = [name for name in descriptor.translated_fields + descriptor.append_fields if not hasattr(model, name)]
        if missing:
            raise SystemValidationError(f"{descriptor.name}: {model.__name__} has no attribute(s) {missing}")

    def find(self, name: str) -> Optional[Entity]:
        return self._entities.get(name)

    def get(self, name: str) -> Entity:
        """
        :raises ModelNotFoundError: the entity isn't registered
        """
        entity = self._entities.get(name)
        if entity is None:
            raise ModelNotFoundError(f"Model {name} does not exist")
        return entity

    def for_model(self, model: Any) -> Optional[Entity]:
        for entity in self._entities.values():
            if entity.model is model:
                return entity
        return None

    def resolve_model_name(self, url_name: str) -> Entity:
        """
        Map the model name of an url to an entity, using DYNAMIC_ROUTE_MODULES:
        explicit entries map an url name to an entity name, the "*" entry enables the naming convention
        :raises ModelNotFoundError:
        """
        route_modules = get_config("DYNAMIC_ROUTE_MODULES") or {}
        target = route_modules.get(url_name)
        if target and target != "*":
            return self.get(target)
        if target == "*" or "*" in route_modules:
            return self.get(entity_name(url_name))
        raise ModelNotFoundError(f"Model {url_name} is not exposed")

    def resolve_relation(self, entity: Entity, rel_name: str) -> Entity:
        """
        Resolve the target entity of a relation:
        - the HAS_RELATION_MODELS override, keyed by "<entity>_<relation>"
        - the naming convention, if the conventional entity wraps the relationship target
        - the entity registered for the relationship target class
        :raises BadRequestError: the relation doesn't exist or its target isn't exposed
        """
        if rel_name not in entity.descriptor.relations:
            raise BadRequestError(f"Relation {rel_name} does not exist on {entity.name}")
        overrides = get_config("HAS_RELATION_MODELS") or {}
        override = overrides.get(f"{entity.name}_{rel_name}")
        if override:
            return self.get(override)
        relationship = entity.relationship(rel_name)
        target_model = relationship.mapper.class_ if relationship is not None else None
        candidate = self.find(entity_name(rel_name))
        if candidate is not None and (target_model is None or candidate.model is target_model):
            return candidate
        target = self.for_model(target_model) if target_model is not None else None
        if target is None:
            raise BadRequestError(f"Relation {rel_name} of {entity.name} does not refer to an exposed model")
        return target
