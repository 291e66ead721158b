# shaping.py: implements the result shaping stage
#
# The ResultShaper masks the fetched instances with their visibility plan:
# only the visible fields are returned, expanded relations are shaped recursively
# with their own plan and relations that aren't expanded are returned as identifiers.
from typing import Any, Dict, List, Mapping, Optional
from sqlalchemy import inspect as sqla_inspect
from .constants import COUNT_SUFFIX, TRANSLATIONS_FIELD
from .errors import BadRequestError
from .util import unique

_MISSING = object()


class ResultShaper:
    """
    :param registry: EntityRegistry
    """

    def __init__(self, registry: Any) -> None:
        self.registry = registry

    def shape(self, raw: Any, plan: Any, counts: Optional[Mapping[Any, Dict[str, int]]] = None) -> Any:
        """
        :param raw: an instance, a list of instances or None
        :param plan: VisibilityPlan
        :param counts: relation counts by primary key, see QueryShaper.fetch_counts
        :return: dict, list of dicts or None
        """
        if raw is None:
            return None
        if isinstance(raw, (list, tuple)):
            return [self.shape_instance(instance, plan, counts) for instance in raw]
        return self.shape_instance(raw, plan, counts)

    def shape_instance(self, instance: Any, plan: Any, counts: Optional[Mapping[Any, Dict[str, int]]] = None) -> Dict[str, Any]:
        entity = self.registry.get(plan.entity)
        descriptor = entity.descriptor
        instance_counts = (counts or {}).get(entity.get_id(instance), {})
        result = {}
        for name in self.ordered_fields(descriptor, plan):
            if name in plan.per_relation:
                result[name] = self.shape_relation(entity, instance, name, plan.per_relation[name])
            elif name in descriptor.relations:
                result[name] = self.relation_identifiers(entity, instance, name)
            elif name.endswith(COUNT_SUFFIX) and name[: -len(COUNT_SUFFIX)] in descriptor.relations:
                rel_name = name[: -len(COUNT_SUFFIX)]
                result[name] = instance_counts[name] if name in instance_counts else self.count(instance, rel_name)
            elif name == TRANSLATIONS_FIELD:
                result[name] = self.translations(instance)
            else:
                value = getattr(instance, name, _MISSING)
                if value is not _MISSING:
                    result[name] = value
        return result

    @staticmethod
    def ordered_fields(descriptor: Any, plan: Any) -> List[str]:
        """
        The visible fields in the order of the descriptor (columns, computed fields, counts, relations).
        Names that aren't fields of the entity are never read from the instance.
        """
        fields_order = unique(
            descriptor.fields,
            descriptor.translated_fields,
            descriptor.append_fields,
            descriptor.relation_counts,
            descriptor.relations,
            descriptor.relation_hidden_fields,
            [TRANSLATIONS_FIELD] if descriptor.translated_fields else [],
        )
        return [name for name in fields_order if name in plan.visible]

    def shape_relation(self, entity: Any, instance: Any, rel_name: str, plan: Any) -> Any:
        """
        Shape the eager loaded related instance(s) of an expanded relation
        :raises BadRequestError: the relation doesn't exist on the model
        """
        if not hasattr(type(instance), rel_name):
            raise BadRequestError(f"Relation {rel_name} does not exist on {entity.name}")
        value = getattr(instance, rel_name)
        if plan.only_one:
            if is_collection(value):
                value = next(iter(value), None)
            return None if value is None else self.shape_instance(value, plan)
        if value is None:
            return []
        if not is_collection(value):
            value = [value]
        return [self.shape_instance(related, plan) for related in value]

    def relation_identifiers(self, entity: Any, instance: Any, rel_name: str) -> Any:
        """
        A visible relation that isn't expanded returns the identifier(s) of the related instance(s)
        """
        target = self.registry.resolve_relation(entity, rel_name)
        value = getattr(instance, rel_name)
        if value is None:
            return None
        if is_collection(value):
            return [target.get_id(related) for related in value]
        return target.get_id(value)

    @staticmethod
    def count(instance: Any, rel_name: str) -> int:
        value = getattr(instance, rel_name)
        if value is None:
            return 0
        if is_collection(value):
            return len(value)
        return 1

    @staticmethod
    def translations(instance: Any) -> List[Dict[str, Any]]:
        """
        :return: all translations of a translatable instance
        """
        result = []
        for translation in getattr(instance, TRANSLATIONS_FIELD, None) or []:
            mapper = sqla_inspect(translation).mapper
            result.append({attr.key: getattr(translation, attr.key) for attr in mapper.column_attrs})
        return result


def is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set)) or (hasattr(value, "__iter__") and not isinstance(value, (str, bytes, dict)))
