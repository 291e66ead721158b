"""Visibility resolution.

The :class:`VisibilityResolver` computes the visible and hidden field sets of a single
entity for an output mode, the caller overrides and the auth context of the caller.
It doesn't follow relations, that's done by the :class:`~dynapi.walker.RelationGraphWalker`,
except for the nested relation lists of an explicit ``request_output``.

Precedence, from high to low:

1. authorization: fields that are always hidden stay hidden, unless the caller is super-admin
2. ``request_output``
3. ``show_only``
4. ``make_visible``, ``make_hidden``, ``with``, ``with_count``
5. the tier defaults of the output mode
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import dynapi
from .constants import OUTPUT_COMPLETE, OUTPUT_EXTENSIVE, OUTPUT_SIMPLIFIED, RELATION_MARKER, TRANSLATIONS_FIELD
from .descriptor import EntityDescriptor, count_field, counts
from .errors import BadRequestError
from .util import difference, unique


@dataclass(frozen=True)
class VisibilityPlan:
    """The visible and hidden fields of an entity, and the plans of the expanded relations

    A relation without a plan in ``per_relation`` isn't expanded: when it's visible
    the identifier(s) of the related instance(s) are returned.
    """

    entity: str
    visible: FrozenSet[str] = frozenset()
    hidden: FrozenSet[str] = frozenset()
    per_relation: Mapping[str, "VisibilityPlan"] = field(default_factory=dict)
    only_one: bool = False
    mode: str = OUTPUT_SIMPLIFIED
    # relations whose count is returned (as <relation>_count)
    counts: FrozenSet[str] = frozenset()

    def relation(self, rel_name: str) -> Optional["VisibilityPlan"]:
        return self.per_relation.get(rel_name)

    def eager_paths(self, prefix: Tuple[str, ...] = ()) -> List[Tuple[str, ...]]:
        """
        :return: the relation paths to be eager loaded, eg. [("author",), ("author", "books")]
        """
        result = []
        for rel_name, plan in self.per_relation.items():
            path = prefix + (rel_name,)
            result.append(path)
            result += plan.eager_paths(path)
        return result

    def to_dict(self) -> dict:
        """
        :return: a serializable representation, used for logging
        """
        result = {"entity": self.entity, "visible": sorted(self.visible), "hidden": sorted(self.hidden)}
        if self.only_one:
            result["only_one"] = True
        if self.per_relation:
            result["relations"] = {rel_name: plan.to_dict() for rel_name, plan in self.per_relation.items()}
        return result


@dataclass(frozen=True)
class VisibilityOverrides:
    """
    The caller instructions that override the tier defaults
    """

    request_output: Tuple[Any, ...] = ()
    show_only: Tuple[str, ...] = ()
    make_visible: Tuple[str, ...] = ()
    make_hidden: Tuple[str, ...] = ()
    with_relations: Tuple[str, ...] = ()
    with_count: Tuple[str, ...] = ()
    with_translations: Optional[bool] = None

    @classmethod
    def from_context(cls, context: Any) -> "VisibilityOverrides":
        """
        :param context: dynapi.request.RequestContext
        """
        return cls(
            request_output=tuple(context.request_output),
            show_only=tuple(context.show_only),
            make_visible=tuple(context.make_visible),
            make_hidden=tuple(context.make_hidden),
            with_relations=tuple(context.with_relations),
            with_count=tuple(context.with_count),
            with_translations=context.with_translations,
        )

    @property
    def with_roots(self) -> List[str]:
        """
        :return: the top level relation names of the requested relation paths, eg. "author:complete.books" => "author"
        """
        return unique(path.split(".")[0].split(":")[0] for path in self.with_relations if path)


NO_OVERRIDES = VisibilityOverrides()


def split_relation_output(items: Sequence[Any]) -> Tuple[str, List[Any]]:
    """
    A nested request_output list names a relation and its fields:
    ["author", "name"] or ["name", "::author"]
    :return: relation name, relation fields
    """
    for index, item in enumerate(items):
        if isinstance(item, str) and item.startswith(RELATION_MARKER):
            return item[len(RELATION_MARKER) :], list(items[:index]) + list(items[index + 1 :])
    if not items or not isinstance(items[0], str):
        raise BadRequestError(f"Invalid request_output relation {list(items)}")
    return items[0], list(items[1:])


class VisibilityResolver:
    """
    Resolve the visibility plan of an entity
    :param registry: EntityRegistry, used to resolve the relations of nested request_output lists
    """

    def __init__(self, registry: Any = None) -> None:
        self.registry = registry

    def resolve(
        self,
        descriptor: EntityDescriptor,
        mode: str,
        overrides: Optional[VisibilityOverrides] = None,
        auth: Any = None,
    ) -> VisibilityPlan:
        """
        :param descriptor: EntityDescriptor of the entity
        :param mode: output mode
        :param overrides: VisibilityOverrides
        :param auth: AuthContext of the caller, None for anonymous callers
        :return: VisibilityPlan without relation plans, apart from the request_output relations
        """
        overrides = overrides or NO_OVERRIDES
        make_visible = list(overrides.make_visible)
        make_hidden = list(overrides.make_hidden)
        per_relation = {}

        if descriptor.translated_fields:
            with_translations = overrides.with_translations
            if with_translations is None:
                with_translations = mode in (OUTPUT_COMPLETE, OUTPUT_EXTENSIVE)
            if with_translations:
                make_visible.append(TRANSLATIONS_FIELD)
            else:
                make_hidden.append(TRANSLATIONS_FIELD)

        if overrides.request_output:
            visible, per_relation = self._request_output(descriptor, overrides.request_output, mode, auth)
            hidden = unique(difference(descriptor.all_fields, visible), difference(descriptor.relation_counts, visible))
        elif overrides.show_only:
            visible = list(overrides.show_only)
            hidden = difference(
                unique(
                    descriptor.all_fields,
                    descriptor.with_relations_for(OUTPUT_EXTENSIVE),
                    counts(descriptor.with_counts_for(OUTPUT_EXTENSIVE)),
                    counts(overrides.with_count),
                    make_hidden,
                ),
                visible,
            )
        else:
            visible = difference(
                unique(descriptor.visible_fields_for(mode), make_visible, overrides.with_roots, counts(overrides.with_count)),
                make_hidden,
            )
            hidden = difference(unique(make_hidden, descriptor.hidden_fields_for(mode)), visible)

        visible, hidden = reconcile(descriptor, visible, hidden, auth)
        return VisibilityPlan(
            entity=descriptor.name,
            visible=frozenset(visible),
            hidden=frozenset(hidden) - frozenset(visible),
            per_relation=per_relation,
            mode=mode,
            counts=frozenset(rel_name for rel_name in descriptor.relations if count_field(rel_name) in visible),
        )

    def _request_output(self, descriptor: EntityDescriptor, items: Sequence[Any], mode: str, auth: Any):
        """
        :return: the listed fields and the plans of the nested relation lists
        """
        visible = []
        per_relation = {}
        for item in items:
            if isinstance(item, (list, tuple)):
                rel_name, rel_items = split_relation_output(item)
                per_relation[rel_name] = self._request_output_relation(descriptor, rel_name, rel_items, mode, auth)
                visible.append(rel_name)
            else:
                visible.append(str(item))
        return unique(visible), per_relation

    def _request_output_relation(self, descriptor: EntityDescriptor, rel_name: str, items: Sequence[Any], mode: str, auth: Any):
        if rel_name not in descriptor.relations:
            raise BadRequestError(f"Relation {rel_name} does not exist on {descriptor.name}")
        if self.registry is None:
            raise BadRequestError(f"Can't resolve relation {rel_name} of {descriptor.name}")
        entity = self.registry.get(descriptor.name)
        target = self.registry.resolve_relation(entity, rel_name)
        visible, per_relation = self._request_output(target.descriptor, items, mode, auth)
        hidden = unique(difference(target.descriptor.all_fields, visible), difference(target.descriptor.relation_counts, visible))
        visible, hidden = reconcile(target.descriptor, visible, hidden, auth)
        return VisibilityPlan(
            entity=target.name,
            visible=frozenset(visible),
            hidden=frozenset(hidden) - frozenset(visible),
            per_relation=per_relation,
            only_one=entity.is_singular(rel_name),
            mode=mode,
            counts=frozenset(name for name in target.descriptor.relations if count_field(name) in visible),
        )


def is_super_admin(auth: Any) -> bool:
    return auth is not None and bool(auth.is_super_admin())


def reconcile(descriptor: EntityDescriptor, visible: Sequence[str], hidden: Sequence[str], auth: Any) -> Tuple[List[str], List[str]]:
    """
    Apply the authorization rules: the always hidden fields are hidden for everyone but the super-admin.
    Visible names that aren't fields of the entity are dropped.
    :return: visible, hidden
    """
    visible = enumerated(descriptor, visible)
    if is_super_admin(auth):
        return list(visible), list(hidden)
    always_hidden = descriptor.always_hidden()
    return difference(visible, always_hidden), unique(hidden, always_hidden)


def enumerated(descriptor: EntityDescriptor, names: Sequence[str]) -> List[str]:
    """
    :return: the names that are fields of the entity, columns the descriptor leaves out and model attributes are ignored
    """
    enumeration = descriptor.field_enumeration
    unknown = [name for name in names if name not in enumeration]
    if unknown:
        dynapi.log.warning(f"Ignoring unknown field(s) {unknown} of {descriptor.name}")
    return [name for name in names if name in enumeration]
