"""Relation graph traversal.

The :class:`RelationGraphWalker` extends the plan of an entity with the plans of the
relations that have to be expanded: the relations named by the requested relation tree
(the ``with`` parameter) and the relations of the tier with-list of the output mode.

The relation graph may contain cycles (Author.books -> Book.author -> Author...).
A relation whose target entity already occurs in the chain of ancestors is hidden
and never expanded, and the depth of the traversal is limited by MAX_RELATION_DEPTH.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping, Optional, Tuple

import dynapi
from .config import get_config
from .constants import OUTPUT_MODES, OUTPUT_SIMPLIFIED
from .errors import BadRequestError
from .descriptor import count_field
from .visibility import NO_OVERRIDES, VisibilityOverrides, VisibilityPlan, VisibilityResolver, enumerated, is_super_admin
from .util import difference, unique


@dataclass(frozen=True)
class RelationTree:
    """The requested relations, eg. parsed from ["author:complete.books", "tags"]

    Every branch may carry its own output mode.
    """

    children: Mapping[str, "RelationTree"] = field(default_factory=dict)
    mode: Optional[str] = None

    def __bool__(self) -> bool:
        return bool(self.children)

    def names(self) -> Tuple[str, ...]:
        return tuple(self.children)

    def child(self, name: str) -> Optional["RelationTree"]:
        return self.children.get(name)

    @classmethod
    def parse(cls, paths: Iterable[str]) -> "RelationTree":
        """
        :param paths: dotted relation paths, every segment is "<relation>[:<output mode>]"
        :raises BadRequestError: invalid output mode
        """
        root = {}
        for path in paths:
            level = root
            for segment in [segment for segment in str(path).split(".") if segment]:
                name, _, mode = segment.partition(":")
                if mode and mode not in OUTPUT_MODES:
                    raise BadRequestError(f"Invalid output mode {mode} for relation {name}")
                node = level.setdefault(name, {"mode": None, "children": {}})
                if mode:
                    node["mode"] = mode
                level = node["children"]
        return cls._build(root)

    @classmethod
    def _build(cls, level: dict, mode: Optional[str] = None) -> "RelationTree":
        return cls({name: cls._build(node["children"], node["mode"]) for name, node in level.items()}, mode)

    def merge(self, names: Iterable[str]) -> "RelationTree":
        """
        :return: a new tree with the given top level relation names added
        """
        children = dict(self.children)
        for name in names:
            children.setdefault(name, RelationTree())
        return replace(self, children=children)


class RelationGraphWalker:
    """
    Build the visibility plans of an entity and its expanded relations
    :param registry: EntityRegistry
    :param resolver: VisibilityResolver
    :param max_depth: maximum number of levels, the entity itself is the first level
    """

    def __init__(self, registry: Any, resolver: Optional[VisibilityResolver] = None, max_depth: Optional[int] = None) -> None:
        self.registry = registry
        self.resolver = resolver or VisibilityResolver(registry)
        self.max_depth = int(max_depth or get_config("MAX_RELATION_DEPTH") or 3)

    def walk(
        self,
        entity: Any,
        mode: str,
        tree: Optional[RelationTree] = None,
        auth: Any = None,
        overrides: Optional[VisibilityOverrides] = None,
    ) -> VisibilityPlan:
        """
        :param entity: the registered Entity
        :param mode: output mode
        :param tree: requested relations, parsed from the overrides `with` relations if None
        :param auth: AuthContext of the caller
        :param overrides: VisibilityOverrides, they only apply to the entity itself
        :raises BadRequestError: a requested relation doesn't exist
        """
        overrides = overrides or NO_OVERRIDES
        if tree is None:
            tree = RelationTree.parse(overrides.with_relations)
        if overrides.request_output:
            tree = tree.merge(name for name in overrides.request_output if isinstance(name, str) and name in entity.descriptor.relations)
        plan = self._walk(entity, mode, tree, auth, overrides, (), 1)
        dynapi.log.debug(f"Visibility plan: {plan.to_dict()}")
        return plan

    def _walk(
        self,
        entity: Any,
        mode: str,
        tree: RelationTree,
        auth: Any,
        overrides: VisibilityOverrides,
        ancestors: Tuple[str, ...],
        depth: int,
        only_one: bool = False,
    ) -> VisibilityPlan:
        descriptor = entity.descriptor
        unknown = [name for name in tree.names() if name not in descriptor.relations]
        if unknown:
            raise BadRequestError(f"Relation(s) {unknown} do not exist on {entity.name}")
        plan = self.resolver.resolve(descriptor, mode, overrides, auth)
        visible = set(plan.visible)
        hidden = set(plan.hidden)
        per_relation = dict(plan.per_relation)
        candidates = unique(tree.names(), descriptor.with_relations_for(mode))

        for rel_name in descriptor.relations:
            if rel_name not in visible or rel_name in per_relation or rel_name not in candidates:
                continue
            target = self.registry.resolve_relation(entity, rel_name)
            if target.name in ancestors:
                # cycle: the target is being resolved already
                dynapi.log.debug(f"Hiding relation {entity.name}.{rel_name}, {target.name} is an ancestor")
                visible.discard(rel_name)
                hidden.add(rel_name)
                continue
            if depth >= self.max_depth:
                dynapi.log.debug(f"Not expanding {entity.name}.{rel_name}, max relation depth {self.max_depth} reached")
                continue
            sub_tree = tree.child(rel_name)
            if sub_tree is None:
                sub_tree = RelationTree()
            sub_mode = sub_tree.mode or mode
            override = descriptor.relation_visible_overrides.get(rel_name, {}).get(sub_mode)
            if override is not None:
                per_relation[rel_name] = self.override_plan(entity, rel_name, target, sub_mode, override, auth)
            else:
                # the requested sub relations are the "with" relations of the related entity
                per_relation[rel_name] = self._walk(
                    target,
                    sub_mode,
                    sub_tree,
                    auth,
                    VisibilityOverrides(with_relations=sub_tree.names()),
                    ancestors + (entity.name,),
                    depth + 1,
                    entity.is_singular(rel_name),
                )

        return replace(
            plan,
            visible=frozenset(visible),
            hidden=frozenset(hidden - visible),
            per_relation=per_relation,
            only_one=only_one,
        )

    @staticmethod
    def override_plan(entity: Any, rel_name: str, target: Any, mode: str, override: Iterable[str], auth: Any) -> VisibilityPlan:
        """
        The plan of a relation with a visibility override: the override fields are visible,
        the other fields and the always hidden fields of the target are hidden
        """
        visible = enumerated(target.descriptor, override)
        always_hidden = [] if is_super_admin(auth) else target.descriptor.always_hidden()
        hidden = unique(always_hidden, difference(target.descriptor.all_fields, visible))
        visible = difference(visible, always_hidden)
        return VisibilityPlan(
            entity=target.name,
            visible=frozenset(visible),
            hidden=frozenset(hidden) - frozenset(visible),
            only_one=entity.is_singular(rel_name),
            mode=mode,
            counts=frozenset(name for name in target.descriptor.relations if count_field(name) in visible),
        )

    def walk_relation(self, entity: Any, rel_name: str, mode: str, auth: Any = None) -> VisibilityPlan:
        """
        The plan of the instances of a relation, returned by the relation operations.
        The related entity is resolved with the relation overrides of the parent entity,
        its own relations are expanded in the simplified mode.
        :param entity: the parent Entity
        :param rel_name: relation name
        :param mode: output mode of the related instances
        """
        target = self.registry.resolve_relation(entity, rel_name)
        descriptor = entity.descriptor
        visible = enumerated(target.descriptor, descriptor.relation_visible_fields(rel_name, target.descriptor, mode))
        hidden = descriptor.relation_hidden_fields_for(rel_name, target.descriptor, mode, visible)
        # the hidden overrides of the parent win over the visible fields
        visible = difference(visible, descriptor.relation_hidden_overrides.get(rel_name, ()))
        if not is_super_admin(auth):
            always_hidden = target.descriptor.always_hidden()
            visible = difference(visible, always_hidden)
            hidden = unique(hidden, always_hidden)

        ancestors = (entity.name, target.name)
        per_relation = {}
        for sub_name in target.descriptor.relations:
            if sub_name not in visible:
                continue
            sub_target = self.registry.resolve_relation(target, sub_name)
            if sub_target.name in ancestors:
                visible = difference(visible, [sub_name])
                hidden = unique(hidden, [sub_name])
                continue
            if self.max_depth < 3:
                continue
            per_relation[sub_name] = self._walk(
                sub_target, OUTPUT_SIMPLIFIED, RelationTree(), auth, NO_OVERRIDES, ancestors, 3, target.is_singular(sub_name)
            )

        plan = VisibilityPlan(
            entity=target.name,
            visible=frozenset(visible),
            hidden=frozenset(hidden) - frozenset(visible),
            per_relation=per_relation,
            only_one=entity.is_singular(rel_name),
            mode=mode,
            counts=frozenset(name for name in target.descriptor.relations if count_field(name) in visible),
        )
        dynapi.log.debug(f"Relation visibility plan: {plan.to_dict()}")
        return plan
