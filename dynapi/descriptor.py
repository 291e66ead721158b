"""Entity descriptors.

An :class:`EntityDescriptor` is the static configuration of one exposed entity:
its field lists, the visibility tiers per output mode, the relation overrides
and the execution policy. The accessors derive the visible and hidden field sets
used by the :class:`~dynapi.visibility.VisibilityResolver`.

Descriptors are immutable. They are validated when they're created: every name
used in a tier or override list must be one of the enumerated fields, otherwise
a :class:`~dynapi.errors.SystemValidationError` is raised at start-up.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields as dataclass_fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import get_config, normalized_execution_types
from .constants import (
    ALL_ROLES,
    COUNT_SUFFIX,
    DEFAULT_ALLOWED_OPERATIONS,
    DEFAULT_PUBLIC_OPERATIONS,
    DEFAULT_ROLE_OPERATIONS,
    DEFAULT_UNVALIDATED_OPERATIONS,
    OUTPUT_COMPLETE,
    OUTPUT_MODES,
    OUTPUT_SIMPLIFIED,
    RETURN_CREATE,
    RETURN_EXPORT,
    RETURN_KINDS,
    RETURN_OK,
    CREATE_OPERATIONS,
    EXPORT,
    TRANSLATIONS_FIELD,
)
from .errors import SystemValidationError
from .util import difference, snake_case, unique

# Field kinds
COLUMN = "column"
TRANSLATED = "translated"
APPEND = "append"
RELATION = "relation"
COUNT = "count"
RELATION_HIDDEN = "relation_hidden"
PSEUDO = "pseudo"

# tier and override attributes that may only hold enumerated field names
_FIELD_LISTS = (
    "simplified_fields",
    "simplified_visible_fields",
    "complete_hidden",
    "extensive_hidden",
    "always_visible_fields",
    "always_hidden_fields",
    "term_filters",
    "export_header",
)
# attributes that may only hold relation names
_RELATION_LISTS = ("simplified_with", "simplified_with_count", "complete_with")


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    kind: str


@dataclass(frozen=True)
class EntityDescriptor:
    """Immutable configuration of an exposed entity.

    List attributes may be passed as lists, they are stored as tuples.
    ``execution_types`` may be a list of operation names or a mapping of operation
    name to its options (``authentication``, ``mandatory_rules``, ``roles``, ``paginated``, ``return``).
    """

    name: str
    fields: Tuple[str, ...] = ("id",)
    translated_fields: Tuple[str, ...] = ()
    append_fields: Tuple[str, ...] = ()
    relations: Tuple[str, ...] = ()
    relation_hidden_fields: Tuple[str, ...] = ()
    # visibility tiers
    simplified_fields: Tuple[str, ...] = ("id",)
    simplified_visible_fields: Tuple[str, ...] = ()
    simplified_with: Tuple[str, ...] = ()
    simplified_with_count: Tuple[str, ...] = ()
    complete_with: Tuple[str, ...] = ()
    complete_hidden: Tuple[str, ...] = ()
    extensive_hidden: Tuple[str, ...] = ()
    # relation name => {output mode => visible fields of the related entity}
    relation_visible_overrides: Mapping[str, Mapping[str, Tuple[str, ...]]] = field(default_factory=dict)
    # relation name => hidden fields of the related entity
    relation_hidden_overrides: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    hidden_by_default: bool = True
    always_visible_fields: Tuple[str, ...] = ("id",)
    always_hidden_fields: Tuple[str, ...] = ()
    # execution policy
    execution_types: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)
    block_execution_types: Tuple[str, ...] = ()
    # function name => model method name
    functions: Mapping[str, str] = field(default_factory=dict)
    # query shaping
    term_filters: Tuple[str, ...] = ()
    relation_term_filters: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    ignore_filters: Tuple[str, ...] = ()
    ignore_sort: Tuple[str, ...] = ()
    # field name => validation rules, eg. {"title": ["required", "string", "max:255"]}
    validation_rules: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    export_header: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        for attr in dataclass_fields(self):
            value = getattr(self, attr.name)
            if isinstance(value, (list, set, frozenset)):
                object.__setattr__(self, attr.name, tuple(value))
        object.__setattr__(
            self,
            "relation_visible_overrides",
            {rel: {mode: tuple(names) for mode, names in modes.items()} for rel, modes in self.relation_visible_overrides.items()},
        )
        object.__setattr__(self, "relation_hidden_overrides", {rel: tuple(names) for rel, names in self.relation_hidden_overrides.items()})
        object.__setattr__(self, "relation_term_filters", {rel: tuple(names) for rel, names in self.relation_term_filters.items()})
        object.__setattr__(self, "validation_rules", {name: _rule_list(rules) for name, rules in self.validation_rules.items()})
        object.__setattr__(self, "execution_types", normalized_execution_types(self.execution_types))
        object.__setattr__(self, "functions", dict(self.functions))
        self.validate()

    def validate(self) -> None:
        """
        Check that all tier and override lists refer to enumerated fields
        :raises SystemValidationError:
        """
        if not self.name:
            raise SystemValidationError("Entity descriptors require a name")
        enumeration = self.field_enumeration
        for attr_name in _FIELD_LISTS:
            unknown = [name for name in getattr(self, attr_name) if name not in enumeration]
            if unknown:
                raise SystemValidationError(f"{self.name}: unknown field(s) {unknown} in {attr_name}")
        for attr_name in _RELATION_LISTS:
            unknown = [name for name in getattr(self, attr_name) if name not in self.relations]
            if unknown:
                raise SystemValidationError(f"{self.name}: unknown relation(s) {unknown} in {attr_name}")
        for attr_name in ("relation_visible_overrides", "relation_hidden_overrides", "relation_term_filters"):
            unknown = [name for name in getattr(self, attr_name) if name not in self.relations]
            if unknown:
                raise SystemValidationError(f"{self.name}: unknown relation(s) {unknown} in {attr_name}")
        for rel_name, modes in self.relation_visible_overrides.items():
            unknown = [mode for mode in modes if mode not in OUTPUT_MODES]
            if unknown:
                raise SystemValidationError(f"{self.name}: invalid output mode(s) {unknown} for relation {rel_name}")
        for op_type, options in self.execution_types.items():
            return_kind = options.get("return")
            if return_kind is not None and return_kind not in RETURN_KINDS:
                raise SystemValidationError(f"{self.name}: invalid return kind {return_kind} for {op_type}")

    @property
    def field_enumeration(self) -> Dict[str, FieldDescriptor]:
        """
        :return: all field names of the entity with their kind
        """
        result = {}
        for kind, names in (
            (RELATION_HIDDEN, self.relation_hidden_fields),
            (COUNT, self.relation_counts),
            (RELATION, self.relations),
            (APPEND, self.append_fields),
            (TRANSLATED, self.translated_fields),
            (COLUMN, self.fields),
        ):
            for name in names:
                result[name] = FieldDescriptor(name, kind)
        if self.translated_fields:
            result[TRANSLATIONS_FIELD] = FieldDescriptor(TRANSLATIONS_FIELD, PSEUDO)
        return result

    @property
    def relation_counts(self) -> Tuple[str, ...]:
        return tuple(count_field(rel_name) for rel_name in self.relations)

    @property
    def all_fields(self) -> List[str]:
        """
        :return: every field the entity can output
        """
        return unique(
            self.relation_hidden_fields, self.append_fields, self.translated_fields, self.fields, self.relations, self.relation_counts
        )

    def is_hidden_by_default(self) -> bool:
        global_setting = get_config("HIDDEN_BY_DEFAULT")
        if global_setting is None:
            return self.hidden_by_default
        return bool(global_setting)

    def always_hidden(self) -> List[str]:
        """
        Fields that are hidden for everyone but the super-admin.
        When the entity is hidden by default, that's everything but the always visible fields
        """
        if self.is_hidden_by_default():
            return difference(self.all_fields, self.always_visible_fields)
        return list(self.always_hidden_fields)

    def visible_fields_for(self, mode: str) -> List[str]:
        """
        :return: the fields that make up the output in the given mode, without the always hidden fields
        """
        mode = _check_mode(mode)
        if mode == OUTPUT_SIMPLIFIED:
            visible = unique(self.simplified_visible_fields, self.simplified_fields, counts(self.simplified_with_count), self.simplified_with)
        elif mode == OUTPUT_COMPLETE:
            visible = difference(
                unique(self.fields, self.append_fields, self.relation_counts, self.complete_with),
                self.complete_hidden,
                difference(self.relations, self.append_fields, self.complete_with),
            )
        else:
            visible = difference(unique(self.fields, self.append_fields, self.relations, self.relation_counts), self.extensive_hidden)
        return difference(visible, self.always_hidden())

    def hidden_fields_for(self, mode: str) -> List[str]:
        mode = _check_mode(mode)
        if mode == OUTPUT_SIMPLIFIED:
            return difference(
                unique(self.relation_hidden_fields, self.append_fields, self.fields, self.relations, self.relation_counts),
                self.simplified_visible_fields,
                self.simplified_fields,
                counts(self.simplified_with_count),
                self.simplified_with,
            )
        if mode == OUTPUT_COMPLETE:
            return difference(unique(self.complete_hidden, self.relations), self.complete_with)
        return list(self.extensive_hidden)

    def with_relations_for(self, mode: str) -> List[str]:
        """
        :return: the relations that are expanded by default in the given mode
        """
        mode = _check_mode(mode)
        if mode == OUTPUT_SIMPLIFIED:
            with_relations = self.simplified_with
        elif mode == OUTPUT_COMPLETE:
            with_relations = self.complete_with
        else:
            with_relations = difference(self.relations, self.extensive_hidden)
        # a relation that has the name of an appended field is never expanded
        return difference(with_relations, self.append_fields)

    def with_counts_for(self, mode: str) -> List[str]:
        """
        :return: the relations that are counted by default in the given mode
        """
        mode = _check_mode(mode)
        if mode == OUTPUT_SIMPLIFIED:
            return list(self.simplified_with_count)
        if mode == OUTPUT_COMPLETE:
            return list(self.relations)
        return difference(self.relations, self.extensive_hidden)

    def relation_visible_fields(self, rel_name: str, target: "EntityDescriptor", mode: str) -> List[str]:
        """
        :return: the visible fields of the related entity, the override for this relation wins
        """
        override = self.relation_visible_overrides.get(rel_name, {}).get(_check_mode(mode))
        if override is not None:
            return list(override)
        return target.visible_fields_for(mode)

    def relation_hidden_fields_for(
        self, rel_name: str, target: "EntityDescriptor", mode: str, make_visible: Optional[List[str]] = None
    ) -> List[str]:
        """
        :return: the hidden fields of the related entity, the override for this relation wins
        """
        override = self.relation_hidden_overrides.get(rel_name)
        if override is not None:
            return list(override)
        return difference(unique(target.hidden_fields_for(mode), target.all_fields), make_visible or ())

    # Execution policy

    def _policy(self, op_type: str) -> Optional[Dict[str, Any]]:
        """
        :return: the options of the operation type, from the entity or the global configuration
        """
        if op_type in self.execution_types:
            return self.execution_types[op_type]
        global_types = normalized_execution_types(get_config("EXECUTION_TYPES"))
        return global_types.get(op_type)

    def _policy_option(self, op_type: str, option: str) -> Any:
        options = self._policy(op_type) or {}
        return options.get(option)

    def is_operation_allowed(self, op_type: str) -> bool:
        if op_type in self.block_execution_types:
            return False
        if self.execution_types:
            return op_type in self.execution_types
        global_types = normalized_execution_types(get_config("EXECUTION_TYPES"))
        if global_types:
            return op_type in global_types
        return op_type in DEFAULT_ALLOWED_OPERATIONS

    def is_auth_required(self, op_type: str) -> bool:
        value = self._policy_option(op_type, "authentication")
        if value is not None:
            return bool(value)
        return op_type not in DEFAULT_PUBLIC_OPERATIONS

    def is_rules_mandatory(self, op_type: str) -> bool:
        value = self._policy_option(op_type, "mandatory_rules")
        if value is None:
            value = self._policy_option(op_type, "rules")
        if value is not None:
            return bool(value)
        return op_type not in DEFAULT_UNVALIDATED_OPERATIONS

    def is_paginated_by_default(self, op_type: str, mode: Optional[str] = None) -> bool:
        value = self._policy_option(op_type, "paginated")
        if isinstance(value, Mapping):
            value = value.get(mode)
        if value is not None:
            return bool(value)
        return mode != OUTPUT_SIMPLIFIED

    def is_role_allowed(self, op_type: str, auth: Any) -> bool:
        """
        :param auth: the auth context of the caller, None for anonymous callers
        """
        if auth is not None and auth.is_super_admin():
            return True
        options = self._policy(op_type) or {}
        roles = options.get("roles", options.get("profiles"))
        if roles is not None:
            if isinstance(roles, str):
                roles = [roles]
            if ALL_ROLES in roles:
                return True
            return auth is not None and auth.contains_any_role(roles)
        return op_type in DEFAULT_ROLE_OPERATIONS

    def return_kind(self, op_type: str) -> str:
        value = self._policy_option(op_type, "return")
        if value is not None:
            return value
        if op_type in CREATE_OPERATIONS:
            return RETURN_CREATE
        if op_type == EXPORT:
            return RETURN_EXPORT
        return RETURN_OK

    def function_name(self, name: str) -> str:
        """
        :return: the model method that implements the custom function `name`
        """
        if name in self.functions:
            return self.functions[name]
        return f"execute_{snake_case(name)}"


def count_field(rel_name: str) -> str:
    return f"{rel_name}{COUNT_SUFFIX}"


def counts(rel_names) -> List[str]:
    return [count_field(rel_name) for rel_name in rel_names]


def _check_mode(mode: str) -> str:
    if mode not in OUTPUT_MODES:
        raise SystemValidationError(f"Invalid output mode {mode}")
    return mode


def _rule_list(rules: Any) -> Tuple[str, ...]:
    if isinstance(rules, str):
        return tuple(rule for rule in rules.split("|") if rule)
    return tuple(rules)
