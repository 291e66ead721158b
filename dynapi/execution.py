# execution.py: implements the request execution orchestrator
#
# Execution.run handles a single api operation:
# 1. resolve the model, the instance(s) and the relation(s) addressed by the url
# 2. check the execution policy: allowed operations, authentication, roles and the is_allowed hook
# 3. validate the payload of write operations
# 4. run the "before" hooks, the operation itself and the "after" hooks
# 5. return the shaped result, or the error, as an ExecutionResult
#
# pylint: disable=too-many-public-methods,broad-except,logging-fstring-interpolation
import datetime
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, List, Optional
import dynapi
from .cache import ResponseCache
from .config import get_config
from .constants import (
    BULK_DESTROY,
    BULK_UPDATE,
    CACHEABLE_OPERATIONS,
    DESTROY,
    EXPORT,
    FUNCTION,
    INDEX,
    INSTANCE_OPERATIONS,
    MODEL_FUNCTION,
    OPERATION_TYPES,
    OUTPUT_SIMPLIFIED,
    RELATION_BULK_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_DESTROY,
    RELATION_INDEX,
    RELATION_INSTANCE_OPERATIONS,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_OPERATIONS,
    RELATION_OF_RELATION_SHOW,
    RELATION_OPERATIONS,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    RETURN_CREATE,
    SHOW,
    STORE,
    UPDATE,
    WRITE_OPERATIONS,
)
from .errors import (
    BadRequestError,
    DynApiError,
    GenericError,
    NotAcceptableError,
    NotFoundError,
    UnAuthenticatedError,
    UnAuthorizedError,
    ValidationError,
)
from .attr_parse import parse_attr
from .pagination import paginate_list, paginated_details, query_params
from .query import QueryShaper
from .request import RequestContext
from .shaping import ResultShaper, is_collection
from .util import convert_boolean, unique
from .validation import validate_payload
from .visibility import VisibilityOverrides
from .walker import RelationGraphWalker


@dataclass
class Operation:
    """
    The operation being executed, passed to the entity hooks
    """

    type: str
    entity: Any
    context: RequestContext
    data: Dict[str, Any]
    auth: Any = None
    mode: str = OUTPUT_SIMPLIFIED
    instance: Any = None
    relation_name: Optional[str] = None
    relation_entity: Any = None
    relation_instance: Any = None
    ror_name: Optional[str] = None
    ror_entity: Any = None
    ror_instance: Any = None
    function: Optional[str] = None

    @property
    def locale(self) -> str:
        return self.context.locale


@dataclass(frozen=True)
class ExecutionResult:
    payload: Any
    status: int = HTTPStatus.OK.value

    @property
    def ok(self) -> bool:
        return self.status < HTTPStatus.BAD_REQUEST.value


class Execution:
    """
    Request execution orchestrator
    :param registry: EntityRegistry
    :param cache: ResponseCache, None to disable caching
    :param session: sqlalchemy session, dynapi.DB.session by default
    """

    def __init__(self, registry: Any, cache: Optional[ResponseCache] = None, session: Any = None) -> None:
        self.registry = registry
        self.cache = cache
        self._session = session
        self.walker = RelationGraphWalker(registry)
        self.shaper = ResultShaper(registry)
        self.handlers = {
            INDEX: self.do_index,
            SHOW: self.do_show,
            STORE: self.do_store,
            UPDATE: self.do_update,
            DESTROY: self.do_destroy,
            BULK_UPDATE: self.do_bulk_update,
            BULK_DESTROY: self.do_bulk_destroy,
            EXPORT: self.do_export,
            FUNCTION: self.do_function,
            MODEL_FUNCTION: self.do_model_function,
            RELATION_INDEX: self.do_relation_index,
            RELATION_SHOW: self.do_relation_show,
            RELATION_STORE: self.do_relation_store,
            RELATION_UPDATE: self.do_relation_update,
            RELATION_DESTROY: self.do_relation_destroy,
            RELATION_BULK_UPDATE: self.do_relation_bulk_update,
            RELATION_BULK_DESTROY: self.do_relation_bulk_destroy,
            RELATION_OF_RELATION_INDEX: self.do_relation_of_relation_index,
            RELATION_OF_RELATION_SHOW: self.do_relation_of_relation_show,
        }

    @property
    def session(self):
        return self._session if self._session is not None else dynapi.DB.session

    def run(
        self,
        op_type: str,
        model: str,
        model_id: Any = None,
        relation: Optional[str] = None,
        relation_id: Any = None,
        ror: Optional[str] = None,
        ror_id: Any = None,
        function: Optional[str] = None,
        context: Optional[RequestContext] = None,
        data: Optional[Dict[str, Any]] = None,
        auth: Any = None,
    ) -> ExecutionResult:
        """
        Execute an operation
        :param op_type: operation type, eg. "index"
        :param model: model name of the url
        :param model_id: id or slug of the model instance
        :param relation: relation name
        :param relation_id: id or slug of the related instance
        :param ror: relation of relation name
        :param ror_id: id or slug of the relation of relation instance
        :param function: custom function name
        :param context: RequestContext
        :param data: request payload
        :param auth: AuthContext of the caller
        :return: ExecutionResult with the shaped payload or the error body
        """
        try:
            operation = self.prepare(op_type, model, model_id, relation, relation_id, ror, ror_id, function, context, data, auth)
            self.validate_execution(operation)
            self.validate_data(operation)
            self.run_before_hooks(operation)
            result = self.handlers[operation.type](operation)
            result = self.run_after_hooks(operation, result)
            return ExecutionResult(result, self.status_code(operation))
        except DynApiError as exc:
            return ExecutionResult(exc.to_dict(), exc.status_code)
        except Exception as exc:
            dynapi.log.exception(exc)
            error = GenericError(str(exc))
            return ExecutionResult(error.to_dict(), error.status_code)

    def prepare(self, op_type, model, model_id, relation, relation_id, ror, ror_id, function, context, data, auth) -> Operation:
        """
        Resolve the entities and instances addressed by the url
        """
        if op_type not in OPERATION_TYPES:
            raise BadRequestError(f"Invalid operation {op_type}")
        context = context or RequestContext()
        entity = self.registry.resolve_model_name(model)
        operation = Operation(op_type, entity, context, dict(data or {}), auth, context.output_for(op_type), function=function)

        if op_type in INSTANCE_OPERATIONS:
            operation.instance = self.find_instance(entity, model_id, context.with_trashed)
        if op_type in RELATION_OPERATIONS:
            operation.relation_name = relation
            operation.relation_entity = self.registry.resolve_relation(entity, relation)
        if op_type in RELATION_INSTANCE_OPERATIONS:
            operation.relation_instance = self.find_related(
                entity, operation.instance, relation, relation_id, operation.relation_entity, context.with_trashed
            )
        if op_type in RELATION_OF_RELATION_OPERATIONS:
            operation.ror_name = ror
            operation.ror_entity = self.registry.resolve_relation(operation.relation_entity, ror)
            if op_type == RELATION_OF_RELATION_SHOW:
                operation.ror_instance = self.find_related(
                    operation.relation_entity, operation.relation_instance, ror, ror_id, operation.ror_entity, context.with_trashed
                )
        return operation

    def validate_execution(self, operation: Operation) -> None:
        """
        Check the execution policy of the entity
        :raises UnAuthorizedError: the operation is not allowed
        :raises UnAuthenticatedError: the operation requires an authenticated user
        """
        entity = operation.entity
        descriptor = entity.descriptor
        allowed_models = get_config("ALLOWED_MODELS") or []
        model_allowed = entity.name in allowed_models or "*" in allowed_models
        if operation.type in descriptor.block_execution_types or not (model_allowed or descriptor.is_operation_allowed(operation.type)):
            raise UnAuthorizedError(f"{operation.type} is not allowed for {entity.name}")
        if descriptor.is_auth_required(operation.type):
            if operation.auth is None:
                raise UnAuthenticatedError(f"{operation.type} of {entity.name} requires authentication")
            if not descriptor.is_role_allowed(operation.type, operation.auth):
                raise UnAuthorizedError(f"You do not have permission to {operation.type} {entity.name}")
        if not entity.hooks.allows(operation):
            raise UnAuthorizedError(f"You do not have permission to access this {entity.name}")

    def validate_data(self, operation: Operation) -> None:
        if operation.type not in WRITE_OPERATIONS:
            return
        if not operation.entity.descriptor.is_rules_mandatory(operation.type):
            return
        target = operation.entity
        if operation.type in (RELATION_STORE, RELATION_UPDATE, RELATION_BULK_UPDATE):
            target = operation.relation_entity
        operation.data = validate_payload(target.descriptor, operation.data, operation.type, operation.auth)

    @staticmethod
    def hook_chain(operation: Operation) -> List[tuple]:
        """
        :return: (entity, instance attribute) from the innermost relation to the primary entity
        """
        chain = []
        for entity_attr, instance_attr in (("ror_entity", "ror_instance"), ("relation_entity", "relation_instance"), ("entity", "instance")):
            entity = getattr(operation, entity_attr)
            if entity is not None:
                chain.append((entity, instance_attr))
        return chain

    def run_before_hooks(self, operation: Operation) -> None:
        for entity, instance_attr in self.hook_chain(operation):
            setattr(operation, instance_attr, entity.hooks.run_before_instance(getattr(operation, instance_attr), operation))
            data = entity.hooks.run_before(operation)
            if data is not None:
                operation.data = dict(data)

    def run_after_hooks(self, operation: Operation, result: Any) -> Any:
        function_result = result
        for entity, instance_attr in reversed(self.hook_chain(operation)):
            result = entity.hooks.run_after(operation, result)
            setattr(operation, instance_attr, entity.hooks.run_after_instance(getattr(operation, instance_attr), operation))
        if operation.type == MODEL_FUNCTION:
            return function_result
        return result

    @staticmethod
    def status_code(operation: Operation) -> int:
        if operation.entity.descriptor.return_kind(operation.type) == RETURN_CREATE:
            return HTTPStatus.CREATED.value
        return HTTPStatus.OK.value

    # Lookups

    @staticmethod
    def coerce_id(entity: Any, key: Any) -> Any:
        """
        :return: the key converted to the primary key type, None if that's not possible
        """
        try:
            python_type = entity.mapper.primary_key[0].type.python_type
        except NotImplementedError:
            return key
        if python_type is int:
            if isinstance(key, int):
                return key
            return int(key) if str(key).isdigit() else None
        return key

    def find_instance(self, entity: Any, key: Any, with_trashed: bool = False) -> Any:
        """
        Look up an instance by its id or, when the model has a slug column, its slug
        :raises NotFoundError:
        """
        if key is None:
            raise NotFoundError(f"No {entity.name} id")
        model = entity.model
        query = QueryShaper(entity, self.session).apply_soft_delete(self.session.query(model), with_trashed)
        instance = None
        pk_value = self.coerce_id(entity, key)
        if pk_value is not None:
            instance = query.filter(getattr(model, entity.primary_key) == pk_value).first()
        if instance is None and entity.slug_column:
            instance = query.filter(getattr(model, entity.slug_column) == str(key)).first()
        if instance is None:
            raise NotFoundError(f"{entity.name} {key} not found")
        return instance

    def find_related(self, entity: Any, instance: Any, rel_name: str, key: Any, target: Any, with_trashed: bool = False) -> Any:
        """
        Look up a related instance by its id or slug
        :raises NotFoundError:
        """
        for related in self.related_instances(target, instance, rel_name, with_trashed):
            if str(target.get_id(related)) == str(key):
                return related
        if target.slug_column:
            for related in self.related_instances(target, instance, rel_name, with_trashed):
                if getattr(related, target.slug_column) == str(key):
                    return related
        raise NotFoundError(f"{entity.name}.{rel_name} {key} not found")

    @staticmethod
    def related_instances(target: Any, instance: Any, rel_name: str, with_trashed: bool = False) -> List[Any]:
        value = getattr(instance, rel_name)
        if value is None:
            items = []
        elif is_collection(value):
            items = list(value)
        else:
            items = [value]
        soft_delete_column = target.soft_delete_column
        if soft_delete_column and not with_trashed:
            items = [item for item in items if getattr(item, soft_delete_column) is None]
        return items

    # Cache

    def cache_key(self, operation: Operation) -> Optional[str]:
        if self.cache is None or operation.type not in CACHEABLE_OPERATIONS or not get_config("CACHE_ENABLED"):
            return None
        auth = operation.auth
        if auth is None:
            scope = "anonymous"
        elif auth.is_super_admin():
            scope = "super_admin"
        else:
            scope = ",".join(sorted(auth.roles()))
        return self.cache.make_key(operation.type, operation.entity.name, operation.context, scope)

    def cache_get(self, key: Optional[str]) -> Any:
        if key is None:
            return None
        return self.cache.get(key)

    def cache_set(self, key: Optional[str], value: Any) -> None:
        if key is not None:
            self.cache.set(key, value)

    def invalidate(self, *entities: Any) -> None:
        """
        Drop the cached responses of the written entities and of the entities that embed them through a relation
        """
        if self.cache is None:
            return
        written = [entity for entity in entities if entity is not None]
        names = unique(
            [entity.name for entity in written],
            [other.name for other in self.registry if any(self.embeds(other, entity) for entity in written)],
        )
        for name in names:
            self.cache.delete_entity(name)

    @staticmethod
    def embeds(entity: Any, target: Any) -> bool:
        """
        :return: True if a relation of entity refers to the model of target
        """
        for rel_name in entity.descriptor.relations:
            relationship = entity.relationship(rel_name)
            if relationship is not None and relationship.mapper.class_ is target.model:
                return True
        return False

    # Writes

    @staticmethod
    def assign(entity: Any, instance: Any, data: Dict[str, Any]) -> Any:
        """
        Set the column attributes of an instance from the payload, other keys are ignored
        """
        mapper = entity.mapper
        columns = {attr.key: attr.columns[0] for attr in mapper.column_attrs}
        for name, value in data.items():
            if name not in columns:
                dynapi.log.debug(f"Ignoring {entity.name} attribute {name}")
                continue
            if name == entity.primary_key and getattr(instance, name, None) is not None:
                continue
            setattr(instance, name, parse_attr(columns[name], name, value))
        return instance

    def delete(self, entity: Any, instance: Any) -> None:
        """
        Soft delete when the model has a soft delete column, delete otherwise
        """
        soft_delete_column = entity.soft_delete_column
        if soft_delete_column:
            setattr(instance, soft_delete_column, datetime.datetime.now())
        else:
            self.session.delete(instance)

    @staticmethod
    def payload_ids(data: Dict[str, Any], context: Optional[RequestContext] = None) -> List[Any]:
        """
        :return: the ids of a bulk operation: the "ids" of the payload or the "id" filter
        :raises ValidationError:
        """
        ids = data.get("ids")
        if ids is None and context is not None:
            ids = context.filters.get("id")
        if ids is None and "id" in data:
            ids = [data["id"]]
        if ids is not None and not isinstance(ids, (list, tuple)):
            ids = [ids]
        if not ids:
            raise ValidationError("No ids", errors={"ids": ["The ids field is required."]})
        return list(ids)

    def overrides(self, operation: Operation) -> VisibilityOverrides:
        return VisibilityOverrides.from_context(operation.context)

    def shape_entity(self, operation: Operation, entity: Any, raw: Any, mode: Optional[str] = None) -> Any:
        """
        Shape the instance(s) of an entity with the request visibility overrides
        """
        plan = self.walker.walk(entity, mode or operation.mode, auth=operation.auth, overrides=self.overrides(operation))
        instances = raw if isinstance(raw, (list, tuple)) else [raw]
        counts = QueryShaper(entity, self.session).fetch_counts([item for item in instances if item is not None], sorted(plan.counts))
        return self.shaper.shape(raw, plan, counts)

    # Operations

    def do_index(self, operation: Operation) -> Any:
        cache_key = self.cache_key(operation)
        cached = self.cache_get(cache_key)
        if cached is not None:
            return cached
        entity = operation.entity
        context = operation.context
        plan = self.walker.walk(entity, operation.mode, auth=operation.auth, overrides=self.overrides(operation))
        paginated = context.paginated
        if paginated is None:
            paginated = entity.descriptor.is_paginated_by_default(operation.type, operation.mode)
        result = QueryShaper(entity, self.session).execute(context, plan, paginated, operation.auth)
        data = self.shaper.shape(result.items, plan, result.counts)
        if paginated:
            data = paginated_details(data, result.total, context.page, context.per_page, context.path, query_params(context.query))
        self.cache_set(cache_key, data)
        return data

    def do_show(self, operation: Operation) -> Any:
        cache_key = self.cache_key(operation)
        cached = self.cache_get(cache_key)
        if cached is not None:
            return cached
        data = self.shape_entity(operation, operation.entity, operation.instance)
        self.cache_set(cache_key, data)
        return data

    def do_store(self, operation: Operation) -> Any:
        entity = operation.entity
        instance = self.assign(entity, entity.model(), operation.data)
        self.session.add(instance)
        self.session.flush()
        operation.instance = instance
        self.invalidate(entity)
        return self.shape_entity(operation, entity, instance)

    def do_update(self, operation: Operation) -> Any:
        entity = operation.entity
        self.assign(entity, operation.instance, operation.data)
        self.session.flush()
        self.invalidate(entity)
        return self.shape_entity(operation, entity, operation.instance)

    def do_destroy(self, operation: Operation) -> Any:
        entity = operation.entity
        result = self.shape_entity(operation, entity, operation.instance)
        self.delete(entity, operation.instance)
        self.session.flush()
        self.invalidate(entity)
        return result

    def bulk_instances(self, operation: Operation) -> List[Any]:
        entity = operation.entity
        ids = [self.coerce_id(entity, key) for key in self.payload_ids(operation.data, operation.context)]
        query = self.session.query(entity.model).filter(getattr(entity.model, entity.primary_key).in_(ids))
        query = QueryShaper(entity, self.session).apply_soft_delete(query, operation.context.with_trashed)
        return query.all()

    def do_bulk_update(self, operation: Operation) -> Any:
        entity = operation.entity
        instances = self.bulk_instances(operation)
        data = {name: value for name, value in operation.data.items() if name != "ids"}
        for instance in instances:
            self.assign(entity, instance, data)
        self.session.flush()
        self.invalidate(entity)
        return self.shape_entity(operation, entity, instances)

    def do_bulk_destroy(self, operation: Operation) -> Any:
        entity = operation.entity
        instances = self.bulk_instances(operation)
        result = self.shape_entity(operation, entity, instances)
        for instance in instances:
            self.delete(entity, instance)
        self.session.flush()
        self.invalidate(entity)
        return result

    def do_export(self, operation: Operation) -> Dict[str, Any]:
        """
        :return: {"header": [field names], "rows": [[values], ...]}
        """
        entity = operation.entity
        plan = self.walker.walk(entity, operation.mode, auth=operation.auth, overrides=self.overrides(operation))
        result = QueryShaper(entity, self.session).execute(operation.context, plan, False, operation.auth)
        rows = self.shaper.shape(result.items, plan, result.counts)
        header = list(entity.descriptor.export_header) or [name for name in entity.descriptor.fields if name in plan.visible]
        return {"header": header, "rows": [[row.get(name) for name in header] for row in rows]}

    def call_function(self, operation: Operation, target: Any) -> Any:
        """
        Call a custom function of the model class or instance, the function receives the operation
        :raises NotAcceptableError: the function doesn't exist
        """
        entity = operation.entity
        method_name = entity.descriptor.function_name(operation.function or "")
        method = getattr(target, method_name, None)
        if not operation.function or not callable(method):
            raise NotAcceptableError(f"Function {operation.function} does not exist on {entity.name}")
        result = method(operation)
        result_entity = self.result_entity(result)
        if result_entity is not None:
            return self.shape_entity(operation, result_entity, result)
        return result

    def result_entity(self, result: Any) -> Any:
        """
        :return: the entity of a function result that holds model instances
        """
        sample = result[0] if isinstance(result, (list, tuple)) and result else result
        if sample is None:
            return None
        return self.registry.for_model(type(sample))

    def do_function(self, operation: Operation) -> Any:
        return self.call_function(operation, operation.entity.model)

    def do_model_function(self, operation: Operation) -> Any:
        return self.call_function(operation, operation.instance)

    # Relation operations

    def relation_collection(self, operation: Operation, entity: Any, instance: Any, rel_name: str, target: Any) -> Any:
        """
        The related instances, filtered, sorted and paginated in memory
        """
        context = operation.context
        mode = operation.mode
        plan = self.walker.walk_relation(entity, rel_name, mode, operation.auth)
        if entity.is_singular(rel_name):
            related = getattr(instance, rel_name)
            return self.shaper.shape(related, plan)

        items = self.filter_collection(target, self.related_instances(target, instance, rel_name, True), context, operation.auth)
        if context.sort_by:
            items = QueryShaper.client_sort(items, context.sort_by, context.sort_order)
        paginated = context.paginated
        if paginated is None:
            paginated = entity.descriptor.is_paginated_by_default(operation.type, mode)
        total = len(items)
        if paginated:
            items = paginate_list(items, context.page, context.per_page)
        data = self.shaper.shape(items, plan)
        if paginated:
            return paginated_details(data, total, context.page, context.per_page, context.path, query_params(context.query))
        return data

    @staticmethod
    def filter_collection(target: Any, items: List[Any], context: RequestContext, auth: Any) -> List[Any]:
        """
        In memory filtering of related instances, like QueryShaper.apply_filters
        """
        filters = context.filters
        items = target.hooks.filter_collection(items, filters, auth)
        deleted = None
        for name, value in filters.items():
            if name in target.descriptor.ignore_filters:
                continue
            if name == "term":
                if value not in (None, ""):
                    term = str(value).lower()
                    names = [target.primary_key] + list(target.descriptor.term_filters)
                    items = [item for item in items if any(term in str(getattr(item, attr, "") or "").lower() for attr in names)]
                continue
            if name == "deleted":
                deleted = convert_boolean(value)
                continue
            if not hasattr(target.model, name):
                dynapi.log.warning(f"Invalid filter {target.name}.{name}")
                continue
            values = {str(item) for item in value} if isinstance(value, (list, tuple)) else {str(value)}
            items = [item for item in items if str(getattr(item, name)) in values]
        soft_delete_column = target.soft_delete_column
        if soft_delete_column:
            if deleted:
                items = [item for item in items if getattr(item, soft_delete_column) is not None]
            elif not context.with_trashed:
                items = [item for item in items if getattr(item, soft_delete_column) is None]
        return items

    def do_relation_index(self, operation: Operation) -> Any:
        return self.relation_collection(operation, operation.entity, operation.instance, operation.relation_name, operation.relation_entity)

    def do_relation_of_relation_index(self, operation: Operation) -> Any:
        return self.relation_collection(
            operation, operation.relation_entity, operation.relation_instance, operation.ror_name, operation.ror_entity
        )

    def shape_related(self, operation: Operation, entity: Any, rel_name: str, raw: Any) -> Any:
        plan = self.walker.walk_relation(entity, rel_name, operation.mode, operation.auth)
        if isinstance(raw, (list, tuple)):
            return [self.shaper.shape_instance(item, plan) for item in raw]
        return None if raw is None else self.shaper.shape_instance(raw, plan)

    def do_relation_show(self, operation: Operation) -> Any:
        return self.shape_related(operation, operation.entity, operation.relation_name, operation.relation_instance)

    def do_relation_of_relation_show(self, operation: Operation) -> Any:
        return self.shape_related(operation, operation.relation_entity, operation.ror_name, operation.ror_instance)

    def do_relation_store(self, operation: Operation) -> Any:
        """
        many-to-many relations link the existing instances given by "id" or "ids",
        one-to-many relations create a new related instance
        """
        entity, instance, rel_name, target = operation.entity, operation.instance, operation.relation_name, operation.relation_entity
        if entity.is_many_to_many(rel_name):
            collection = getattr(instance, rel_name)
            result = []
            for key in self.payload_ids(operation.data):
                related = self.find_instance(target, key)
                if related not in collection:
                    collection.append(related)
                result.append(related)
        elif not entity.is_singular(rel_name):
            result = self.assign(target, target.model(), operation.data)
            getattr(instance, rel_name).append(result)
            self.session.add(result)
        else:
            raise BadRequestError(f"Can't store instances in the relation {entity.name}.{rel_name}")
        self.session.flush()
        self.invalidate(entity, target)
        return self.shape_related(operation, entity, rel_name, result)

    def do_relation_update(self, operation: Operation) -> Any:
        target = operation.relation_entity
        self.assign(target, operation.relation_instance, operation.data)
        self.session.flush()
        self.invalidate(operation.entity, target)
        return self.shape_related(operation, operation.entity, operation.relation_name, operation.relation_instance)

    def detach(self, entity: Any, instance: Any, rel_name: str, target: Any, related: Any) -> None:
        """
        Remove a related instance: many-to-many links and singular relations are unset,
        one-to-many related instances are deleted
        """
        if entity.is_many_to_many(rel_name):
            getattr(instance, rel_name).remove(related)
        elif entity.is_singular(rel_name):
            setattr(instance, rel_name, None)
        else:
            self.delete(target, related)

    def do_relation_destroy(self, operation: Operation) -> Any:
        entity, target = operation.entity, operation.relation_entity
        result = self.shape_related(operation, entity, operation.relation_name, operation.relation_instance)
        self.detach(entity, operation.instance, operation.relation_name, target, operation.relation_instance)
        self.session.flush()
        self.invalidate(entity, target)
        return result

    def relation_bulk_instances(self, operation: Operation) -> List[Any]:
        return [
            self.find_related(
                operation.entity, operation.instance, operation.relation_name, key, operation.relation_entity, operation.context.with_trashed
            )
            for key in self.payload_ids(operation.data, operation.context)
        ]

    def do_relation_bulk_update(self, operation: Operation) -> Any:
        target = operation.relation_entity
        items = self.relation_bulk_instances(operation)
        data = {name: value for name, value in operation.data.items() if name != "ids"}
        for item in items:
            self.assign(target, item, data)
        self.session.flush()
        self.invalidate(operation.entity, target)
        return self.shape_related(operation, operation.entity, operation.relation_name, items)

    def do_relation_bulk_destroy(self, operation: Operation) -> Any:
        entity, target = operation.entity, operation.relation_entity
        items = self.relation_bulk_instances(operation)
        result = self.shape_related(operation, entity, operation.relation_name, items)
        for item in items:
            self.detach(entity, operation.instance, operation.relation_name, target, item)
        self.session.flush()
        self.invalidate(entity, target)
        return result
