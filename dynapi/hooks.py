"""Entity runtime hooks.

Applications customize the behavior of an exposed entity with an :class:`EntityHooks`
instance. Every hook is optional, a missing hook is a no-op.

The orchestrator calls the type and instance hooks in a fixed order, the "before" hooks
from the innermost related instance up to the primary entity, the "after" hooks in the
exact reverse order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

Hook = Callable[..., Any]


@dataclass(frozen=True)
class EntityHooks:
    """Optional callbacks of an entity

    - before_operation(operation): may veto by raising, or return a dict that replaces the payload
    - after_operation(operation, result): returns the (possibly replaced) result
    - before_instance_operation(instance, operation): returns the (possibly replaced) instance
    - after_instance_operation(instance, operation): returns the (possibly replaced) instance
    - request_filter(query, filters, auth): returns the filtered query
    - request_sort(query, sort_by, sort_order, auth): returns the ordered query
    - collection_filter(items, filters, auth): returns the filtered list of related instances
    - is_allowed(operation): returns False to deny the operation
    """

    before_operation: Optional[Hook] = None
    after_operation: Optional[Hook] = None
    before_instance_operation: Optional[Hook] = None
    after_instance_operation: Optional[Hook] = None
    request_filter: Optional[Hook] = None
    request_sort: Optional[Hook] = None
    collection_filter: Optional[Hook] = None
    is_allowed: Optional[Hook] = None

    def run_before(self, operation: Any) -> Optional[dict]:
        if self.before_operation is None:
            return None
        return self.before_operation(operation)

    def run_after(self, operation: Any, result: Any) -> Any:
        if self.after_operation is None:
            return result
        return self.after_operation(operation, result)

    def run_before_instance(self, instance: Any, operation: Any) -> Any:
        if self.before_instance_operation is None or instance is None:
            return instance
        replaced = self.before_instance_operation(instance, operation)
        return instance if replaced is None else replaced

    def run_after_instance(self, instance: Any, operation: Any) -> Any:
        if self.after_instance_operation is None or instance is None:
            return instance
        replaced = self.after_instance_operation(instance, operation)
        return instance if replaced is None else replaced

    def filter_query(self, query: Any, filters: Mapping[str, Any], auth: Any) -> Any:
        if self.request_filter is None:
            return query
        return self.request_filter(query, filters, auth)

    def sort_query(self, query: Any, sort_by: str, sort_order: str, auth: Any) -> Any:
        if self.request_sort is None:
            return query
        return self.request_sort(query, sort_by, sort_order, auth)

    def filter_collection(self, items: Iterable, filters: Mapping[str, Any], auth: Any) -> list:
        if self.collection_filter is None:
            return list(items)
        return list(self.collection_filter(items, filters, auth))

    def allows(self, operation: Any) -> bool:
        if self.is_allowed is None:
            return True
        return bool(self.is_allowed(operation))


NO_HOOKS = EntityHooks()
