# query.py: implements the query shaping stage
#
# The QueryShaper turns a visibility plan and the request context into a sqlalchemy query:
# - column selection (load_only)
# - eager loading of the expanded relations (selectinload)
# - relation counts, fetched with one grouped COUNT query per relation
# - filters, free text search and the soft delete toggle
# - sorting, either in the database or client side for computed and translated fields
# - pagination
#
# pylint: disable=logging-fstring-interpolation
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence
from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import aliased, load_only, selectinload
import dynapi
from .constants import TRANSLATIONS_FIELD
from .descriptor import count_field
from .pagination import page_slice
from .util import convert_boolean, natural_sort_key


@dataclass
class QueryResult:
    """
    The fetched instances of an index query
    """

    items: List[Any]
    total: int
    counts: Dict[Any, Dict[str, int]] = field(default_factory=dict)


class QueryShaper:
    """
    Query shaping for a single entity
    :param entity: registered Entity
    :param session: sqlalchemy session, dynapi.DB.session by default
    """

    def __init__(self, entity: Any, session: Any = None) -> None:
        self.entity = entity
        self.model = entity.model
        self.descriptor = entity.descriptor
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else dynapi.DB.session

    def base_query(self):
        return self.session.query(self.model)

    def _column(self, name: str):
        """
        :return: the mapped column attribute or None
        """
        if name not in self.entity.column_attributes:
            return None
        return getattr(self.model, name)

    @property
    def primary_key_column(self):
        return getattr(self.model, self.entity.primary_key)

    def select(self, query, plan: Any):
        """
        Only load the persisted fields of the output, the primary and foreign keys are always loaded
        """
        columns = self.entity.column_attributes
        selected = [name for name in columns if name in plan.visible]
        if len(selected) == len(columns):
            return query
        selected = [self.entity.primary_key] + self.entity.foreign_key_attributes + selected
        soft_delete_column = self.entity.soft_delete_column
        if soft_delete_column:
            selected.append(soft_delete_column)
        selected = list(dict.fromkeys(selected))
        return query.options(load_only(*[getattr(self.model, name) for name in selected]))

    def eager_load(self, query, plan: Any):
        """
        selectinload the relations of the plan, recursively
        """
        for path in plan.eager_paths():
            loader = None
            current = self.model
            for rel_name in path:
                attr = getattr(current, rel_name)
                loader = selectinload(attr) if loader is None else loader.selectinload(attr)
                current = attr.property.mapper.class_
            query = query.options(loader)
        return query

    def fetch_counts(self, instances: Sequence[Any], relations: Sequence[str]) -> Dict[Any, Dict[str, int]]:
        """
        Count the related instances with a grouped COUNT query per relation
        :return: {primary key: {"<relation>_count": count}}
        """
        ids = [self.entity.get_id(instance) for instance in instances]
        result = {pk: {} for pk in ids}
        if not ids:
            return result
        pk_column = self.primary_key_column
        for rel_name in relations:
            rel_attr = getattr(self.model, rel_name)
            target = aliased(rel_attr.property.mapper.class_)
            rows = (
                self.session.query(pk_column, func.count())
                .select_from(self.model)
                .join(rel_attr.of_type(target))
                .filter(pk_column.in_(ids))
                .group_by(pk_column)
                .all()
            )
            counts = dict(rows)
            for pk in ids:
                result[pk][count_field(rel_name)] = counts.get(pk, 0)
        return result

    def term_clause(self, term: Any):
        """
        Free text search: the primary key, the term filter fields and the relation term filter fields
        """
        like = f"%{term}%"
        clauses = [cast(self.primary_key_column, String).ilike(like)]
        for name in self.descriptor.term_filters:
            if name in self.descriptor.translated_fields:
                clause = self._translation_clause(name, like)
            else:
                column = self._column(name)
                clause = column.ilike(like) if column is not None else None
            if clause is None:
                dynapi.log.warning(f"Can't search {self.entity.name}.{name}")
                continue
            clauses.append(clause)
        for rel_name, names in self.descriptor.relation_term_filters.items():
            rel_attr = getattr(self.model, rel_name)
            target = rel_attr.property.mapper.class_
            for name in names:
                target_clause = getattr(target, name).ilike(like)
                if rel_attr.property.uselist:
                    clauses.append(rel_attr.any(target_clause))
                else:
                    clauses.append(rel_attr.has(target_clause))
        return or_(*clauses)

    def _translation_clause(self, name: str, like: str):
        """
        translated fields are searched in the translations relationship
        """
        translations = getattr(self.model, TRANSLATIONS_FIELD, None)
        if translations is None or not hasattr(translations, "property"):
            return None
        translation_model = translations.property.mapper.class_
        column = getattr(translation_model, name, None)
        if column is None:
            return None
        return translations.any(column.ilike(like))

    def apply_filters(self, query, filters: Mapping[str, Any], auth: Any = None, with_trashed: bool = False):
        """
        Apply the request filters:
        - the request_filter hook of the entity
        - term: free text search
        - deleted: only return soft deleted rows
        - <field>: list values are matched with IN, other values with =
        """
        query = self.entity.hooks.filter_query(query, filters, auth)
        deleted = None
        for name, value in filters.items():
            if name in self.descriptor.ignore_filters:
                continue
            if name == "term":
                if value not in (None, ""):
                    query = query.filter(self.term_clause(value))
                continue
            if name == "deleted":
                deleted = convert_boolean(value)
                continue
            column = self._column(name)
            if column is None:
                dynapi.log.warning(f"Invalid filter {self.entity.name}.{name}")
                continue
            if isinstance(value, (list, tuple)):
                query = query.filter(column.in_(value))
            else:
                query = query.filter(column == value)
        return self.apply_soft_delete(query, with_trashed, deleted)

    def apply_soft_delete(self, query, with_trashed: bool = False, deleted: Optional[bool] = None):
        soft_delete_column = self.entity.soft_delete_column
        if soft_delete_column is None:
            return query
        column = getattr(self.model, soft_delete_column)
        if deleted:
            return query.filter(column.isnot(None))
        if not with_trashed:
            return query.filter(column.is_(None))
        return query

    def needs_client_sort(self, sort_by: Optional[str]) -> bool:
        """
        translated and computed fields can't be sorted by the database
        """
        if not sort_by:
            return False
        descriptor = self.descriptor
        return sort_by in descriptor.translated_fields or sort_by in descriptor.append_fields or sort_by in descriptor.ignore_sort

    def apply_sort(self, query, sort_by: Optional[str], sort_order: str = "asc", auth: Any = None):
        if sort_by and not self.needs_client_sort(sort_by):
            column = self._column(sort_by)
            if column is None:
                dynapi.log.warning(f"Invalid sort column {self.entity.name}.{sort_by}")
            else:
                query = query.order_by(column.desc() if sort_order == "desc" else column.asc())
                if sort_by != self.entity.primary_key:
                    # consistent pagination when the values aren't unique
                    query = query.order_by(self.primary_key_column.asc())
        return self.entity.hooks.sort_query(query, sort_by, sort_order, auth)

    @staticmethod
    def client_sort(items: Sequence[Any], sort_by: str, sort_order: str = "asc") -> List[Any]:
        """
        Natural, case insensitive sort of the fetched instances
        """
        return sorted(items, key=lambda item: natural_sort_key(getattr(item, sort_by, None)), reverse=sort_order == "desc")

    def execute(self, context: Any, plan: Any, paginated: bool = False, auth: Any = None) -> QueryResult:
        """
        Run the index query
        :param context: RequestContext
        :param plan: VisibilityPlan of the entity
        :param paginated: only fetch the requested page
        :param auth: AuthContext of the caller
        """
        query = self.base_query()
        query = self.apply_filters(query, context.filters, auth, context.with_trashed)
        query = self.apply_sort(query, context.sort_by, context.sort_order, auth)
        query = self.select(query, plan)
        query = self.eager_load(query, plan)

        if self.needs_client_sort(context.sort_by):
            items = self.client_sort(query.all(), context.sort_by, context.sort_order)
            total = len(items)
            if paginated:
                start, stop = page_slice(context.page, context.per_page)
                items = items[start:stop]
        elif paginated:
            total = query.order_by(None).count()
            items = query.offset(context.offset).limit(context.per_page).all()
        else:
            items = query.all()
            total = len(items)

        return QueryResult(items, total, self.fetch_counts(items, sorted(plan.counts)))
