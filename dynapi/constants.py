# Operation types and output modes shared by the dynapi modules

# Output modes, ordered by level of detail
OUTPUT_SIMPLIFIED = "simplified"
OUTPUT_COMPLETE = "complete"
OUTPUT_EXTENSIVE = "extensive"
OUTPUT_MODES = (OUTPUT_SIMPLIFIED, OUTPUT_COMPLETE, OUTPUT_EXTENSIVE)

# Operation types
INDEX = "index"
SHOW = "show"
STORE = "store"
UPDATE = "update"
DESTROY = "destroy"
BULK_UPDATE = "bulkUpdate"
BULK_DESTROY = "bulkDestroy"
EXPORT = "export"
FUNCTION = "function"
MODEL_FUNCTION = "modelFunction"
RELATION_INDEX = "relationIndex"
RELATION_SHOW = "relationShow"
RELATION_STORE = "relationStore"
RELATION_UPDATE = "relationUpdate"
RELATION_DESTROY = "relationDestroy"
RELATION_BULK_UPDATE = "relationBulkUpdate"
RELATION_BULK_DESTROY = "relationBulkDestroy"
RELATION_OF_RELATION_INDEX = "relationOfRelationIndex"
RELATION_OF_RELATION_SHOW = "relationOfRelationShow"

OPERATION_TYPES = (
    INDEX,
    SHOW,
    STORE,
    UPDATE,
    DESTROY,
    BULK_UPDATE,
    BULK_DESTROY,
    EXPORT,
    FUNCTION,
    MODEL_FUNCTION,
    RELATION_INDEX,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_BULK_DESTROY,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
)

# operations that address a single stored instance of the primary entity
INSTANCE_OPERATIONS = (
    SHOW,
    UPDATE,
    DESTROY,
    MODEL_FUNCTION,
    RELATION_INDEX,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_BULK_DESTROY,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
)

RELATION_OPERATIONS = (
    RELATION_INDEX,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_BULK_DESTROY,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
)

# operations that address a single related instance
RELATION_INSTANCE_OPERATIONS = (
    RELATION_SHOW,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
)

RELATION_OF_RELATION_OPERATIONS = (RELATION_OF_RELATION_INDEX, RELATION_OF_RELATION_SHOW)

# operations whose results may be served from the response cache
CACHEABLE_OPERATIONS = (INDEX, SHOW)

# operations that change stored data and invalidate cached responses
WRITE_OPERATIONS = (
    STORE,
    UPDATE,
    DESTROY,
    BULK_UPDATE,
    BULK_DESTROY,
    RELATION_STORE,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_BULK_DESTROY,
)

# operations that create stored data, validation "required" rules only apply to these
CREATE_OPERATIONS = (STORE, RELATION_STORE)

# operations that default to the complete output mode
COMPLETE_OUTPUT_OPERATIONS = (
    SHOW,
    STORE,
    UPDATE,
    DESTROY,
    MODEL_FUNCTION,
    RELATION_INDEX,
    RELATION_SHOW,
    RELATION_STORE,
    RELATION_UPDATE,
    RELATION_DESTROY,
    RELATION_BULK_UPDATE,
    RELATION_BULK_DESTROY,
    RELATION_OF_RELATION_SHOW,
)

# default execution policy when an entity does not configure one
DEFAULT_ALLOWED_OPERATIONS = (SHOW, RELATION_INDEX, RELATION_SHOW, RELATION_OF_RELATION_INDEX, RELATION_OF_RELATION_SHOW)
DEFAULT_PUBLIC_OPERATIONS = (INDEX, SHOW, RELATION_INDEX, RELATION_SHOW, RELATION_OF_RELATION_INDEX, RELATION_OF_RELATION_SHOW)
DEFAULT_UNVALIDATED_OPERATIONS = (
    INDEX,
    SHOW,
    DESTROY,
    RELATION_INDEX,
    RELATION_SHOW,
    RELATION_OF_RELATION_INDEX,
    RELATION_OF_RELATION_SHOW,
)
DEFAULT_ROLE_OPERATIONS = (INDEX, SHOW)

# what an operation returns to the client
RETURN_OK = "ok"
RETURN_CREATE = "create"
RETURN_EXPORT = "export"
RETURN_KINDS = (RETURN_OK, RETURN_CREATE, RETURN_EXPORT)

# role name that allows an operation for every authenticated user
ALL_ROLES = "all"

# pseudo field holding all translations of a translatable entity
TRANSLATIONS_FIELD = "translations"
# suffix of the relation count fields, eg. books_count
COUNT_SUFFIX = "_count"
# marker used in request output relation lists, eg. ["::author", "name"]
RELATION_MARKER = "::"
