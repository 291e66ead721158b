# loader.py: load entity descriptors from yaml
#
# Every top level key of the yaml document is an entity name, its value holds the
# EntityDescriptor attributes, eg.
#
#     book:
#       fields: [id, title, isbn, author_id]
#       relations: [author, tags]
#       simplified_fields: [id, title]
#       complete_with: [author]
#       execution_types:
#         index: {authentication: false}
#         store: {rules: true}
#
from typing import IO, Any, Dict, Union
import yaml
import dynapi
from .descriptor import EntityDescriptor
from .errors import SystemValidationError


def load_descriptors(source: Union[str, IO]) -> Dict[str, Dict[str, Any]]:
    """
    :param source: path of a yaml file or an open stream
    :return: {entity name: descriptor attributes}, the attributes can be passed to DynamicAPI.expose_object
    :raises SystemValidationError: invalid yaml
    """
    try:
        if isinstance(source, str):
            with open(source, encoding="utf-8") as stream:
                document = yaml.safe_load(stream)
        else:
            document = yaml.safe_load(source)
    except yaml.YAMLError as exc:
        raise SystemValidationError(f"Failed to parse descriptors ({exc})")

    if document is None:
        return {}
    if not isinstance(document, dict):
        raise SystemValidationError(f"Invalid descriptors document {document}")

    result = {}
    for name, attributes in document.items():
        attributes = dict(attributes or {})
        unknown = [key for key in attributes if key not in EntityDescriptor.__dataclass_fields__]
        if unknown:
            raise SystemValidationError(f"{name}: unknown descriptor attribute(s) {unknown}")
        attributes["name"] = str(name)
        result[str(name)] = attributes
        dynapi.log.debug(f"Loaded descriptor {name}")
    return result


def build_descriptors(source: Union[str, IO]) -> Dict[str, EntityDescriptor]:
    """
    :return: {entity name: EntityDescriptor}
    """
    return {name: EntityDescriptor(**attributes) for name, attributes in load_descriptors(source).items()}
