# validation.py: payload validation with the rules of the entity descriptor
#
# Rules are listed per field, eg. {"title": ["required", "string", "max:255"], "price": "nullable|numeric|min:0"}
# Supported rules: required, nullable, string, integer, numeric, boolean, array, min:N, max:N, in:a,b
# and role:<name>, which only allows users with that role to send the field.
from typing import Any, Dict, List, Mapping
from .constants import CREATE_OPERATIONS
from .errors import ValidationError
from .visibility import is_super_admin

TYPE_RULES = {
    "string": lambda value: isinstance(value, str),
    "integer": lambda value: isinstance(value, int) and not isinstance(value, bool),
    "numeric": lambda value: isinstance(value, (int, float)) and not isinstance(value, bool),
    "boolean": lambda value: isinstance(value, bool),
    "array": lambda value: isinstance(value, list),
}


def _size(value: Any) -> Any:
    if isinstance(value, (str, list, dict)):
        return len(value)
    return value


def validate_field(name: str, value: Any, rules: List[str]) -> List[str]:
    """
    :return: the error messages of a field value
    """
    errors = []
    for rule in rules:
        rule_name, _, argument = rule.partition(":")
        if rule_name in TYPE_RULES:
            if not TYPE_RULES[rule_name](value):
                errors.append(f"The {name} must be of type {rule_name}.")
        elif rule_name in ("min", "max"):
            try:
                limit = float(argument)
                size = float(_size(value))
            except (TypeError, ValueError):
                errors.append(f"The {name} can't be compared with {rule}.")
                continue
            if rule_name == "min" and size < limit:
                errors.append(f"The {name} must be at least {argument}.")
            if rule_name == "max" and size > limit:
                errors.append(f"The {name} may not be greater than {argument}.")
        elif rule_name == "in":
            options = [option.strip() for option in argument.split(",")]
            if str(value) not in options:
                errors.append(f"The selected {name} is invalid.")
    return errors


def validate_payload(descriptor: Any, data: Mapping[str, Any], op_type: str, auth: Any = None) -> Dict[str, Any]:
    """
    Validate the payload of a write operation
    :param descriptor: EntityDescriptor with the validation_rules
    :param data: request payload
    :param op_type: operation type, "required" rules only apply when creating
    :param auth: AuthContext, role rules are skipped for the super-admin
    :return: the payload
    :raises ValidationError: with the error messages per field
    """
    errors: Dict[str, List[str]] = {}
    for name, rules in descriptor.validation_rules.items():
        rules = list(rules)
        role_rules = [rule.partition(":")[2] for rule in rules if rule.startswith("role:")]
        rules = [rule for rule in rules if not rule.startswith("role:")]
        if name not in data:
            if "required" in rules and op_type in CREATE_OPERATIONS:
                errors.setdefault(name, []).append(f"The {name} field is required.")
            continue
        if role_rules and not is_super_admin(auth):
            if auth is None or not auth.contains_any_role(role_rules):
                errors.setdefault(name, []).append(f"You are not allowed to set the {name} field.")
                continue
        value = data[name]
        if value is None:
            if "nullable" not in rules and "required" in rules:
                errors.setdefault(name, []).append(f"The {name} field is required.")
            continue
        field_errors = validate_field(name, value, [rule for rule in rules if rule not in ("required", "nullable")])
        if field_errors:
            errors.setdefault(name, []).extend(field_errors)
    if errors:
        raise ValidationError("The given data was invalid.", errors=errors)
    return dict(data)
