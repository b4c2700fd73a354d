"""Request body helpers shared by the API blueprints."""

from flask import request

from courtly.errors import MissingField, ValidationError


def json_body():
    """The request's JSON object, or {} when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def require_fields(data, *names):
    missing = [name for name in names if data.get(name) in (None, "")]
    if missing:
        raise MissingField(f"Missing required fields: {', '.join(missing)}")


def cents_field(data, name, required=True, default=None):
    """Read an integer amount in cents.

    JSON booleans and floats are rejected; digit strings are accepted
    because HTML clients often send numbers as text.
    """
    value = data.get(name)
    if value is None or value == "":
        if required:
            raise MissingField(f"Missing required fields: {name}")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be a whole number of cents.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise ValidationError(f"{name} must be a whole number of cents.")


def bool_field(data, name, default=False):
    value = data.get(name, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)
