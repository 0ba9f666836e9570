"""Request parsing shared by the HTTP blueprints."""

from flask import request

from farmeow.errors import ValidationError


def get_payload():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('request body must be a JSON object')
    return data


def require_fields(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, '')]
    if missing:
        raise ValidationError(f"missing required field(s): {', '.join(missing)}", fields=missing)


def int_field(data, name, minimum=0):
    value = data.get(name)
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer', field=name)
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{name} must be an integer', field=name)
    if isinstance(value, float) and value != parsed:
        raise ValidationError(f'{name} must be an integer', field=name)
    if parsed < minimum:
        raise ValidationError(f'{name} must be >= {minimum}', field=name)
    return parsed
