from marshmallow import Schema, fields, pre_load, validate, EXCLUDE

_required = {"required": "Field is required", "null": "Field is required"}
_not_empty = validate.Length(min=1, error="Field must not be empty")


def _strip_strings(data):
    if not isinstance(data, dict):
        return data
    return {k: (v.strip() if isinstance(v, str) else v) for k, v in data.items()}


class RegisterSchema(Schema):
    """POST /auth/register body. String fields are trimmed before validation."""

    class Meta:
        unknown = EXCLUDE

    firstName = fields.String(required=True, validate=_not_empty, error_messages=_required)
    lastName = fields.String(required=True, validate=_not_empty, error_messages=_required)
    email = fields.Email(required=True, error_messages={**_required, "invalid": "Email is not valid"})
    password = fields.String(required=True, load_only=True, validate=_not_empty, error_messages=_required)

    @pre_load
    def normalize(self, data, **kwargs):
        data = _strip_strings(data)
        if isinstance(data, dict) and isinstance(data.get("email"), str):
            data["email"] = data["email"].lower()
        return data


class LoginSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    email = fields.Email(required=True, error_messages={**_required, "invalid": "Email is not valid"})
    password = fields.String(required=True, load_only=True, validate=_not_empty, error_messages=_required)

    @pre_load
    def normalize(self, data, **kwargs):
        return _strip_strings(data)


class UserOutSchema(Schema):
    id = fields.String()
    firstName = fields.String(attribute="f_name", allow_none=True)
    lastName = fields.String(attribute="l_name", allow_none=True)
    email = fields.String()
    role = fields.String()
