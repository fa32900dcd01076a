from marshmallow import EXCLUDE, fields, validate

from negotiation.extensions import ma


class ChatCreateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    order_id = fields.String(required=True)
    client_id = fields.String(allow_none=True)
    writer_id = fields.String(allow_none=True)


class MessageCreateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    content = fields.String(allow_none=True)
    attachments = fields.List(fields.String())
    # correlation token from an optimistic client, echoed back untouched
    client_token = fields.String(allow_none=True)


class MessageUpdateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    content = fields.String(required=True)


class MessageQuerySchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    cursor = fields.String()
    limit = fields.Integer(validate=validate.Range(min=1))
    direction = fields.String(load_default="older", validate=validate.OneOf(["older", "newer"]))
