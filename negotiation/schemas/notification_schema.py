from marshmallow import fields

from negotiation.extensions import ma
from negotiation.schemas.fields import UTCDateTime


class NotificationSchema(ma.Schema):
    id = fields.String()
    type = fields.String()
    title = fields.String()
    message = fields.String()
    details = fields.Dict(dump_default=dict)
    sender_id = fields.String(allow_none=True)
    is_read = fields.Boolean()
    created_at = UTCDateTime()
