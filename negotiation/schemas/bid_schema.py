from marshmallow import EXCLUDE, fields, validate

from negotiation.extensions import ma
from negotiation.schemas.fields import UTCDateTime


class BidCreateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    amount = fields.Decimal(places=2, required=True)
    message = fields.String(allow_none=True)
    deadline = UTCDateTime(allow_none=True)


class BidUpdateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    amount = fields.Decimal(places=2)
    message = fields.String(allow_none=True)
    deadline = UTCDateTime(allow_none=True)


class BidStatusSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    action = fields.String(
        required=True,
        validate=validate.OneOf(["accept", "reject"], error="Invalid action (use 'accept' or 'reject')"),
    )


class BidListQuerySchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    status = fields.String()
    date_from = UTCDateTime(data_key="from")
    date_to = UTCDateTime(data_key="to")
