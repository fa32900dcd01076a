from marshmallow import EXCLUDE, fields, validate

from negotiation.extensions import ma
from negotiation.schemas.fields import UTCDateTime


class OrderFieldsSchema(ma.Schema):
    """Order payload; accepts the frontend's camelCase keys."""

    class Meta:
        unknown = EXCLUDE

    title = fields.String()
    subject = fields.String(data_key="category")
    type = fields.String(data_key="orderType")
    pages = fields.Integer()
    budget = fields.Decimal(places=2)
    deadline = UTCDateTime()
    description = fields.String(allow_none=True)
    requirements = fields.String(allow_none=True)
    detailed_requirements = fields.String(data_key="detailedRequirements", allow_none=True)
    additional_notes = fields.String(data_key="additionalNotes", allow_none=True)
    format = fields.String(allow_none=True)
    citation_style = fields.String(data_key="citationStyle", allow_none=True)
    language = fields.String(allow_none=True)
    attachments = fields.List(fields.String())


class OrderCreateSchema(OrderFieldsSchema):
    title = fields.String(required=True)
    subject = fields.String(data_key="category", required=True)
    type = fields.String(data_key="orderType", required=True)
    budget = fields.Decimal(places=2, required=True)
    deadline = UTCDateTime(required=True)
    preferred_writers = fields.List(fields.String(), data_key="preferredWriters")
    status = fields.String(validate=validate.OneOf(["draft", "in_progress"]))


class OrderListQuerySchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    status = fields.String()
    search = fields.String()
    assigned_to = fields.String()
    min_budget = fields.Float()
    max_budget = fields.Float()
    date_from = UTCDateTime()
    date_to = UTCDateTime()


class ReasonSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    reason = fields.String(allow_none=True)


class SubmissionCreateSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    message = fields.String(allow_none=True)
    files = fields.List(fields.String())


class RevisionRequestSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    message = fields.String(required=True)


class PricingPreviewSchema(ma.Schema):
    class Meta:
        unknown = EXCLUDE

    subject = fields.String(data_key="category", required=True)
    type = fields.String(data_key="orderType", required=True)
    pages = fields.Integer(load_default=1)
    deadline = UTCDateTime()
