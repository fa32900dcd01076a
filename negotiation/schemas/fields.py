from marshmallow import fields

from negotiation.utils.dates import parse_datetime, isoformat


class UTCDateTime(fields.Field):
    """ISO-8601 in, naive UTC datetime out; serialized back with a ``Z`` suffix."""

    default_error_messages = {"invalid": "Not a valid ISO 8601 datetime."}

    def _deserialize(self, value, attr, data, **kwargs):
        if value in (None, ""):
            return None
        try:
            return parse_datetime(value)
        except (TypeError, ValueError, OverflowError):
            raise self.make_error("invalid")

    def _serialize(self, value, attr, obj, **kwargs):
        return isoformat(value)
