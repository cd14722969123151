from datetime import datetime, timezone

from flask import jsonify


def error_response(error):
    return jsonify(error.to_dict()), error.http_status


def bad_request(message):
    return jsonify({"success": False, "error_code": "INVALID_INPUT", "message": message}), 400


def parse_datetime(value):
    """ISO-8601 string -> aware UTC datetime. Naive values are taken as UTC."""
    if value is None or value == "":
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
