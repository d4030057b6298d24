"""
Certification Workflow Service
Blueprint registry.
"""

from flask import request


def json_object_body():
    """Return the request's JSON object body, or None when missing or malformed.

    Views answer 400 on None; services only ever see a dict.
    """
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None
