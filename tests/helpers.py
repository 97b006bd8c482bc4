"""
Shared test helpers.
"""
import json
from unittest.mock import MagicMock

import requests


def make_response(status_code=200, text="", json_data=None):
    """Build a stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    if json_data is not None:
        response.text = text or json.dumps(json_data)
        response.json.return_value = json_data
    else:
        response.text = text
        response.json.side_effect = requests.exceptions.JSONDecodeError("Expecting value", text, 0)
    return response
