"""Helpers shared by the HTTP collaborator clients."""

from typing import Optional

import requests


def error_message(response: Optional[requests.Response]) -> Optional[str]:
    """Pull the server's error message out of a failed response."""
    if response is None:
        return None
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text or f"HTTP {response.status_code}"
