"""Rekor transparency log client."""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests

from ..errors import LogSubmissionError, MalformedInputError
from ..transparency import InclusionProof, LogEntry, encode_body
from .base import TransparencyLogClient
from .http import error_message

logger = logging.getLogger(__name__)

DEFAULT_REKOR_URL = "https://rekor.sigstore.dev"

ENTRIES_PATH = "/api/v1/log/entries"


class RekorClient(TransparencyLogClient):
    """Submits entries to, and reads proofs from, a Rekor instance over HTTP."""

    def __init__(self, url: str = DEFAULT_REKOR_URL, timeout: float = 30):
        """
        Initialize Rekor client.

        Args:
            url: Rekor base URL
            timeout: Per-request timeout in seconds
        """
        self.url = url.rstrip("/")
        self.timeout = timeout

    async def create_entry(self, entry: Dict[str, Any]) -> LogEntry:
        return await asyncio.to_thread(self._post_entry, entry)

    async def get_inclusion_proof(self, log_index: int) -> Optional[InclusionProof]:
        entry = await asyncio.to_thread(self._get_entry, log_index)
        return entry.inclusion_proof if entry is not None else None

    def _post_entry(self, entry: Dict[str, Any]) -> LogEntry:
        try:
            response = requests.post(
                f"{self.url}{ENTRIES_PATH}",
                json=entry,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as e:
            raise LogSubmissionError(
                f"Rekor rejected entry: {error_message(e.response)}"
            ) from e
        except requests.RequestException as e:
            raise LogSubmissionError(f"Rekor unreachable: {e}") from e

        try:
            log_entry = self._parse_response(response.json())
        except (ValueError, MalformedInputError) as e:
            raise LogSubmissionError(f"Unexpected Rekor response: {e}") from e

        if log_entry.body is not None and log_entry.body != encode_body(entry):
            # verifiers rebuild the submitted body to check the SET
            raise LogSubmissionError(
                f"Rekor stored a different body for entry {log_entry.log_index}"
            )

        logger.info("Recorded entry in Rekor at index %d", log_entry.log_index)
        return log_entry

    def _get_entry(self, log_index: int) -> Optional[LogEntry]:
        try:
            response = requests.get(
                f"{self.url}{ENTRIES_PATH}",
                params={"logIndex": log_index},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Rekor lookup for index %d failed: %s", log_index, e)
            return None

        if response.status_code == 404:
            return None
        if not response.ok:
            logger.warning(
                "Rekor lookup for index %d failed: %s",
                log_index,
                error_message(response),
            )
            return None

        try:
            return self._parse_response(response.json())
        except (ValueError, MalformedInputError) as e:
            logger.warning("Unexpected Rekor response for index %d: %s", log_index, e)
            return None

    @staticmethod
    def _parse_response(data: Any) -> LogEntry:
        """
        Parse Rekor's ``{uuid: entry}`` response into a LogEntry.

        Raises:
            MalformedInputError: If the response does not hold exactly one entry
        """
        if not isinstance(data, dict) or len(data) != 1:
            raise MalformedInputError("expected a single log entry")

        (raw,) = data.values()
        if not isinstance(raw, dict):
            raise MalformedInputError("log entry must be an object")

        verification = raw.get("verification") or {}
        if not isinstance(verification, dict):
            raise MalformedInputError("log entry verification must be an object")
        proof = verification.get("inclusionProof")

        return LogEntry.from_dict(
            {
                "logIndex": raw.get("logIndex"),
                "logID": raw.get("logID"),
                "integratedTime": raw.get("integratedTime"),
                "signedEntryTimestamp": verification.get("signedEntryTimestamp"),
                "inclusionProof": proof,
                "body": raw.get("body"),
            }
        )
