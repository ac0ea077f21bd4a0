"""Client for the remote dictionary service.

Endpoints used:
  GET {base}/dictionaries?name=&version=   -> [dictionary document]
  GET {base}/diff?name=&left=&right=       -> [[field_path, {left, right, diff}], ...]

A file:// base URL reads a local JSON stub instead, shaped as
{"dictionaries": [...], "diffs": [{"name", "fromVersion", "toVersion", "data"}]}.
"""

import asyncio
import json
from pathlib import Path
from typing import Any
from urllib.parse import unquote, urlparse

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from clinical_dictionary.schema.diff import FieldDiff
from clinical_dictionary.schema.exceptions import DictionaryLoadError
from clinical_dictionary.schema.parser import SchemaDictionary, parse_dictionary


class DictionaryServiceClient:
    """Fetches dictionaries and version diffs, retrying transient failures."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        retries: int = 5,
        retry_interval: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_interval = retry_interval
        self._transport = transport

    @property
    def is_stub(self) -> bool:
        return self.base_url.startswith("file://")

    async def fetch_dictionary(self, name: str, version: str) -> SchemaDictionary:
        """Fetch one dictionary version.

        Raises:
            DictionaryLoadError: If the service has no such version or keeps failing.
        """
        logger.debug(f"Fetching dictionary: name={name}, version={version}")
        if self.is_stub:
            data = await self._load_stub()
            matches = [
                d
                for d in data.get("dictionaries", [])
                if d.get("name") == name and str(d.get("version")) == str(version)
            ]
        else:
            matches = await self._get_json(
                "/dictionaries", {"name": name, "version": version}, missing_ok=True
            )

        if not matches:
            raise DictionaryLoadError(f"Dictionary {name} version {version} not found")
        try:
            return parse_dictionary(matches[0])
        except ValueError as e:
            raise DictionaryLoadError(f"Invalid dictionary {name} version {version}: {e}") from e

    async def fetch_diff(self, name: str, from_version: str, to_version: str) -> dict[str, FieldDiff]:
        """Fetch the field-by-field diff between two versions, keyed by field path."""
        logger.debug(f"Fetching diff: name={name}, from={from_version}, to={to_version}")
        if self.is_stub:
            data = await self._load_stub()
            raw = next(
                (
                    d.get("data", [])
                    for d in data.get("diffs", [])
                    if d.get("name") == name
                    and str(d.get("fromVersion")) == str(from_version)
                    and str(d.get("toVersion")) == str(to_version)
                ),
                None,
            )
            if raw is None:
                raise DictionaryLoadError(
                    f"No diff for {name} between {from_version} and {to_version}"
                )
        else:
            raw = await self._get_json(
                "/diff", {"name": name, "left": from_version, "right": to_version}
            )

        # Entries without a payload carry no change
        return {field_path: FieldDiff.from_dict(entry) for field_path, entry in raw if entry}

    async def _get_json(self, path: str, params: dict[str, str], missing_ok: bool = False) -> Any:
        """GET a JSON document, retrying transport and server failures.

        A 404 is final: an empty list when missing_ok, otherwise a DictionaryLoadError.
        """
        url = f"{self.base_url}{path}"
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.retry_interval),
            retry=retry_if_exception_type((httpx.HTTPError, json.JSONDecodeError)),
            before_sleep=_log_retry,
            reraise=True,
        )

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                async for attempt in retrying:
                    with attempt:
                        response = await client.get(url, params=params)
                        if response.status_code == 404:
                            if missing_ok:
                                return []
                            raise DictionaryLoadError(f"Dictionary service has no {url} {params}")
                        response.raise_for_status()
                        return response.json()
            except (httpx.HTTPError, json.JSONDecodeError) as e:
                raise DictionaryLoadError(f"Dictionary service request failed: {url}: {e}") from e

    async def _load_stub(self) -> dict:
        path = Path(unquote(urlparse(self.base_url).path))
        try:
            text = await asyncio.to_thread(path.read_text)
            return json.loads(text)
        except (OSError, json.JSONDecodeError) as e:
            raise DictionaryLoadError(f"Cannot read dictionary stub {path}: {e}") from e


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        f"Dictionary service request failed: attempt={retry_state.attempt_number}, "
        f"error={retry_state.outcome.exception()}"
    )
