"""HTTP transfer to a remote WordPress site running the wp-migrate REST API."""

import asyncio
import json
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any

import httpx

from ... import __version__
from ...utils import format_size, timestamp_slug
from ..config_loader import RemoteConnection
from ..exceptions import TransferError
from ..settings import MigrateSettings
from .base import BaseTransfer, TransferReceipt

API_PREFIX = "/wp-json/wp-migrate/v1"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class HttpTransfer(BaseTransfer):
    """Push and pull dumps over the remote site's REST endpoints.

    Requests carry the connection's API key as a bearer token. Connection
    errors, timeouts, 429 and 5xx responses are retried with exponential
    backoff (``Retry-After`` is honoured); other 4xx responses fail at once.
    """

    def __init__(
        self,
        connection: RemoteConnection,
        settings: MigrateSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__()
        self.connection = connection
        self.settings = settings or MigrateSettings()
        self.transport = transport
        self.logger = self.logger.bind(remote=connection.base_url)

    def get_transfer_type(self) -> str:
        return "http"

    def _client(self) -> httpx.AsyncClient:
        timeout = self.connection.timeout or self.settings.http_timeout
        return httpx.AsyncClient(
            base_url=self.connection.base_url,
            headers={
                "Authorization": f"Bearer {self.connection.api_key}",
                "User-Agent": f"wp-migrate/{__version__}",
            },
            timeout=httpx.Timeout(timeout),
            verify=self.connection.verify_tls,
            transport=self.transport,
        )

    async def validate_requirements(self) -> tuple[bool, str]:
        """Call the remote test endpoint.

        Returns:
            Tuple of (is_valid: bool, error_message: str)
        """
        try:
            async with self._client() as client:
                response, _ = await self._request(client, "GET", f"{API_PREFIX}/test")
            self._decode(response)
        except TransferError as e:
            return False, str(e)
        return True, ""

    async def send(self, dump_path: Path, options: dict[str, Any] | None = None) -> TransferReceipt:
        """Upload a dump to ``/import`` as a multipart form.

        Raises:
            TransferError: The upload failed after retries or the remote rejected it
        """
        dump_path = Path(dump_path)
        if not dump_path.is_file():
            raise TransferError(f"Dump file not found: {dump_path}")
        size = dump_path.stat().st_size
        url = f"{API_PREFIX}/import"

        def build_request() -> dict[str, Any]:
            return {
                "data": {"options": json.dumps(options or {})},
                "files": {"file": (dump_path.name, dump_path.open("rb"), "application/sql")},
            }

        self.logger.info("Sending dump", path=str(dump_path), size=format_size(size))
        async with self._client() as client:
            response, attempts = await self._request(client, "POST", url, build_request)
        data = self._decode(response)

        self.logger.info("Dump sent", path=str(dump_path), attempts=attempts)
        return TransferReceipt(
            success=True,
            transfer_type=self.get_transfer_type(),
            destination=f"{self.connection.base_url}{url}",
            bytes_sent=size,
            attempts=attempts,
            message=str(data.get("message", "")),
            remote_response=data,
        )

    async def receive(self, destination: Path, options: dict[str, Any] | None = None) -> Path:
        """Ask ``/export`` for a dump and download the returned ``file_url``.

        Raises:
            TransferError: The export request or the download failed
        """
        async with self._client() as client:
            response, _ = await self._request(
                client, "POST", f"{API_PREFIX}/export", lambda: {"json": options or {}}
            )
            data = self._decode(response)
            file_url = data.get("file_url")
            if not file_url:
                raise TransferError("Remote export response did not include a file_url")

            destination = Path(destination)
            if destination.is_dir() or not destination.suffix:
                destination = destination / f"pulled_{timestamp_slug()}.sql"
            await self._download(client, file_url, destination)
        return destination

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        build_request: Callable[[], dict[str, Any]] | None = None,
    ) -> tuple[httpx.Response, int]:
        """Send one request with retries; returns the response and attempts made."""
        retries = self.settings.http_retries
        delay = self.settings.retry_delay
        attempt = 0
        while True:
            attempt += 1
            kwargs = build_request() if build_request else {}
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt > retries:
                    raise TransferError(
                        f"{method} {url} failed after {attempt} attempt(s): {e}"
                    ) from e
                self.logger.warning(
                    "Transfer request failed, retrying",
                    url=url,
                    attempt=attempt,
                    delay=delay,
                    error=str(e),
                )
            else:
                if not _is_transient(response.status_code):
                    if response.status_code >= 400:
                        raise TransferError(
                            f"{method} {url} returned HTTP {response.status_code}: {response.text[:200]}"
                        )
                    return response, attempt
                if attempt > retries:
                    raise TransferError(
                        f"{method} {url} returned HTTP {response.status_code} "
                        f"after {attempt} attempt(s): {response.text[:200]}"
                    )
                self.logger.warning(
                    "Transient HTTP status, retrying",
                    url=url,
                    status=response.status_code,
                    attempt=attempt,
                )
                retry_after = _retry_after(response)
                if retry_after is not None:
                    await asyncio.sleep(min(retry_after, self.settings.retry_max_delay))
                    continue
            finally:
                for _, handle, _ in (kwargs.get("files") or {}).values():
                    handle.close()

            await asyncio.sleep(delay)
            delay = min(delay * self.settings.retry_backoff, self.settings.retry_max_delay)

    async def _download(self, client: httpx.AsyncClient, url: str, destination: Path) -> None:
        retries = self.settings.http_retries
        delay = self.settings.retry_delay
        partial = destination.with_name(destination.name + ".part")
        destination.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(1, retries + 2):
            try:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        if _is_transient(response.status_code) and attempt <= retries:
                            raise httpx.HTTPStatusError(
                                f"HTTP {response.status_code}", request=response.request, response=response
                            )
                        raise TransferError(f"Download of {url} returned HTTP {response.status_code}")
                    with open(partial, "wb") as handle:
                        async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            handle.write(chunk)
            except (httpx.TransportError, httpx.HTTPStatusError) as e:
                partial.unlink(missing_ok=True)
                if attempt > retries:
                    raise TransferError(f"Download of {url} failed after {attempt} attempt(s): {e}") from e
                self.logger.warning("Download failed, retrying", url=url, attempt=attempt, error=str(e))
                await asyncio.sleep(delay)
                delay = min(delay * self.settings.retry_backoff, self.settings.retry_max_delay)
                continue
            except OSError as e:
                partial.unlink(missing_ok=True)
                raise TransferError(f"Failed to save download to {destination}: {e}") from e

            partial.replace(destination)
            self.logger.info(
                "Dump downloaded",
                url=url,
                destination=str(destination),
                size=format_size(destination.stat().st_size),
            )
            return

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a ``{"success": ..., ...}`` body, raising when the remote reports failure."""
        try:
            data = response.json()
        except ValueError as e:
            raise TransferError(f"Invalid response from {response.request.url}: {e}") from e
        if not isinstance(data, dict) or "success" not in data:
            raise TransferError(f"Invalid response format from {response.request.url}")
        if not data["success"]:
            raise TransferError(str(data.get("error") or "Remote reported failure"))
        return data


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def _retry_after(response: httpx.Response) -> float | None:
    """Seconds to wait according to a ``Retry-After`` header, if present."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max((when - datetime.now(UTC)).total_seconds(), 0.0)
