"""Tests for HTTP and local dump transfer."""

import json

import httpx
import pytest

from wp_migrate.core.config_loader import RemoteConnection
from wp_migrate.core.exceptions import TransferError
from wp_migrate.core.transfer import HttpTransfer, LocalTransfer
from wp_migrate.core.transfer.local import OPTIONS_SUFFIX

REMOTE = RemoteConnection(url="https://remote.test/", api_key="secret-key")


class Responder:
    """MockTransport handler that replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


def ok(**payload) -> httpx.Response:
    return httpx.Response(200, json={"success": True, **payload})


@pytest.fixture
def dump_file(tmp_path):
    path = tmp_path / "export.sql"
    path.write_text("INSERT INTO t VALUES (1);\n")
    return path


def http_transfer(responder: Responder, settings) -> HttpTransfer:
    return HttpTransfer(REMOTE, settings, transport=httpx.MockTransport(responder))


class TestHttpValidate:
    """Test suite for the remote connectivity check."""

    @pytest.mark.asyncio
    async def test_validate_success(self, settings):
        """The test endpoint is called with the bearer token."""
        responder = Responder(ok(message="ready"))
        valid, message = await http_transfer(responder, settings).validate_requirements()

        assert valid is True
        assert message == ""
        request = responder.requests[0]
        assert request.url == "https://remote.test/wp-json/wp-migrate/v1/test"
        assert request.headers["Authorization"] == "Bearer secret-key"
        assert request.headers["User-Agent"].startswith("wp-migrate/")

    @pytest.mark.asyncio
    async def test_validate_rejected(self, settings):
        """Authentication failures are reported, not raised."""
        responder = Responder(httpx.Response(401, text="invalid key"))
        valid, message = await http_transfer(responder, settings).validate_requirements()

        assert valid is False
        assert "HTTP 401" in message
        assert len(responder.requests) == 1


class TestHttpSend:
    """Test suite for uploading dumps."""

    @pytest.mark.asyncio
    async def test_send_uploads_multipart(self, settings, dump_file):
        """The dump and options travel as one multipart request."""
        responder = Responder(ok(message="Imported 1 statements"))
        receipt = await http_transfer(responder, settings).send(dump_file, {"backup_current": True})

        assert receipt.success
        assert receipt.attempts == 1
        assert receipt.bytes_sent == dump_file.stat().st_size
        assert receipt.destination == "https://remote.test/wp-json/wp-migrate/v1/import"
        assert receipt.message == "Imported 1 statements"

        body = responder.requests[0].content
        assert b"INSERT INTO t VALUES (1);" in body
        assert b'filename="export.sql"' in body
        assert json.dumps({"backup_current": True}).encode() in body

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, settings, dump_file):
        """5xx, 429 and connection errors are retried with the file re-sent."""
        responder = Responder(
            httpx.Response(503),
            httpx.ConnectError("connection refused"),
            ok(),
        )
        receipt = await http_transfer(responder, settings).send(dump_file)

        assert receipt.attempts == 3
        assert all(b"INSERT INTO t" in request.content for request in responder.requests)

    @pytest.mark.asyncio
    async def test_retry_after_is_honoured(self, settings, dump_file, monkeypatch):
        """429 responses wait for Retry-After capped by the max delay."""
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr("wp_migrate.core.transfer.http.asyncio.sleep", fake_sleep)
        settings.retry_max_delay = 5
        responder = Responder(httpx.Response(429, headers={"Retry-After": "120"}), ok())

        receipt = await http_transfer(responder, settings).send(dump_file)

        assert receipt.attempts == 2
        assert delays == [5]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, settings, dump_file):
        """After the configured retries the last status is reported."""
        responder = Responder(httpx.Response(500, text="boom"))
        with pytest.raises(TransferError, match="HTTP 500 after 3 attempt"):
            await http_transfer(responder, settings).send(dump_file)
        assert len(responder.requests) == 3

    @pytest.mark.asyncio
    async def test_client_errors_fail_immediately(self, settings, dump_file):
        """4xx responses other than 429 are not retried."""
        responder = Responder(httpx.Response(413, text="too large"))
        with pytest.raises(TransferError, match="HTTP 413"):
            await http_transfer(responder, settings).send(dump_file)
        assert len(responder.requests) == 1

    @pytest.mark.asyncio
    async def test_remote_reported_failure(self, settings, dump_file):
        """A success=false body becomes a TransferError with the remote's message."""
        responder = Responder(httpx.Response(200, json={"success": False, "error": "import failed"}))
        with pytest.raises(TransferError, match="import failed"):
            await http_transfer(responder, settings).send(dump_file)

    @pytest.mark.asyncio
    async def test_missing_dump(self, settings, tmp_path):
        """Nothing is sent when the dump does not exist."""
        responder = Responder(ok())
        with pytest.raises(TransferError, match="not found"):
            await http_transfer(responder, settings).send(tmp_path / "missing.sql")
        assert responder.requests == []


class TestHttpReceive:
    """Test suite for downloading dumps."""

    @pytest.mark.asyncio
    async def test_receive_downloads_file_url(self, settings, tmp_path):
        """The export endpoint's file_url is streamed to disk."""

        def handler(request: httpx.Request) -> httpx.Response:
            request.read()
            if request.url.path.endswith("/export"):
                assert json.loads(request.content) == {"tables": ["wp_options"]}
                return ok(file_url="https://remote.test/downloads/site.sql")
            assert request.url.path == "/downloads/site.sql"
            return httpx.Response(200, content=b"CREATE TABLE t (a INT);\n")

        transfer = HttpTransfer(REMOTE, settings, transport=httpx.MockTransport(handler))
        path = await transfer.receive(tmp_path / "incoming", {"tables": ["wp_options"]})

        assert path.parent == tmp_path / "incoming"
        assert path.read_bytes() == b"CREATE TABLE t (a INT);\n"
        assert not list(path.parent.glob("*.part"))

    @pytest.mark.asyncio
    async def test_download_retries_server_errors(self, settings, tmp_path):
        """Transient download failures are retried."""
        downloads = Responder(httpx.Response(502), httpx.Response(200, content=b"SELECT 1;"))

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/export"):
                return ok(file_url="/downloads/site.sql")
            return downloads(request)

        transfer = HttpTransfer(REMOTE, settings, transport=httpx.MockTransport(handler))
        path = await transfer.receive(tmp_path / "pulled.sql")

        assert path == tmp_path / "pulled.sql"
        assert path.read_bytes() == b"SELECT 1;"
        assert len(downloads.requests) == 2

    @pytest.mark.asyncio
    async def test_missing_file_url(self, settings, tmp_path):
        """An export response without file_url is an error."""
        responder = Responder(ok())
        with pytest.raises(TransferError, match="file_url"):
            await http_transfer(responder, settings).receive(tmp_path)


class TestLocalTransfer:
    """Test suite for directory handoff."""

    @pytest.mark.asyncio
    async def test_send_and_receive(self, tmp_path, dump_file):
        """A sent dump can be received again from the shared directory."""
        transfer = LocalTransfer(tmp_path / "shared")
        assert await transfer.validate_requirements() == (True, "")

        receipt = await transfer.send(dump_file, {"replacements": {"a": "b"}})
        delivered = tmp_path / "shared" / "export.sql"
        assert receipt.destination == str(delivered)
        assert json.loads((tmp_path / "shared" / f"export.sql{OPTIONS_SUFFIX}").read_text()) == {
            "replacements": {"a": "b"}
        }

        received = await transfer.receive(tmp_path / "incoming")
        assert received.read_text() == dump_file.read_text()
        assert received.suffix == ".sql"

    @pytest.mark.asyncio
    async def test_receive_named_file(self, tmp_path):
        """options['file'] selects a specific dump."""
        shared = tmp_path / "shared"
        shared.mkdir()
        (shared / "a.sql").write_text("SELECT 1;")
        (shared / "b.sql").write_text("SELECT 2;")

        received = await LocalTransfer(shared).receive(tmp_path / "copy.sql", {"file": "a.sql"})
        assert received.read_text() == "SELECT 1;"

    @pytest.mark.asyncio
    async def test_errors(self, tmp_path):
        """Missing dumps fail with TransferError."""
        transfer = LocalTransfer(tmp_path / "shared")
        (tmp_path / "shared").mkdir()

        with pytest.raises(TransferError, match="No dump files"):
            await transfer.receive(tmp_path / "incoming")
        with pytest.raises(TransferError, match="not found"):
            await transfer.send(tmp_path / "missing.sql")
