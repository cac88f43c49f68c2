"""Unit tests for digest_pinner/skopeo_client.py"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from digest_pinner.context import ContextCancelled, DeadlineExceeded, ResolveContext
from digest_pinner.errors import ActionableError, ErrorCategory
from digest_pinner.skopeo_client import (
    ImageNotFoundError,
    SkopeoResolver,
    SkopeoTimeoutError,
    registry_host,
)

DIGEST = "sha256:" + "d" * 64


def _mock_process(stdout: str = "", stderr: str = "", returncode: int = 0):
    proc = MagicMock()
    proc.communicate.return_value = (stdout, stderr)
    proc.returncode = returncode
    return proc


def _inspect_output(digest: str = DIGEST) -> str:
    return json.dumps({"Name": "r.io/app", "Digest": digest, "Layers": []})


class TestRegistryHost:
    """Tests for registry_host"""

    def test_returns_first_component(self):
        assert registry_host("localhost:5000/team/app:v1") == "localhost:5000"


class TestSkopeoResolverInitialization:
    """Tests for SkopeoResolver construction"""

    def test_from_config(self):
        mock_config = MagicMock()
        mock_config.get_skopeo_binary.return_value = "/usr/local/bin/skopeo"
        mock_config.get_skopeo_tls_verify.return_value = False
        mock_config.get_skopeo_timeout.return_value = 42

        resolver = SkopeoResolver.from_config(mock_config)

        assert resolver.skopeo_binary == "/usr/local/bin/skopeo"
        assert resolver.tls_verify is False
        assert resolver.timeout == 42


class TestRedactCommandForLogging:
    """Tests for _redact_command_for_logging"""

    def test_redacts_creds_password(self):
        cmd = ["skopeo", "inspect", "--creds", "user:secret", "docker://r.io/app:v1"]
        redacted = SkopeoResolver._redact_command_for_logging(cmd)
        assert redacted[3] == "user:****"
        assert cmd[3] == "user:secret"

    def test_redacts_token_flags(self):
        cmd = ["skopeo", "inspect", "--registry-token", "abc", "docker://r.io/app:v1"]
        assert SkopeoResolver._redact_command_for_logging(cmd)[3] == "****"


class TestResolve:
    """Tests for SkopeoResolver.resolve"""

    def test_returns_digest_without_credentials(self):
        proc = _mock_process(stdout=_inspect_output())
        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc) as mock_popen:
            descriptor = SkopeoResolver().resolve(ResolveContext(), "r.io/app:latest")

        assert descriptor.digest == DIGEST
        cmd = mock_popen.call_args[0][0]
        assert cmd[:3] == ["skopeo", "inspect", "--no-tags"]
        assert "--tls-verify=true" in cmd
        assert "--creds" not in cmd
        assert cmd[-1] == "docker://r.io/app:latest"

    def test_passes_credentials_for_host(self):
        proc = _mock_process(stdout=_inspect_output())
        callback = MagicMock(return_value=("user", "pass"))

        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc) as mock_popen:
            SkopeoResolver(tls_verify=False).resolve(ResolveContext(), "r.io/app:v1", credentials=callback)

        callback.assert_called_once_with("r.io")
        cmd = mock_popen.call_args[0][0]
        assert "--tls-verify=false" in cmd
        assert cmd[cmd.index("--creds") + 1] == "user:pass"

    def test_image_not_found(self):
        proc = _mock_process(stderr="manifest unknown: manifest unknown", returncode=1)
        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with pytest.raises(ImageNotFoundError):
                SkopeoResolver().resolve(ResolveContext(), "r.io/app:missing")

    def test_unauthorized(self):
        proc = _mock_process(stderr="unauthorized: authentication required", returncode=1)
        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with pytest.raises(ActionableError) as exc_info:
                SkopeoResolver().resolve(ResolveContext(), "r.io/app:v1")

        assert exc_info.value.category is ErrorCategory.AUTHENTICATION
        assert isinstance(exc_info.value.__cause__, subprocess.CalledProcessError)

    def test_connection_failure(self):
        proc = _mock_process(stderr="dial tcp: lookup r.io: no such host", returncode=1)
        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with pytest.raises(ActionableError) as exc_info:
                SkopeoResolver().resolve(ResolveContext(), "r.io/app:v1")

        assert exc_info.value.category is ErrorCategory.CONNECTION
        assert exc_info.value.details["registry_url"] == "r.io"

    def test_missing_binary(self):
        with patch("digest_pinner.skopeo_client.subprocess.Popen", side_effect=FileNotFoundError("skopeo")):
            with pytest.raises(ActionableError) as exc_info:
                SkopeoResolver().resolve(ResolveContext(), "r.io/app:v1")
        assert exc_info.value.category is ErrorCategory.CONNECTION

    @pytest.mark.parametrize("stdout", ["not json", json.dumps({"Name": "r.io/app"}), json.dumps({"Digest": "abc"})])
    def test_invalid_output(self, stdout):
        proc = _mock_process(stdout=stdout)
        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with pytest.raises(ActionableError):
                SkopeoResolver().resolve(ResolveContext(), "r.io/app:v1")


class TestCancellation:
    """Tests for context cancellation and timeouts"""

    def test_cancelled_context_never_starts_skopeo(self):
        ctx = ResolveContext()
        ctx.cancel()
        with patch("digest_pinner.skopeo_client.subprocess.Popen") as mock_popen:
            with pytest.raises(ContextCancelled):
                SkopeoResolver().resolve(ctx, "r.io/app:v1")
        mock_popen.assert_not_called()

    def test_cancel_while_running_kills_process(self):
        ctx = ResolveContext()
        proc = MagicMock()

        def communicate(timeout=None):
            if proc.kill.called:
                return ("", "")
            ctx.cancel()
            raise subprocess.TimeoutExpired("skopeo", timeout)

        proc.communicate.side_effect = communicate

        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with pytest.raises(ContextCancelled):
                SkopeoResolver(poll_interval=0.01).resolve(ctx, "r.io/app:v1")

        proc.kill.assert_called_once()

    def test_deadline_exceeded(self):
        ctx = ResolveContext(timeout=0)
        with patch("digest_pinner.skopeo_client.subprocess.Popen") as mock_popen:
            with pytest.raises(DeadlineExceeded):
                SkopeoResolver().resolve(ctx, "r.io/app:v1")
        mock_popen.assert_not_called()

    def test_timeout_kills_process(self):
        proc = MagicMock()

        def communicate(timeout=None):
            if proc.kill.called:
                return ("", "")
            raise subprocess.TimeoutExpired("skopeo", timeout)

        proc.communicate.side_effect = communicate

        with patch("digest_pinner.skopeo_client.subprocess.Popen", return_value=proc):
            with patch("digest_pinner.skopeo_client.time.monotonic", side_effect=[0.0, 5.0]):
                with pytest.raises(SkopeoTimeoutError):
                    SkopeoResolver(timeout=1, poll_interval=0.01).resolve(ResolveContext(), "r.io/app:v1")

        proc.kill.assert_called_once()
