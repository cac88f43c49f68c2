"""
Skopeo-backed registry resolver.

Resolves a fully qualified image reference to the digest of its manifest by
running `skopeo inspect`. The child process is polled so a cancelled context
or the configured timeout stops it promptly. Nothing is retried here.
"""

import json
import logging
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from digest_pinner.context import ContextCancelled, ResolveContext
from digest_pinner.errors import create_registry_auth_error, create_registry_connection_error
from digest_pinner.reference import is_valid_digest

# Called with a registry host, returns (username, password)
CredentialCallback = Callable[[str], Tuple[str, str]]


class ImageNotFoundError(Exception):
    """Raised when the reference does not exist in the registry"""


class SkopeoTimeoutError(ContextCancelled):
    """Raised when a skopeo call runs past the configured timeout"""


@dataclass(frozen=True)
class ContentDescriptor:
    """What the registry reports for a resolved reference"""

    name: str
    digest: str


def registry_host(ref: str) -> str:
    """Return the registry host of a fully qualified reference"""
    return ref.split("/", 1)[0]


class SkopeoResolver:
    """Resolve image references to digests with skopeo."""

    def __init__(
        self,
        skopeo_binary: str = "skopeo",
        tls_verify: bool = True,
        timeout: Optional[float] = 300,
        poll_interval: float = 0.1,
    ):
        """Initialize SkopeoResolver.

        Args:
            skopeo_binary: Path or name of the skopeo executable
            tls_verify: Verify registry TLS certificates
            timeout: Seconds before a single skopeo call is killed (None = no limit)
            poll_interval: Seconds between cancellation checks while skopeo runs
        """
        self.skopeo_binary = skopeo_binary
        self.tls_verify = tls_verify
        self.timeout = timeout
        self.poll_interval = poll_interval

    @classmethod
    def from_config(cls, config_manager) -> "SkopeoResolver":
        return cls(
            skopeo_binary=config_manager.get_skopeo_binary(),
            tls_verify=config_manager.get_skopeo_tls_verify(),
            timeout=config_manager.get_skopeo_timeout(),
        )

    def _build_inspect_command(self, ref: str, creds: Optional[Tuple[str, str]]) -> List[str]:
        cmd = [self.skopeo_binary, "inspect", "--no-tags", f"--tls-verify={'true' if self.tls_verify else 'false'}"]
        if creds:
            username, password = creds
            cmd.extend(["--creds", f"{username}:{password}"])
        cmd.append(f"docker://{ref}")
        return cmd

    @staticmethod
    def _redact_command_for_logging(cmd: List[str]) -> List[str]:
        """Return a copy of the command with any credentials redacted."""
        redacted = list(cmd)

        creds_flags = ("--creds", "--src-creds", "--dest-creds")
        token_flags = ("--password", "--registry-token")

        for i, token in enumerate(redacted):
            if token in creds_flags and i + 1 < len(redacted):
                value = redacted[i + 1]
                if isinstance(value, str) and ":" in value:
                    user, _ = value.split(":", 1)
                    redacted[i + 1] = f"{user}:****"
            if token in token_flags and i + 1 < len(redacted):
                redacted[i + 1] = "****"

        return redacted

    def _run(self, ctx: ResolveContext, cmd: List[str]) -> str:
        """Run a command, killing it if ctx is cancelled or the timeout passes."""
        ctx.check()

        started = time.monotonic()
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        try:
            while True:
                wait = self.poll_interval
                remaining = ctx.remaining()
                if remaining is not None:
                    wait = min(wait, remaining)
                try:
                    stdout, stderr = proc.communicate(timeout=wait)
                    break
                except subprocess.TimeoutExpired:
                    pass

                ctx.check()
                if self.timeout is not None and time.monotonic() - started >= self.timeout:
                    raise SkopeoTimeoutError(f"skopeo timed out after {self.timeout}s")
        except BaseException:
            proc.kill()
            proc.communicate()
            raise

        if proc.returncode != 0:
            raise subprocess.CalledProcessError(proc.returncode, cmd, output=stdout, stderr=stderr)
        return stdout

    def resolve(
        self,
        ctx: ResolveContext,
        ref: str,
        credentials: Optional[CredentialCallback] = None,
    ) -> ContentDescriptor:
        """Resolve a fully qualified reference to its manifest digest.

        Args:
            ctx: Cancellation context
            ref: Reference such as "myregistry.azurecr.io/app:v1"
            credentials: Optional callback returning (username, password) for a host

        Returns:
            ContentDescriptor with the digest in algorithm:hex form

        Raises:
            ContextCancelled: If ctx is cancelled or the call times out
            ImageNotFoundError: If the registry has no such manifest
            ActionableError: For authentication and connection failures
        """
        host = registry_host(ref)
        creds = credentials(host) if credentials else None
        cmd = self._build_inspect_command(ref, creds)
        log_cmd = " ".join(self._redact_command_for_logging(cmd))
        logging.debug(f"Running: {log_cmd}")

        try:
            output = self._run(ctx, cmd)
        except subprocess.CalledProcessError as e:
            error_str = (e.stderr or "").lower()
            if "manifest unknown" in error_str or "name unknown" in error_str or "not found" in error_str:
                raise ImageNotFoundError(f"Image not found in registry: {ref}") from e
            if "unauthorized" in error_str or "401" in error_str or "403" in error_str or "denied" in error_str:
                raise create_registry_auth_error(host, RuntimeError(e.stderr.strip())) from e
            raise create_registry_connection_error(host, RuntimeError((e.stderr or str(e)).strip())) from e
        except OSError as e:
            raise create_registry_connection_error(host, e) from e

        try:
            inspected = json.loads(output)
        except ValueError as e:
            raise create_registry_connection_error(host, ValueError(f"unparseable skopeo output: {e}")) from e

        digest = inspected.get("Digest", "") if isinstance(inspected, dict) else ""
        if not is_valid_digest(digest):
            raise create_registry_connection_error(host, ValueError(f"registry returned no valid digest for {ref}"))

        return ContentDescriptor(name=inspected.get("Name") or ref, digest=digest)
