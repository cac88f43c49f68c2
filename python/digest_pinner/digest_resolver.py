"""
Pin image references to content digests.

DigestResolver fills in ImageReference.digest by asking a registry resolver
(SkopeoResolver by default) for the manifest digest of registry/repo:tag.
Failures propagate to the caller and leave the digest empty.
"""

import logging
from typing import Optional

from digest_pinner.auth.providers import CredentialLookup
from digest_pinner.context import ResolveContext
from digest_pinner.errors import (
    ErrorCategory,
    ErrorKind,
    ResolutionError,
    create_credential_resolution_error,
)
from digest_pinner.reference import (
    NO_BASE_IMAGE,
    ImageReference,
    ReferenceParseError,
    canonicalize_reference,
    is_valid_digest,
)

logger = logging.getLogger(__name__)


def _static_credentials(username: str, password: str):
    """Return a credential callback that answers every host with one pair"""

    def callback(host: str):
        return username, password

    return callback


def get_reference_path(ref: ImageReference) -> str:
    """Return the canonical registry/repository:tag for ref.

    Raises:
        ResolutionError: INVALID_REFERENCE naming ref.reference
    """
    try:
        return canonicalize_reference(ref.fully_qualified())
    except ReferenceParseError as e:
        raise ResolutionError(
            ErrorKind.INVALID_REFERENCE,
            ref.reference,
            category=ErrorCategory.REFERENCE,
            details={"path": ref.fully_qualified(), "reason": str(e)},
        ) from e


class DigestResolver:
    """Resolve image references to digests against their registries."""

    def __init__(self, credentials: Optional[CredentialLookup] = None, resolver=None):
        """Initialize DigestResolver.

        Args:
            credentials: Resolved credentials keyed by registry host
            resolver: Object with resolve(ctx, ref, credentials=None) returning
                something with a `digest`; defaults to a SkopeoResolver
        """
        self.credentials = credentials if credentials is not None else {}
        if resolver is None:
            from digest_pinner.skopeo_client import SkopeoResolver

            resolver = SkopeoResolver()
        self.resolver = resolver

    def resolve(self, ctx: ResolveContext, ref: Optional[ImageReference]) -> Optional[str]:
        """Populate ref.digest and return it.

        Resolving is idempotent: a reference that already has a digest, the
        scratch base image, and None are returned unchanged without contacting
        a registry.

        The credential callback handed to the resolver returns the same pair
        for every host it is asked about, so each call must only touch
        ref.registry.

        Raises:
            ResolutionError: CREDENTIAL_RESOLUTION_FAILED, INVALID_REFERENCE or
                RESOLUTION_FAILED
        """
        if ref is None:
            return None
        if ref.digest:
            return ref.digest
        if ref.reference == NO_BASE_IMAGE:
            return ref.digest

        callback = None
        cred = self.credentials.get(ref.registry)
        if cred is not None:
            if not cred.username or not cred.password:
                raise create_credential_resolution_error(ref.registry)
            callback = _static_credentials(cred.username, cred.password)

        image_ref = get_reference_path(ref)

        try:
            descriptor = self.resolver.resolve(ctx, image_ref, credentials=callback)
        except Exception as e:
            raise ResolutionError(
                ErrorKind.RESOLUTION_FAILED,
                ref.reference,
                category=getattr(e, "category", ErrorCategory.UNKNOWN),
                details={"path": image_ref, "cause": f"{type(e).__name__}: {e}"},
            ) from e

        digest = getattr(descriptor, "digest", None)
        if not isinstance(digest, str) or not is_valid_digest(digest):
            raise ResolutionError(
                ErrorKind.RESOLUTION_FAILED,
                ref.reference,
                details={"path": image_ref, "cause": f"registry returned an invalid digest: {digest!r}"},
            )

        ref.digest = digest
        logger.debug(f"Resolved {ref.reference} to {ref.digest}")
        return ref.digest


def resolve_digest(
    ctx: ResolveContext,
    ref: Optional[ImageReference],
    credentials: Optional[CredentialLookup] = None,
    resolver=None,
) -> Optional[str]:
    """Resolve a single reference; see DigestResolver.resolve"""
    return DigestResolver(credentials=credentials, resolver=resolver).resolve(ctx, ref)
