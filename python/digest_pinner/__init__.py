"""
Registry credential classification and image digest pinning.
"""

from digest_pinner.context import ContextCancelled, ResolveContext, background
from digest_pinner.credentials import CredentialMode, RegistryCredential, classify, classify_all
from digest_pinner.digest_resolver import DigestResolver, resolve_digest
from digest_pinner.errors import ActionableError, CredentialError, ErrorKind, ResolutionError
from digest_pinner.reference import NO_BASE_IMAGE, ImageReference, parse_image_reference

__all__ = [
    "ActionableError",
    "ContextCancelled",
    "CredentialError",
    "CredentialMode",
    "DigestResolver",
    "ErrorKind",
    "ImageReference",
    "NO_BASE_IMAGE",
    "RegistryCredential",
    "ResolutionError",
    "ResolveContext",
    "background",
    "classify",
    "classify_all",
    "parse_image_reference",
    "resolve_digest",
]
