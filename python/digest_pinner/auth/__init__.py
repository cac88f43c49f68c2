"""
Credential resolution for Docker registries.

This module turns classified registry credentials into literal values:
- Opaque credentials (plain text)
- Vault secret credentials (through a caller supplied secret resolver)
- Azure managed identities (ACR refresh token exchange)
"""

from digest_pinner.auth.providers import (
    ACR_REFRESH_TOKEN_USERNAME,
    CredentialLookup,
    ResolvedCredential,
    build_credential_lookup,
    exchange_acr_refresh_token,
    resolve_credential,
)

__all__ = [
    "ACR_REFRESH_TOKEN_USERNAME",
    "CredentialLookup",
    "ResolvedCredential",
    "build_credential_lookup",
    "exchange_acr_refresh_token",
    "resolve_credential",
]
