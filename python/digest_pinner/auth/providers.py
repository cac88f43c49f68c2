"""
Credential resolution for classified registry credentials.

Turns RegistryCredential records into the literal username/password pairs
the digest resolver consumes:

- opaque values are used as-is
- vault secret values are looked up through a caller supplied resolver
- managed identities are exchanged for an ACR refresh token
"""

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Optional

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ManagedIdentityCredential

from digest_pinner.credentials import VAULT_SECRET, CredentialMode, RegistryCredential
from digest_pinner.errors import create_credential_resolution_error

# ACR expects this placeholder username when the password is a refresh token
ACR_REFRESH_TOKEN_USERNAME = "00000000-0000-0000-0000-000000000000"

DEFAULT_TOKEN_SCOPE = "https://management.azure.com/.default"

# (secret_id, identity) -> secret value
SecretResolver = Callable[[str, str], str]
# (registry, identity, arm_resource) -> refresh token
TokenExchanger = Callable[[str, str, str], str]


@dataclass(frozen=True)
class ResolvedCredential:
    """Literal username/password for one registry"""

    username: str
    password: str = field(repr=False)

    def is_complete(self) -> bool:
        return bool(self.username) and bool(self.password)


CredentialLookup = Mapping[str, ResolvedCredential]


def exchange_acr_refresh_token(
    registry: str,
    identity: str,
    arm_resource: str = "",
    scope: str = DEFAULT_TOKEN_SCOPE,
    timeout: float = 30,
) -> str:
    """Exchange a managed identity token for an ACR refresh token.

    Gets an AAD access token for the user-assigned identity and trades it at
    the registry's OAuth2 exchange endpoint.

    Args:
        registry: ACR login server (e.g., 'myregistry.azurecr.io')
        identity: Client ID of the managed identity
        arm_resource: ARM resource ID the identity is bound to (logged only)
        scope: AAD scope requested for the access token
        timeout: Seconds before the exchange request is abandoned

    Returns:
        Refresh token usable as the password with ACR_REFRESH_TOKEN_USERNAME

    Raises:
        urllib.error.URLError: If the exchange request fails
        ClientAuthenticationError: If the identity cannot get an AAD token
    """
    logging.info(f"Requesting ACR refresh token for {registry} with managed identity {identity}")
    logging.debug(f"Managed identity resource: {arm_resource}")

    credential = ManagedIdentityCredential(client_id=identity)
    access_token = credential.get_token(scope).token

    exchange_url = f"https://{registry}/oauth2/exchange"
    data = urllib.parse.urlencode(
        {
            "grant_type": "access_token",
            "service": registry,
            "access_token": access_token,
        }
    ).encode("utf-8")

    req = urllib.request.Request(exchange_url, data=data, method="POST")
    req.add_header("Content-Type", "application/x-www-form-urlencoded")

    with urllib.request.urlopen(req, timeout=timeout) as response:
        result = json.loads(response.read().decode("utf-8"))
        return result["refresh_token"]


def _resolve_value(
    value: str,
    provider_type: str,
    identity: str,
    registry: str,
    secret_resolver: Optional[SecretResolver],
) -> str:
    if provider_type != VAULT_SECRET:
        return value
    if secret_resolver is None:
        raise create_credential_resolution_error(registry, "no secret resolver configured for vault secrets")
    return secret_resolver(value, identity)


def resolve_credential(
    cred: RegistryCredential,
    secret_resolver: Optional[SecretResolver] = None,
    token_exchanger: Optional[TokenExchanger] = None,
) -> ResolvedCredential:
    """Resolve one classified credential into literal values.

    Username and password are resolved independently, so a credential with
    an opaque username and a vault secret password works.

    Raises:
        ResolutionError: CREDENTIAL_RESOLUTION_FAILED naming the registry
    """
    try:
        if cred.mode is CredentialMode.MANAGED_IDENTITY:
            exchanger = token_exchanger or exchange_acr_refresh_token
            token = exchanger(cred.registry, cred.identity, cred.arm_resource)
            return ResolvedCredential(username=ACR_REFRESH_TOKEN_USERNAME, password=token)

        username = _resolve_value(cred.username, cred.username_type, cred.identity, cred.registry, secret_resolver)
        password = _resolve_value(cred.password, cred.password_type, cred.identity, cred.registry, secret_resolver)
        return ResolvedCredential(username=username, password=password)

    except urllib.error.HTTPError as e:
        logging.error(f"ACR token exchange failed for {cred.registry}: {e}")
        logging.error("  Troubleshooting steps:")
        logging.error("    1. Verify the managed identity has AcrPull role on the registry")
        logging.error("    2. Verify the identity client ID in the credential is correct")
        raise create_credential_resolution_error(cred.registry, str(e)) from e
    except ClientAuthenticationError as e:
        logging.error(f"Managed identity {cred.identity} could not authenticate for {cred.registry}: {e}")
        raise create_credential_resolution_error(cred.registry, str(e)) from e
    except (urllib.error.URLError, KeyError, ValueError) as e:
        logging.error(f"Credential resolution failed for {cred.registry}: {e}")
        raise create_credential_resolution_error(cred.registry, str(e)) from e


def build_credential_lookup(
    credentials: Iterable[RegistryCredential],
    secret_resolver: Optional[SecretResolver] = None,
    token_exchanger: Optional[TokenExchanger] = None,
) -> Dict[str, ResolvedCredential]:
    """Resolve credentials into a lookup keyed by registry host"""
    lookup = {}
    for cred in credentials:
        lookup[cred.registry] = resolve_credential(cred, secret_resolver, token_exchanger)
        logging.info(f"Resolved {cred.mode.value} credentials for {cred.registry}")
    return lookup
