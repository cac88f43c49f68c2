"""
Registry credential parsing and classification.

A credential blob is a flat JSON object:

    {"registry": "...", "username": "...", "userNameProviderType": "...",
     "password": "...", "passwordProviderType": "...",
     "identity": "...", "armResource": "..."}

Each blob is classified into exactly one of three authentication modes:

- opaque: username/password are plain text (both provider types "opaque")
- vault secret: username and/or password are secret IDs in a vault
  (either provider type "vaultsecret"), read with the given identity
- managed identity: no username/password, authenticate with the identity
  bound to armResource (both provider types empty)
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from digest_pinner.errors import ErrorKind, create_config_error, create_credential_error

# Provider types
OPAQUE = "opaque"
VAULT_SECRET = "vaultsecret"

# Wire keys, in serialization order
_WIRE_FIELDS = (
    ("registry", "registry"),
    ("username", "username"),
    ("username_type", "userNameProviderType"),
    ("password", "password"),
    ("password_type", "passwordProviderType"),
    ("identity", "identity"),
    ("arm_resource", "armResource"),
)


class CredentialMode(Enum):
    """Authentication flow a credential belongs to"""

    OPAQUE = "opaque"
    VAULT_SECRET = "vaultsecret"
    MANAGED_IDENTITY = "msi"


# Fields that must be non-empty for each mode, in the order they are checked
_REQUIRED_FIELDS = {
    CredentialMode.OPAQUE: (
        ("username", ErrorKind.MISSING_USERNAME),
        ("password", ErrorKind.MISSING_PASSWORD),
    ),
    CredentialMode.VAULT_SECRET: (
        ("username", ErrorKind.MISSING_USERNAME),
        ("password", ErrorKind.MISSING_PASSWORD),
        ("identity", ErrorKind.MISSING_IDENTITY),
    ),
    CredentialMode.MANAGED_IDENTITY: (
        ("identity", ErrorKind.MISSING_IDENTITY),
        ("arm_resource", ErrorKind.MISSING_ARM_RESOURCE),
    ),
}

# Fields each mode keeps; everything else is cleared on classification
_RETAINED_FIELDS = {
    CredentialMode.OPAQUE: ("registry", "username", "username_type", "password", "password_type"),
    CredentialMode.VAULT_SECRET: ("registry", "username", "username_type", "password", "password_type", "identity"),
    CredentialMode.MANAGED_IDENTITY: ("registry", "identity", "arm_resource"),
}


def detect_mode(username_type: str, password_type: str) -> Optional[CredentialMode]:
    """Return the mode for a pair of lowercase provider types, or None.

    Checked in priority order: both opaque, then either vault secret, then
    both empty. Mixed opaque/vaultsecret pairs fall under vault secret.
    """
    if username_type == OPAQUE and password_type == OPAQUE:
        return CredentialMode.OPAQUE
    if username_type == VAULT_SECRET or password_type == VAULT_SECRET:
        return CredentialMode.VAULT_SECRET
    if username_type == "" and password_type == "":
        return CredentialMode.MANAGED_IDENTITY
    return None


@dataclass(frozen=True)
class RegistryCredential:
    """Authentication material for a single registry host.

    Instances are validated on construction: the provider types are
    lowercased, the registry must be set, the types must form one of the
    three supported shapes and that shape's required fields must be present.
    Use classify() to build one from a serialized blob.
    """

    registry: str
    username: str = ""
    username_type: str = ""
    password: str = field(default="", repr=False)
    password_type: str = ""
    identity: str = ""
    arm_resource: str = ""

    def __post_init__(self):
        object.__setattr__(self, "username_type", (self.username_type or "").lower())
        object.__setattr__(self, "password_type", (self.password_type or "").lower())

        if not self.registry:
            raise create_credential_error(ErrorKind.MISSING_REGISTRY)

        mode = detect_mode(self.username_type, self.password_type)
        if mode is None:
            raise create_credential_error(
                ErrorKind.UNCLASSIFIABLE_CREDENTIAL,
                registry=self.registry,
                detail=f"userNameProviderType={self.username_type!r}, passwordProviderType={self.password_type!r}",
            )

        for attr, kind in _REQUIRED_FIELDS[mode]:
            if not getattr(self, attr):
                raise create_credential_error(kind, registry=self.registry)

    @property
    def mode(self) -> CredentialMode:
        return detect_mode(self.username_type, self.password_type)

    def to_dict(self) -> Dict[str, str]:
        """Serialize to the wire shape, omitting empty optional keys"""
        result = {}
        for attr, key in _WIRE_FIELDS:
            value = getattr(self, attr)
            if value or key == "registry":
                result[key] = value
        return result

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def _decode(raw: Any) -> Dict[str, str]:
    """Decode a blob into attribute names -> string values.

    Accepts a JSON string or an already decoded mapping (as found in YAML
    config). Keys are matched case-insensitively. Missing and null values
    become empty strings.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise create_credential_error(ErrorKind.MALFORMED_INPUT, detail=str(e)) from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise create_credential_error(
            ErrorKind.MALFORMED_INPUT, detail=f"expected a JSON object, got {type(data).__name__}"
        )

    # Keys match case-insensitively; an exact match wins
    folded = {}
    for key, value in data.items():
        if isinstance(key, str):
            folded.setdefault(key.lower(), value)

    fields = {}
    for attr, key in _WIRE_FIELDS:
        value = data[key] if key in data else folded.get(key.lower())
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise create_credential_error(
                ErrorKind.MALFORMED_INPUT, detail=f"'{key}' must be a string, got {type(value).__name__}"
            )
        fields[attr] = value
    return fields


def classify(raw: Any) -> RegistryCredential:
    """Parse a serialized credential and classify it.

    Args:
        raw: JSON string (or decoded mapping) with the credential keys

    Returns:
        RegistryCredential holding only the fields its mode uses

    Raises:
        CredentialError: kind tells which check failed
    """
    # Validate against the full input first, then drop what the mode ignores
    parsed = RegistryCredential(**_decode(raw))
    return RegistryCredential(**{attr: getattr(parsed, attr) for attr in _RETAINED_FIELDS[parsed.mode]})


def classify_all(raws: Iterable[Any]) -> List[RegistryCredential]:
    """Classify several blobs, rejecting two credentials for one registry"""
    credentials = []
    seen = set()
    for raw in raws:
        cred = classify(raw)
        if cred.registry in seen:
            raise create_config_error("credentials", cred.registry, "duplicate credential for registry")
        seen.add(cred.registry)
        credentials.append(cred)
    return credentials
