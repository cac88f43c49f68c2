#!/usr/bin/env python3
"""
Image reference parsing and validation.

Provides the ImageReference record the digest resolver fills in, a parser for
user-supplied image names, and a validator for the distribution reference
grammar (registry/repository:tag@algorithm:hex).
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"

# Reserved base image meaning "build from nothing"; never resolved
NO_BASE_IMAGE_SPECIFIER = "scratch"
NO_BASE_IMAGE = f"{NO_BASE_IMAGE_SPECIFIER}:{DEFAULT_TAG}"

NAME_TOTAL_LENGTH_MAX = 255

_ALPHANUMERIC = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALPHANUMERIC}(?:{_SEPARATOR}{_ALPHANUMERIC})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}"
_NAME = rf"(?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*"

REFERENCE_REGEX = re.compile(rf"(?P<name>{_NAME})(?::(?P<tag>{_TAG}))?(?:@(?P<digest>{_DIGEST}))?")
DIGEST_REGEX = re.compile(_DIGEST)


class ReferenceParseError(ValueError):
    """Raised when a string is not a valid image reference"""


@dataclass
class ImageReference:
    """A pointer to an image in a registry.

    `reference` is the string the image was written as and is
    what errors and logs report. `digest` is empty until resolved.
    """

    registry: str
    repository: str
    tag: str = ""
    reference: str = ""
    digest: str = ""

    def __post_init__(self):
        if not self.reference:
            self.reference = self.display_name()

    def display_name(self) -> str:
        name = f"{self.registry}/{self.repository}" if self.registry else self.repository
        if self.tag:
            name = f"{name}:{self.tag}"
        if self.digest:
            name = f"{name}@{self.digest}"
        return name

    def fully_qualified(self) -> str:
        """Return registry/repository:tag, defaulting the tag to latest"""
        return f"{self.registry}/{self.repository}:{self.tag or DEFAULT_TAG}"

    def pinned(self) -> str:
        """Return registry/repository@digest once the digest is known"""
        if not self.digest:
            return self.fully_qualified()
        return f"{self.registry}/{self.repository}@{self.digest}"


def canonicalize_reference(value: str) -> str:
    """Validate a reference string and return its canonical form.

    Raises:
        ReferenceParseError: If the string does not match the reference grammar
    """
    if not value:
        raise ReferenceParseError("repository name must have at least one component")

    match = REFERENCE_REGEX.fullmatch(value)
    if not match:
        if REFERENCE_REGEX.fullmatch(value.lower()):
            raise ReferenceParseError(f"repository name must be lowercase: {value}")
        raise ReferenceParseError(f"invalid reference format: {value}")

    if len(match.group("name")) > NAME_TOTAL_LENGTH_MAX:
        raise ReferenceParseError(f"repository name must not be more than {NAME_TOTAL_LENGTH_MAX} characters")

    return value


def _split_domain(name: str):
    """Split a name into (registry, repository) following Docker Hub rules.

    The first path component is a registry only if it looks like a host:
    it contains a '.' or ':' or is 'localhost'.
    """
    parts = name.split("/", 1)
    if len(parts) == 1:
        return DEFAULT_REGISTRY, f"library/{parts[0]}"

    first, rest = parts
    if "." in first or ":" in first or first == "localhost":
        return first, rest
    return DEFAULT_REGISTRY, name


def parse_image_reference(value: str) -> ImageReference:
    """Parse a user supplied image name into an ImageReference.

    Examples:
        nginx -> docker.io/library/nginx (tag left empty)
        myacr.azurecr.io/app:v1 -> myacr.azurecr.io / app / v1
        localhost:5000/app@sha256:... -> digest already populated

    Raises:
        ReferenceParseError: If the name is not a valid reference
    """
    value = (value or "").strip()
    if value == NO_BASE_IMAGE_SPECIFIER or value == NO_BASE_IMAGE:
        return ImageReference(registry="", repository=NO_BASE_IMAGE_SPECIFIER, tag=DEFAULT_TAG,
                              reference=NO_BASE_IMAGE)

    canonicalize_reference(value)
    match = REFERENCE_REGEX.fullmatch(value)
    registry, repository = _split_domain(match.group("name"))

    return ImageReference(
        registry=registry,
        repository=repository,
        tag=match.group("tag") or "",
        reference=value,
        digest=match.group("digest") or "",
    )


def is_valid_digest(value: Optional[str]) -> bool:
    """Check a digest is in algorithm:hex form"""
    return bool(value) and bool(DIGEST_REGEX.fullmatch(value))
