"""Unit tests for digest_pinner/digest_resolver.py"""

from unittest.mock import MagicMock

import pytest

from digest_pinner.auth.providers import ResolvedCredential
from digest_pinner.context import ContextCancelled, ResolveContext
from digest_pinner.digest_resolver import DigestResolver, get_reference_path, resolve_digest
from digest_pinner.errors import ErrorCategory, ErrorKind, ResolutionError
from digest_pinner.reference import NO_BASE_IMAGE, ImageReference
from digest_pinner.skopeo_client import ContentDescriptor, ImageNotFoundError

DIGEST = "sha256:" + "b" * 64


@pytest.fixture
def mock_resolver():
    """Registry resolver that always succeeds"""
    mock = MagicMock()
    mock.resolve.return_value = ContentDescriptor(name="r.io/app", digest=DIGEST)
    return mock


@pytest.fixture
def ctx():
    return ResolveContext()


class TestShortCircuits:
    """Tests for references that never reach the registry"""

    def test_none_reference_is_noop(self, ctx, mock_resolver):
        assert DigestResolver(resolver=mock_resolver).resolve(ctx, None) is None
        mock_resolver.resolve.assert_not_called()

    def test_existing_digest_is_unchanged(self, ctx, mock_resolver):
        existing = "sha256:" + "c" * 64
        ref = ImageReference(registry="r.io", repository="app", tag="v1", digest=existing)

        result = DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert result == existing
        assert ref.digest == existing
        mock_resolver.resolve.assert_not_called()

    def test_no_base_image_is_never_resolved(self, ctx, mock_resolver):
        ref = ImageReference(registry="", repository="scratch", tag="latest", reference=NO_BASE_IMAGE)

        result = DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert result == ""
        assert ref.digest == ""
        mock_resolver.resolve.assert_not_called()

    def test_resolving_twice_calls_registry_once(self, ctx, mock_resolver):
        ref = ImageReference(registry="r.io", repository="app", tag="v1")
        resolver = DigestResolver(resolver=mock_resolver)

        resolver.resolve(ctx, ref)
        resolver.resolve(ctx, ref)

        assert ref.digest == DIGEST
        mock_resolver.resolve.assert_called_once()


class TestResolve:
    """Tests for successful and failed resolutions"""

    def test_unauthenticated_when_no_credential_entry(self, ctx, mock_resolver):
        """Test empty tag defaults to latest and no credential callback is passed"""
        ref = ImageReference(registry="r.io", repository="app", tag="")

        result = DigestResolver(credentials={}, resolver=mock_resolver).resolve(ctx, ref)

        assert result == DIGEST
        assert ref.digest == DIGEST
        mock_resolver.resolve.assert_called_once_with(ctx, "r.io/app:latest", credentials=None)

    def test_credential_callback_returns_pair_for_any_host(self, ctx, mock_resolver):
        ref = ImageReference(registry="r.io", repository="app", tag="v1")
        lookup = {"r.io": ResolvedCredential(username="u", password="p")}

        DigestResolver(credentials=lookup, resolver=mock_resolver).resolve(ctx, ref)

        callback = mock_resolver.resolve.call_args.kwargs["credentials"]
        assert callback("r.io") == ("u", "p")
        assert callback("other.io") == ("u", "p")

    def test_credentials_for_other_registries_are_not_used(self, ctx, mock_resolver):
        ref = ImageReference(registry="r.io", repository="app", tag="v1")
        lookup = {"other.io": ResolvedCredential(username="u", password="p")}

        DigestResolver(credentials=lookup, resolver=mock_resolver).resolve(ctx, ref)

        assert mock_resolver.resolve.call_args.kwargs["credentials"] is None

    @pytest.mark.parametrize("username,password", [("", "p"), ("u", ""), ("", "")])
    def test_incomplete_credentials_fail_without_resolving(self, ctx, mock_resolver, username, password):
        ref = ImageReference(registry="r.io", repository="app", tag="v1")
        lookup = {"r.io": ResolvedCredential(username=username, password=password)}

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(credentials=lookup, resolver=mock_resolver).resolve(ctx, ref)

        assert exc_info.value.kind is ErrorKind.CREDENTIAL_RESOLUTION_FAILED
        assert "r.io" in str(exc_info.value)
        assert ref.digest == ""
        mock_resolver.resolve.assert_not_called()

    def test_invalid_reference(self, ctx, mock_resolver):
        ref = ImageReference(registry="r.io", repository="App", tag="v1", reference="r.io/App:v1")

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert exc_info.value.kind is ErrorKind.INVALID_REFERENCE
        assert exc_info.value.subject == "r.io/App:v1"
        assert exc_info.value.category is ErrorCategory.REFERENCE
        mock_resolver.resolve.assert_not_called()

    @pytest.mark.parametrize("tag", ["v1\n", "vé"])
    def test_tag_outside_reference_grammar_is_invalid(self, ctx, mock_resolver, tag):
        ref = ImageReference(registry="r.io", repository="app", tag=tag)

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert exc_info.value.kind is ErrorKind.INVALID_REFERENCE
        assert ref.digest == ""
        mock_resolver.resolve.assert_not_called()

    @pytest.mark.parametrize("digest", [None, "", "sha256:xyz", "not-a-digest"])
    def test_invalid_digest_from_resolver_is_rejected(self, ctx, mock_resolver, digest):
        mock_resolver.resolve.return_value = ContentDescriptor(name="r.io/app", digest=digest)
        ref = ImageReference(registry="r.io", repository="app", tag="v1")

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert exc_info.value.kind is ErrorKind.RESOLUTION_FAILED
        assert exc_info.value.subject == "r.io/app:v1"
        assert ref.digest == ""

    def test_resolver_failure_is_wrapped(self, ctx, mock_resolver):
        cause = ImageNotFoundError("Image not found in registry: r.io/app:v1")
        mock_resolver.resolve.side_effect = cause
        ref = ImageReference(registry="r.io", repository="app", tag="v1", reference="app:v1")

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert exc_info.value.kind is ErrorKind.RESOLUTION_FAILED
        assert exc_info.value.subject == "app:v1"
        assert exc_info.value.__cause__ is cause
        assert ref.digest == ""

    def test_cancellation_leaves_digest_empty(self, ctx, mock_resolver):
        mock_resolver.resolve.side_effect = ContextCancelled("context cancelled")
        ref = ImageReference(registry="r.io", repository="app", tag="v1")

        with pytest.raises(ResolutionError) as exc_info:
            DigestResolver(resolver=mock_resolver).resolve(ctx, ref)

        assert isinstance(exc_info.value.__cause__, ContextCancelled)
        assert ref.digest == ""

    def test_resolve_digest_function(self, ctx, mock_resolver):
        ref = ImageReference(registry="r.io", repository="app", tag="v1")
        lookup = {"r.io": ResolvedCredential(username="u", password="p")}

        assert resolve_digest(ctx, ref, lookup, resolver=mock_resolver) == DIGEST
        assert ref.digest == DIGEST


class TestGetReferencePath:
    """Tests for get_reference_path"""

    def test_builds_fully_qualified_path(self):
        ref = ImageReference(registry="localhost:5000", repository="team/app", tag="1.0")
        assert get_reference_path(ref) == "localhost:5000/team/app:1.0"

    def test_missing_registry_is_invalid(self):
        ref = ImageReference(registry="", repository="app", tag="1.0")
        with pytest.raises(ResolutionError) as exc_info:
            get_reference_path(ref)
        assert exc_info.value.kind is ErrorKind.INVALID_REFERENCE
