"""Unit tests for annotation.py - Sync annotation parsing."""

import dataclasses

import pytest

from annotation import (
    AnnotationError,
    EmptyPayloadError,
    InvalidFieldError,
    MalformedPayloadError,
    MissingFieldError,
    NamespaceMismatchError,
    PodIdentity,
    SyncRequest,
    parse_annotation,
)


def parse(raw, namespace="default"):
    return parse_annotation(raw, namespace, "myapp-0", "uid-123")


class TestParseAnnotation:
    """Tests for parse_annotation."""

    def test_valid_annotation(self):
        request = parse(
            "provider: aws-secretsmanager\n"
            "path: /prod/myapp/database\n"
            "secretName: db-credentials\n"
        )
        assert request.provider == "aws-secretsmanager"
        assert request.source_path == "/prod/myapp/database"
        assert request.target_secret_name == "db-credentials"
        assert request.namespace == "default"
        assert request.pod == PodIdentity(name="myapp-0", uid="uid-123")
        assert request.key_mapping == {}
        assert request.copies_all_keys is True

    def test_key_mapping_carried_through(self):
        request = parse(
            "provider: aws-secretsmanager\n"
            "path: /prod/myapp/database\n"
            "secretName: db-credentials\n"
            "keys:\n"
            "  database: DB_HOST\n"
            "  password: DB_PASSWORD\n"
        )
        assert request.key_mapping == {"database": "DB_HOST", "password": "DB_PASSWORD"}
        assert request.copies_all_keys is False

    def test_empty_keys_block_copies_everything(self):
        """Both 'keys:' with no entries and 'keys: {}' mean copy all keys."""
        base = "provider: p\npath: /a\nsecretName: s\n"
        assert parse(base + "keys:\n").key_mapping == {}
        assert parse(base + "keys: {}\n").key_mapping == {}
        assert parse(base + "keys: {}\n").copies_all_keys is True

    def test_json_flow_syntax_accepted(self):
        request = parse('{"provider": "p", "path": "/a", "secretName": "s"}')
        assert request.provider == "p"

    def test_request_is_immutable(self):
        request = parse("provider: p\npath: /a\nsecretName: s\n")
        with pytest.raises(dataclasses.FrozenInstanceError):
            request.provider = "other"

    @pytest.mark.parametrize("raw", ["", "   \n  ", None])
    def test_empty_payload(self, raw):
        with pytest.raises(EmptyPayloadError):
            parse(raw)

    def test_malformed_yaml(self):
        with pytest.raises(MalformedPayloadError) as exc_info:
            parse("{invalid")
        assert "failed to parse annotation YAML" in str(exc_info.value)

    @pytest.mark.parametrize("raw", ["just a string", "- a\n- b\n", "42"])
    def test_non_mapping_is_malformed(self, raw):
        with pytest.raises(MalformedPayloadError):
            parse(raw)

    @pytest.mark.parametrize(
        "raw,missing",
        [
            ("path: /a\nsecretName: s\n", "provider"),
            ("provider: p\nsecretName: s\n", "path"),
            ("provider: p\npath: /a\n", "secretName"),
            ("provider: ''\npath: /a\nsecretName: s\n", "provider"),
            ("provider: p\npath:\nsecretName: s\n", "path"),
            ("provider: p\npath: /a\nsecretName: '  '\n", "secretName"),
        ],
    )
    def test_missing_field_named(self, raw, missing):
        with pytest.raises(MissingFieldError) as exc_info:
            parse(raw)
        assert exc_info.value.field == missing
        assert missing in str(exc_info.value)

    def test_missing_fields_reported_in_order(self):
        with pytest.raises(MissingFieldError) as exc_info:
            parse("keys: {}\n")
        assert exc_info.value.field == "provider"

    def test_non_string_field_rejected(self):
        with pytest.raises(InvalidFieldError) as exc_info:
            parse("provider: p\npath: /a\nsecretName: [a, b]\n")
        assert exc_info.value.field == "secretName"

    def test_non_mapping_keys_rejected(self):
        with pytest.raises(InvalidFieldError) as exc_info:
            parse("provider: p\npath: /a\nsecretName: s\nkeys: [a, b]\n")
        assert exc_info.value.field == "keys"

    def test_non_string_key_source_rejected(self):
        with pytest.raises(InvalidFieldError) as exc_info:
            parse("provider: p\npath: /a\nsecretName: s\nkeys:\n  port: 5432\n")
        assert exc_info.value.field == "keys"

    @pytest.mark.parametrize("target", ["on", "yes", "1", "true"])
    def test_unquoted_yaml_scalar_target_key_rejected(self, target):
        """YAML would turn these target keys into bools or ints."""
        with pytest.raises(InvalidFieldError) as exc_info:
            parse(
                "provider: p\npath: /a\nsecretName: s\n"
                f"keys:\n  {target}: password\n"
            )
        assert exc_info.value.field == "keys"

    def test_quoted_yaml_scalar_target_key_accepted(self):
        request = parse(
            "provider: p\npath: /a\nsecretName: s\nkeys:\n  \"on\": password\n"
        )
        assert request.key_mapping == {"on": "password"}

    @pytest.mark.parametrize(
        "name", ["DB-Credentials", "db_credentials", "-db", "db-", "a" * 254]
    )
    def test_invalid_secret_name(self, name):
        with pytest.raises(InvalidFieldError) as exc_info:
            parse(f"provider: p\npath: /a\nsecretName: '{name}'\n")
        assert exc_info.value.field == "secretName"

    def test_dotted_secret_name_allowed(self):
        request = parse("provider: p\npath: /a\nsecretName: db.credentials-1\n")
        assert request.target_secret_name == "db.credentials-1"

    def test_namespace_defaults_to_pod_namespace(self):
        request = parse("provider: p\npath: /a\nsecretName: s\n", namespace="team-a")
        assert request.namespace == "team-a"

    def test_namespace_from_payload_is_not_trusted(self):
        request = parse(
            "provider: p\npath: /a\nsecretName: s\nnamespace: other\n",
            namespace="team-a",
        )
        with pytest.raises(NamespaceMismatchError) as exc_info:
            request.check_namespace("team-a")
        assert "other" in str(exc_info.value)
        assert "team-a" in str(exc_info.value)

    def test_matching_namespace_passes_check(self):
        request = parse(
            "provider: p\npath: /a\nsecretName: s\nnamespace: team-a\n",
            namespace="team-a",
        )
        request.check_namespace("team-a")

    def test_all_errors_are_annotation_errors(self):
        for raw in ["", "{invalid", "provider: p\n"]:
            with pytest.raises(AnnotationError):
                parse(raw)


class TestSyncRequest:
    """Tests for the SyncRequest dataclass."""

    def test_defaults(self):
        request = SyncRequest(
            provider="p",
            source_path="/a",
            target_secret_name="s",
            namespace="default",
            pod=PodIdentity(name="pod", uid="uid"),
        )
        assert request.key_mapping == {}
        assert request.copies_all_keys is True
