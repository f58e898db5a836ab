"""Tests for request parameter validation."""

import pytest

from aws_service_broker.exceptions import BadRequestError
from aws_service_broker.services.validation import (
    BIND_PARAM_ROLE_NAME, BIND_PARAM_SCOPE, available_parameters, collect_overrides,
    required_parameters, validate_bind_parameters, validate_provision_parameters
)


@pytest.fixture
def schema():
    return {
        'type': 'object',
        'required': ['BucketName'],
        'properties': {
            'BucketName': {'type': 'string'},
            'Versioning': {'type': 'string', 'default': 'Disabled'},
            'Encryption': {'type': 'string', 'required': True},
            'region': {'type': 'string'},
        },
    }


class TestSchemaHelpers:
    """Test schema introspection."""

    def test_available_parameters(self, schema):
        assert available_parameters(schema) == ['BucketName', 'Versioning', 'Encryption', 'region']

    def test_required_parameters_merge_both_forms(self, schema):
        assert required_parameters(schema) == ['BucketName', 'Encryption']

    def test_empty_schema(self):
        assert available_parameters({}) == []
        assert required_parameters({}) == []


class TestProvisionParameters:
    """Test provision parameter validation."""

    def test_unknown_parameter(self, schema):
        with pytest.raises(BadRequestError) as exc_info:
            validate_provision_parameters(schema, {'Nope': 'x', 'BucketName': 'b', 'Encryption': 'AES256'})

        assert str(exc_info.value) == "The parameter Nope is not available."

    def test_unknown_parameter_reported_before_missing(self, schema):
        with pytest.raises(BadRequestError) as exc_info:
            validate_provision_parameters(schema, {'Nope': 'x'})

        assert str(exc_info.value) == "The parameter Nope is not available."

    def test_missing_required(self, schema):
        with pytest.raises(BadRequestError) as exc_info:
            validate_provision_parameters(schema, {'Encryption': 'AES256'})

        assert str(exc_info.value) == "The parameter BucketName is required."

    def test_defaults_are_merged(self, schema):
        merged = validate_provision_parameters(schema, {'BucketName': 'b', 'Encryption': 'AES256'})

        assert merged == {'BucketName': 'b', 'Encryption': 'AES256', 'Versioning': 'Disabled'}

    def test_override_satisfies_required(self, schema):
        merged = validate_provision_parameters(
            schema, {'Encryption': 'AES256'}, overrides={'BucketName': 'from-override'}
        )

        assert merged['BucketName'] == 'from-override'

    def test_prescribed_override_wins(self, schema):
        merged = validate_provision_parameters(
            schema, {'BucketName': 'mine', 'Encryption': 'AES256'},
            overrides={'BucketName': 'broker'}, prescribe_overrides=True
        )

        assert merged['BucketName'] == 'broker'

    def test_caller_wins_without_prescription(self, schema):
        merged = validate_provision_parameters(
            schema, {'BucketName': 'mine', 'Encryption': 'AES256'},
            overrides={'BucketName': 'broker'}, prescribe_overrides=False
        )

        assert merged['BucketName'] == 'mine'

    def test_overrides_for_undeclared_parameters_are_ignored(self, schema):
        merged = validate_provision_parameters(
            schema, {'BucketName': 'b', 'Encryption': 'AES256'}, overrides={'Other': 'x'}
        )

        assert 'Other' not in merged


class TestCollectOverrides:
    """Test override collection from global settings and the environment."""

    def test_global_overrides_limited_to_schema(self, schema):
        overrides = collect_overrides(
            'broker', 's3', 'production', schema,
            global_overrides={'BucketName': 'g', 'Unrelated': 'x'}, environ={}
        )

        assert overrides == {'BucketName': 'g'}

    def test_most_specific_environment_override_wins(self, schema):
        environ = {
            'PARAM_OVERRIDE_broker_all_all_Versioning': 'all-all',
            'PARAM_OVERRIDE_broker_s3_all_Versioning': 's3-all',
            'PARAM_OVERRIDE_broker_s3_production_Versioning': 's3-production',
            'PARAM_OVERRIDE_other_s3_production_Encryption': 'other-broker',
        }

        overrides = collect_overrides('broker', 's3', 'production', schema, environ=environ)

        assert overrides == {'Versioning': 's3-production'}

    def test_environment_beats_global(self, schema):
        overrides = collect_overrides(
            'broker', 's3', 'dev', schema,
            global_overrides={'Encryption': 'global'},
            environ={'PARAM_OVERRIDE_broker_all_dev_Encryption': 'env'}
        )

        assert overrides == {'Encryption': 'env'}


class TestBindParameters:
    """Test bind parameter validation."""

    def test_case_insensitive_names(self):
        params = validate_bind_parameters({'rOlEnAmE': 'role', 'SCOPE': 'ReadOnly'})

        assert params == {BIND_PARAM_ROLE_NAME: 'role', BIND_PARAM_SCOPE: 'ReadOnly'}

    def test_unsupported_parameter(self):
        with pytest.raises(BadRequestError) as exc_info:
            validate_bind_parameters({'foo': 'bar'})

        assert str(exc_info.value) == "The parameter foo is not supported."

    def test_empty_parameters(self):
        assert validate_bind_parameters({}) == {}
