"""Tests for the boto3-backed cloud providers."""

import io
import threading
import pytest
from unittest.mock import Mock, patch

from botocore.exceptions import ClientError

from aws_service_broker.providers.aws_provider import (
    CloudFormationStackProvider, IAMIdentityProvider, S3TemplateSource, SSMSecretProvider,
    SessionFactory, create_aws_clients
)


class TestCloudFormationStackProvider:
    """Test CloudFormation stack operations."""

    def test_create_stack(self):
        client = Mock()
        client.create_stack.return_value = {'StackId': 'arn:stack/1'}
        provider = CloudFormationStackProvider(client)

        stack_id = provider.create_stack('name', 'https://url', {'A': '1'}, {'Tag': 'v'})

        assert stack_id == 'arn:stack/1'
        kwargs = client.create_stack.call_args.kwargs
        assert kwargs['StackName'] == 'name'
        assert kwargs['TemplateURL'] == 'https://url'
        assert kwargs['Parameters'] == [{'ParameterKey': 'A', 'ParameterValue': '1'}]
        assert kwargs['Tags'] == [{'Key': 'Tag', 'Value': 'v'}]
        assert 'CAPABILITY_NAMED_IAM' in kwargs['Capabilities']

    def test_describe_stack(self):
        client = Mock()
        client.describe_stacks.return_value = {'Stacks': [{
            'StackId': 'arn:stack/1',
            'StackStatus': 'CREATE_FAILED',
            'StackStatusReason': 'limit exceeded',
            'Outputs': [{'OutputKey': 'BucketName', 'OutputValue': 'b'}],
        }]}

        stack = CloudFormationStackProvider(client).describe_stack('arn:stack/1')

        assert stack.status == 'CREATE_FAILED'
        assert stack.status_reason == 'limit exceeded'
        assert stack.outputs == {'BucketName': 'b'}

    def test_describe_rejects_empty_stack_id(self):
        client = Mock()

        with pytest.raises(ValueError):
            CloudFormationStackProvider(client).describe_stack('')

        client.describe_stacks.assert_not_called()

    def test_describe_missing_stack(self):
        client = Mock()
        client.describe_stacks.return_value = {'Stacks': []}

        with pytest.raises(LookupError):
            CloudFormationStackProvider(client).describe_stack('gone')


class TestSSMSecretProvider:
    """Test SSM parameter lookups."""

    def test_batches_of_ten(self):
        client = Mock()
        client.get_parameters.side_effect = lambda Names, WithDecryption: {
            'Parameters': [{'Name': n, 'Value': n.upper()} for n in Names if n != '/p3'],
            'InvalidParameters': [n for n in Names if n == '/p3'],
        }
        names = [f'/p{i}' for i in range(12)]

        result = SSMSecretProvider(client).get_parameters(names)

        assert client.get_parameters.call_count == 2
        assert client.get_parameters.call_args_list[0].kwargs['Names'] == names[:10]
        assert client.get_parameters.call_args_list[0].kwargs['WithDecryption'] is True
        assert result.values['/p11'] == '/P11'
        assert result.invalid_parameters == ['/p3']


class TestIAMIdentityProvider:
    """Test IAM policy attachment."""

    def test_attach(self):
        client = Mock()

        IAMIdentityProvider(client).attach_role_policy('role', 'arn')

        client.attach_role_policy.assert_called_once_with(RoleName='role', PolicyArn='arn')

    def test_detach_not_attached(self):
        client = Mock()
        client.detach_role_policy.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchEntity', 'Message': 'not attached'}}, 'DetachRolePolicy'
        )

        assert IAMIdentityProvider(client).detach_role_policy('role', 'arn') is False

    def test_detach_other_error(self):
        client = Mock()
        client.detach_role_policy.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'denied'}}, 'DetachRolePolicy'
        )

        with pytest.raises(ClientError):
            IAMIdentityProvider(client).detach_role_policy('role', 'arn')


class TestS3TemplateSource:
    """Test template listing and retrieval."""

    def test_list_templates(self):
        client = Mock()
        client.get_paginator.return_value.paginate.return_value = [
            {'Contents': [
                {'Key': 'templates/latest/s3-main.yaml'},
                {'Key': 'templates/latest/sqs-main.yaml'},
                {'Key': 'templates/latest/README.md'},
                {'Key': 'templates/latest/nested/rds-main.yaml'},
            ]},
            {},
        ]

        names = S3TemplateSource(client, 'bucket', '/templates/latest/').list_templates()

        assert names == ['s3', 'sqs']
        client.get_paginator.return_value.paginate.assert_called_once_with(
            Bucket='bucket', Prefix='templates/latest/'
        )

    def test_get_template(self):
        client = Mock()
        client.get_object.return_value = {'Body': io.BytesIO(b'Resources: {}\n')}

        body = S3TemplateSource(client, 'bucket', 'templates/latest').get_template('s3')

        assert body == 'Resources: {}\n'
        client.get_object.assert_called_once_with(Bucket='bucket', Key='templates/latest/s3-main.yaml')


class TestSessions:
    """Test session and client reuse."""

    def test_clients_are_created_once_per_region_and_service(self):
        with patch('aws_service_broker.providers.aws_provider.boto3.session.Session') as session_class:
            factory = SessionFactory()

            first = factory.client('us-east-1', 'ssm')
            again = factory.client('us-east-1', 'ssm')
            factory.client('us-east-1', 'iam')
            factory.client('eu-west-1', 'ssm')

        assert first is again
        assert session_class.call_count == 2
        assert session_class.return_value.client.call_count == 3

    def test_concurrent_callers_share_one_client(self):
        with patch('aws_service_broker.providers.aws_provider.boto3.session.Session') as session_class:
            session_class.return_value.client.side_effect = lambda name: object()
            factory = SessionFactory()
            results = []

            def fetch():
                for _ in range(50):
                    results.append(factory.client('us-east-1', 'cloudformation'))

            threads = [threading.Thread(target=fetch) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert session_class.call_count == 1
        assert len({id(c) for c in results}) == 1

    def test_create_aws_clients(self):
        factory = Mock()
        clients = create_aws_clients(factory)

        provider = clients.stacks('eu-west-1')

        assert isinstance(provider, CloudFormationStackProvider)
        assert provider.client is factory.client.return_value
        factory.client.assert_called_once_with('eu-west-1', 'cloudformation')
