"""boto3 implementations of the cloud capability interfaces."""

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from aws_service_broker.providers.base import (
    CloudClients, IdentityProvider, ParameterLookupResult, SecretProvider,
    StackDescription, StackProvider, TemplateSource
)

logger = logging.getLogger(__name__)

# GetParameters accepts at most 10 names per call
SSM_BATCH_SIZE = 10
TEMPLATE_SUFFIX = "-main.yaml"


class SessionFactory:
    """Bootstraps one boto3 session per region and hands out shared clients.

    Sessions are not thread-safe, so sessions and clients are only created under
    the lock. Clients are thread-safe and reused by every request.
    """

    def __init__(self, profile_name: Optional[str] = None):
        self.profile_name = profile_name
        self._sessions: Dict[str, boto3.session.Session] = {}
        self._clients: Dict[Tuple[str, str], Any] = {}
        self.lock = threading.Lock()

    def _session(self, region: str) -> boto3.session.Session:
        session = self._sessions.get(region)
        if session is None:
            session = boto3.session.Session(
                profile_name=self.profile_name,
                region_name=region
            )
            self._sessions[region] = session
            logger.debug(f"Created AWS session for region {region}")
        return session

    def client(self, region: str, service_name: str):
        """Return the shared low-level client for ``service_name`` in ``region``."""
        with self.lock:
            client = self._clients.get((region, service_name))
            if client is None:
                client = self._session(region).client(service_name)
                self._clients[(region, service_name)] = client
            return client


class CloudFormationStackProvider(StackProvider):
    """CloudFormation stack lifecycle."""

    def __init__(self, client):
        self.client = client

    def create_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: Dict[str, str],
        tags: Dict[str, str]
    ) -> str:
        response = self.client.create_stack(
            StackName=stack_name,
            TemplateURL=template_url,
            Parameters=[
                {'ParameterKey': k, 'ParameterValue': v} for k, v in parameters.items()
            ],
            Capabilities=['CAPABILITY_IAM', 'CAPABILITY_NAMED_IAM'],
            Tags=[{'Key': k, 'Value': v} for k, v in tags.items()]
        )
        logger.info(f"Requested creation of stack {stack_name}")
        return response['StackId']

    def delete_stack(self, stack_id: str) -> None:
        self.client.delete_stack(StackName=stack_id)
        logger.info(f"Requested deletion of stack {stack_id}")

    def describe_stack(self, stack_id: str) -> StackDescription:
        if not stack_id:
            # DescribeStacks without a name lists every stack in the account
            raise ValueError("stack id must not be empty")
        response = self.client.describe_stacks(StackName=stack_id)
        stacks = response.get('Stacks') or []
        if not stacks:
            raise LookupError(f"stack {stack_id} not found")

        stack = stacks[0]
        outputs = {
            o['OutputKey']: o.get('OutputValue', '')
            for o in stack.get('Outputs') or []
        }
        return StackDescription(
            stack_id=stack.get('StackId', stack_id),
            status=stack.get('StackStatus', ''),
            status_reason=stack.get('StackStatusReason'),
            outputs=outputs
        )


class SSMSecretProvider(SecretProvider):
    """SSM Parameter Store lookups."""

    def __init__(self, client):
        self.client = client

    def get_parameters(self, names: List[str]) -> ParameterLookupResult:
        result = ParameterLookupResult()
        for start in range(0, len(names), SSM_BATCH_SIZE):
            batch = names[start:start + SSM_BATCH_SIZE]
            response = self.client.get_parameters(Names=batch, WithDecryption=True)
            for parameter in response.get('Parameters') or []:
                result.values[parameter['Name']] = parameter['Value']
            result.invalid_parameters.extend(response.get('InvalidParameters') or [])
        return result


class IAMIdentityProvider(IdentityProvider):
    """IAM role policy attachment."""

    def __init__(self, client):
        self.client = client

    def attach_role_policy(self, role_name: str, policy_arn: str) -> None:
        self.client.attach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
        logger.info(f"Attached policy {policy_arn} to role {role_name}")

    def detach_role_policy(self, role_name: str, policy_arn: str) -> bool:
        try:
            self.client.detach_role_policy(RoleName=role_name, PolicyArn=policy_arn)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'NoSuchEntity':
                logger.warning(f"Policy {policy_arn} was not attached to role {role_name}")
                return False
            raise
        logger.info(f"Detached policy {policy_arn} from role {role_name}")
        return True


class S3TemplateSource(TemplateSource):
    """Templates stored as ``<key>/<service>-main.yaml`` objects in an S3 bucket."""

    def __init__(self, client, bucket: str, key: str):
        self.client = client
        self.bucket = bucket
        self.prefix = key.strip('/') + '/' if key.strip('/') else ''

    def list_templates(self) -> List[str]:
        names = []
        paginator = self.client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for obj in page.get('Contents') or []:
                key = obj['Key'][len(self.prefix):]
                if '/' not in key and key.endswith(TEMPLATE_SUFFIX):
                    names.append(key[:-len(TEMPLATE_SUFFIX)])
        return sorted(names)

    def get_template(self, name: str) -> str:
        response = self.client.get_object(
            Bucket=self.bucket,
            Key=f"{self.prefix}{name}{TEMPLATE_SUFFIX}"
        )
        return response['Body'].read().decode('utf-8')


def create_aws_clients(session_factory: SessionFactory) -> CloudClients:
    """Build the capability bundle backed by boto3 sessions."""
    return CloudClients(
        stacks=lambda region: CloudFormationStackProvider(
            session_factory.client(region, 'cloudformation')
        ),
        secrets=lambda region: SSMSecretProvider(
            session_factory.client(region, 'ssm')
        ),
        identity=lambda region: IAMIdentityProvider(
            session_factory.client(region, 'iam')
        ),
    )


def create_template_source(session_factory: SessionFactory, bucket: str,
                           region: str, key: str) -> S3TemplateSource:
    """Build the S3-backed template source."""
    return S3TemplateSource(session_factory.client(region, 's3'), bucket, key)
