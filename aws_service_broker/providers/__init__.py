"""Cloud capability interfaces and their AWS implementations."""

from .base import (
    CloudClients, IdentityProvider, ParameterLookupResult, SecretProvider,
    StackDescription, StackProvider, TemplateSource
)
from .aws_provider import (
    CloudFormationStackProvider, IAMIdentityProvider, S3TemplateSource,
    SSMSecretProvider, SessionFactory, create_aws_clients, create_template_source
)

__all__ = [
    'CloudClients',
    'IdentityProvider',
    'ParameterLookupResult',
    'SecretProvider',
    'StackDescription',
    'StackProvider',
    'TemplateSource',
    'CloudFormationStackProvider',
    'IAMIdentityProvider',
    'S3TemplateSource',
    'SSMSecretProvider',
    'SessionFactory',
    'create_aws_clients',
    'create_template_source'
]
