"""
AWS providers package.

Contains the AWS Secrets Manager provider.
"""

from providers.aws.secretsmanager import AWSSecretsManagerProvider

__all__ = ["AWSSecretsManagerProvider"]
