"""
AWS Service Broker

An Open Service Broker that provisions AWS services by deploying
CloudFormation templates and binds them through SSM-backed credentials.
"""

__version__ = "0.1.0"
