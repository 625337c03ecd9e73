"""Shared DynamoDB utilities.

This package centralizes:
- boto3 client/resource configuration
- retry/backoff and botocore error mapping
- encrypted cursor pagination tokens
- typed errors rendered as problem-details responses
- item, query, and transaction helpers for the single main table
"""
