"""
Infrastructure layer - external service integrations.

- storage: Object storage backends (boto3 for S3, in-memory mock)

These wrappers translate between service errors and our error kinds.
"""
