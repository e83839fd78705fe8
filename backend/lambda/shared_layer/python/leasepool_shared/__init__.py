"""leasepool_shared — Shared engine for the account lease pool Lambdas.

Provides:
    - Conditional (compare-and-swap) Account / Lease status transitions
    - Account pool queries and lease provisioning / decommissioning sagas
    - Reset-queue sweep and continue-on-error fan-out dispatch
    - DynamoDB Streams lease event routing to SNS topics
    - Multi-step lifecycle task runner
    - Lazy boto3 clients, DynamoDB serialization, HTTP response helpers
"""

__version__ = "1.0.0"
