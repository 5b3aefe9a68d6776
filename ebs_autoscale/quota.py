"""
Per-instance quota checks.

Counts are always read from the provider at call time. Several invocations
may run against the same instance at once, so nothing here is cached.
"""

import logging
from dataclasses import dataclass

from .errors import LimitExceeded, LimitKind
from .models import InstanceContext, ResourceLimits
from .providers.base import StorageProvider

logger = logging.getLogger(__name__)

# Tag written on every volume this tool creates; quota evaluation reads it back
SOURCE_INSTANCE_TAG = "source-instance"
CREATION_TIME_TAG = "amazon-ebs-autoscale-creation-time"


@dataclass(frozen=True)
class QuotaUsage:
    total_created_size_gb: int
    created_volumes: int
    attached_volumes: int


def get_usage(provider: StorageProvider, ctx: InstanceContext) -> QuotaUsage:
    """Read current usage for the instance from the provider."""
    created = provider.list_volumes(tags={SOURCE_INSTANCE_TAG: ctx.instance_id})
    attached = provider.list_volumes(attached_to=ctx.instance_id)
    return QuotaUsage(
        total_created_size_gb=sum(v.size_gb for v in created),
        created_volumes=len(created),
        attached_volumes=len(attached),
    )


def evaluate(provider: StorageProvider, ctx: InstanceContext, limits: ResourceLimits) -> QuotaUsage:
    """
    Check live usage against the configured ceilings.

    Ceilings are checked in order (total size, created count, attached count)
    and the first one that is met or exceeded is reported.

    Returns:
        The usage snapshot the decision was made on

    Raises:
        LimitExceeded: If any ceiling is met or exceeded
        ProviderError: If usage could not be read
    """
    usage = get_usage(provider, ctx)
    logger.info(
        f"Usage for {ctx.instance_id}: "
        f"created size {usage.total_created_size_gb}/{limits.max_total_created_size_gb} GiB, "
        f"created volumes {usage.created_volumes}/{limits.max_created_volumes}, "
        f"attached volumes {usage.attached_volumes}/{limits.max_attached_volumes}"
    )

    checks = (
        (LimitKind.TOTAL_SIZE, usage.total_created_size_gb, limits.max_total_created_size_gb),
        (LimitKind.CREATED_COUNT, usage.created_volumes, limits.max_created_volumes),
        (LimitKind.ATTACHED_COUNT, usage.attached_volumes, limits.max_attached_volumes),
    )
    for kind, current, limit in checks:
        if current >= limit:
            logger.error(f"Quota check failed for {ctx.instance_id}: {kind.value} {current} >= {limit}")
            raise LimitExceeded(kind, current, limit)

    return usage
