from collections.abc import Awaitable, Callable, Iterable

import structlog

from aws_exporter.modules.resources.domain.resource import ResourceRelation
from aws_exporter.shared.adapters.aws_utils import AWSAccount

logger = structlog.get_logger()

Scope = tuple[str, str]


async def scan_regions(
    accounts: Iterable[AWSAccount],
    fetch: Callable[[AWSAccount, str], Awaitable[set[ResourceRelation]]],
    builder: str,
) -> tuple[set[ResourceRelation], set[Scope]]:
    """
    Run `fetch` for every (account, region). Returns the edges found and the
    (account id, region) scopes that raised.
    """
    relations: set[ResourceRelation] = set()
    failed: set[Scope] = set()
    for account in accounts:
        for region in account.regions:
            try:
                relations |= await fetch(account, region)
            except Exception as e:
                logger.error(
                    "relation_discovery_failed",
                    builder=builder,
                    account_id=account.account_id,
                    region=region,
                    error=str(e),
                )
                failed.add((account.account_id, region))
    return relations, failed


def retain_failed_scopes(
    previous: Iterable[ResourceRelation], failed: set[Scope]
) -> set[ResourceRelation]:
    """Edges of scopes that failed this round, kept from the last good round."""
    return {r for r in previous if (r.from_.account, r.from_.region) in failed}
