"""Optimistic concurrency for the Order aggregate."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import structlog

from modules.orders.exceptions import VersionConflict

if TYPE_CHECKING:
    from modules.orders.models import Order

logger = structlog.get_logger(__name__)


def ensure_version(order: Order, expected_version: Optional[int]) -> None:
    """Raise ``VersionConflict`` when the caller's version is stale.

    ``None`` means the caller opted out of the check.  The conflict carries
    the full current snapshot of the order.
    """
    if expected_version is None or order.version == expected_version:
        return

    from modules.orders.dtos import OrderSnapshotDTO

    logger.info(
        "order.version_conflict",
        order_id=str(order.id),
        expected=expected_version,
        current=order.version,
    )
    raise VersionConflict(
        expected_version=expected_version,
        current_version=order.version,
        server_state=OrderSnapshotDTO.from_entity(order).model_dump(
            mode="json", by_alias=True
        ),
    )
