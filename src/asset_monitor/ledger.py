"""Flow ledger: records USD value moving between asset groups.

Each flow has at most one side outside the tracked boundary: a flow with no
source group is an inflow, one with no destination group is an outflow, and
one with both is an internal transfer that leaves net inflow unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from asset_monitor.storage.repos import AssetFlowDTO, AssetFlowRepository, AssetGroupRepository
from asset_monitor.utils import to_decimal, utc_now

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from asset_monitor.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

GroupSpec = int | str | None


class GroupNotFound(Exception):
    """Raised when a flow names a group that does not exist."""

    def __init__(self, spec: int | str) -> None:
        super().__init__(f"Asset group not found: {spec!r}")
        self.spec = spec


class InvalidFlowError(ValueError):
    """Raised for a flow that can never be recorded (bad value or sides)."""


def _validate_value(value: Decimal | int | str) -> Decimal:
    try:
        amount = to_decimal(value)
    except (TypeError, ValueError) as e:
        raise InvalidFlowError(str(e)) from e
    if not amount.is_finite() or amount <= 0:
        raise InvalidFlowError(f"Flow value must be a finite amount > 0, got {value!r}")
    return amount


def _validate_sides(from_group: GroupSpec, to_group: GroupSpec) -> None:
    if from_group is None and to_group is None:
        raise InvalidFlowError("A flow needs at least one group")
    if from_group is not None and from_group == to_group:
        raise InvalidFlowError(f"A flow cannot move value from a group to itself ({from_group!r})")
    for spec in (from_group, to_group):
        if isinstance(spec, bool) or not (spec is None or isinstance(spec, (int, str))):
            raise InvalidFlowError(f"Group must be an id, a name or None, got {spec!r}")


class FlowLedger:
    """Records flows atomically with any group lookups or creation.

    Example:
        ```python
        ledger = FlowLedger(db)
        await ledger.record_flow(None, "treasury", Decimal("100"))   # inflow
        await ledger.record_flow("treasury", None, Decimal("40"))    # outflow
        ```
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @asynccontextmanager
    async def _scope(self, session: AsyncSession | None) -> AsyncGenerator[AsyncSession, None]:
        if session is not None:
            yield session
            return
        async with self._db.get_async_session() as own:
            yield own

    def transaction(self) -> AbstractAsyncContextManager[AsyncSession]:
        """Open a transaction that several :meth:`record_flow` calls can join."""
        return self._db.get_async_session()

    async def _resolve(
        self,
        groups: AssetGroupRepository,
        spec: GroupSpec,
        *,
        create_group: bool,
    ) -> int | None:
        if spec is None:
            return None
        if isinstance(spec, int):
            group = await groups.get(spec)
            if group is None:
                raise GroupNotFound(spec)
            return group.id

        if create_group:
            return (await groups.get_or_create(spec)).id
        group = await groups.get_by_name(spec)
        if group is None:
            raise GroupNotFound(spec)
        return group.id

    async def record_flow(
        self,
        from_group: GroupSpec,
        to_group: GroupSpec,
        value: Decimal | int | str,
        *,
        time: datetime | None = None,
        create_group: bool = False,
        session: AsyncSession | None = None,
    ) -> AssetFlowDTO:
        """Record one flow.

        Args:
            from_group: Source group id or name; None for an inflow.
            to_group: Destination group id or name; None for an outflow.
            value: USD value moved; floats are rejected.
            time: When the flow occurred; defaults to now (UTC).
            create_group: Create groups named by string that do not exist yet.
            session: Join the caller's transaction instead of opening one.

        Returns:
            The stored flow.

        Raises:
            InvalidFlowError: If the value or the sides are invalid.
            GroupNotFound: If a group does not exist and is not created.
        """
        amount = _validate_value(value)
        _validate_sides(from_group, to_group)
        occurred_at = time or utc_now()

        async with self._scope(session) as active:
            groups = AssetGroupRepository(active)
            from_id = await self._resolve(groups, from_group, create_group=create_group)
            to_id = await self._resolve(groups, to_group, create_group=create_group)
            if from_id == to_id:
                raise InvalidFlowError("A flow cannot move value from a group to itself")

            flow = await AssetFlowRepository(active).insert(
                from_group_id=from_id,
                to_group_id=to_id,
                usd_value=amount,
                occurred_at=occurred_at,
            )

        logger.info(
            "Recorded flow %s -> %s: %s USD",
            from_group if from_group is not None else "(outside)",
            to_group if to_group is not None else "(outside)",
            amount,
        )
        return flow
