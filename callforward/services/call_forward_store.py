"""
Call forward store.

Owns the persisted call forwards. No two call forwards from the same
extension may be active in the same context: the unique constraint on
`map_call_forward_context (from_extension, context)` enforces this inside the
database, the scan in `_find_overlap` only names the rule and context that
collide.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from callforward.models.call_forward import CallForward, ForwardState
from callforward.models.database_models import CallForwardRow, CallForwardContextRow
from callforward.models.telephony import Context, Extension
from callforward.services.database_service import DatabaseService
from callforward.services.registry import Registry
from callforward.utils.logger import get_logger
from callforward.utils.exceptions import (
    CallForwardNotFoundException,
    DatabaseException,
    OverlapConflictException,
    ValidationException,
)

logger = get_logger(__name__)


class CallForwardStore:
    """
    Async CRUD for call forwards.

    Every mutating operation runs in a single transaction; a failure leaves
    the store unchanged.
    """

    def __init__(self, db_service: DatabaseService, registry: Registry):
        """
        Initialize the store.

        Args:
            db_service: Database service providing sessions
            registry: Registry used to rebuild extensions and contexts from rows
        """
        self.db = db_service
        self.registry = registry

    # Conversions

    def _to_model(self, row: CallForwardRow) -> CallForward:
        return CallForward(
            from_extension=self.registry.extension(row.from_extension),
            to_extension=self.registry.extension(row.to_extension),
            contexts=frozenset(self.registry.context(c.context) for c in row.contexts),
            fwd_id=row.fwd_id,
        )

    def _to_models(self, rows) -> List[CallForward]:
        forwards = []
        for row in rows:
            if not row.contexts:
                # Not reachable through the store, only through manual edits
                logger.warning(f"Ignoring call forward {row.fwd_id} without contexts")
                continue
            forwards.append(self._to_model(row))
        return forwards

    # Queries

    async def _select_from(
        self,
        session: AsyncSession,
        from_extension: Optional[str] = None,
    ) -> List[CallForward]:
        stmt = (
            select(CallForwardRow)
            .options(selectinload(CallForwardRow.contexts))
            .order_by(CallForwardRow.fwd_id)
        )
        if from_extension is not None:
            stmt = stmt.where(CallForwardRow.from_extension == from_extension)
        result = await session.execute(stmt)
        return self._to_models(result.scalars().all())

    async def _find_overlap(
        self,
        session: AsyncSession,
        forward: CallForward,
        exclude_id: Optional[int] = None,
    ) -> Optional[Tuple[CallForward, Context]]:
        """Return the first existing forward sharing a context with `forward`."""
        existing = await self._select_from(session, forward.from_extension.extension_id)
        for fwd in existing:
            if exclude_id is not None and fwd.fwd_id == exclude_id:
                continue
            shared = fwd.intersecting_contexts(forward)
            if shared:
                return fwd, shared[0]
        return None

    async def _check_overlap(
        self,
        session: AsyncSession,
        forward: CallForward,
        exclude_id: Optional[int] = None,
    ) -> None:
        overlap = await self._find_overlap(session, forward, exclude_id)
        if overlap is not None:
            existing, context = overlap
            logger.warning(
                f"Call forward from {forward.from_extension} conflicts with "
                f"call forward {existing.fwd_id} in context {context.protocol_name}"
            )
            raise OverlapConflictException(existing.from_extension, context, existing.fwd_id)

    async def _conflict_after_integrity_error(
        self,
        forward: CallForward,
        error: IntegrityError,
        exclude_id: Optional[int] = None,
    ) -> Exception:
        """
        Attribute a constraint violation to the forward that won the race.

        A concurrent writer committed between our scan and our insert; the
        re-scan sees its rule.
        """
        try:
            async with self.db.session() as session:
                overlap = await self._find_overlap(session, forward, exclude_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error attributing constraint violation: {e}")
            return DatabaseException(f"Failed to write call forward: {str(error)}")

        if overlap is None:
            logger.error(f"Integrity error writing call forward: {error}")
            return DatabaseException(f"Failed to write call forward: {str(error)}")

        existing, context = overlap
        logger.warning(
            f"Concurrent call forward {existing.fwd_id} from {existing.from_extension} "
            f"already holds context {context.protocol_name}"
        )
        return OverlapConflictException(existing.from_extension, context, existing.fwd_id)

    # Public operations

    async def create(self, draft: CallForward) -> CallForward:
        """
        Persist a new call forward.

        Args:
            draft: Unpersisted call forward

        Returns:
            The persisted call forward with its new id

        Raises:
            ValidationException: If `draft` already has an id
            OverlapConflictException: If another forward from the same
                extension is active in one of the contexts
            DatabaseException: On storage failures
        """
        if draft.state is not ForwardState.DRAFT:
            raise ValidationException(f"Call forward {draft.fwd_id} is already persisted")

        from_id = draft.from_extension.extension_id
        try:
            async with self.db.session() as session, session.begin():
                await self._check_overlap(session, draft)

                row = CallForwardRow(
                    from_extension=from_id,
                    to_extension=draft.to_extension.extension_id,
                    contexts=[
                        CallForwardContextRow(from_extension=from_id, context=ctx.protocol_name)
                        for ctx in draft.sorted_contexts()
                    ],
                )
                session.add(row)
                await session.flush()
                new_id = row.fwd_id

        except IntegrityError as e:
            raise await self._conflict_after_integrity_error(draft, e)
        except SQLAlchemyError as e:
            logger.error(f"Database error creating call forward: {e}")
            raise DatabaseException(f"Failed to create call forward: {str(e)}")

        created = draft.with_id(new_id)
        logger.info(
            f"Created call forward {new_id}: {created.from_extension} -> {created.to_extension} "
            f"in {', '.join(c.protocol_name for c in created.sorted_contexts())}"
        )
        return created

    async def get(self, fwd_id: int) -> CallForward:
        """
        Get call forward with a specific id.

        Raises:
            CallForwardNotFoundException: If no such forward exists
        """
        try:
            async with self.db.session() as session:
                stmt = (
                    select(CallForwardRow)
                    .options(selectinload(CallForwardRow.contexts))
                    .where(CallForwardRow.fwd_id == fwd_id)
                )
                result = await session.execute(stmt)
                forwards = self._to_models(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Database error getting call forward {fwd_id}: {e}")
            raise DatabaseException(f"Failed to get call forward: {str(e)}")

        if not forwards:
            raise CallForwardNotFoundException(fwd_id)
        return forwards[0]

    async def list_all(self) -> List[CallForward]:
        """All call forwards, ordered by id."""
        try:
            async with self.db.session() as session:
                return await self._select_from(session)
        except SQLAlchemyError as e:
            logger.error(f"Database error listing call forwards: {e}")
            raise DatabaseException(f"Failed to list call forwards: {str(e)}")

    async def list_from(self, extension: Extension) -> List[CallForward]:
        """All call forwards starting at `extension`, ordered by id."""
        try:
            async with self.db.session() as session:
                return await self._select_from(session, extension.extension_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error listing call forwards from {extension}: {e}")
            raise DatabaseException(f"Failed to list call forwards: {str(e)}")

    async def update(self, forward: CallForward) -> None:
        """
        Update source, destination and contexts of a persisted call forward.

        Only the context difference is written: memberships no longer wanted
        are deleted, new ones inserted. The overlap check runs again against
        all other forwards from the (possibly new) source.

        Raises:
            ValidationException: If `forward` has no id
            CallForwardNotFoundException: If the id no longer exists
            OverlapConflictException: If the update would create an overlap
            DatabaseException: On storage failures
        """
        if forward.state is not ForwardState.PERSISTED:
            raise ValidationException("Cannot update a call forward that was never stored")

        fwd_id = forward.fwd_id
        from_id = forward.from_extension.extension_id
        try:
            async with self.db.session() as session, session.begin():
                # Lock the row so concurrent updates of this forward serialize
                exists = await session.execute(
                    select(CallForwardRow.fwd_id)
                    .where(CallForwardRow.fwd_id == fwd_id)
                    .with_for_update()
                )
                if exists.scalar_one_or_none() is None:
                    raise CallForwardNotFoundException(fwd_id)

                await self._check_overlap(session, forward, exclude_id=fwd_id)

                await session.execute(
                    update(CallForwardRow)
                    .where(CallForwardRow.fwd_id == fwd_id)
                    .values(
                        from_extension=from_id,
                        to_extension=forward.to_extension.extension_id,
                        updated_at=datetime.utcnow(),
                    )
                )

                current = await session.execute(
                    select(CallForwardContextRow.context)
                    .where(CallForwardContextRow.fwd_id == fwd_id)
                )
                current_contexts = set(current.scalars().all())
                desired_contexts = {ctx.protocol_name for ctx in forward.contexts}

                to_remove = current_contexts - desired_contexts
                to_add = desired_contexts - current_contexts

                if to_remove:
                    await session.execute(
                        delete(CallForwardContextRow).where(
                            CallForwardContextRow.fwd_id == fwd_id,
                            CallForwardContextRow.context.in_(to_remove),
                        )
                    )

                # Memberships carry the source for the unique constraint
                await session.execute(
                    update(CallForwardContextRow)
                    .where(CallForwardContextRow.fwd_id == fwd_id)
                    .values(from_extension=from_id)
                )

                for name in sorted(to_add):
                    session.add(
                        CallForwardContextRow(fwd_id=fwd_id, from_extension=from_id, context=name)
                    )
                await session.flush()

        except IntegrityError as e:
            raise await self._conflict_after_integrity_error(forward, e, exclude_id=fwd_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error updating call forward {fwd_id}: {e}")
            raise DatabaseException(f"Failed to update call forward: {str(e)}")

        logger.info(
            f"Updated call forward {fwd_id}: {forward.from_extension} -> {forward.to_extension} "
            f"(+{sorted(to_add)} -{sorted(to_remove)})"
        )

    async def delete(self, fwd_id: int) -> None:
        """
        Remove a call forward and its context memberships.

        Raises:
            CallForwardNotFoundException: If no such forward exists
            DatabaseException: On storage failures
        """
        try:
            async with self.db.session() as session, session.begin():
                await session.execute(
                    delete(CallForwardContextRow).where(CallForwardContextRow.fwd_id == fwd_id)
                )
                result = await session.execute(
                    delete(CallForwardRow).where(CallForwardRow.fwd_id == fwd_id)
                )
                if result.rowcount == 0:
                    raise CallForwardNotFoundException(fwd_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting call forward {fwd_id}: {e}")
            raise DatabaseException(f"Failed to delete call forward: {str(e)}")

        logger.info(f"Deleted call forward {fwd_id}")
