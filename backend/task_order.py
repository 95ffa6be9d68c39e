# task_order.py — Ordered Task Store
#
# Tasks carry a dense 1-based `order` within their column: for a column of N
# tasks the orders are exactly 1..N. Every mutation that can disturb this
# (append, reposition, removal) runs in one transaction while holding an
# in-process lock for each column it touches, re-reads the column rows
# (SELECT ... FOR UPDATE where the backend supports it) and renumbers the
# resulting sequence. Locks for a cross-column move are taken in id order.
import logging
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import NotFoundError, InternalError
from locks import KeyedLocks
from models import PlanetColumn, PlanetTask

logger = logging.getLogger("planets.task_order")

# A task whose column changes between lookup and locking is retried this often
MAX_LOCK_ATTEMPTS = 3

column_locks = KeyedLocks()


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


def _renumber(tasks: List[PlanetTask]) -> int:
    """Assign 1..N in list order; returns how many rows changed"""
    changed = 0
    for position, task in enumerate(tasks, start=1):
        if task.order != position:
            task.order = position
            changed += 1
    return changed


async def _lock_column_rows(db: AsyncSession, column_id: str) -> List[PlanetTask]:
    stmt = (
        select(PlanetTask)
        .where(PlanetTask.column_id == column_id)
        .order_by(PlanetTask.order, PlanetTask.created_at, PlanetTask.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def _lock_task(db: AsyncSession, task_id: str) -> Optional[PlanetTask]:
    stmt = (
        select(PlanetTask)
        .where(PlanetTask.id == task_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def column_tasks(db: AsyncSession, column_id: str) -> List[PlanetTask]:
    """Tasks of a column ordered by rank"""
    stmt = (
        select(PlanetTask)
        .where(PlanetTask.column_id == column_id)
        .order_by(PlanetTask.order)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def append_task(db: AsyncSession, column_id: str, content: str) -> PlanetTask:
    """Create a task at the bottom of the column (order = max + 1)"""
    async with column_locks.hold(column_id):
        try:
            column = await db.get(PlanetColumn, column_id, populate_existing=True)
            if not column:
                raise NotFoundError("Column not found")

            max_stmt = select(func.max(PlanetTask.order)).where(PlanetTask.column_id == column_id)
            max_order = (await db.execute(max_stmt)).scalar() or 0

            task = PlanetTask(column_id=column_id, content=content, order=max_order + 1)
            db.add(task)
            await db.commit()
            await db.refresh(task)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Append to column {column_id} failed: {e}")
            raise InternalError() from e

    logger.info(f"Appended task {task.id} to column {column_id} at order {task.order}")
    return task


async def reposition_task(
    db: AsyncSession,
    task_id: str,
    new_order: Optional[int] = None,
    new_column_id: Optional[str] = None,
    fields: Optional[Dict[str, Any]] = None,
) -> PlanetTask:
    """Move a task within its column or into another one.

    `new_order` is clamped to 1..N for a same-column move and to 1..N'+1 when
    entering a column that already holds N' tasks. A cross-column move with no
    `new_order` lands at the bottom. `fields` holds plain attribute updates
    (content, description, priority, assigned_user_id) committed in the same
    transaction.
    """
    for _ in range(MAX_LOCK_ATTEMPTS):
        try:
            task = await db.get(PlanetTask, task_id, populate_existing=True)
            if not task:
                raise NotFoundError("Task not found")
            source_id = task.column_id
            target_id = new_column_id or source_id

            async with column_locks.hold(source_id, target_id):
                task = await _lock_task(db, task_id)
                if not task:
                    raise NotFoundError("Task not found")
                if task.column_id != source_id:
                    # moved by someone else while we waited; lock the right column
                    await db.rollback()
                    continue
                if target_id != source_id and not await db.get(PlanetColumn, target_id, populate_existing=True):
                    raise NotFoundError("Target column not found")

                if target_id == source_id:
                    changed = 0
                    if new_order is not None:
                        siblings = await _lock_column_rows(db, source_id)
                        others = [t for t in siblings if t.id != task.id]
                        slot = _clamp(new_order, 1, len(siblings))
                        others.insert(slot - 1, task)
                        changed = _renumber(others)
                else:
                    remaining = [t for t in await _lock_column_rows(db, source_id) if t.id != task.id]
                    destination = await _lock_column_rows(db, target_id)
                    wanted = new_order if new_order is not None else len(destination) + 1
                    slot = _clamp(wanted, 1, len(destination) + 1)
                    destination.insert(slot - 1, task)
                    task.column_id = target_id
                    changed = _renumber(remaining) + _renumber(destination)

                # after the row reads, which refresh every loaded task
                for name, value in (fields or {}).items():
                    setattr(task, name, value)

                await db.commit()
                await db.refresh(task)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Reposition of task {task_id} failed: {e}")
            raise InternalError() from e

        logger.info(
            f"Task {task_id} now at order {task.order} in column {task.column_id} "
            f"({changed} rows renumbered)"
        )
        return task

    logger.error(f"Task {task_id} kept changing column; gave up after {MAX_LOCK_ATTEMPTS} attempts")
    raise InternalError()


async def remove_task(db: AsyncSession, task_id: str) -> None:
    """Delete a task and close the gap it leaves in its column"""
    for _ in range(MAX_LOCK_ATTEMPTS):
        try:
            task = await db.get(PlanetTask, task_id, populate_existing=True)
            if not task:
                raise NotFoundError("Task not found")
            column_id = task.column_id

            async with column_locks.hold(column_id):
                task = await _lock_task(db, task_id)
                if not task:
                    raise NotFoundError("Task not found")
                if task.column_id != column_id:
                    await db.rollback()
                    continue

                remaining = [t for t in await _lock_column_rows(db, column_id) if t.id != task.id]
                await db.delete(task)
                changed = _renumber(remaining)
                await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Removal of task {task_id} failed: {e}")
            raise InternalError() from e

        logger.info(f"Removed task {task_id} from column {column_id} ({changed} rows renumbered)")
        return

    logger.error(f"Task {task_id} kept changing column; gave up after {MAX_LOCK_ATTEMPTS} attempts")
    raise InternalError()


async def remove_column(db: AsyncSession, column_id: str) -> None:
    """Delete a column together with its tasks"""
    async with column_locks.hold(column_id):
        try:
            column = await db.get(PlanetColumn, column_id, populate_existing=True)
            if not column:
                raise NotFoundError("Column not found")
            result = await db.execute(delete(PlanetTask).where(PlanetTask.column_id == column_id))
            await db.delete(column)
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Removal of column {column_id} failed: {e}")
            raise InternalError() from e

    logger.info(f"Removed column {column_id} and {result.rowcount} tasks")
