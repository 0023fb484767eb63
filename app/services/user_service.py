"""
User Profiles API — UserService: CRUD core for the users resource

The only component that touches persistence.  It turns validated requests
into single SQL statements, interprets store failures through the
translation table in ``app.errors`` and computes pagination metadata.

Writes are never pre-checked: a duplicate email is detected by attempting
the INSERT/UPDATE and reading the unique-index violation, so two concurrent
creates with the same email resolve to exactly one success and one
``ConflictError``.  Every write is one atomic statement, which means a
cancelled request never leaves a half-applied change.  Nothing is retried.
"""

from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any

import structlog
from sqlalchemy import ColumnElement, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.errors import InternalError, NotFoundError, translate_store_error
from app.models.user import User
from app.schemas.user import Pagination, UserCreate, UserListQuery, UserUpdate

logger = structlog.get_logger("profiles.user_service")

# ── Constants ────────────────────────────────────────────────────────────────

SORT_COLUMNS = {
    "fullName": User.full_name,
    "email": User.email,
    "createdAt": User.created_at,
    "updatedAt": User.updated_at,
}

DUPLICATE_EMAIL_MESSAGE = "User with this email already exists"
NOT_FOUND_MESSAGE = "User not found"


def utcnow() -> datetime:
    """Naive UTC now, truncated to the millisecond precision of TIMESTAMP(3)."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def build_pagination(total: int, page: int, limit: int) -> Pagination:
    total_pages = math.ceil(total / limit) if limit else 0
    return Pagination(
        total=total,
        page=page,
        limit=limit,
        total_pages=total_pages,
        has_next=page < total_pages,
        has_previous=page > 1,
    )


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _contains(column, term: str) -> ColumnElement[bool]:
    return column.ilike(f"%{_escape_like(term)}%", escape="\\")


def _to_column_values(fields: dict[str, Any]) -> dict[str, Any]:
    """Convert validated field values to what the columns store."""
    values = dict(fields)
    dob = values.get("date_of_birth")
    if isinstance(dob, date) and not isinstance(dob, datetime):
        values["date_of_birth"] = datetime.combine(dob, time.min)
    return values


@dataclass
class UserPage:
    users: list[User]
    pagination: Pagination


class UserService:
    """CRUD operations over the ``users`` table.

    Each operation opens its own session from the injected factory, so a
    service instance is safe to share across concurrent requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # ══════════════════════════════════════════════════════════════════════
    # create_user
    # ══════════════════════════════════════════════════════════════════════

    async def create_user(self, data: UserCreate) -> User:
        """Insert a new user with a fresh id and ``created_at == updated_at``.

        Raises
        ------
        ConflictError
            The email is already taken.
        InternalError
            Any other persistence failure.
        """
        log = logger.bind(email=data.email)
        log.info("create_user_start")

        now = utcnow()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **_to_column_values(data.model_dump()),
        )

        try:
            async with self._session_factory() as session:
                session.add(user)
                await session.commit()
        except Exception as exc:
            error = translate_store_error(
                exc,
                conflict_message=DUPLICATE_EMAIL_MESSAGE,
                fallback_message="Failed to create user",
            )
            if isinstance(error, InternalError):
                log.exception("create_user_failed")
            else:
                log.warning("create_user_duplicate_email")
            raise error from exc

        log.info("create_user_complete", user_id=user.id)
        return user

    # ══════════════════════════════════════════════════════════════════════
    # get_user_by_id / user_exists
    # ══════════════════════════════════════════════════════════════════════

    async def get_user_by_id(self, user_id: str) -> User:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            user = result.scalar_one_or_none()

        if user is None:
            logger.info("get_user_not_found", user_id=user_id)
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return user

    async def user_exists(self, user_id: str) -> bool:
        """Existence check that reads only the primary key."""
        async with self._session_factory() as session:
            result = await session.execute(select(User.id).where(User.id == user_id))
            return result.scalar_one_or_none() is not None

    # ══════════════════════════════════════════════════════════════════════
    # get_users — filtered, sorted, paginated listing
    # ══════════════════════════════════════════════════════════════════════

    @staticmethod
    def _filters(query: UserListQuery) -> list[ColumnElement[bool]]:
        filters: list[ColumnElement[bool]] = []
        if query.search:
            filters.append(
                or_(
                    _contains(User.full_name, query.search),
                    _contains(User.email, query.search),
                    _contains(User.bio, query.search),
                )
            )
        if query.location:
            filters.append(_contains(User.location, query.location))
        return filters

    async def _fetch_page(self, query: UserListQuery, filters) -> list[User]:
        sort_column = SORT_COLUMNS[query.sort_by]
        if query.sort_order == "asc":
            order = (sort_column.asc(), User.id.asc())
        else:
            order = (sort_column.desc(), User.id.desc())

        stmt = (
            select(User)
            .where(*filters)
            .order_by(*order)
            .offset(query.offset)
            .limit(query.limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _count(self, filters) -> int:
        stmt = select(func.count()).select_from(User).where(*filters)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def get_users(self, query: UserListQuery) -> UserPage:
        """Return one page of users plus pagination metadata.

        The page fetch and the count run as two tasks of one task group on
        separate sessions and share one predicate; if either fails the other
        is cancelled before the error is reported.  They are not a single snapshot: under
        concurrent writes ``pagination.total`` can disagree slightly with the
        returned rows.
        """
        log = logger.bind(
            page=query.page,
            limit=query.limit,
            sort_by=query.sort_by,
            sort_order=query.sort_order,
        )
        log.info("get_users_start", search=query.search, location=query.location)

        filters = self._filters(query)
        try:
            async with asyncio.TaskGroup() as tg:
                page_task = tg.create_task(self._fetch_page(query, filters))
                count_task = tg.create_task(self._count(filters))
        except ExceptionGroup as group:
            log.error(
                "get_users_failed",
                errors=[repr(e) for e in group.exceptions],
            )
            raise InternalError("Failed to retrieve users") from group

        users, total = page_task.result(), count_task.result()

        pagination = build_pagination(total, query.page, query.limit)
        log.info("get_users_complete", returned=len(users), total=total)
        return UserPage(users=users, pagination=pagination)

    # ══════════════════════════════════════════════════════════════════════
    # update_user
    # ══════════════════════════════════════════════════════════════════════

    async def update_user(self, user_id: str, data: UserUpdate) -> User:
        """Apply the supplied fields and refresh ``updated_at``.

        Fields absent from ``data`` keep their stored values.  ``updated_at``
        moves forward even when the supplied values equal the stored ones.

        Raises
        ------
        NotFoundError
            No user has ``user_id``.
        ConflictError
            The new email belongs to another user.
        InternalError
            Any other persistence failure.
        """
        changes = _to_column_values(data.changes())
        log = logger.bind(user_id=user_id)
        log.info("update_user_start", fields=sorted(changes))

        stmt = (
            update(User)
            .where(User.id == user_id)
            .values(**changes, updated_at=utcnow())
            .returning(User)
            .execution_options(synchronize_session=False)
        )

        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                user = result.scalar_one_or_none()
                await session.commit()
        except Exception as exc:
            error = translate_store_error(
                exc,
                conflict_message=DUPLICATE_EMAIL_MESSAGE,
                fallback_message="Failed to update user",
            )
            if isinstance(error, InternalError):
                log.exception("update_user_failed")
            else:
                log.warning("update_user_duplicate_email")
            raise error from exc

        if user is None:
            log.info("update_user_not_found")
            raise NotFoundError(NOT_FOUND_MESSAGE)

        log.info("update_user_complete")
        return user

    # ══════════════════════════════════════════════════════════════════════
    # delete_user
    # ══════════════════════════════════════════════════════════════════════

    async def delete_user(self, user_id: str) -> None:
        """Hard-delete the user row."""
        log = logger.bind(user_id=user_id)
        log.info("delete_user_start")

        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(User)
                    .where(User.id == user_id)
                    .execution_options(synchronize_session=False)
                )
                await session.commit()
        except Exception as exc:
            log.exception("delete_user_failed")
            raise InternalError("Failed to delete user") from exc

        if result.rowcount == 0:
            log.info("delete_user_not_found")
            raise NotFoundError(NOT_FOUND_MESSAGE)

        log.info("delete_user_complete")
