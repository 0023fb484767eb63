"""Unit tests for UserService: CRUD core, listing and error translation."""
import asyncio
import math
import uuid
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    translate_store_error,
)
from app.schemas.user import UserCreate, UserListQuery, UserUpdate
from app.services.user_service import UserService, build_pagination


async def _create_all(service, payloads):
    users = []
    for payload in payloads:
        users.append(await service.create_user(UserCreate.model_validate(payload)))
    return users


class TestCreateUser:

    @pytest.mark.asyncio
    async def test_assigns_id_and_equal_timestamps(self, user_service, ada_payload):
        user = await user_service.create_user(UserCreate.model_validate(ada_payload))
        assert user.id
        uuid.UUID(user.id)
        assert user.created_at == user.updated_at
        assert user.full_name == "Ada Lovelace"
        assert user.email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_ids_are_fresh(self, user_service):
        a = await user_service.create_user(UserCreate(full_name="A", email="a@example.com"))
        b = await user_service.create_user(UserCreate(full_name="B", email="b@example.com"))
        assert a.id != b.id

    @pytest.mark.asyncio
    async def test_optional_fields_persisted(self, user_service, full_payload):
        user = await user_service.create_user(UserCreate.model_validate(full_payload))
        stored = await user_service.get_user_by_id(user.id)
        assert stored.phone_number == "+14155552671"
        assert stored.avatar_url == "https://example.com/avatars/grace.png"
        assert stored.date_of_birth.year == 1906
        assert stored.location == "New York"

    @pytest.mark.asyncio
    async def test_duplicate_email_conflicts(self, user_service, ada_payload):
        await user_service.create_user(UserCreate.model_validate(ada_payload))
        with pytest.raises(ConflictError) as exc_info:
            await user_service.create_user(
                UserCreate(full_name="Someone Else", email="ada@example.com")
            )
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_creates_one_wins(self, user_service):
        data = UserCreate(full_name="Twin", email="twin@example.com")
        results = await asyncio.gather(
            user_service.create_user(data),
            user_service.create_user(data),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
        assert len(conflicts) == 1


class TestGetAndExists:

    @pytest.mark.asyncio
    async def test_get_missing_raises_not_found(self, user_service):
        with pytest.raises(NotFoundError):
            await user_service.get_user_by_id(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_user_exists(self, user_service, ada_payload):
        user = await user_service.create_user(UserCreate.model_validate(ada_payload))
        assert await user_service.user_exists(user.id) is True
        assert await user_service.user_exists(str(uuid.uuid4())) is False


class TestUpdateUser:

    @pytest.mark.asyncio
    async def test_only_supplied_fields_change(self, user_service, full_payload):
        user = await user_service.create_user(UserCreate.model_validate(full_payload))
        await asyncio.sleep(0.01)

        updated = await user_service.update_user(user.id, UserUpdate.model_validate({"bio": "x"}))

        assert updated.bio == "x"
        assert updated.updated_at > user.updated_at
        for attr in (
            "id", "full_name", "email", "phone_number", "avatar_url",
            "date_of_birth", "location", "created_at",
        ):
            assert getattr(updated, attr) == getattr(user, attr), attr

    @pytest.mark.asyncio
    async def test_explicit_null_clears_optional_field(self, user_service, full_payload):
        user = await user_service.create_user(UserCreate.model_validate(full_payload))
        updated = await user_service.update_user(
            user.id, UserUpdate.model_validate({"location": None})
        )
        assert updated.location is None
        assert updated.bio == full_payload["bio"]

    @pytest.mark.asyncio
    async def test_same_values_still_refresh_updated_at(self, user_service, ada_payload):
        user = await user_service.create_user(UserCreate.model_validate(ada_payload))
        await asyncio.sleep(0.01)
        updated = await user_service.update_user(
            user.id, UserUpdate.model_validate({"fullName": "Ada Lovelace"})
        )
        assert updated.full_name == user.full_name
        assert updated.updated_at > user.updated_at

    @pytest.mark.asyncio
    async def test_missing_user_raises_not_found(self, user_service):
        with pytest.raises(NotFoundError):
            await user_service.update_user(
                str(uuid.uuid4()), UserUpdate.model_validate({"bio": "x"})
            )

    @pytest.mark.asyncio
    async def test_email_collision_conflicts(self, user_service):
        await user_service.create_user(UserCreate(full_name="A", email="a@example.com"))
        b = await user_service.create_user(UserCreate(full_name="B", email="b@example.com"))
        with pytest.raises(ConflictError):
            await user_service.update_user(b.id, UserUpdate.model_validate({"email": "a@example.com"}))

        unchanged = await user_service.get_user_by_id(b.id)
        assert unchanged.email == "b@example.com"


class TestDeleteUser:

    @pytest.mark.asyncio
    async def test_delete_then_get_is_not_found(self, user_service, ada_payload):
        user = await user_service.create_user(UserCreate.model_validate(ada_payload))
        await user_service.delete_user(user.id)
        with pytest.raises(NotFoundError):
            await user_service.get_user_by_id(user.id)
        assert await user_service.user_exists(user.id) is False

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, user_service):
        with pytest.raises(NotFoundError):
            await user_service.delete_user(str(uuid.uuid4()))


class TestGetUsers:

    @pytest.mark.asyncio
    async def test_empty_table_is_not_an_error(self, user_service):
        page = await user_service.get_users(UserListQuery())
        assert page.users == []
        assert page.pagination.total == 0
        assert page.pagination.total_pages == 0
        assert page.pagination.has_next is False
        assert page.pagination.has_previous is False

    @pytest.mark.asyncio
    async def test_search_matches_name_email_or_bio_case_insensitively(self, user_service, people):
        await _create_all(user_service, people)
        page = await user_service.get_users(UserListQuery(search="alice", sort_by="fullName", sort_order="asc"))
        assert [u.full_name for u in page.users] == ["Alice Smith", "Bob Jones", "Carol White"]
        assert page.pagination.total == 3

    @pytest.mark.asyncio
    async def test_location_filter_combines_with_search(self, user_service, people):
        await _create_all(user_service, people)

        by_location = await user_service.get_users(UserListQuery(location="LONDON", sort_by="fullName", sort_order="asc"))
        assert [u.full_name for u in by_location.users] == ["Alice Smith", "Carol White", "Dave Brown"]

        both = await user_service.get_users(
            UserListQuery(search="alice", location="london", sort_by="fullName", sort_order="asc")
        )
        assert [u.full_name for u in both.users] == ["Alice Smith", "Carol White"]

    @pytest.mark.asyncio
    async def test_like_wildcards_match_literally(self, user_service, people):
        await _create_all(user_service, people)
        page = await user_service.get_users(UserListQuery(search="%"))
        assert page.pagination.total == 0

    @pytest.mark.asyncio
    async def test_sorting(self, user_service, people):
        await _create_all(user_service, people)

        asc = await user_service.get_users(UserListQuery(sort_by="fullName", sort_order="asc"))
        names = [u.full_name for u in asc.users]
        assert names == sorted(names)

        desc = await user_service.get_users(UserListQuery(sort_by="email", sort_order="desc"))
        emails = [u.email for u in desc.users]
        assert emails == sorted(emails, reverse=True)

    @pytest.mark.asyncio
    async def test_default_order_is_newest_first(self, user_service, people):
        created = await _create_all(user_service, people[:3])
        page = await user_service.get_users(UserListQuery())
        # Creation order is ascending in time; ids break millisecond ties.
        expected = sorted(created, key=lambda u: (u.created_at, u.id), reverse=True)
        assert [u.id for u in page.users] == [u.id for u in expected]

    @pytest.mark.asyncio
    async def test_pages_cover_every_user_once(self, user_service):
        payloads = [
            {"fullName": f"User {i:02d}", "email": f"user{i:02d}@example.com"}
            for i in range(7)
        ]
        await _create_all(user_service, payloads)

        seen = []
        for page_number in range(1, 4):
            page = await user_service.get_users(
                UserListQuery(page=page_number, limit=3, sort_by="fullName", sort_order="asc")
            )
            p = page.pagination
            assert len(page.users) <= 3
            assert p.total == 7
            assert p.total_pages == math.ceil(7 / 3)
            assert p.has_next == (page_number < p.total_pages)
            assert p.has_previous == (page_number > 1)
            seen.extend(u.email for u in page.users)

        assert seen == sorted(f"user{i:02d}@example.com" for i in range(7))

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, user_service, people):
        await _create_all(user_service, people)
        page = await user_service.get_users(UserListQuery(page=5, limit=10))
        assert page.users == []
        assert page.pagination.total == 5
        assert page.pagination.has_previous is True
        assert page.pagination.has_next is False


class TestPaginationMath:

    @pytest.mark.parametrize(
        "total,page,limit,total_pages,has_next,has_previous",
        [
            (0, 1, 10, 0, False, False),
            (10, 1, 10, 1, False, False),
            (11, 1, 10, 2, True, False),
            (11, 2, 10, 2, False, True),
            (250, 3, 100, 3, False, True),
            (5, 4, 1, 5, True, True),
        ],
    )
    def test_build_pagination(self, total, page, limit, total_pages, has_next, has_previous):
        p = build_pagination(total, page, limit)
        assert p.total_pages == total_pages
        assert p.has_next is has_next
        assert p.has_previous is has_previous
        assert (p.total, p.page, p.limit) == (total, page, limit)


class _BrokenSessionFactory:
    """Session factory whose sessions fail to connect."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def __aexit__(self, *exc_info):
        return False


class TestStoreFailures:

    @pytest.fixture
    def broken_service(self):
        return UserService(_BrokenSessionFactory())

    @pytest.mark.asyncio
    async def test_create_failure_is_internal(self, broken_service, ada_payload):
        with pytest.raises(InternalError, match="Failed to create user"):
            await broken_service.create_user(UserCreate.model_validate(ada_payload))

    @pytest.mark.asyncio
    async def test_list_failure_is_internal(self, broken_service):
        with pytest.raises(InternalError, match="Failed to retrieve users"):
            await broken_service.get_users(UserListQuery())

    @pytest.mark.asyncio
    async def test_update_failure_is_internal(self, broken_service):
        with pytest.raises(InternalError, match="Failed to update user"):
            await broken_service.update_user(str(uuid.uuid4()), UserUpdate.model_validate({"bio": "x"}))

    @pytest.mark.asyncio
    async def test_delete_failure_is_internal(self, broken_service):
        with pytest.raises(InternalError, match="Failed to delete user"):
            await broken_service.delete_user(str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_failed_count_cancels_page_fetch(self, user_service):
        fetch_cancelled = asyncio.Event()

        async def slow_fetch(query, filters):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                fetch_cancelled.set()
                raise
            return []

        async def failing_count(filters):
            raise OperationalError("SELECT count(*)", {}, Exception("connection reset"))

        with patch.object(user_service, "_fetch_page", slow_fetch), \
                patch.object(user_service, "_count", failing_count):
            with pytest.raises(InternalError, match="Failed to retrieve users"):
                await user_service.get_users(UserListQuery())
        assert fetch_cancelled.is_set()


class _DriverError(Exception):
    def __init__(self, message, **codes):
        super().__init__(message)
        for name, value in codes.items():
            setattr(self, name, value)


class TestStoreErrorTranslation:

    def _translate(self, exc):
        return translate_store_error(exc, conflict_message="dup", fallback_message="boom")

    def test_postgres_unique_violation(self):
        exc = IntegrityError("INSERT", {}, _DriverError("duplicate", sqlstate="23505"))
        error = self._translate(exc)
        assert isinstance(error, ConflictError)
        assert error.message == "dup"

    def test_sqlite_unique_violation(self):
        exc = IntegrityError("INSERT", {}, _DriverError("constraint", sqlite_errorcode=2067))
        assert isinstance(self._translate(exc), ConflictError)

    def test_unique_message_without_code(self):
        exc = IntegrityError("INSERT", {}, _DriverError("UNIQUE constraint failed: users.email"))
        assert isinstance(self._translate(exc), ConflictError)

    def test_other_integrity_error_is_internal(self):
        exc = IntegrityError("INSERT", {}, _DriverError("not null", sqlstate="23502"))
        error = self._translate(exc)
        assert isinstance(error, InternalError)
        assert error.message == "boom"

    def test_non_database_error_is_internal(self):
        assert isinstance(self._translate(RuntimeError("x")), InternalError)
