import pytest

from accessgate.errors import AlreadyProcessed, NotFound, UserBanned
from accessgate.models import RequestStatus, UserStatus

from conftest import run_concurrently


def test_create_request_marks_user_pending(request_store, make_user, db):
    make_user(1)
    request_id, already_pending = request_store.create_request(1)

    assert already_pending is False
    assert request_store.get(request_id).status == RequestStatus.PENDING
    assert db.get_user(1).status == UserStatus.PENDING


def test_create_request_is_idempotent_while_pending(request_store, make_user, db):
    make_user(1)
    first, _ = request_store.create_request(1)
    second, already_pending = request_store.create_request(1)

    assert second == first
    assert already_pending is True
    assert db.count_requests(RequestStatus.PENDING) == 1


def test_simultaneous_requests_leave_one_pending(request_store, make_user, db):
    make_user(1)

    results, errors = run_concurrently(lambda: request_store.create_request(1), workers=6)

    assert errors == []
    assert len({request_id for request_id, _ in results}) == 1
    assert [already for _, already in results].count(False) == 1
    assert db.count_requests(RequestStatus.PENDING) == 1


def test_new_request_after_finalization(request_store, make_user):
    make_user(1)
    first, _ = request_store.create_request(1)
    request_store.transition(first, RequestStatus.DENIED)

    second, already_pending = request_store.create_request(1)
    assert second != first
    assert already_pending is False


def test_create_request_rejects_banned_or_unknown(request_store, make_user, db):
    with pytest.raises(NotFound):
        request_store.create_request(99)

    make_user(1)
    db.set_user_status(1, UserStatus.BANNED)
    with pytest.raises(UserBanned):
        request_store.create_request(1)


def test_transition_succeeds_only_once(request_store, make_user):
    make_user(1)
    request_id, _ = request_store.create_request(1)

    request = request_store.transition(request_id, RequestStatus.APPROVED)
    assert request.status == RequestStatus.APPROVED

    with pytest.raises(AlreadyProcessed):
        request_store.transition(request_id, RequestStatus.DENIED)
    assert request_store.get(request_id).status == RequestStatus.APPROVED


def test_transition_unknown_request(request_store):
    with pytest.raises(NotFound):
        request_store.transition("missing", RequestStatus.APPROVED)


def test_transition_to_pending_is_rejected(request_store, make_user):
    make_user(1)
    request_id, _ = request_store.create_request(1)
    with pytest.raises(ValueError):
        request_store.transition(request_id, RequestStatus.PENDING)


def test_reopen_supersedes_and_creates_fresh_request(request_store, make_user, db, clock):
    make_user(1)
    old_id, _ = request_store.create_request(1)
    clock.advance(7200)

    new_id = request_store.reopen(old_id)

    assert new_id != old_id
    assert request_store.get(old_id).status == RequestStatus.SUPERSEDED
    new_request = request_store.get(new_id)
    assert new_request.status == RequestStatus.PENDING
    assert new_request.user_id == 1
    assert new_request.created_at == clock()
    assert db.get_user(1).status == UserStatus.PENDING

    with pytest.raises(AlreadyProcessed):
        request_store.reopen(old_id)


def test_get_view_joins_user(request_store, make_user):
    make_user(1, username="alice", display_name="Alice")
    request_id, _ = request_store.create_request(1)

    view = request_store.get_view(request_id)
    assert view.request.request_id == request_id
    assert view.user.username == "alice"
    assert view.user.label == "Alice"
    assert request_store.get_view("missing") is None


def test_list_by_status_ordering(request_store, make_user, clock):
    ids = []
    for user_id in (1, 2, 3):
        make_user(user_id)
        ids.append(request_store.create_request(user_id)[0])
        clock.advance(10)

    oldest_first = [v.request.request_id for v in request_store.list_by_status(RequestStatus.PENDING)]
    newest_first = [
        v.request.request_id
        for v in request_store.list_by_status(RequestStatus.PENDING, newest_first=True)
    ]
    assert oldest_first == ids
    assert newest_first == list(reversed(ids))


def test_partition_stuck(request_store, make_user, clock):
    make_user(1)
    make_user(2)
    old_id, _ = request_store.create_request(1)
    clock.advance(2 * 3600)
    fresh_id, _ = request_store.create_request(2)
    clock.advance(60)

    stuck, fresh = request_store.partition_stuck(3600)
    assert [v.request.request_id for v in stuck] == [old_id]
    assert [v.request.request_id for v in fresh] == [fresh_id]
