"""Read-only projections shown on the operator panel."""

from dataclasses import dataclass
from typing import List

from accessgate.database import Database
from accessgate.models import RequestStatus, User, UserStatus

APPROVED_CLIENTS_SCAN_LIMIT = 200


@dataclass
class Stats:
    total_users: int
    approved: int
    pending_requests: int
    denied: int
    banned: int
    expiring_soon: int


@dataclass
class ClientsPage:
    users: List[User]
    page: int
    total_pages: int
    active_count: int
    expired_count: int


def collect_stats(db: Database, now: int, expiring_soon_days: int = 7) -> Stats:
    return Stats(
        total_users=db.count_users(),
        approved=db.count_users(UserStatus.APPROVED),
        pending_requests=db.count_requests(RequestStatus.PENDING),
        denied=db.count_users(UserStatus.DENIED),
        banned=db.count_users(UserStatus.BANNED),
        expiring_soon=db.count_expiring(now, now + expiring_soon_days * 86400),
    )


def is_active_client(user: User, now: int) -> bool:
    return user.expires_at is None or user.expires_at > now


def clients_page(db: Database, page: int, page_size: int, now: int) -> ClientsPage:
    """One page of approved users, most recently updated first. Out-of-range pages are clamped."""
    users = db.list_users(UserStatus.APPROVED, limit=APPROVED_CLIENTS_SCAN_LIMIT)
    active_count = sum(1 for u in users if is_active_client(u, now))
    total_pages = max(1, -(-len(users) // page_size))
    page = min(total_pages, max(1, page))
    start = (page - 1) * page_size
    return ClientsPage(
        users=users[start : start + page_size],
        page=page,
        total_pages=total_pages,
        active_count=active_count,
        expired_count=len(users) - active_count,
    )


def recent_users(db: Database, limit: int = 80) -> List[User]:
    return db.list_users(limit=limit)
