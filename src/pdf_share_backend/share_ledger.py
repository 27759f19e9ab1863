"""
Share links: issuance, redemption and deactivation.

A link grants read access to one document while it is active, not expired and
below its download limit. Each link moves one way through

    active -> exhausted | expired | deactivated

Redemption checks the link and increments its download counter inside a
single ``BEGIN IMMEDIATE`` transaction, so with a limit of N at most N
concurrent redemptions can ever succeed.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from .database import Database
from .errors import (
    InvalidRequest,
    LinkDeactivated,
    LinkExpired,
    LinkLimitReached,
    NotFound,
    PermissionDenied,
)
from .models import LinkState, ShareLinkResponse
from .registry import DocumentRecord, record_from_row
from .utils import deserialize_datetime, new_share_token, serialize_datetime, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ShareLink:
    token: str
    document_id: str
    owner_id: Optional[str]
    created_at: datetime
    expires_at: Optional[datetime]
    max_downloads: Optional[int]
    download_count: int
    is_active: bool
    deactivated_at: Optional[datetime] = None

    def state(self, now: datetime) -> LinkState:
        if not self.is_active:
            return LinkState.DEACTIVATED
        if self.expires_at is not None and now > self.expires_at:
            return LinkState.EXPIRED
        if self.max_downloads is not None and self.download_count >= self.max_downloads:
            return LinkState.EXHAUSTED
        return LinkState.ACTIVE

    def to_response(self, now: datetime) -> ShareLinkResponse:
        return ShareLinkResponse(
            token=self.token,
            document_id=self.document_id,
            owner_id=self.owner_id,
            created_at=self.created_at,
            expires_at=self.expires_at,
            max_downloads=self.max_downloads,
            download_count=self.download_count,
            is_active=self.is_active,
            state=self.state(now),
            share_path=f"/shares/{self.token}/download",
        )


def _link_from_row(row: sqlite3.Row) -> ShareLink:
    return ShareLink(
        token=row["token"],
        document_id=row["document_id"],
        owner_id=row["owner_id"],
        created_at=deserialize_datetime(row["created_at"]),
        expires_at=deserialize_datetime(row["expires_at"]),
        max_downloads=row["max_downloads"],
        download_count=row["download_count"],
        is_active=bool(row["is_active"]),
        deactivated_at=deserialize_datetime(row["deactivated_at"]),
    )


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class ShareLedger:
    """
    Single owner of share link state.

    Callers never touch download counters directly; ``redeem`` is the only
    path that increments them.
    """

    def __init__(
        self,
        database: Database,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = new_share_token,
    ) -> None:
        self.database = database
        self._clock = clock
        self._token_factory = token_factory

    def issue(
        self,
        document_id: str,
        owner_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        max_downloads: Optional[int] = None,
    ) -> ShareLink:
        """
        Create an active link to a document.

        Raises:
            InvalidRequest: If ``max_downloads`` is given and below 1
            NotFound: If the document does not exist, is deleted or belongs
                to a different owner
        """
        if max_downloads is not None and max_downloads < 1:
            raise InvalidRequest("max_downloads must be at least 1")

        link = ShareLink(
            token=self._token_factory(),
            document_id=document_id,
            owner_id=owner_id,
            created_at=self._clock(),
            expires_at=_as_utc(expires_at),
            max_downloads=max_downloads,
            download_count=0,
            is_active=True,
        )

        with self.database.transaction(immediate=True) as conn:
            document = conn.execute(
                "SELECT owner_id, is_deleted FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if document is None or document["is_deleted"]:
                raise NotFound(f"document {document_id} not found")
            if document["owner_id"] is not None and document["owner_id"] != owner_id:
                raise NotFound(f"document {document_id} not found")

            conn.execute(
                """
                INSERT INTO share_links (token, document_id, owner_id, created_at, expires_at, max_downloads)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    link.token,
                    link.document_id,
                    link.owner_id,
                    serialize_datetime(link.created_at),
                    serialize_datetime(link.expires_at),
                    link.max_downloads,
                ),
            )

        logger.info(f"Issued share link {link.token[:8]} for document {document_id}")
        return link

    def _load(self, conn: sqlite3.Connection, token: str) -> Tuple[ShareLink, sqlite3.Row]:
        row = conn.execute("SELECT * FROM share_links WHERE token = ?", (token,)).fetchone()
        if row is None:
            raise NotFound("share link not found")
        document = conn.execute("SELECT * FROM documents WHERE id = ?", (row["document_id"],)).fetchone()
        if document is None or document["is_deleted"]:
            raise NotFound("share link not found")
        return _link_from_row(row), document

    @staticmethod
    def _check_redeemable(link: ShareLink, now: datetime) -> None:
        """Raise the error of the first failing check: active, expiry, limit."""
        state = link.state(now)
        if state is LinkState.DEACTIVATED:
            raise LinkDeactivated("share link has been deactivated")
        if state is LinkState.EXPIRED:
            raise LinkExpired("share link has expired")
        if state is LinkState.EXHAUSTED:
            raise LinkLimitReached("share link download limit reached")

    def get(self, token: str) -> ShareLink:
        with self.database.transaction() as conn:
            link, _ = self._load(conn, token)
        return link

    def inspect(self, token: str) -> Tuple[ShareLink, DocumentRecord]:
        """Check a link the same way ``redeem`` does, without consuming a download."""
        with self.database.transaction() as conn:
            link, document = self._load(conn, token)
        self._check_redeemable(link, self._clock())
        return link, record_from_row(document)

    def redeem(self, token: str) -> Tuple[ShareLink, DocumentRecord]:
        """
        Consume one download from a link.

        Checks existence, active flag, expiry and limit in that order and
        increments the counter in the same transaction.

        Raises:
            NotFound: If the link or its document does not exist
            LinkDeactivated: If the link was deactivated
            LinkExpired: If the link's expiry has passed
            LinkLimitReached: If every allowed download was used
        """
        try:
            with self.database.transaction(immediate=True) as conn:
                link, document = self._load(conn, token)
                # Evaluated after the write lock is held.
                self._check_redeemable(link, self._clock())
                cursor = conn.execute(
                    """
                    UPDATE share_links SET download_count = download_count + 1
                    WHERE token = ? AND is_active = 1
                      AND (max_downloads IS NULL OR download_count < max_downloads)
                    """,
                    (token,),
                )
                if cursor.rowcount != 1:
                    raise LinkLimitReached("share link download limit reached")
        except (NotFound, LinkDeactivated, LinkExpired, LinkLimitReached) as exc:
            logger.warning(f"Rejected redemption of share link {token[:8]}: {exc.kind}")
            raise

        link.download_count += 1
        logger.info(
            f"Redeemed share link {token[:8]} for document {link.document_id} "
            f"({link.download_count}/{link.max_downloads or 'unlimited'})"
        )
        return link, record_from_row(document)

    def deactivate(self, token: str, requester: Optional[str], allow_anonymous: bool = False) -> ShareLink:
        """
        Permanently deactivate a link. Deactivating an inactive link is a no-op.

        Args:
            token: The link to deactivate
            requester: Opaque id of the calling user, None when anonymous
            allow_anonymous: Whether links without an owner may be deactivated
                by any caller

        Raises:
            NotFound: If the link does not exist
            PermissionDenied: If the requester may not deactivate the link
        """
        now = self._clock()
        with self.database.transaction(immediate=True) as conn:
            row = conn.execute("SELECT * FROM share_links WHERE token = ?", (token,)).fetchone()
            if row is None:
                raise NotFound("share link not found")
            link = _link_from_row(row)

            if link.owner_id is None:
                if not allow_anonymous:
                    raise PermissionDenied("share link has no owner and cannot be deactivated")
            elif link.owner_id != requester:
                raise PermissionDenied("only the link owner can deactivate it")

            if not link.is_active:
                return link

            conn.execute(
                "UPDATE share_links SET is_active = 0, deactivated_at = ? WHERE token = ?",
                (serialize_datetime(now), token),
            )

        link.is_active = False
        link.deactivated_at = now
        logger.info(f"Deactivated share link {token[:8]}")
        return link

    def list_for_owner(self, owner_id: str) -> List[ShareLink]:
        with self.database.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM share_links WHERE owner_id = ? ORDER BY created_at DESC", (owner_id,)
            ).fetchall()
        return [_link_from_row(row) for row in rows]
