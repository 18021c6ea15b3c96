"""
Typed entities and the reference union.

Each resource kind has exactly one frozen dataclass here. Field names match
the table's column names; foreign-key fields hold a `Reference` (or `None`
when the column is NULL) instead of the raw id.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Stub:
    """
    An unresolved relation. Only the identity is known.
    """

    id: str


@dataclass(frozen=True)
class Resolved(Generic[T]):
    entity: T

    @property
    def id(self) -> str:
        return self.entity.id  # type: ignore[attr-defined]


Reference = Union[Stub, Resolved]


def reference_id(ref: Reference | None) -> str | None:
    if ref is None:
        return None
    if isinstance(ref, (Stub, Resolved)):
        return ref.id
    raise TypeError(f"Not a reference: {ref!r}")


def resolved(ref: Reference | None) -> Any | None:
    """
    Return the entity behind a reference, or None for stubs / NULL relations.
    """
    if isinstance(ref, Resolved):
        return ref.entity
    return None


@dataclass(frozen=True)
class User:
    id: str
    type: str
    full_name: str | None
    email: str
    stripe_customer_id: str | None
    stripe_event_at: datetime | None
    created_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.type == "admin"


@dataclass(frozen=True)
class Account:
    id: str
    user: Reference
    type: str
    external_id: str


@dataclass(frozen=True)
class Session:
    id: str
    user: Reference
    expires_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    user: Reference
    stripe_account_id: str | None
    stripe_account_enabled: bool
    stripe_event_at: datetime | None


@dataclass(frozen=True)
class Publisher:
    id: str
    name: str
    url: str
    organization: Reference
    verified: bool
    dns_txt_value: str


@dataclass(frozen=True)
class Author:
    id: str
    user: Reference
    publisher: Reference
    created_at: datetime


@dataclass(frozen=True)
class AuthorInvite:
    id: str
    publisher: Reference
    user_email: str
    created_at: datetime
    expires_at: datetime

    def has_expired(self, now: datetime) -> bool:
        return self.expires_at < now


@dataclass(frozen=True)
class Article:
    id: str
    title: str
    content: Any
    author: Reference
    reading_time: int
    is_published: bool
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ArticleDraft:
    id: str
    title: str
    content: Any
    author: Reference
    article: Reference | None
    status: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Source:
    id: str
    url: str
    article: Reference


@dataclass(frozen=True)
class DraftSource:
    id: str
    url: str
    draft: Reference


@dataclass(frozen=True)
class Bundle:
    id: str
    name: str
    organization: Reference
    active: bool
    stripe_product_id: str | None


@dataclass(frozen=True)
class Price:
    id: str
    amount: int
    currency: str
    bundle: Reference
    active: bool
    stripe_price_id: str | None


@dataclass(frozen=True)
class Subscription:
    id: str
    status: str
    user: Reference
    price: Reference
    current_period_end: datetime
    cancel_at_period_end: bool
    deleted: bool
    stripe_subscription_id: str
    stripe_event_at: datetime | None


@dataclass(frozen=True)
class PaymentMethod:
    id: str
    type: str
    data: Any
    user: Reference
    stripe_id: str
    detached: bool
    stripe_event_at: datetime | None


@dataclass(frozen=True)
class DefaultPaymentMethod:
    user: Reference
    payment_method: Reference


@dataclass(frozen=True)
class BundlePublisher:
    bundle: Reference
    publisher: Reference


@dataclass(frozen=True)
class Comment:
    id: str
    content: str
    user: Reference
    article: Reference
    parent: Reference | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Like:
    user: Reference
    article: Reference
    created_at: datetime


@dataclass(frozen=True)
class Bookmark:
    user: Reference
    article: Reference
    created_at: datetime


@dataclass(frozen=True)
class ArticleReport:
    id: str
    user: Reference
    article: Reference
    reason: str
    created_at: datetime


@dataclass(frozen=True)
class SearchOutboxEntry:
    id: str
    index: str
    document_id: str
    action: str
    document: Any
    attempts: int
    last_error: str | None
    created_at: datetime


Factory = Callable[[Mapping[str, Any], Mapping[str, Any]], Any]


def factory_for(cls: type) -> Factory:
    """
    Build `cls` from a record, substituting resolved/stub references for the
    foreign-key columns.
    """
    names = tuple(f.name for f in fields(cls))

    def build(record: Mapping[str, Any], refs: Mapping[str, Any]) -> Any:
        return cls(**{name: refs[name] if name in refs else record.get(name) for name in names})

    build.__name__ = f"build_{cls.__name__}"
    return build
