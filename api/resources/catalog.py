"""
Resource catalog: static metadata for every table the Store may touch.

Pure data. The Store refuses any filter whose field set is not one of a
descriptor's `key_sets`, and any list/delete-by key that is not one of its
`foreign_keys`. Column names in SQL only ever come from here.
"""

from __future__ import annotations

import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

from . import entities

ID_BYTE_LENGTH = 16


class Kind(str, Enum):
    USER = "user"
    ACCOUNT = "account"
    SESSION = "session"
    ORGANIZATION = "organization"
    PUBLISHER = "publisher"
    AUTHOR = "author"
    AUTHOR_INVITE = "author_invite"
    ARTICLE = "article"
    ARTICLE_DRAFT = "article_draft"
    SOURCE = "source"
    DRAFT_SOURCE = "draft_source"
    BUNDLE = "bundle"
    PRICE = "price"
    SUBSCRIPTION = "subscription"
    PAYMENT_METHOD = "payment_method"
    DEFAULT_PAYMENT_METHOD = "default_payment_method"
    BUNDLE_PUBLISHER = "bundle_publisher"
    COMMENT = "comment"
    LIKE = "like"
    BOOKMARK = "bookmark"
    ARTICLE_REPORT = "article_report"
    SEARCH_OUTBOX = "search_outbox"


@dataclass(frozen=True)
class ResourceDescriptor:
    kind: Kind
    table: str
    key_sets: tuple[frozenset[str], ...]
    foreign_keys: Mapping[str, Kind]
    fields: tuple[str, ...]
    factory: entities.Factory
    id_prefix: str | None = None
    # (column, "ASC" | "DESC") used by list queries.
    order_by: tuple[str, str] | None = None
    # Columns filled by the database (defaults, triggers); never written.
    generated: frozenset[str] = field(default_factory=frozenset)
    # Non-unique indexed columns usable as list filters besides foreign keys.
    listable: frozenset[str] = field(default_factory=frozenset)

    def is_key_set(self, names: Iterable[str]) -> bool:
        return frozenset(names) in self.key_sets

    def new_id(self) -> str:
        if self.id_prefix is None:
            raise RuntimeError(f"{self.table} has no id column.")
        return f"{self.id_prefix}_{secrets.token_hex(ID_BYTE_LENGTH)}"


def _keys(*sets: tuple[str, ...]) -> tuple[frozenset[str], ...]:
    return tuple(frozenset(s) for s in sets)


_TIMESTAMPS = frozenset({"created_at", "updated_at"})

USER = ResourceDescriptor(
    kind=Kind.USER,
    table="users",
    key_sets=_keys(("id",), ("email",), ("stripe_customer_id",)),
    foreign_keys={},
    fields=("id", "type", "full_name", "email", "stripe_customer_id", "stripe_event_at", "created_at"),
    factory=entities.factory_for(entities.User),
    id_prefix="usr",
    generated=_TIMESTAMPS,
)

ACCOUNT = ResourceDescriptor(
    kind=Kind.ACCOUNT,
    table="accounts",
    key_sets=_keys(("id",), ("user", "type"), ("type", "external_id")),
    foreign_keys={"user": Kind.USER},
    fields=("id", "user", "type", "external_id"),
    factory=entities.factory_for(entities.Account),
    id_prefix="acc",
)

SESSION = ResourceDescriptor(
    kind=Kind.SESSION,
    table="sessions",
    key_sets=_keys(("id",)),
    foreign_keys={"user": Kind.USER},
    fields=("id", "user", "expires_at", "created_at"),
    factory=entities.factory_for(entities.Session),
    id_prefix="ses",
    generated=_TIMESTAMPS,
)

ORGANIZATION = ResourceDescriptor(
    kind=Kind.ORGANIZATION,
    table="organizations",
    key_sets=_keys(("id",), ("name",), ("stripe_account_id",)),
    foreign_keys={"user": Kind.USER},
    fields=("id", "name", "user", "stripe_account_id", "stripe_account_enabled", "stripe_event_at"),
    factory=entities.factory_for(entities.Organization),
    id_prefix="org",
)

PUBLISHER = ResourceDescriptor(
    kind=Kind.PUBLISHER,
    table="publishers",
    key_sets=_keys(("id",), ("name",), ("url",), ("dns_txt_value",)),
    foreign_keys={"organization": Kind.ORGANIZATION},
    fields=("id", "name", "url", "organization", "verified", "dns_txt_value"),
    factory=entities.factory_for(entities.Publisher),
    id_prefix="pub",
)

AUTHOR = ResourceDescriptor(
    kind=Kind.AUTHOR,
    table="authors",
    key_sets=_keys(("id",), ("user", "publisher")),
    foreign_keys={"user": Kind.USER, "publisher": Kind.PUBLISHER},
    fields=("id", "user", "publisher", "created_at"),
    factory=entities.factory_for(entities.Author),
    id_prefix="aut",
    order_by=("created_at", "ASC"),
    generated=_TIMESTAMPS,
)

AUTHOR_INVITE = ResourceDescriptor(
    kind=Kind.AUTHOR_INVITE,
    table="author_invites",
    key_sets=_keys(("id",), ("publisher", "user_email")),
    foreign_keys={"publisher": Kind.PUBLISHER},
    fields=("id", "publisher", "user_email", "created_at", "expires_at"),
    factory=entities.factory_for(entities.AuthorInvite),
    id_prefix="inv",
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
    listable=frozenset({"user_email"}),
)

ARTICLE = ResourceDescriptor(
    kind=Kind.ARTICLE,
    table="articles",
    key_sets=_keys(("id",)),
    foreign_keys={"author": Kind.AUTHOR},
    fields=("id", "title", "content", "author", "reading_time", "is_published", "created_at", "updated_at"),
    factory=entities.factory_for(entities.Article),
    id_prefix="art",
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
)

ARTICLE_DRAFT = ResourceDescriptor(
    kind=Kind.ARTICLE_DRAFT,
    table="article_drafts",
    key_sets=_keys(("id",)),
    foreign_keys={"author": Kind.AUTHOR, "article": Kind.ARTICLE},
    fields=("id", "title", "content", "author", "article", "status", "created_at", "updated_at"),
    factory=entities.factory_for(entities.ArticleDraft),
    id_prefix="dft",
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
    listable=frozenset({"status"}),
)

SOURCE = ResourceDescriptor(
    kind=Kind.SOURCE,
    table="sources",
    key_sets=_keys(("id",)),
    foreign_keys={"article": Kind.ARTICLE},
    fields=("id", "url", "article"),
    factory=entities.factory_for(entities.Source),
    id_prefix="src",
)

DRAFT_SOURCE = ResourceDescriptor(
    kind=Kind.DRAFT_SOURCE,
    table="draft_sources",
    key_sets=_keys(("id",)),
    foreign_keys={"draft": Kind.ARTICLE_DRAFT},
    fields=("id", "url", "draft"),
    factory=entities.factory_for(entities.DraftSource),
    id_prefix="dsr",
)

BUNDLE = ResourceDescriptor(
    kind=Kind.BUNDLE,
    table="bundles",
    key_sets=_keys(("id",), ("name", "organization"), ("stripe_product_id",)),
    foreign_keys={"organization": Kind.ORGANIZATION},
    fields=("id", "name", "organization", "active", "stripe_product_id"),
    factory=entities.factory_for(entities.Bundle),
    id_prefix="bdl",
)

PRICE = ResourceDescriptor(
    kind=Kind.PRICE,
    table="prices",
    key_sets=_keys(("id",), ("stripe_price_id",)),
    foreign_keys={"bundle": Kind.BUNDLE},
    fields=("id", "amount", "currency", "bundle", "active", "stripe_price_id"),
    factory=entities.factory_for(entities.Price),
    id_prefix="prc",
)

SUBSCRIPTION = ResourceDescriptor(
    kind=Kind.SUBSCRIPTION,
    table="subscriptions",
    key_sets=_keys(("id",), ("stripe_subscription_id",)),
    foreign_keys={"user": Kind.USER, "price": Kind.PRICE},
    fields=(
        "id",
        "status",
        "user",
        "price",
        "current_period_end",
        "cancel_at_period_end",
        "deleted",
        "stripe_subscription_id",
        "stripe_event_at",
    ),
    factory=entities.factory_for(entities.Subscription),
    id_prefix="sub",
)

PAYMENT_METHOD = ResourceDescriptor(
    kind=Kind.PAYMENT_METHOD,
    table="payment_methods",
    key_sets=_keys(("id",), ("stripe_id",)),
    foreign_keys={"user": Kind.USER},
    fields=("id", "type", "data", "user", "stripe_id", "detached", "stripe_event_at"),
    factory=entities.factory_for(entities.PaymentMethod),
    id_prefix="pmt",
)

DEFAULT_PAYMENT_METHOD = ResourceDescriptor(
    kind=Kind.DEFAULT_PAYMENT_METHOD,
    table="default_payment_methods",
    key_sets=_keys(("user",)),
    foreign_keys={"user": Kind.USER, "payment_method": Kind.PAYMENT_METHOD},
    fields=("user", "payment_method"),
    factory=entities.factory_for(entities.DefaultPaymentMethod),
)

BUNDLE_PUBLISHER = ResourceDescriptor(
    kind=Kind.BUNDLE_PUBLISHER,
    table="bundles_publishers",
    key_sets=_keys(("bundle", "publisher")),
    foreign_keys={"bundle": Kind.BUNDLE, "publisher": Kind.PUBLISHER},
    fields=("bundle", "publisher"),
    factory=entities.factory_for(entities.BundlePublisher),
)

COMMENT = ResourceDescriptor(
    kind=Kind.COMMENT,
    table="comments",
    key_sets=_keys(("id",)),
    foreign_keys={"user": Kind.USER, "article": Kind.ARTICLE, "parent": Kind.COMMENT},
    fields=("id", "content", "user", "article", "parent", "created_at", "updated_at"),
    factory=entities.factory_for(entities.Comment),
    id_prefix="cmt",
    order_by=("created_at", "ASC"),
    generated=_TIMESTAMPS,
)

LIKE = ResourceDescriptor(
    kind=Kind.LIKE,
    table="likes",
    key_sets=_keys(("user", "article")),
    foreign_keys={"user": Kind.USER, "article": Kind.ARTICLE},
    fields=("user", "article", "created_at"),
    factory=entities.factory_for(entities.Like),
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
)

BOOKMARK = ResourceDescriptor(
    kind=Kind.BOOKMARK,
    table="bookmarks",
    key_sets=_keys(("user", "article")),
    foreign_keys={"user": Kind.USER, "article": Kind.ARTICLE},
    fields=("user", "article", "created_at"),
    factory=entities.factory_for(entities.Bookmark),
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
)

ARTICLE_REPORT = ResourceDescriptor(
    kind=Kind.ARTICLE_REPORT,
    table="article_reports",
    key_sets=_keys(("id",)),
    foreign_keys={"user": Kind.USER, "article": Kind.ARTICLE},
    fields=("id", "user", "article", "reason", "created_at"),
    factory=entities.factory_for(entities.ArticleReport),
    id_prefix="rpt",
    order_by=("created_at", "DESC"),
    generated=_TIMESTAMPS,
)

SEARCH_OUTBOX = ResourceDescriptor(
    kind=Kind.SEARCH_OUTBOX,
    table="search_outbox",
    key_sets=_keys(("id",)),
    foreign_keys={},
    fields=("id", "index", "document_id", "action", "document", "attempts", "last_error", "created_at"),
    factory=entities.factory_for(entities.SearchOutboxEntry),
    id_prefix="obx",
    order_by=("created_at", "ASC"),
    generated=_TIMESTAMPS,
    listable=frozenset({"attempts"}),
)

DESCRIPTORS: dict[Kind, ResourceDescriptor] = {
    d.kind: d
    for d in (
        USER,
        ACCOUNT,
        SESSION,
        ORGANIZATION,
        PUBLISHER,
        AUTHOR,
        AUTHOR_INVITE,
        ARTICLE,
        ARTICLE_DRAFT,
        SOURCE,
        DRAFT_SOURCE,
        BUNDLE,
        PRICE,
        SUBSCRIPTION,
        PAYMENT_METHOD,
        DEFAULT_PAYMENT_METHOD,
        BUNDLE_PUBLISHER,
        COMMENT,
        LIKE,
        BOOKMARK,
        ARTICLE_REPORT,
        SEARCH_OUTBOX,
    )
}


def descriptor(kind: Kind) -> ResourceDescriptor:
    return DESCRIPTORS[kind]
