"""
Viewer-scoped projection of entities into JSON-ready dicts.

`viewer` is the authenticated `User` entity (or None for anonymous calls).
Owners and admins see gated fields; everyone else gets the public subset.
A `Stub` always serializes to {"id": ...}. Lists are projected element by
element, with the same viewer check applied to each.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from core import errors

from . import entities
from .entities import Resolved, Stub, reference_id, resolved

Viewer = entities.User | None


def _time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _is_admin(viewer: Viewer) -> bool:
    return viewer is not None and viewer.is_admin


def _is_user(user_id: str | None, viewer: Viewer) -> bool:
    return viewer is not None and user_id is not None and (viewer.id == user_id or viewer.is_admin)


def serialize(value: Any, viewer: Viewer = None) -> Any:
    if value is None:
        return None
    if isinstance(value, Stub):
        return {"id": value.id}
    if isinstance(value, Resolved):
        return serialize(value.entity, viewer)

    handler = _SERIALIZERS.get(type(value))
    if handler is None:
        raise errors.ImplementationError(f"No serializer for {type(value).__name__}.")
    return handler(value, viewer)


def serialize_many(values: Iterable[Any], viewer: Viewer = None) -> list[Any]:
    return [serialize(value, viewer) for value in values]


def _user(user: entities.User, viewer: Viewer) -> dict:
    data: dict[str, Any] = {
        "id": user.id,
        "full_name": user.full_name,
    }
    if _is_user(user.id, viewer):
        data["email"] = user.email
        data["type"] = user.type
    return data


def _account(account: entities.Account, viewer: Viewer) -> dict:
    return {
        "id": account.id,
        "type": account.type,
        "user": serialize(account.user, viewer),
    }


def _session(session: entities.Session, viewer: Viewer) -> dict:
    return {
        "id": session.id,
        "user": serialize(session.user, viewer),
        "expires_at": _time(session.expires_at),
    }


def _organization(organization: entities.Organization, viewer: Viewer) -> dict:
    data: dict[str, Any] = {"id": organization.id}
    if _is_user(reference_id(organization.user), viewer):
        data["name"] = organization.name
        data["owner"] = serialize(organization.user, viewer)
        data["stripe_account_enabled"] = organization.stripe_account_enabled
    return data


def _publisher(publisher: entities.Publisher, viewer: Viewer) -> dict:
    return {
        "id": publisher.id,
        "name": publisher.name,
        "url": publisher.url,
        "organization": serialize(publisher.organization, viewer),
        "verified": publisher.verified,
    }


def _author(author: entities.Author, viewer: Viewer) -> dict:
    return {
        "id": author.id,
        "user": serialize(author.user, viewer),
        "publisher": serialize(author.publisher, viewer),
    }


def _invite_owner_id(invite: entities.AuthorInvite) -> str | None:
    # Known only when the caller resolved publisher.organization.
    publisher = resolved(invite.publisher)
    if publisher is None:
        return None
    organization = resolved(publisher.organization)
    if organization is None:
        return None
    return reference_id(organization.user)


def _author_invite(invite: entities.AuthorInvite, viewer: Viewer) -> dict:
    data: dict[str, Any] = {
        "id": invite.id,
        "publisher": serialize(invite.publisher, viewer),
        "created_at": _time(invite.created_at),
        "expires_at": _time(invite.expires_at),
    }
    if viewer is not None and (
        viewer.email == invite.user_email
        or _is_admin(viewer)
        or _invite_owner_id(invite) == viewer.id
    ):
        data["user_email"] = invite.user_email
    return data


def _article(article: entities.Article, viewer: Viewer) -> dict:
    return {
        "id": article.id,
        "title": article.title,
        "content": article.content,
        "author": serialize(article.author, viewer),
        "reading_time": article.reading_time,
        "created_at": _time(article.created_at),
        "updated_at": _time(article.updated_at),
    }


def _article_draft(draft: entities.ArticleDraft, viewer: Viewer) -> dict:
    return {
        "id": draft.id,
        "title": draft.title,
        "content": draft.content,
        "author": serialize(draft.author, viewer),
        "article": serialize(draft.article, viewer),
        "status": draft.status,
        "created_at": _time(draft.created_at),
        "updated_at": _time(draft.updated_at),
    }


def _source(source: entities.Source, viewer: Viewer) -> dict:
    return {"id": source.id, "url": source.url}


def _draft_source(source: entities.DraftSource, viewer: Viewer) -> dict:
    return {"id": source.id, "url": source.url}


def _bundle(bundle: entities.Bundle, viewer: Viewer) -> dict:
    return {
        "id": bundle.id,
        "name": bundle.name,
        "organization": serialize(bundle.organization, viewer),
        "active": bundle.active,
    }


def _price(price: entities.Price, viewer: Viewer) -> dict:
    return {
        "id": price.id,
        "amount": price.amount,
        "currency": price.currency,
        "bundle": serialize(price.bundle, viewer),
        "active": price.active,
    }


def _subscription(subscription: entities.Subscription, viewer: Viewer) -> dict:
    return {
        "id": subscription.id,
        "status": subscription.status,
        "user": serialize(subscription.user, viewer),
        "price": serialize(subscription.price, viewer),
        "current_period_end": _time(subscription.current_period_end),
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "deleted": subscription.deleted,
    }


def _payment_method(method: entities.PaymentMethod, viewer: Viewer) -> dict:
    data: dict[str, Any] = {"id": method.id, "type": method.type}
    if _is_user(reference_id(method.user), viewer):
        data["data"] = method.data
        data["user"] = serialize(method.user, viewer)
    return data


def _comment(comment: entities.Comment, viewer: Viewer) -> dict:
    return {
        "id": comment.id,
        "content": comment.content,
        "user": serialize(comment.user, viewer),
        "article": serialize(comment.article, viewer),
        "parent": serialize(comment.parent, viewer),
        "created_at": _time(comment.created_at),
        "updated_at": _time(comment.updated_at),
    }


def _like(like: entities.Like, viewer: Viewer) -> dict:
    return {"article": serialize(like.article, viewer), "created_at": _time(like.created_at)}


def _bookmark(bookmark: entities.Bookmark, viewer: Viewer) -> dict:
    return {"article": serialize(bookmark.article, viewer), "created_at": _time(bookmark.created_at)}


def _article_report(report: entities.ArticleReport, viewer: Viewer) -> dict:
    return {
        "id": report.id,
        "user": serialize(report.user, viewer),
        "article": serialize(report.article, viewer),
        "reason": report.reason,
        "created_at": _time(report.created_at),
    }


_SERIALIZERS: dict[type, Callable[[Any, Viewer], dict]] = {
    entities.User: _user,
    entities.Account: _account,
    entities.Session: _session,
    entities.Organization: _organization,
    entities.Publisher: _publisher,
    entities.Author: _author,
    entities.AuthorInvite: _author_invite,
    entities.Article: _article,
    entities.ArticleDraft: _article_draft,
    entities.Source: _source,
    entities.DraftSource: _draft_source,
    entities.Bundle: _bundle,
    entities.Price: _price,
    entities.Subscription: _subscription,
    entities.PaymentMethod: _payment_method,
    entities.Comment: _comment,
    entities.Like: _like,
    entities.Bookmark: _bookmark,
    entities.ArticleReport: _article_report,
}
