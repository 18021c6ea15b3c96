"""
Shared, cross-cutting code for the API.

`core/` holds the building blocks every feature uses: the DB pool, the error
taxonomy and the HTTP clients for external systems (search index, Stripe).
Feature rules live in the feature packages (e.g. `drafts/`, `sync/`).
"""
