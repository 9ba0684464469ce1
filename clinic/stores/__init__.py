"""
Persistence stores used by the scheduling and billing services.

A store is the only thing the services talk to.  It provides:

* ``atomic()``: the unit of work.  One commit/rollback boundary per core
  operation; persistence failures inside it surface as
  :class:`clinic.errors.InternalError`.
* ``lock_provider(provider_id)``: provider-scoped write lock held until the
  unit of work ends.
* ``on_commit(fn)``: run ``fn`` after the unit of work commits.
* directory lookups, appointment and ledger access, ``record_audit``.

:class:`OrmStore` is backed by the Django ORM; :class:`MemoryStore` keeps
everything in dictionaries and is what the service unit tests run against.
"""
from .memory import MemoryStore
from .orm import OrmStore


def default_store() -> OrmStore:
    return OrmStore()


__all__ = ['OrmStore', 'MemoryStore', 'default_store']
