"""
auth/changeset.py -- Staged, validated changes to a User record.

A Changeset wraps the current record (data), the pending field changes and
any validation errors. Signup helpers and API routes build one from raw
input, stage or validate fields on it, and hand it to the store only when
it is valid. Nothing here touches the database.

Methods mutate the changeset and return it so calls can be chained:

    cs = Changeset(User()).cast(params, ["username", "email"]).validate_required(["username"])

Virtual fields (password) can be staged and validated but are dropped by
apply() -- they never reach a User record.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from auth.models import USER_FIELDS, User

VIRTUAL_FIELDS: frozenset[str] = frozenset({"password"})


@dataclass
class Changeset:
    data: User
    changes: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, list[str]] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors

    def cast(self, params: dict[str, Any], permitted: Iterable[str]) -> Changeset:
        """Stage permitted keys from raw params.

        Missing keys, None and empty strings are not staged, so casting an
        empty password leaves any existing hash untouched.
        """
        for name in permitted:
            if name not in USER_FIELDS and name not in VIRTUAL_FIELDS:
                raise ValueError(f"Unknown field: {name!r}")
            value = params.get(name)
            if value is None or value == "":
                continue
            if value != getattr(self.data, name, None):
                self.changes[name] = value
        return self

    def put_change(self, name: str, value: Any) -> Changeset:
        if name not in USER_FIELDS and name not in VIRTUAL_FIELDS:
            raise ValueError(f"Unknown field: {name!r}")
        self.changes[name] = value
        return self

    def get_change(self, name: str, default: Any = None) -> Any:
        return self.changes.get(name, default)

    def add_error(self, name: str, message: str) -> Changeset:
        self.errors.setdefault(name, []).append(message)
        return self

    def validate_required(self, names: Iterable[str]) -> Changeset:
        for name in names:
            if self.changes.get(name) is None and getattr(self.data, name, None) is None:
                self.add_error(name, "can't be blank")
        return self

    def validate_length(self, name: str, min: int | None = None, max: int | None = None) -> Changeset:
        """Check the length of a staged value. Unstaged fields are skipped."""
        value = self.changes.get(name)
        if value is None:
            return self
        length = len(value)
        if min is not None and length < min:
            self.add_error(name, f"should be at least {min} character(s)")
        if max is not None and length > max:
            self.add_error(name, f"should be at most {max} character(s)")
        return self

    def apply(self) -> User:
        """Return a new User with the staged changes merged in."""
        stored = {k: v for k, v in self.changes.items() if k not in VIRTUAL_FIELDS}
        return replace(self.data, **stored)
