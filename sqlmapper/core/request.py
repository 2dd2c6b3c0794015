"""Request objects passed through the mapper pipeline."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from ..errors import RequestStateError

if TYPE_CHECKING:
    from ..config.models import StatementConfig


class Intent(str, Enum):
    """Which kind of data source a request needs."""

    UNSPECIFIED = "unspecified"
    READ = "read"
    WRITE = "write"


@dataclass(eq=False)
class RequestContext:
    """A single statement execution request.

    Either ``scope`` and ``sql_id`` name a configured statement, or
    ``real_sql`` carries ad-hoc SQL. The mapper fills ``real_sql``,
    ``parameters`` and ``statement`` while setting the request up.
    """

    scope: Optional[str] = None
    sql_id: Optional[str] = None
    params: Optional[Mapping[str, Any]] = None
    real_sql: Optional[str] = None
    intent: Intent = Intent.UNSPECIFIED
    read_db: Optional[str] = None
    use_cache: bool = True
    parameters: Any = None
    statement: Optional["StatementConfig"] = field(default=None, repr=False)
    _resolved: bool = field(default=False, init=False, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "intent" and getattr(self, "_resolved", False) and value != self.intent:
            raise RequestStateError(
                f"Intent of {self.full_sql_id or 'request'} is already resolved to "
                f"{self.intent.value}"
            )
        super().__setattr__(name, value)

    @property
    def full_sql_id(self) -> Optional[str]:
        if self.scope and self.sql_id:
            return f"{self.scope}.{self.sql_id}"
        return None

    @property
    def resolved(self) -> bool:
        return self._resolved

    def default_intent(self, intent: Intent) -> None:
        """Apply ``intent`` only if the caller left it unspecified."""
        if self.intent is Intent.UNSPECIFIED:
            self.intent = intent

    def mark_resolved(self) -> None:
        self._resolved = True

    def fingerprint(self) -> str:
        """Deterministic key for (statement id, bound parameters)."""
        identity = self.full_sql_id or self.real_sql or ""
        bound = self.parameters if self.parameters is not None else self.params
        payload = json.dumps(
            {"id": identity, "params": _canonical(bound)},
            sort_keys=True,
            default=repr,
        )
        return hashlib.sha256(payload.encode()).hexdigest()


def _canonical(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value
