"""
Request-scoped context variables.

Lets log records carry the admission request UID without threading it through
every call in the mutation path.
"""

from __future__ import annotations

from contextvars import ContextVar
from typing import Optional


request_uid_var: ContextVar[Optional[str]] = ContextVar("request_uid", default=None)
