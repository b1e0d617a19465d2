"""Repository and domain errors shared by the persistence layer."""

from __future__ import annotations

import json
import re
from typing import Any, NoReturn, Optional

from fastapi import status

if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_CONTENT
else:  # pragma: no cover - fallback for older Starlette builds
	_HTTP_422 = status.HTTP_422_UNPROCESSABLE_ENTITY

_UNIQUE_VIOLATION = "23505"
_FOREIGN_KEY_VIOLATION = "23503"
_NOT_NULL_VIOLATION = "23502"

_KEY_DETAIL_RE = re.compile(r"Key \(([^)]+)\)=\(([^)]+)\)")
_FK_DETAIL_RE = re.compile(r'Key \(([^)]+)\)=\(([^)]+)\) is not present in table "([^"]+)"')


class RepositoryError(Exception):
	"""Base class for persistence failures."""

	status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
	detail: str = "repository_error"

	def __init__(
		self,
		message: Optional[str] = None,
		*,
		cause: Optional[BaseException] = None,
		context: Optional[dict[str, Any]] = None,
	) -> None:
		super().__init__(message or self.detail)
		self.cause = cause
		self.context = context or {}


class NotFoundError(RepositoryError):
	"""Raised when the addressed row does not exist."""

	status_code = status.HTTP_404_NOT_FOUND
	detail = "not_found"

	def __init__(self, entity: str, identifier: Any, *, cause: Optional[BaseException] = None) -> None:
		ident = identifier if isinstance(identifier, str) else json.dumps(identifier, default=str)
		super().__init__(
			f"{entity} not found: {ident}",
			cause=cause,
			context={"entity": entity, "identifier": identifier},
		)


class DuplicateError(RepositoryError):
	"""Raised on unique constraint violations."""

	status_code = status.HTTP_409_CONFLICT
	detail = "duplicate"

	def __init__(self, entity: str, field: str, value: Any, *, cause: Optional[BaseException] = None) -> None:
		super().__init__(
			f"{entity} with {field} '{value}' already exists",
			cause=cause,
			context={"entity": entity, "field": field, "value": value},
		)


class ForeignKeyError(RepositoryError):
	"""Raised when a row references a missing parent."""

	status_code = status.HTTP_409_CONFLICT
	detail = "foreign_key"

	def __init__(self, entity: str, referenced_entity: str, *, cause: Optional[BaseException] = None) -> None:
		super().__init__(
			f"{entity} references non-existent {referenced_entity}",
			cause=cause,
			context={"entity": entity, "referenced_entity": referenced_entity},
		)


class ValidationError(RepositoryError):
	"""Raised for invalid input detected by the service or repository."""

	status_code = _HTTP_422
	detail = "validation_error"

	def __init__(self, entity: str, errors: dict[str, str], *, cause: Optional[BaseException] = None) -> None:
		super().__init__(
			f"Validation failed for {entity}: {json.dumps(errors)}",
			cause=cause,
			context={"entity": entity, "errors": errors},
		)
		self.errors = errors


class TransactionError(RepositoryError):
	"""Raised when a multi-statement unit of work could not commit."""

	detail = "transaction_failed"

	def __init__(self, operation: str, *, cause: Optional[BaseException] = None) -> None:
		super().__init__(
			f"Transaction failed during {operation}",
			cause=cause,
			context={"operation": operation},
		)


class DatabaseError(RepositoryError):
	"""Catch-all for driver errors that have no narrower mapping."""

	detail = "database_error"

	def __init__(self, operation: str, *, cause: Optional[BaseException] = None) -> None:
		super().__init__(
			f"Database operation failed: {operation}",
			cause=cause,
			context={"operation": operation},
		)


def handle_database_error(exc: BaseException, context: str) -> NoReturn:
	"""Translate a driver exception into the repository error hierarchy."""
	if isinstance(exc, RepositoryError):
		raise exc
	sqlstate = getattr(exc, "sqlstate", None)
	detail = getattr(exc, "detail", None) or ""
	if sqlstate == _UNIQUE_VIOLATION:
		match = _KEY_DETAIL_RE.search(detail)
		if match:
			raise DuplicateError(context, match.group(1), match.group(2), cause=exc) from exc
		raise DuplicateError(context, "unknown", "unknown", cause=exc) from exc
	if sqlstate == _FOREIGN_KEY_VIOLATION:
		match = _FK_DETAIL_RE.search(detail)
		referenced = match.group(3) if match else "unknown entity"
		raise ForeignKeyError(context, referenced, cause=exc) from exc
	if sqlstate == _NOT_NULL_VIOLATION:
		raise ValidationError(context, {"error": "Required field is missing"}, cause=exc) from exc
	if sqlstate is not None and str(sqlstate).startswith("40"):
		raise TransactionError(context, cause=exc) from exc
	raise DatabaseError(context, cause=exc) from exc
