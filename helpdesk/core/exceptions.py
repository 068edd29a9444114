"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries (the request layer maps them to
404/403/409/422 responses).
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ForbiddenException(ApplicationException):
    """Actor lacks permission for the requested action."""


class InvalidStateException(DomainException):
    """Requested transition is meaningless for the ticket's current state."""

    def __init__(
        self,
        message: str,
        ticket_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.ticket_id = ticket_id
        super().__init__(message, details or ({"ticket_id": ticket_id} if ticket_id else None))


class InvalidAssigneeException(DomainException):
    """Assignee does not hold an agent/admin role."""

    def __init__(self, assignee_id: str, role: str):
        self.assignee_id = assignee_id
        self.role = role
        super().__init__(
            "Assignee must be an AGENT or ADMIN",
            {"assignee_id": assignee_id, "role": role}
        )


class InvalidMergeException(DomainException):
    """Merge preconditions violated."""


class ConflictException(RepositoryException):
    """Ticket was modified concurrently; caller should reload and retry."""

    def __init__(self, ticket_id: str, details: Optional[dict] = None):
        self.ticket_id = ticket_id
        super().__init__(
            f"Ticket {ticket_id} was modified by another operation",
            details or {"ticket_id": ticket_id}
        )


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""
