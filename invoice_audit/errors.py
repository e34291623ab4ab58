"""
Exception types raised by the audit pipeline.
"""


class AuditError(Exception):
    """Base exception for invoice audit operations"""
    pass


class InputError(AuditError):
    """Raised when invoice or purchase order data is malformed"""
    pass


class CollaboratorError(AuditError):
    """Raised when the invoice history store fails or times out"""
    pass


class LogicError(AuditError):
    """Raised when a stage or the scorer breaks an internal invariant"""
    pass
