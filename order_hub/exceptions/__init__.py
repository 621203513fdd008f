"""Custom exceptions for the Order Hub application."""


class OrderHubError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(OrderHubError):
    """User-correctable input error. Names the offending field."""
    def __init__(self, message, field=None, payload=None):
        payload = dict(payload or ())
        if field:
            payload['field'] = field
        super().__init__(message, 400, payload)
        self.field = field


class EmptyCartError(ValidationError):
    """Raised when submitting a cart with no lines."""
    def __init__(self, message="Your cart is empty"):
        super().__init__(message, field='cart')


class StateConflictError(OrderHubError):
    """Raised when an operation is invalid for the current order state."""
    def __init__(self, message, current_state=None, payload=None):
        payload = dict(payload or ())
        if current_state:
            payload['current_state'] = current_state
        super().__init__(message, 409, payload)
        self.current_state = current_state


class OrderFinalizedError(StateConflictError):
    """Raised when editing an order whose batch is completed or cancelled."""
    def __init__(self, order_ref, current_state):
        message = f"Order {order_ref} has been finalized ({current_state}) and can no longer be modified"
        super().__init__(message, current_state=current_state)


class NotFoundError(OrderHubError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(OrderHubError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access", status_code=403):
        super().__init__(message, status_code)


class PersistenceError(OrderHubError):
    """Transient store failure. The only error eligible for automatic retry."""
    def __init__(self, message="The order store is temporarily unavailable", payload=None):
        super().__init__(message, 503, payload)
