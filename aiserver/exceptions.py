"""
HTTP errors raised by the operational API
"""

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """Unknown circuit breaker or resource"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class UnauthorizedError(HTTPException):
    """Missing or wrong X-Admin-Token on an admin endpoint"""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
