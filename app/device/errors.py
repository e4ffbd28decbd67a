"""
Device-reported errors.

Device implementations raise :class:`DeviceError` whenever the sensor rejects
an operation or reports a fault.  The integer ``code`` is passed back to API
callers verbatim as the response ``status``.
"""

# Library-side failures (negative) and device-side rejections (positive).
XMLRPC_FAILURE: int = -100000
XMLRPC_TIMEOUT: int = -100003
NO_ACTIVE_SESSION: int = -100010
SESSION_ALREADY_ACTIVE: int = 101001
NOT_IN_EDIT_MODE: int = 101002
XMLRPC_OBJ_NOT_FOUND: int = 101003
XMLRPC_INVALID_PARAM: int = 101004
INVALID_APPLICATION: int = 101014


class DeviceError(Exception):
    """The device rejected an operation or reported a fault."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"DeviceError(code={self.code}, message={self.message!r})"
