class ChatError(Exception):
    """Base for errors raised by the data layer; carries the HTTP status it maps to."""
    status_code = 400
    headers = None

    def __init__(self, detail: str = ''):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class NotFound(ChatError):
    status_code = 404


class PolicyViolation(ChatError):
    status_code = 403

    def __init__(self, table: str, action: str, detail: str = ''):
        super().__init__(detail or f'{action} on {table} denied by row-level policy')
        self.table = table
        self.action = action


class Conflict(ChatError):
    status_code = 409


class ValidationFailed(ChatError):
    status_code = 422


class AuthError(ChatError):
    status_code = 401
    headers = {'WWW-Authenticate': 'Bearer'}
