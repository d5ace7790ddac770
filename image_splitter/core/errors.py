class SplitterError(Exception):
    def __init__(self, code: str, message: str, status_code: int = 400, details: dict | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}


class MalformedResponse(SplitterError):
    def __init__(self, message: str = 'Detection response is missing a list-valued "regions" field.', details: dict | None = None):
        super().__init__('MALFORMED_RESPONSE', message, status_code=502, details=details)


class SourceImageUnreadable(SplitterError):
    def __init__(self, message: str = 'Source image has no readable pixel data.', details: dict | None = None):
        super().__init__('SOURCE_IMAGE_UNREADABLE', message, status_code=422, details=details)


class RunAbandoned(SplitterError):
    def __init__(self, session_id: str):
        super().__init__(
            'RUN_ABANDONED',
            f'Split run for session {session_id} was superseded or reset before it finished.',
            status_code=409,
            details={'session_id': session_id},
        )
