class ChatError(Exception):
    """Base class for failures seen by the chat client"""


class TransientChatError(ChatError):
    """Network failure, timeout or 5xx; safe to retry"""


class ChatRequestError(ChatError):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail
