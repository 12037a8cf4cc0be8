class SerenelyError(Exception):
    pass


class LLMError(SerenelyError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(SerenelyError):
    """Raised when a write to the portrait store fails. Callers may retry."""


class SessionBusyError(SerenelyError):
    pass


class SessionStateError(SerenelyError):
    pass


class TaskNotFoundError(SerenelyError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id
