"""Error taxonomy for CronKeeper."""


class CronKeeperError(Exception):
    """Base class for all CronKeeper errors."""


class TaskValidationError(CronKeeperError, ValueError):
    """A task definition was rejected at save time."""


class InvalidExpression(TaskValidationError):
    """Cron expression does not parse."""

    def __init__(self, expression: str, reason: str = ""):
        self.expression = expression
        message = f"Invalid cron expression '{expression}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnknownFrequency(TaskValidationError):
    """Frequency key is not part of the catalog."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unknown frequency '{key}'")


class ScheduleConflict(TaskValidationError):
    """A task must carry exactly one of a cron expression or a frequency."""


class InvalidTimezone(TaskValidationError):
    """Timezone is not a known IANA identifier."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown timezone '{name}'")


class UnknownCommand(TaskValidationError):
    """Command is not registered in the command catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown command '{name}'")


class TaskNotFound(CronKeeperError, LookupError):
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class LockUnavailable(CronKeeperError):
    """Lock is held by another server. Recoverable on the next tick."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Lock '{key}' is held by another server")


class ExecutionTimeout(CronKeeperError):
    def __init__(self, timeout: float, output: str = ""):
        self.timeout = timeout
        self.output = output
        super().__init__(f"Command timeout after {timeout} seconds")


class ExecutionFailed(CronKeeperError):
    def __init__(self, message: str, exit_code: int = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class RetentionIOError(CronKeeperError):
    """Result cleanup could not reach storage. Logged, never blocks scheduling."""
