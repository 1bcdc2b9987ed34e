class ReplicaQueryError(Exception):
    """Raised when the control plane cannot read or update a function's replicas."""

    def __init__(self, function_name: str, message: str):
        super().__init__(message)
        self.function_name = function_name


class FunctionNotFoundError(ReplicaQueryError):
    """The control plane does not know the function."""


class ScaleCommandError(ReplicaQueryError):
    """The zero-to-N scale request was rejected or could not be sent."""


class ScaleCancelledError(Exception):
    """Polling was aborted through the caller's cancel event."""

    def __init__(self, function_name: str):
        super().__init__(f"scaling of function [{function_name}] was cancelled")
        self.function_name = function_name
