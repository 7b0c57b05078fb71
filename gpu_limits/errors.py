class ProbeError(Exception):
    """Base for every failure raised by an accelerator operation.

    `operation` names what was being attempted ("cudaMalloc", "kernel launch", ...)
    and `message` carries the raw text reported by the runtime.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class DeviceQueryError(ProbeError):
    pass


class HostAllocationError(ProbeError):
    pass


class DeviceAllocationError(ProbeError):
    pass


class TransferError(ProbeError):
    def __init__(self, operation: str, message: str, direction: str = "upload"):
        super().__init__(operation, message)
        self.direction = direction


class LaunchRejected(ProbeError):
    pass


class ExecutionFailed(ProbeError):
    pass
