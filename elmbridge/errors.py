class ElmError(RuntimeError):
    """Base exception for adapter communication."""


class TransportNotConfigured(ElmError):
    """A real command was issued with no transport attached."""


class TransportError(ElmError):
    """The underlying serial/TCP link failed."""


class AdapterIdentificationError(ElmError):
    """The reset reply did not identify an ELM327/OBD adapter."""


class CommandTimeout(ElmError):
    """No prompt character arrived before the command timeout."""

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f'Command timeout: {command} ({timeout:.1f}s)')
