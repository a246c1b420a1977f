"""Domain errors raised by the budget services.

User-facing failures subclass ``ValueError`` so request handlers can keep
catching ``ValueError`` and pick the status code from the concrete type.
``UnsupportedCycleType`` is a ``RuntimeError``: it signals a budget row whose
recurrence configuration the engine cannot interpret and surfaces as a 500.
"""


class NotFound(ValueError):
    pass


class Forbidden(ValueError):
    pass


class InvalidState(ValueError):
    pass


class DuplicateName(ValueError):
    pass


class UnsupportedCycleType(RuntimeError):
    def __init__(self, cycle_type: object) -> None:
        super().__init__(f"Unsupported cycle type: {cycle_type}")
        self.cycle_type = cycle_type
