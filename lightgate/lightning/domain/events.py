"""Events flowing through an invoice settlement stream.

An ``InvoiceEvent`` is a discriminated union: exactly one of ``invoice`` or
``error`` is set. An error event is terminal; the stream yields nothing
after it.
"""

from dataclasses import dataclass

from .value_objects import Invoice


@dataclass(frozen=True)
class InvoiceEvent:
    """A decoded line of the subscription stream."""

    invoice: Invoice | None = None
    error: Exception | None = None

    def __post_init__(self) -> None:
        if (self.invoice is None) == (self.error is None):
            raise ValueError("InvoiceEvent carries exactly one of invoice or error")

    @property
    def is_terminal(self) -> bool:
        return self.error is not None

    @classmethod
    def of_invoice(cls, invoice: Invoice) -> "InvoiceEvent":
        return cls(invoice=invoice)

    @classmethod
    def of_error(cls, error: Exception) -> "InvoiceEvent":
        return cls(error=error)
