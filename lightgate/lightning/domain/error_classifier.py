"""Classification of remote error text into a closed set of outcomes.

The node reports failures as free text plus a numeric code. The wording is
the part most likely to drift between node releases, so the matching rules
live in one ordered table, evaluated first-match-wins.
"""

from dataclasses import dataclass
from enum import Enum

from lightgate.exceptions import RemoteError

from .enums import ErrorClassification, RemoteOperation


class MatchKind(str, Enum):
    PREFIX = "prefix"
    SUFFIX = "suffix"
    EXACT = "exact"
    CODE = "code"


@dataclass(frozen=True)
class ClassificationRule:
    """One row of the classification table.

    ``operation`` restricts the rule to errors reported by that operation;
    ``RemoteOperation.ANY`` applies everywhere.
    """

    kind: MatchKind
    pattern: str | int
    classification: ErrorClassification
    operation: RemoteOperation = RemoteOperation.ANY

    def applies_to(self, operation: RemoteOperation) -> bool:
        return self.operation is RemoteOperation.ANY or self.operation is operation

    def matches(self, code: int, message: str) -> bool:
        match self.kind:
            case MatchKind.PREFIX:
                return message.startswith(str(self.pattern))
            case MatchKind.SUFFIX:
                return message.endswith(str(self.pattern))
            case MatchKind.EXACT:
                return message == self.pattern
            case MatchKind.CODE:
                return code == self.pattern
        return False


# Order matters: the first matching rule wins.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    ClassificationRule(
        MatchKind.PREFIX, "chain backend is still syncing", ErrorClassification.TRANSIENT
    ),
    ClassificationRule(
        MatchKind.PREFIX,
        "channels cannot be created before",
        ErrorClassification.TOO_EARLY,
        RemoteOperation.OPEN_CHANNEL,
    ),
    ClassificationRule(MatchKind.PREFIX, "peer is not connected", ErrorClassification.PEER_OFFLINE),
    ClassificationRule(MatchKind.SUFFIX, "is not online", ErrorClassification.PEER_OFFLINE),
    ClassificationRule(
        MatchKind.PREFIX, "not enough witness outputs", ErrorClassification.INSUFFICIENT_FUNDS
    ),
    ClassificationRule(MatchKind.CODE, 177, ErrorClassification.DUPLICATE_OR_PENDING),
    ClassificationRule(
        MatchKind.PREFIX, "Number of pending channels exceed", ErrorClassification.TOO_MANY_PENDING
    ),
    ClassificationRule(
        MatchKind.EXACT,
        "invoice is already paid",
        ErrorClassification.ALREADY_PAID,
        RemoteOperation.PAY,
    ),
    ClassificationRule(
        MatchKind.EXACT,
        "insufficient local balance",
        ErrorClassification.NO_ROUTE,
        RemoteOperation.PAY,
    ),
    ClassificationRule(
        MatchKind.EXACT,
        "unable to find a path to destination",
        ErrorClassification.NO_ROUTE,
        RemoteOperation.PAY,
    ),
    # Wording used by LND 0.10.0+
    ClassificationRule(
        MatchKind.EXACT,
        "insufficient_balance",
        ErrorClassification.NO_ROUTE,
        RemoteOperation.PAY,
    ),
)


def classify_remote_error(
    code: int,
    message: str | None,
    operation: RemoteOperation = RemoteOperation.ANY,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> ErrorClassification:
    """Map a remote error's code and text to its classification.

    Args:
        code: Numeric code from the error object (0 when the node gave none)
        message: Raw error text
        operation: Operation that produced the error; scopes pay/open-channel rules
        rules: Classification table (defaults to ``CLASSIFICATION_RULES``)

    Returns:
        The first matching classification, or ``UNCLASSIFIED``
    """
    text = message or ""
    for rule in rules:
        if rule.applies_to(operation) and rule.matches(code, text):
            return rule.classification
    return ErrorClassification.UNCLASSIFIED


def classify_exception(
    error: RemoteError, operation: RemoteOperation = RemoteOperation.ANY
) -> ErrorClassification:
    """Classify a ``RemoteError`` raised by the gateway."""
    return classify_remote_error(error.code, error.message, operation)
