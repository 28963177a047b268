"""
Card domain models.

INVARIANTS:
- CardKey.number is always normalized
- A CardKey is a member of at most one of {unused, used}
- All models are frozen (immutable after construction)
"""

from dataclasses import dataclass
from enum import Enum

from cardkeeper.models.failure import ValidationError
from cardkeeper.services.normalizer import is_valid_card_number, normalize_card_number


class CardType(str, Enum):
    """Fixed set of card programs tracked by the service."""

    WALMART = "Walmart"
    TARGET = "Target"
    BUS_PASS = "Bus Pass"

    @classmethod
    def parse(cls, value: "str | CardType") -> "CardType":
        """
        Resolve a card type from its value or member name.

        Accepts "Bus Pass", "BUS_PASS" and "bus pass".

        Raises:
            ValidationError: If the value names no card type
        """
        if isinstance(value, CardType):
            return value
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValidationError(
            f"Unknown card type: {text!r}",
            detail="Expected one of: " + ", ".join(m.value for m in cls),
        )


class IssueMode(str, Enum):
    """How a card reached the client."""

    NORMAL = "normal"
    DROP_OFF = "drop_off"


@dataclass(frozen=True, slots=True)
class CardKey:
    """
    Identity of one physical card.

    Use CardKey.of() to build keys from raw input; the constructor
    trusts that number is already normalized.
    """

    card_type: CardType
    number: str

    @classmethod
    def of(cls, card_type: "str | CardType", raw_number: object) -> "CardKey":
        """
        Build a key from raw input, normalizing the number.

        Raises:
            ValidationError: If the type is unknown or the number is blank/invalid
        """
        resolved = CardType.parse(card_type)
        if not is_valid_card_number(raw_number):
            raise ValidationError(
                f"Invalid card number for {resolved.value}: {raw_number!r}",
            )
        return cls(card_type=resolved, number=normalize_card_number(raw_number))

    def label(self) -> str:
        """Human readable form, e.g. 'Walmart #A123'."""
        return f"{self.card_type.value} #{self.number}"


def empty_inventory() -> dict[CardType, set[str]]:
    """Inventory mapping with every card type present and empty."""
    return {card_type: set() for card_type in CardType}
