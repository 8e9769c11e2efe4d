"""
Owner reference shared by wallets and ledger transactions
"""
from dataclasses import dataclass

from app.core.exceptions import ValidationException


@dataclass(frozen=True)
class OwnerRef:
    """Exactly one of customer_id / model_id is set"""

    customer_id: int | None = None
    model_id: int | None = None

    def __post_init__(self):
        if (self.customer_id is None) == (self.model_id is None):
            raise ValidationException(
                "Owner must be exactly one of customer or model",
                fields={"owner": "exactly one of customer_id, model_id is required"},
            )

    @classmethod
    def for_customer(cls, customer_id: int) -> "OwnerRef":
        return cls(customer_id=customer_id)

    @classmethod
    def for_model(cls, model_id: int) -> "OwnerRef":
        return cls(model_id=model_id)

    @property
    def is_model(self) -> bool:
        return self.model_id is not None

    def filter(self, entity):
        """WHERE clause matching rows owned by this owner on ``entity``"""
        if self.is_model:
            return entity.model_id == self.model_id
        return entity.customer_id == self.customer_id

    def as_columns(self) -> dict:
        return {"customer_id": self.customer_id, "model_id": self.model_id}

    def __str__(self) -> str:
        if self.is_model:
            return f"model {self.model_id}"
        return f"customer {self.customer_id}"
