from pydantic import BaseModel, Field


class CreditCheckoutRequest(BaseModel):
    credit_amount: int = Field(gt=0, le=1_000_000)
