from typing import Literal
from pydantic import BaseModel, EmailStr, Field
from .common import TimeStamped, gen_id

ClientType = Literal["COMPANY", "INDIVIDUAL"]

class Address(BaseModel):
    line1: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str = "FR"

class Client(TimeStamped):
    id: str = Field(default_factory=gen_id)
    user_id: str
    type: ClientType = "INDIVIDUAL"
    company_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: EmailStr
    phone: str | None = None
    address: Address = Field(default_factory=Address)
    # identifiants légaux (routage Peppol = SIREN)
    siren: str | None = None
    siret: str | None = None
    vat_number: str | None = None

    @property
    def display_name(self) -> str:
        if self.company_name:
            return self.company_name
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or str(self.email)
