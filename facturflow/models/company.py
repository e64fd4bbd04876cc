from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, EmailStr
from .client import Address


class Company(BaseModel):
    """Profil vendeur d'un utilisateur (une fiche par user_id)."""
    user_id: str
    name: Optional[str] = None
    siren: Optional[str] = None
    siret: Optional[str] = None
    vat_number: Optional[str] = None
    address: Address = Address()
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    iban: Optional[str] = None
    bic: Optional[str] = None
    # surcharge du préfixe de numérotation des factures (ex: "FAC")
    invoice_prefix: Optional[str] = None
