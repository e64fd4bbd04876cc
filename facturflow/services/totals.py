"""
Calcul des montants d'un document.

Chaîne de calcul :
  subtotal → − réduction → net HT → + TVA → total TTC → − acompte → net à payer

Règles :
- la réduction s'applique sur le HT (avant TVA)
- une réduction en % est bornée à [0, 100]
- une réduction en montant est bornée à [0, subtotal]
- l'acompte est borné à [0, total TTC]
- chaque étape est arrondie à 2 décimales (demi à l'unité supérieure) avant d'être réutilisée

Fonction pure : aucun accès au stockage. La prévisualisation côté édition
appelle exactement la même fonction que l'enregistrement.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel

from facturflow.errors import InvalidInput
from facturflow.models.document import Discount

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")
# plafond des nombres saisis (10^15)
MAX_DIGITS = 15


class Totals(BaseModel):
    subtotal: Decimal = ZERO
    discount_amount: Decimal = ZERO
    net_ht: Decimal = ZERO
    tax_total: Decimal = ZERO
    total_ttc: Decimal = ZERO
    deposit_amount: Decimal = ZERO
    net_to_pay: Decimal = ZERO


# ---------- Helpers ---------- #

def round2(value: Decimal) -> Decimal:
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidInput(f"montant hors limites ({value})") from None


def to_decimal(value: Any, label: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidInput(f"{label} : valeur manquante")
    if isinstance(value, Decimal):
        d = value
    elif isinstance(value, int):
        d = Decimal(value)
    elif isinstance(value, float):
        d = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            d = Decimal(value.strip().replace(",", "."))
        except InvalidOperation:
            raise InvalidInput(f"{label} : nombre invalide ({value!r})") from None
    else:
        raise InvalidInput(f"{label} : type non supporté ({type(value).__name__})")
    if not d.is_finite():
        raise InvalidInput(f"{label} : nombre invalide ({value!r})")
    if d and d.adjusted() >= MAX_DIGITS:
        raise InvalidInput(f"{label} : valeur trop grande ({value!r})")
    return d


def _field(line: Any, name: str) -> Any:
    if isinstance(line, Mapping):
        return line.get(name)
    return getattr(line, name, None)


def _parse_lines(lines: Iterable[Any]) -> List[Tuple[Decimal, Decimal]]:
    out: List[Tuple[Decimal, Decimal]] = []
    for idx, line in enumerate(lines, start=1):
        qty = to_decimal(_field(line, "quantity"), f"ligne {idx}, quantité")
        price = to_decimal(_field(line, "unit_price"), f"ligne {idx}, prix unitaire")
        if qty < 0:
            raise InvalidInput(f"ligne {idx}, quantité : doit être positive")
        if price < 0:
            raise InvalidInput(f"ligne {idx}, prix unitaire : doit être positif")
        out.append((qty, price))
    return out


def check_vat_rate(vat_rate: Any) -> Decimal:
    # 0 % est un taux valide (franchise en base), distinct de « pas de taux »
    rate = to_decimal(vat_rate, "taux de TVA")
    if rate < 0 or rate > HUNDRED:
        raise InvalidInput("taux de TVA : doit être compris entre 0 et 100")
    return rate


def _parse_discount(discount: Optional[Discount | Mapping[str, Any]]) -> Optional[Tuple[str, Decimal]]:
    if discount is None:
        return None
    dtype = _field(discount, "type")
    if dtype not in ("percentage", "amount"):
        raise InvalidInput(f"réduction : type inconnu ({dtype!r})")
    raw = _field(discount, "value")
    value = ZERO if raw is None else to_decimal(raw, "réduction")
    return dtype, value


# ---------- Calculs ---------- #

def compute_line(quantity: Any, unit_price: Any, vat_rate: Any) -> Tuple[Decimal, Decimal, Decimal]:
    """Montants d'une ligne : (HT, TVA, TTC), arrondis à 2 décimales."""
    qty = to_decimal(quantity, "quantité")
    price = to_decimal(unit_price, "prix unitaire")
    rate = check_vat_rate(vat_rate)
    subtotal = round2(qty * price)
    tax = round2(subtotal * rate / HUNDRED)
    return subtotal, tax, round2(subtotal + tax)


def compute_totals(
    lines: Iterable[Any],
    vat_rate: Any,
    discount: Optional[Discount | Mapping[str, Any]] = None,
    deposit_amount: Any = None,
) -> Totals:
    # validation complète avant tout calcul
    rate = check_vat_rate(vat_rate)
    parsed = _parse_lines(lines)
    disc = _parse_discount(discount)
    deposit = ZERO if deposit_amount is None else to_decimal(deposit_amount, "acompte")

    # 1. Sous-total brut
    subtotal = round2(sum((q * p for q, p in parsed), Decimal(0)))

    # 2. Réduction
    discount_amount = ZERO
    if disc is not None:
        dtype, value = disc
        if dtype == "percentage":
            pct = min(max(value, Decimal(0)), HUNDRED)
            discount_amount = round2(subtotal * pct / HUNDRED)
        else:
            discount_amount = round2(min(max(value, Decimal(0)), subtotal))

    # 3. Net HT
    net_ht = round2(subtotal - discount_amount)

    # 4. TVA
    tax_total = round2(net_ht * rate / HUNDRED)

    # 5. Total TTC
    total_ttc = round2(net_ht + tax_total)

    # 6. Acompte + net à payer
    safe_deposit = round2(min(max(deposit, Decimal(0)), total_ttc))
    net_to_pay = round2(total_ttc - safe_deposit)

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        net_ht=net_ht,
        tax_total=tax_total,
        total_ttc=total_ttc,
        deposit_amount=safe_deposit,
        net_to_pay=net_to_pay,
    )


def format_currency(amount: Decimal) -> str:
    """Format français : 1 234,56 €"""
    s = f"{round2(amount):,.2f}".replace(",", " ").replace(".", ",")
    return f"{s} €"
