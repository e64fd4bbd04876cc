from __future__ import annotations
from typing import Any, Dict, List, Type, TypeVar

from fastapi import APIRouter, Body, Depends, Response
from pydantic import BaseModel, ValidationError

from facturflow.api.deps import current_user, get_services
from facturflow.errors import InvalidInput
from facturflow.models.client import Client
from facturflow.models.company import Company
from facturflow.services.registry import Services

router = APIRouter(prefix="/api", tags=["clients"])

M = TypeVar("M", bound=BaseModel)


def _owned(model: Type[M], body: Dict[str, Any], user_id: str) -> M:
    # le propriétaire vient toujours de l'en-tête, jamais du corps
    try:
        return model(**{**body, "user_id": user_id})
    except ValidationError as e:
        err = e.errors()[0]
        loc = ".".join(str(p) for p in err.get("loc", ()))
        raise InvalidInput(f"{loc} : {err['msg']}") from None


@router.get("/clients", response_model=List[Client])
def list_clients(user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.clients.list_clients(user_id)


@router.post("/clients", response_model=Client, status_code=201)
def create_client(
    body: Dict[str, Any] = Body(...),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return services.clients.add_client(_owned(Client, body, user_id))


@router.delete("/clients/{client_id}", status_code=204)
def delete_client(client_id: str, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    services.clients.delete_client(client_id, user_id)
    return Response(status_code=204)


@router.get("/company", response_model=Company)
def get_company(user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    return services.companies.get(user_id) or Company(user_id=user_id)


@router.put("/company", response_model=Company)
def save_company(
    body: Dict[str, Any] = Body(...),
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
):
    return services.companies.save(_owned(Company, body, user_id))
