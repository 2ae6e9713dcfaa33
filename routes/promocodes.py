from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from core.deps import get_promocode_service, require_admin
from models.user import User
from schemas.promocode import PromocodeCreate, PromocodeOut, PromocodePage, PromocodeUpdate
from services.promocodes import PromocodeService

router = APIRouter(prefix="/admin/promocodes", tags=["admin"])


@router.get("/", response_model=PromocodePage)
def list_promocodes(
    code: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    admin: User = Depends(require_admin),
    promocodes: PromocodeService = Depends(get_promocode_service),
):
    rows, page_count = promocodes.get_all(page, limit, code)
    return {"page_count": page_count, "promocodes": rows}


@router.get("/{promocode_id}", response_model=PromocodeOut)
def get_promocode(
    promocode_id: int, admin: User = Depends(require_admin), promocodes: PromocodeService = Depends(get_promocode_service)
):
    return promocodes.get(promocode_id)


@router.post("/", response_model=PromocodeOut, status_code=201)
def create_promocode(
    data: PromocodeCreate, admin: User = Depends(require_admin), promocodes: PromocodeService = Depends(get_promocode_service)
):
    return promocodes.create(data)


@router.patch("/{promocode_id}", response_model=PromocodeOut)
def update_promocode(
    promocode_id: int,
    data: PromocodeUpdate,
    admin: User = Depends(require_admin),
    promocodes: PromocodeService = Depends(get_promocode_service),
):
    return promocodes.update(promocode_id, data)


@router.delete("/{promocode_id}", status_code=204)
def delete_promocode(
    promocode_id: int, admin: User = Depends(require_admin), promocodes: PromocodeService = Depends(get_promocode_service)
):
    promocodes.remove(promocode_id)
    return Response(status_code=204)
