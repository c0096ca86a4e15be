import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException

from storefront.presentation.schemas import (
    AddCartItemRequest, CartLineResponse, CartResponse, CheckoutRequest, CheckoutResponse,
    ErrorResponse, OrderResponse, SyncCartRequest, UpdateCartItemRequest
)
from storefront.application.checkout import CheckoutUseCase, CheckoutDTO
from storefront.application.get_order import GetOrderUseCase, ListOrdersUseCase
from storefront.application.manage_cart import (
    AddToCartUseCase, CartSnapshotItem, ClearCartUseCase, GetCartUseCase,
    RemoveCartLineUseCase, SyncCartUseCase, UpdateCartLineUseCase
)
from storefront.application.interfaces import IdentityService
from storefront.domain.exceptions import (
    BusinessRuleError, CartLineNotFoundError, CheckoutInProgressError, IdentityServiceError, InvalidAddressError,
    OrderNotFoundError, ProductUnavailableError, StorageError, UnauthorizedError
)
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.http_clients import HTTPIdentityClient
from storefront.database import AsyncSessionLocal
from storefront.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()

STORAGE_FAILURE_MESSAGE = "Не удалось оформить заказ. Корзина сохранена, попробуйте еще раз"


# Фабрики зависимостей
def get_unit_of_work():
    return UnitOfWork(AsyncSessionLocal)


def get_identity_service() -> IdentityService:
    return HTTPIdentityClient(settings.AUTH_BASE_URL, settings.AUTH_API_KEY)


async def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    identity: IdentityService = Depends(get_identity_service)
) -> str:
    """Личность пользователя берется только из проверенного токена"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        user_id = await identity.verify_token(authorization[len("Bearer "):])
    except IdentityServiceError as e:
        raise HTTPException(status_code=503, detail=f"Service unavailable: {str(e)}")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


def get_checkout_use_case(uow=Depends(get_unit_of_work)):
    return CheckoutUseCase(uow, settings.TAX_RATE)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def checkout(
    request: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    idempotency_key: Optional[str] = Header(default=None),
    use_case: CheckoutUseCase = Depends(get_checkout_use_case)
):
    """Оформить заказ из корзины"""
    try:
        dto = CheckoutDTO(owner_id=user_id, address=request.address, idempotency_key=idempotency_key)
        result = await use_case(dto)
        return CheckoutResponse(order_id=result.order_id, total_amount=result.total_amount, status=result.status)

    except UnauthorizedError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (InvalidAddressError, BusinessRuleError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CheckoutInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StorageError as e:
        logger.error(f"[checkout] Ошибка хранилища: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=STORAGE_FAILURE_MESSAGE)
    except Exception as e:
        logger.error(f"[checkout] Непредвиденная ошибка: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/cart", response_model=CartResponse)
async def get_cart(user_id: str = Depends(get_current_user_id), uow=Depends(get_unit_of_work)):
    """Корзина с итогами"""
    view = await GetCartUseCase(uow, settings.TAX_RATE)(user_id)
    return CartResponse.from_view(view)


@router.post(
    "/cart/items",
    response_model=CartLineResponse,
    responses={404: {"model": ErrorResponse}}
)
async def add_cart_item(
    request: AddCartItemRequest,
    user_id: str = Depends(get_current_user_id),
    uow=Depends(get_unit_of_work)
):
    """Добавить товар в корзину"""
    try:
        line = await AddToCartUseCase(uow)(user_id, request.product_id, request.quantity)
        return CartLineResponse.from_domain(line)
    except ProductUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch(
    "/cart/items/{line_id}",
    responses={404: {"model": ErrorResponse}}
)
async def update_cart_item(
    line_id: str,
    request: UpdateCartItemRequest,
    user_id: str = Depends(get_current_user_id),
    uow=Depends(get_unit_of_work)
):
    """Изменить количество; 0 и меньше удаляет строку"""
    try:
        line = await UpdateCartLineUseCase(uow)(user_id, line_id, request.quantity)
    except CartLineNotFoundError:
        raise HTTPException(status_code=404, detail="Строка корзины не найдена")
    if line is None:
        return {"status": "ok", "removed": True}
    return CartLineResponse.from_domain(line)


@router.delete("/cart/items/{line_id}")
async def remove_cart_item(
    line_id: str,
    user_id: str = Depends(get_current_user_id),
    uow=Depends(get_unit_of_work)
):
    removed = await RemoveCartLineUseCase(uow)(user_id, line_id)
    return {"status": "ok", "removed": removed}


@router.delete("/cart")
async def clear_cart(user_id: str = Depends(get_current_user_id), uow=Depends(get_unit_of_work)):
    removed = await ClearCartUseCase(uow)(user_id)
    return {"status": "ok", "removed": removed}


@router.put("/cart", response_model=CartResponse)
async def sync_cart(
    request: SyncCartRequest,
    user_id: str = Depends(get_current_user_id),
    uow=Depends(get_unit_of_work)
):
    """Перенести клиентскую корзину на сервер"""
    items = [CartSnapshotItem(product_id=i.product_id, quantity=i.quantity) for i in request.items]
    view = await SyncCartUseCase(uow, settings.TAX_RATE)(user_id, items)
    return CartResponse.from_view(view)


@router.get("/orders", response_model=List[OrderResponse])
async def list_orders(user_id: str = Depends(get_current_user_id), uow=Depends(get_unit_of_work)):
    """История заказов пользователя"""
    orders = await ListOrdersUseCase(uow)(user_id)
    return [OrderResponse.from_domain(order) for order in orders]


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    uow=Depends(get_unit_of_work)
):
    """Получить заказ по ID"""
    try:
        order = await GetOrderUseCase(uow)(user_id, order_id)
        return OrderResponse.from_domain(order)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Заказ не найден")
