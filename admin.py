# Админские эндпоинты
import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

import ledger
from assignment import assign_daily_tasks, assign_single_task
from auth import CurrentUser, require_admin, hash_password, verify_password
from config import MIN_LEVEL, MAX_LEVEL
from database import get_db, transaction
from errors import ValidationError, AuthError, NotFoundError, UserNotFound
from models import (
    User, Product, UserProduct, BalanceEvent, Withdrawal, LevelSettings, CommissionRate, Voucher, Popup,
    Notification, STATUS_ACTIVE, STATUS_INACTIVE, TASK_COMPLETED, WITHDRAWAL_PENDING, POPUP_PENDING, POPUP_CLICKED,
)
from schemas import (
    UserOut, SuccessResponse, BalanceUpdate, CommissionUpdate, LevelUpdate, StatusUpdate, ResetPasswordRequest,
    AdminPasswordChangeRequest, CreateAdminRequest, ProductOut, VoucherOut, VoucherClickOut, PopupRequest,
    NotifyRequest, WithdrawalOut, RejectRequest, CommissionRateOut, CommissionRatesUpdate, LevelSettingsOut,
    LevelSettingsUpdate, NegativeBalanceOut, BalanceEventOut, StatsResponse, AssignmentSummaryResponse,
    AssignProductsRequest, AssignToUserRequest, ManualAssignmentResponse,
)
from uploads import save_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", dependencies=[Depends(require_admin)])

VOUCHER_DEFAULT_TITLE = "Congratulations! 🎉"
VOUCHER_DEFAULT_MESSAGE = "🎊 Congratulations! You have received a special voucher! 🎊"


def _form_price(value: Optional[str]):
    price = ledger.to_decimal(value)
    if price is None or not price.is_finite():
        return None
    if not ledger.in_money_range(price):
        raise ValidationError("Invalid price")
    return ledger.round_money(price)


# ----------------------
# Пользователи
# ----------------------

@router.get("/users", response_model=List[UserOut])
def list_users(search: str = "", db: Session = Depends(get_db)):
    query = db.query(User)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.username.like(pattern), User.email.like(pattern)))
    return query.order_by(User.id.desc()).limit(500).all()


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: int, db: Session = Depends(get_db)):
    return ledger.get_user(db, user_id)


@router.put("/users/{user_id}/balance", response_model=SuccessResponse)
def update_balance(user_id: int, request: BalanceUpdate, db: Session = Depends(get_db)):
    """Баланс меняется через журнал, как ручная корректировка"""
    ledger.set_balance(db, user_id, request.balance)
    return SuccessResponse()


@router.put("/users/{user_id}/commission", response_model=SuccessResponse)
def update_commission(user_id: int, request: CommissionUpdate, db: Session = Depends(get_db)):
    if not ledger.in_money_range(request.commission):
        raise ValidationError("Invalid commission")
    user = ledger.get_user(db, user_id)
    with transaction(db):
        user.commission_earned = ledger.round_money(request.commission)
    return SuccessResponse()


@router.put("/users/{user_id}/level", response_model=SuccessResponse)
def update_level(user_id: int, request: LevelUpdate, db: Session = Depends(get_db)):
    """Смена уровня обнуляет счетчик заданий на уровне"""
    if not MIN_LEVEL <= request.level <= MAX_LEVEL:
        raise ValidationError("Invalid level")

    with transaction(db):
        user = db.query(User).filter(User.id == user_id).with_for_update().first()
        if not user:
            raise UserNotFound()
        if user.level != request.level:
            logger.info("User %s level %s -> %s", user_id, user.level, request.level)
            user.level = request.level
            user.tasks_completed_at_level = 0
    return SuccessResponse()


@router.put("/users/{user_id}/status", response_model=SuccessResponse)
def update_status(user_id: int, request: StatusUpdate, db: Session = Depends(get_db)):
    if request.status not in (STATUS_ACTIVE, STATUS_INACTIVE):
        raise ValidationError("Invalid status")
    user = ledger.get_user(db, user_id)
    with transaction(db):
        user.status = request.status
    return SuccessResponse()


@router.post("/users/{user_id}/reset-password", response_model=SuccessResponse)
def reset_password(user_id: int, request: ResetPasswordRequest, db: Session = Depends(get_db)):
    user = ledger.get_user(db, user_id)
    with transaction(db):
        user.password = hash_password(request.new_password)
    return SuccessResponse()


@router.post("/change-password", response_model=SuccessResponse)
def change_own_password(request: AdminPasswordChangeRequest, current: CurrentUser = Depends(require_admin),
                        db: Session = Depends(get_db)):
    if len(request.new_password) < 6:
        raise ValidationError("New password must be at least 6 characters")
    user = ledger.get_user(db, current.user_id)
    if not verify_password(request.current_password, user.password):
        raise AuthError("Current password is incorrect")
    with transaction(db):
        user.password = hash_password(request.new_password)
    return SuccessResponse()


@router.post("/create-admin", response_model=SuccessResponse)
def create_admin(request: CreateAdminRequest, db: Session = Depends(get_db)):
    exists = db.query(User.id).filter(
        or_(User.username == request.username, User.email == request.email)
    ).first()
    if exists:
        raise ValidationError("User or email already exists")
    with transaction(db):
        db.add(User(
            username=request.username,
            email=request.email,
            password=hash_password(request.password),
            is_admin=True,
            status=STATUS_ACTIVE,
        ))
    logger.info("Admin %s created", request.username)
    return SuccessResponse()


# ----------------------
# Продукты и ваучеры
# ----------------------

@router.get("/products", response_model=List[ProductOut])
def list_products(db: Session = Depends(get_db)):
    return db.query(Product).order_by(Product.id.desc()).all()


@router.post("/products", response_model=ProductOut)
def create_product(
    name: str = Form(...),
    level1_price: Optional[str] = Form(None, alias="level1Price"),
    level2_price: Optional[str] = Form(None, alias="level2Price"),
    level3_price: Optional[str] = Form(None, alias="level3Price"),
    level4_price: Optional[str] = Form(None, alias="level4Price"),
    level5_price: Optional[str] = Form(None, alias="level5Price"),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
):
    if not name.strip():
        raise ValidationError("Name is required")
    if image is None or not image.filename:
        raise ValidationError("Image required")

    product = Product(
        name=name.strip(),
        image_path=save_upload(image, "products"),
        level1_price=_form_price(level1_price),
        level2_price=_form_price(level2_price),
        level3_price=_form_price(level3_price),
        level4_price=_form_price(level4_price),
        level5_price=_form_price(level5_price),
        status=STATUS_ACTIVE,
    )
    with transaction(db):
        db.add(product)
    db.refresh(product)
    return product


@router.put("/products/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int,
    name: Optional[str] = Form(None),
    level1_price: Optional[str] = Form(None, alias="level1Price"),
    level2_price: Optional[str] = Form(None, alias="level2Price"),
    level3_price: Optional[str] = Form(None, alias="level3Price"),
    level4_price: Optional[str] = Form(None, alias="level4Price"),
    level5_price: Optional[str] = Form(None, alias="level5Price"),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
):
    """Частичное обновление; уже назначенные задания не пересчитываются"""
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")

    updates = {}
    if name:
        updates["name"] = name
    if image is not None and image.filename:
        updates["image_path"] = save_upload(image, "products")
    prices = (level1_price, level2_price, level3_price, level4_price, level5_price)
    for level, raw in enumerate(prices, start=1):
        price = _form_price(raw)
        if price is not None:
            updates[f"level{level}_price"] = price
    if not updates:
        raise ValidationError("No fields to update")

    with transaction(db):
        for field, value in updates.items():
            setattr(product, field, value)
    db.refresh(product)
    return product


@router.put("/products/{product_id}/status", response_model=SuccessResponse)
def toggle_product_status(product_id: int, db: Session = Depends(get_db)):
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError("Product not found")
    with transaction(db):
        product.status = STATUS_INACTIVE if product.status == STATUS_ACTIVE else STATUS_ACTIVE
    return SuccessResponse()


@router.get("/vouchers", response_model=List[VoucherOut])
def list_vouchers(db: Session = Depends(get_db)):
    return db.query(Voucher).order_by(Voucher.id.desc()).all()


@router.post("/vouchers", response_model=VoucherOut)
def create_voucher(
    name: Optional[str] = Form(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    db: Session = Depends(get_db),
):
    if not name:
        raise ValidationError("Name is required")
    if image is None or not image.filename:
        raise ValidationError("Image required")

    voucher = Voucher(
        name=name,
        title=title or None,
        description=description or None,
        image_path=save_upload(image, "vouchers"),
        status=STATUS_ACTIVE,
    )
    with transaction(db):
        db.add(voucher)
    db.refresh(voucher)
    return voucher


@router.get("/voucher-clicks", response_model=List[VoucherClickOut])
def voucher_clicks(db: Session = Depends(get_db)):
    """Ваучеры, по которым пользователи кликнули"""
    rows = db.query(Popup, User).join(User, Popup.user_id == User.id).filter(
        Popup.image_path.isnot(None),
        Popup.image_path != "",
        Popup.status == POPUP_CLICKED,
    ).order_by(Popup.clicked_at.desc()).limit(100).all()
    return [
        VoucherClickOut(
            popup_id=popup.id,
            title=popup.title,
            message=popup.message,
            image_path=popup.image_path,
            clicked_at=popup.clicked_at,
            created_at=popup.created_at,
            user_id=user.id,
            username=user.username,
            email=user.email,
        )
        for popup, user in rows
    ]


# ----------------------
# Попапы и уведомления
# ----------------------

@router.post("/popup", response_model=SuccessResponse)
def send_popup(request: PopupRequest, db: Session = Depends(get_db)):
    if not request.user_id:
        raise ValidationError("Missing userId")
    ledger.get_user(db, request.user_id)

    title = request.title or ""
    message = request.message or ""
    image_path = None
    if request.voucher_id:
        voucher = db.query(Voucher).filter(
            Voucher.id == request.voucher_id,
            Voucher.status == STATUS_ACTIVE,
        ).first()
        if not voucher:
            raise NotFoundError("Voucher not found")
        image_path = voucher.image_path
        title = title or voucher.title or voucher.name or VOUCHER_DEFAULT_TITLE
        message = message or voucher.description or VOUCHER_DEFAULT_MESSAGE

    if not title:
        raise ValidationError("Title is required (either pass directly or via voucher)")

    with transaction(db):
        db.add(Popup(
            user_id=request.user_id,
            title=title,
            message=message,
            url=request.url or None,
            image_path=image_path,
            status=POPUP_PENDING,
        ))
    return SuccessResponse()


@router.post("/notify", response_model=SuccessResponse)
def send_notification(request: NotifyRequest, db: Session = Depends(get_db)):
    if not request.user_id or not request.title or not request.message:
        raise ValidationError("Missing userId, title or message")
    ledger.get_user(db, request.user_id)
    with transaction(db):
        db.add(Notification(user_id=request.user_id, title=request.title, message=request.message))
    return SuccessResponse()


# ----------------------
# Выводы
# ----------------------

@router.get("/withdrawals", response_model=List[WithdrawalOut])
def list_withdrawals(db: Session = Depends(get_db)):
    return db.query(Withdrawal).order_by(Withdrawal.request_date.desc(), Withdrawal.id.desc()).all()


@router.put("/withdrawals/{withdrawal_id}/approve", response_model=SuccessResponse)
def approve_withdrawal(withdrawal_id: int, db: Session = Depends(get_db)):
    ledger.approve_withdrawal(db, withdrawal_id)
    return SuccessResponse()


@router.put("/withdrawals/{withdrawal_id}/reject", response_model=SuccessResponse)
def reject_withdrawal(withdrawal_id: int, request: Optional[RejectRequest] = None, db: Session = Depends(get_db)):
    ledger.reject_withdrawal(db, withdrawal_id, request.admin_notes if request else None)
    return SuccessResponse()


# ----------------------
# Настройки уровней и комиссий
# ----------------------

def _check_level(level: int):
    if not MIN_LEVEL <= level <= MAX_LEVEL:
        raise ValidationError(f"Invalid level {level}")


@router.get("/commission-rates", response_model=List[CommissionRateOut])
def list_commission_rates(db: Session = Depends(get_db)):
    return db.query(CommissionRate).order_by(CommissionRate.level).all()


@router.put("/commission-rates", response_model=SuccessResponse)
def update_commission_rates(request: CommissionRatesUpdate, db: Session = Depends(get_db)):
    for item in request.rates:
        _check_level(item.level)
        if not item.rate.is_finite() or not 0 <= item.rate < 100:
            raise ValidationError("Invalid rates")
    with transaction(db):
        for item in request.rates:
            db.merge(CommissionRate(level=item.level, rate=item.rate))
    return SuccessResponse()


@router.get("/level-settings", response_model=List[LevelSettingsOut])
def list_level_settings(db: Session = Depends(get_db)):
    return db.query(LevelSettings).order_by(LevelSettings.level).all()


@router.put("/level-settings", response_model=SuccessResponse)
def update_level_settings(request: LevelSettingsUpdate, db: Session = Depends(get_db)):
    for item in request.settings:
        _check_level(item.level)
        for limit in (item.min_withdrawal_balance, item.max_withdrawal_amount):
            if limit is not None and not ledger.in_money_range(limit):
                raise ValidationError("Invalid withdrawal limits")
    with transaction(db):
        for item in request.settings:
            db.merge(LevelSettings(
                level=item.level,
                daily_task_limit=item.daily_task_limit,
                total_tasks_required=item.total_tasks_required,
                min_withdrawal_balance=item.min_withdrawal_balance,
                max_withdrawal_amount=item.max_withdrawal_amount,
            ))
    return SuccessResponse()


# ----------------------
# Журнал и статистика
# ----------------------

@router.get("/negative-balances", response_model=List[NegativeBalanceOut])
def negative_balances(db: Session = Depends(get_db)):
    return db.query(User).filter(User.wallet_balance < 0).order_by(User.wallet_balance.asc()).limit(500).all()


@router.get("/balance-events", response_model=List[BalanceEventOut])
def balance_events(user_id: Optional[int] = Query(None, alias="userId"), db: Session = Depends(get_db)):
    query = db.query(BalanceEvent)
    if user_id:
        query = query.filter(BalanceEvent.user_id == user_id)
    return query.order_by(BalanceEvent.created_at.desc(), BalanceEvent.id.desc()).limit(1000).all()


@router.get("/stats", response_model=StatsResponse)
def stats(db: Session = Depends(get_db)):
    """Статистика системы"""
    customers = db.query(User).filter(User.is_admin == False)
    return StatsResponse(
        total_users=customers.count(),
        active_users=db.query(func.count(func.distinct(UserProduct.user_id))).filter(
            UserProduct.assigned_date == date.today(),
            UserProduct.status == TASK_COMPLETED,
        ).scalar() or 0,
        total_balance=ledger.round_money(
            db.query(func.coalesce(func.sum(User.wallet_balance), 0)).filter(User.is_admin == False).scalar()
        ),
        total_products=db.query(Product).count(),
        pending_withdraws=db.query(Withdrawal).filter(Withdrawal.status == WITHDRAWAL_PENDING).count(),
        total_commission=ledger.round_money(
            db.query(func.coalesce(func.sum(User.commission_earned), 0)).filter(User.is_admin == False).scalar()
        ),
    )


# ----------------------
# Раздача заданий
# ----------------------

@router.post("/trigger-assignment", response_model=AssignmentSummaryResponse)
def trigger_assignment(db: Session = Depends(get_db)):
    """Раздать задания на сегодня из всех активных продуктов"""
    summary = assign_daily_tasks(db)
    return AssignmentSummaryResponse(users_assigned=summary.users_assigned, assignments=summary.assignments)


@router.post("/assign-products", response_model=AssignmentSummaryResponse)
def assign_products(request: AssignProductsRequest, db: Session = Depends(get_db)):
    """Раздать задания только из выбранных продуктов"""
    if not request.product_ids:
        raise ValidationError("No products selected")
    summary = assign_daily_tasks(db, request.product_ids)
    return AssignmentSummaryResponse(users_assigned=summary.users_assigned, assignments=summary.assignments)


@router.post("/assign-product-to-user", response_model=ManualAssignmentResponse)
def assign_product_to_user(request: AssignToUserRequest, db: Session = Depends(get_db)):
    if not request.user_id or not request.product_id:
        raise ValidationError("Missing user or product")
    result = assign_single_task(db, request.user_id, request.product_id, request.manual_bonus, request.custom_price)
    return ManualAssignmentResponse(
        assignment_id=result.assignment_id,
        base_amount=result.base_amount,
        balance_change=result.balance_change,
    )
