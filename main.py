import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import List

from fastapi import FastAPI, Depends, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import or_, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import ledger
from admin import router as admin_router
from auth import CurrentUser, get_current_user, hash_password, verify_password, create_token
from config import CORS_ORIGINS, LOG_LEVEL, UPLOAD_DIR
from database import SessionLocal, get_db, init_default_data, transaction
from errors import ServiceError, StorageError, ValidationError, AuthError, NotFoundError, ForbiddenError
from models import (
    User, Product, UserProduct, Withdrawal, Popup, Notification,
    STATUS_ACTIVE, TASK_COMPLETED, POPUP_PENDING, POPUP_CLICKED,
)
from schemas import (
    RegisterRequest, LoginRequest, AuthResponse, MeResponse, UserOut, DashboardResponse, LevelSettingsOut,
    AssignmentOut, SubmissionResponse, BatchSubmissionResponse, PublicProductOut, WithdrawRequest,
    WithdrawalOut, ProfileRequest, PasswordChangeRequest, DepositRequest, DepositResponse, PopupOut,
    PopupClickResponse, NotificationOut, SuccessResponse, HealthResponse,
)
from submission import submit_one, submit_all_today
from uploads import UPLOAD_URL_PREFIX

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Инициализация при запуске"""
    db = SessionLocal()
    try:
        init_default_data(db)
    finally:
        db.close()
    logger.info("Server started")
    yield


app = FastAPI(title="Wunderkind API", version="1.0.0", lifespan=lifespan)

# Настраиваем CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=UPLOAD_DIR), name="uploads")

app.include_router(admin_router)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    fields = [".".join(str(part) for part in err["loc"] if part != "body") for err in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationError("Missing fields", fields=fields).to_dict(),
    )


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    error = StorageError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/")
async def root():
    """Корневой эндпоинт"""
    return {
        "message": "Wunderkind API",
        "version": "1.0.0",
        "docs": "/docs"
    }


@app.get("/api/test")
async def api_test():
    return {"message": "Wunderkind API is working!", "timestamp": datetime.utcnow()}


@app.get("/api/health", response_model=HealthResponse)
def health(db: Session = Depends(get_db)):
    """Проверка соединения с БД"""
    try:
        db.execute(text("SELECT 1"))
        database = "Connected"
    except SQLAlchemyError as e:
        logger.error("Database connection failed: %s", e)
        database = "Disconnected"
    return HealthResponse(status="OK", database=database, timestamp=datetime.utcnow())


# ----------------------
# Auth
# ----------------------

@app.post("/api/auth/register", response_model=AuthResponse)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Регистрация пользователя"""
    exists = db.query(User.id).filter(
        or_(User.username == request.username, User.email == request.email)
    ).first()
    if exists:
        raise ValidationError("User or email already exists")

    user = User(
        username=request.username,
        email=request.email,
        password=hash_password(request.password),
        invitation_code="INV" + str(int(time.time() * 1000))[-6:],
        status=STATUS_ACTIVE,
    )
    with transaction(db):
        db.add(user)
    db.refresh(user)
    logger.info("User %s registered", user.id)
    return AuthResponse(token=create_token(user), user=UserOut.model_validate(user))


@app.post("/api/auth/login", response_model=AuthResponse)
def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Вход по username или email"""
    user = db.query(User).filter(
        or_(User.username == request.username, User.email == request.username)
    ).first()
    if not user or not verify_password(request.password, user.password):
        raise AuthError("Invalid credentials")

    with transaction(db):
        user.last_login = datetime.utcnow()
    db.refresh(user)
    return AuthResponse(token=create_token(user), user=UserOut.model_validate(user))


@app.get("/api/auth/me", response_model=MeResponse)
def me(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return MeResponse(user=UserOut.model_validate(ledger.get_user(db, current.user_id)))


# ----------------------
# User
# ----------------------

@app.get("/api/user/dashboard", response_model=DashboardResponse)
def dashboard(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Задания на сегодня, настройки уровня и комиссия"""
    user = ledger.get_user(db, current.user_id)
    settings = ledger.level_settings(db, user.level)
    rate = ledger.commission_rate(db, user.level)

    today_rows = db.query(UserProduct).filter(
        UserProduct.user_id == user.id,
        UserProduct.assigned_date == date.today(),
    ).order_by(UserProduct.id.desc()).all()
    today_products = [AssignmentOut.from_assignment(row) for row in today_rows]

    required = settings.total_tasks_required if settings else None
    return DashboardResponse(
        user=UserOut.model_validate(user),
        level_settings=LevelSettingsOut.model_validate(settings) if settings else None,
        commission_rate=rate,
        today_products=today_products,
        completed_today=sum(1 for p in today_products if p.status == TASK_COMPLETED),
        can_upgrade=bool(required) and user.tasks_completed_at_level >= required,
    )


@app.post("/api/user/submit-today", response_model=BatchSubmissionResponse)
def submit_today(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Сдать все задания за сегодня"""
    result = submit_all_today(db, current.user_id)
    return BatchSubmissionResponse(
        tasks_submitted=result.tasks_submitted,
        total_price=result.total_price,
        total_manual_bonus=result.total_manual_bonus,
        total_commission=result.total_commission,
        total_credit=result.total_credit,
    )


@app.post("/api/user/submit-product/{assignment_id}", response_model=SubmissionResponse)
def submit_product(assignment_id: int, current: CurrentUser = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    """Сдать одно задание"""
    result = submit_one(db, current.user_id, assignment_id)
    return SubmissionResponse(
        earned=result.earned, base_amount=result.base_amount, commission=result.commission, bonus=result.bonus,
    )


@app.get("/api/user/history", response_model=List[AssignmentOut])
def history(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.query(UserProduct).filter(UserProduct.user_id == current.user_id).order_by(
        UserProduct.assigned_date.desc(), UserProduct.id.desc()
    ).limit(100).all()
    return [AssignmentOut.from_assignment(row) for row in rows]


@app.get("/api/user/products-public", response_model=List[PublicProductOut])
def products_public(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Галерея активных продуктов"""
    products = db.query(Product).filter(Product.status == STATUS_ACTIVE).order_by(Product.id.desc()).limit(500).all()
    return [PublicProductOut.from_product(p) for p in products]


@app.post("/api/user/withdraw-request", response_model=SuccessResponse)
def withdraw_request(request: WithdrawRequest, current: CurrentUser = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    ledger.request_withdrawal(db, current.user_id, request.amount, request.wallet_address)
    return SuccessResponse()


@app.get("/api/user/withdrawals", response_model=List[WithdrawalOut])
def my_withdrawals(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(Withdrawal).filter(Withdrawal.user_id == current.user_id).order_by(
        Withdrawal.request_date.desc(), Withdrawal.id.desc()
    ).all()


@app.put("/api/user/profile", response_model=SuccessResponse)
def update_profile(request: ProfileRequest, current: CurrentUser = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    user = ledger.get_user(db, current.user_id)
    with transaction(db):
        user.payment_name = request.payment_name
        user.crypto_wallet = request.crypto_wallet
        user.wallet_address = request.wallet_address
    return SuccessResponse()


@app.put("/api/user/password", response_model=SuccessResponse)
def change_password(request: PasswordChangeRequest, current: CurrentUser = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    user = ledger.get_user(db, current.user_id)
    if not verify_password(request.old_password, user.password):
        raise ValidationError("Old password incorrect")
    with transaction(db):
        user.password = hash_password(request.new_password)
    return SuccessResponse()


@app.post("/api/user/deposit", response_model=DepositResponse)
def deposit(request: DepositRequest, current: CurrentUser = Depends(get_current_user),
            db: Session = Depends(get_db)):
    """Пополнение кошелька"""
    balance = ledger.deposit(db, current.user_id, request.amount)
    return DepositResponse(new_balance=balance)


@app.get("/api/user/popups", response_model=List[PopupOut])
def my_popups(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    """Последние непоказанные попапы"""
    return db.query(Popup).filter(
        Popup.user_id == current.user_id,
        Popup.status == POPUP_PENDING,
    ).order_by(Popup.created_at.desc(), Popup.id.desc()).limit(3).all()


@app.post("/api/user/popup/{popup_id}/click", response_model=PopupClickResponse)
def click_popup(popup_id: int, current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    popup = db.query(Popup).filter(Popup.id == popup_id).first()
    if not popup:
        raise NotFoundError("Popup not found")
    if popup.user_id != current.user_id:
        raise ForbiddenError("Not allowed")

    with transaction(db):
        popup.status = POPUP_CLICKED
        popup.clicked_at = datetime.utcnow()

    # Попап с картинкой - это ваучер, админ должен узнать о клике
    is_voucher = bool(popup.image_path and popup.image_path.strip())
    if is_voucher:
        logger.info("User %s (%s) clicked voucher popup %s (%s), image %s",
                    current.user_id, current.username, popup.id, popup.title, popup.image_path)
    return PopupClickResponse(is_voucher=is_voucher)


@app.get("/api/user/notifications", response_model=List[NotificationOut])
def my_notifications(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return db.query(Notification).filter(
        Notification.user_id == current.user_id,
        Notification.is_read == False,
    ).order_by(Notification.created_at.desc(), Notification.id.desc()).limit(20).all()


@app.patch("/api/user/notifications/{notification_id}/read", response_model=SuccessResponse)
def read_notification(notification_id: int, current: CurrentUser = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    note = db.query(Notification).filter(Notification.id == notification_id).first()
    if not note:
        raise NotFoundError()
    if note.user_id != current.user_id:
        raise ForbiddenError("Not allowed")
    with transaction(db):
        note.is_read = True
    return SuccessResponse()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
