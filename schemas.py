# Pydantic модели для запросов/ответов
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Деньги в JSON отдаются числом, а не строкой
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class CamelModel(BaseModel):
    """Поля snake_case в коде, camelCase в JSON"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SuccessResponse(BaseModel):
    success: bool = True


# --- Запросы ---

class RegisterRequest(BaseModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class WithdrawRequest(CamelModel):
    amount: Decimal
    wallet_address: str = Field(min_length=1)


class DepositRequest(CamelModel):
    amount: Decimal


class ProfileRequest(CamelModel):
    payment_name: Optional[str] = None
    crypto_wallet: Optional[str] = None
    wallet_address: Optional[str] = None


class PasswordChangeRequest(CamelModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class AdminPasswordChangeRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class ResetPasswordRequest(CamelModel):
    new_password: str = Field(min_length=1)


class CreateAdminRequest(BaseModel):
    username: str = Field(min_length=1)
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)


class BalanceUpdate(BaseModel):
    balance: Decimal


class CommissionUpdate(BaseModel):
    commission: Decimal


class LevelUpdate(BaseModel):
    level: int


class StatusUpdate(BaseModel):
    status: str


class RejectRequest(CamelModel):
    admin_notes: Optional[str] = None


class CommissionRateItem(BaseModel):
    level: int
    rate: Decimal


class CommissionRatesUpdate(BaseModel):
    rates: List[CommissionRateItem]


class LevelSettingsItem(BaseModel):
    level: int
    daily_task_limit: Optional[int] = None
    total_tasks_required: Optional[int] = None
    min_withdrawal_balance: Optional[Decimal] = None
    max_withdrawal_amount: Optional[Decimal] = None


class LevelSettingsUpdate(BaseModel):
    settings: List[LevelSettingsItem]


class AssignProductsRequest(CamelModel):
    product_ids: List[Any] = []


class AssignToUserRequest(CamelModel):
    user_id: Optional[int] = None
    product_id: Optional[int] = None
    manual_bonus: Optional[Any] = None
    custom_price: Optional[Any] = None


class PopupRequest(CamelModel):
    user_id: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None
    url: Optional[str] = None
    voucher_id: Optional[int] = None


class NotifyRequest(CamelModel):
    user_id: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None


# --- Ответы ---

class UserOut(ORMModel):
    id: int
    username: str
    email: str
    is_admin: bool = Field(validation_alias=AliasChoices("is_admin", "isAdmin"), serialization_alias="isAdmin")
    invitation_code: Optional[str] = None
    level: int = 1
    wallet_balance: Money = Decimal("0")
    commission_earned: Money = Decimal("0")
    tasks_completed_at_level: int = 0
    total_tasks_completed: int = 0
    status: str
    credit_score: int = 100
    payment_name: Optional[str] = None
    crypto_wallet: Optional[str] = None
    wallet_address: Optional[str] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class AuthResponse(BaseModel):
    token: str
    user: UserOut


class MeResponse(BaseModel):
    user: UserOut


class LevelSettingsOut(ORMModel):
    level: int
    daily_task_limit: Optional[int] = None
    total_tasks_required: Optional[int] = None
    min_withdrawal_balance: Optional[Money] = None
    max_withdrawal_amount: Optional[Money] = None


class CommissionRateOut(ORMModel):
    level: int
    rate: Money


class ProductOut(ORMModel):
    id: int
    name: str
    image_path: str
    level1_price: Optional[Money] = None
    level2_price: Optional[Money] = None
    level3_price: Optional[Money] = None
    level4_price: Optional[Money] = None
    level5_price: Optional[Money] = None
    status: str
    created_at: Optional[datetime] = None


class PublicProductOut(BaseModel):
    product_id: int
    name: str
    image_path: str
    level1_price: Optional[Money] = None
    level2_price: Optional[Money] = None
    level3_price: Optional[Money] = None
    level4_price: Optional[Money] = None
    level5_price: Optional[Money] = None

    @classmethod
    def from_product(cls, product):
        return cls(
            product_id=product.id,
            name=product.name,
            image_path=product.image_path,
            level1_price=product.level1_price,
            level2_price=product.level2_price,
            level3_price=product.level3_price,
            level4_price=product.level4_price,
            level5_price=product.level5_price,
        )


class AssignmentOut(BaseModel):
    id: int
    product_id: int
    name: str
    image_path: str
    status: str
    amount_earned: Money
    commission_earned: Money
    manual_bonus: Money
    custom_price: Optional[Money] = None
    is_manual: int
    assigned_date: date
    submitted_at: Optional[datetime] = None
    level1_price: Optional[Money] = None
    level2_price: Optional[Money] = None
    level3_price: Optional[Money] = None
    level4_price: Optional[Money] = None
    level5_price: Optional[Money] = None

    @classmethod
    def from_assignment(cls, assignment):
        product = assignment.product
        return cls(
            id=assignment.id,
            product_id=product.id,
            name=product.name,
            image_path=product.image_path,
            status=assignment.status,
            amount_earned=assignment.amount_earned or 0,
            commission_earned=assignment.commission_earned or 0,
            manual_bonus=assignment.manual_bonus or 0,
            custom_price=assignment.custom_price,
            is_manual=int(bool(assignment.is_manual)),
            assigned_date=assignment.assigned_date,
            submitted_at=assignment.submitted_at,
            level1_price=product.level1_price,
            level2_price=product.level2_price,
            level3_price=product.level3_price,
            level4_price=product.level4_price,
            level5_price=product.level5_price,
        )


class DashboardResponse(CamelModel):
    user: UserOut
    level_settings: Optional[LevelSettingsOut] = None
    commission_rate: Money
    today_products: List[AssignmentOut]
    completed_today: int
    can_upgrade: bool


class SubmissionResponse(CamelModel):
    earned: Money
    base_amount: Money
    commission: Money
    bonus: Money


class BatchSubmissionResponse(CamelModel):
    tasks_submitted: int
    total_price: Money
    total_manual_bonus: Money
    total_commission: Money
    total_credit: Money


class DepositResponse(CamelModel):
    success: bool = True
    new_balance: Money


class WithdrawalOut(ORMModel):
    id: int
    user_id: int
    username: Optional[str] = None
    amount: Money
    wallet_address: str
    status: str
    request_date: Optional[datetime] = None
    processed_date: Optional[datetime] = None
    admin_notes: Optional[str] = None


class BalanceEventOut(ORMModel):
    id: int
    user_id: int
    type: str
    amount: Money
    reference_date: Optional[date] = None
    details: Optional[str] = None
    created_at: Optional[datetime] = None


class NegativeBalanceOut(ORMModel):
    id: int
    username: str
    wallet_balance: Money


class VoucherOut(ORMModel):
    id: int
    name: str
    title: Optional[str] = None
    description: Optional[str] = None
    image_path: str
    status: str
    created_at: Optional[datetime] = None


class VoucherClickOut(BaseModel):
    popup_id: int
    title: str
    message: str
    image_path: Optional[str] = None
    clicked_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    user_id: int
    username: str
    email: str


class PopupOut(ORMModel):
    id: int
    title: str
    message: str
    url: Optional[str] = None
    image_path: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class PopupClickResponse(CamelModel):
    success: bool = True
    is_voucher: bool


class NotificationOut(ORMModel):
    id: int
    title: str
    message: str
    is_read: bool
    created_at: Optional[datetime] = None


class AssignmentSummaryResponse(CamelModel):
    success: bool = True
    users_assigned: int
    assignments: int


class ManualAssignmentResponse(CamelModel):
    success: bool = True
    assignment_id: int
    base_amount: Money
    balance_change: Money


class StatsResponse(CamelModel):
    total_users: int
    active_users: int
    total_balance: Money
    total_products: int
    pending_withdraws: int
    total_commission: Money


class HealthResponse(BaseModel):
    status: str
    database: str
    timestamp: datetime
