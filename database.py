import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from config import DATABASE_URL, ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PASSWORD

logger = logging.getLogger(__name__)


# Корректировка URL для Render (если нужно)
def get_database_url(url: str = DATABASE_URL) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


# Создаем движок БД. Схему создают миграции alembic, не старт приложения
engine = create_engine(
    get_database_url(),
    pool_pre_ping=True,
    connect_args={"check_same_thread": False} if "sqlite" in get_database_url() else {}
)

# Создаем фабрику сессий
SessionLocal = sessionmaker(autoflush=False, bind=engine)


def get_db():
    """Зависимость для получения сессии БД"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session):
    """Одна атомарная операция: commit при успехе, rollback при любой ошибке"""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_default_data(db: Session):
    """Создает админа по умолчанию, если его еще нет"""
    from models import User
    from auth import hash_password

    existing = db.query(User).filter(User.username == ADMIN_USERNAME, User.is_admin == True).first()
    if existing:
        logger.info("Admin user already exists")
        return

    with transaction(db):
        db.add(User(
            username=ADMIN_USERNAME,
            email=ADMIN_EMAIL,
            password=hash_password(ADMIN_PASSWORD),
            is_admin=True,
        ))
    logger.warning("Default admin user %r created, change the password after first login", ADMIN_USERNAME)
