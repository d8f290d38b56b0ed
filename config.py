import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()

# Настройки базы данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

# Токены
JWT_SECRET = os.getenv("JWT_SECRET", "test-secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Загрузки (картинки продуктов и ваучеров)
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")

# Настройки приложения
DEFAULT_COMMISSION_RATE = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "0.05"))
DEFAULT_DAILY_TASK_LIMIT = int(os.getenv("DEFAULT_DAILY_TASK_LIMIT", "1"))
MIN_LEVEL = 1
MAX_LEVEL = 5

# Админ по умолчанию
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@wunderkind.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin123")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
