import os

# All settings come from the environment. Defaults are suitable for local development only.

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./library.db")

# to get a string like this run:
# openssl rand -hex 32
SECRET_KEY = os.environ.get("SECRET_KEY", "09d25e094faa6ca2556c818166b7a9563b93f7099f6f0f4caa6cf63b88e8d3e7")
ALGORITHM = os.environ.get("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))
BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

APP_NAME = os.environ.get("APP_NAME", "Ralph Nwosu & Co. Library")
APP_URL = os.environ.get("APP_URL", "http://localhost:3000")
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",") if o.strip()]
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Outbound email. When SMTP_SERVER is unset the notifier logs and reports failure instead of sending.
SMTP_SERVER = os.environ.get("SMTP_SERVER")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "465"))
SMTP_USE_SSL = os.environ.get("SMTP_USE_SSL", "true").lower() == "true"
EMAIL_FROM = os.environ.get("EMAIL_FROM")
SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")

# Blob storage: local disk unless a pCloud token is configured
UPLOAD_DIR = os.environ.get("UPLOAD_DIR", os.path.join(os.path.dirname(__file__), "uploads"))
UPLOAD_BASE_URL = os.environ.get("UPLOAD_BASE_URL", "/uploads")
PCLOUD_UPLOAD_TOKEN = os.environ.get("PCLOUD_UPLOAD_TOKEN")
PCLOUD_FOLDER_ID = os.environ.get("PCLOUD_FOLDER_ID")  # optional folder id

# Optional Super Admin created at startup when both are set
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD")

DUE_SOON_DAYS = int(os.environ.get("DUE_SOON_DAYS", "3"))
INVITATION_EXPIRE_HOURS = 24
RESET_TOKEN_EXPIRE_HOURS = 1
