import os
from datetime import timedelta
from dotenv import load_dotenv

load_dotenv()

class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///negotiation.db")

    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(seconds=int(os.getenv("ACCESS_EXPIRES", 86400)))

    CORS_ORIGINS = os.getenv(
        "CORS_ORIGINS",
        "https://academichubpro.com"
    )

    RATELIMIT_ENABLED = True
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = os.getenv("RATELIMIT_DEFAULT", "600 per hour")
    RATELIMIT_STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "memory://")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    basedir = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    ATTACHMENTS_FOLDER = os.getenv("ATTACHMENTS_FOLDER", os.path.join(basedir, "uploads/attachments"))

    # Moderation
    MODERATION_BACKEND = os.getenv("MODERATION_BACKEND", "presidio")
    MODERATION_WINDOW = 25
    WARNING_TTL_DAYS = 7

    # Messaging
    MESSAGES_PAGE_DEFAULT = 50
    MESSAGES_PAGE_MAX = 100
    CURSOR_SECRET = os.getenv("CURSOR_SECRET") or JWT_SECRET_KEY
    CHAT_CACHE_TTL = int(os.getenv("CHAT_CACHE_TTL", 30))

class DevelopmentConfig(Config):
    DEBUG = True

class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    JWT_SECRET_KEY = "test-secret-key-with-enough-length-for-hs256"
    CURSOR_SECRET = "test-cursor-secret"
    RATELIMIT_ENABLED = False
    MODERATION_BACKEND = "regex"
    LOG_LEVEL = "WARNING"
