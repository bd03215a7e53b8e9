# config.py
import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///delivery.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLITE_BUSY_TIMEOUT = float(os.getenv("SQLITE_BUSY_TIMEOUT", "30"))

    JSON_AS_ASCII = False

    # Identity provider tokens
    JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
    JWT_ALGO = os.getenv("JWT_ALGO", "HS256")

    # Money, all in minor currency units
    DELIVERY_EARNING = int(os.getenv("DELIVERY_EARNING", "5000"))
    DELIVERY_FEE = int(os.getenv("DELIVERY_FEE", "5000"))
    PLATFORM_FEE_RATE = float(os.getenv("PLATFORM_FEE_RATE", "0.05"))
    TAX_RATE = float(os.getenv("TAX_RATE", "0.18"))

    # Change bus / event stream
    BUS_QUEUE_SIZE = int(os.getenv("BUS_QUEUE_SIZE", "1000"))
    STREAM_HEARTBEAT_SEC = float(os.getenv("STREAM_HEARTBEAT_SEC", "15"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    PORT = int(os.getenv("PORT", "5012"))
