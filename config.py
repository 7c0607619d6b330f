"""
Runtime settings

Values come from the environment (a local .env file is honoured).
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7))  # 7 days

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Pricing (amounts in rupees)
FREE_DELIVERY_THRESHOLD = float(os.getenv("FREE_DELIVERY_THRESHOLD", 500))
DELIVERY_CHARGE = float(os.getenv("DELIVERY_CHARGE", 50))
TAX_RATE = float(os.getenv("TAX_RATE", 0.05))  # GST

ESTIMATED_DELIVERY_DAYS = int(os.getenv("ESTIMATED_DELIVERY_DAYS", 3))
