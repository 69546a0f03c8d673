from dotenv import load_dotenv
import os

load_dotenv()


class Settings:
    """Runtime configuration read from the environment (and an optional .env file)."""

    def __init__(self):
        self.database_path = os.getenv("DATABASE_PATH", "events.db")
        self.secret_key = os.getenv("SECRET_KEY", "default-secret")
        self.algorithm = os.getenv("ALGORITHM", "HS256")
        self.access_token_expire_minutes = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
        self.refresh_token_expire_days = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
        self.cors_origins = [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]
        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
