"""
Configuration module for the invoice assistant backend.

Loads environment variables and validates required settings.
"""
import os
from typing import List
from dotenv import load_dotenv

# Load .env file
load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""
    
    # Supabase Configuration
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_PUBLISHABLE_KEY: str = os.getenv("SUPABASE_PUBLISHABLE_KEY", "")
    
    # JWT Verification (ES256 signing keys published through JWKS)
    @property
    def SUPABASE_JWKS_URL(self) -> str:
        """Get the JWKS URL for JWT verification."""
        if not self.SUPABASE_URL:
            return ""
        return f"{self.SUPABASE_URL}/auth/v1/.well-known/jwks.json"
    
    # Google Gemini API
    GOOGLE_API_KEY: str = os.getenv("GOOGLE_API_KEY", "")
    
    # Model tiers picked by the intent classifier
    CHAT_MODEL_BUDGET: str = os.getenv("CHAT_MODEL_BUDGET", "gemini-2.5-flash-lite")
    CHAT_MODEL_MID: str = os.getenv("CHAT_MODEL_MID", "gemini-2.5-flash")
    CHAT_MODEL_PREMIUM: str = os.getenv("CHAT_MODEL_PREMIUM", "gemini-2.5-pro")
    
    # Tool-calling loop bounds
    CHAT_MAX_STEPS: int = int(os.getenv("CHAT_MAX_STEPS", "5"))
    CHAT_TIME_BUDGET_SECONDS: float = float(os.getenv("CHAT_TIME_BUDGET_SECONDS", "24"))
    MODEL_CALL_TIMEOUT_SECONDS: float = float(os.getenv("MODEL_CALL_TIMEOUT_SECONDS", "12"))
    MODEL_CALL_MAX_ATTEMPTS: int = int(os.getenv("MODEL_CALL_MAX_ATTEMPTS", "2"))
    
    # Conversation memory and plan limits
    CONVERSATION_MEMORY_TTL_MINUTES: int = int(os.getenv("CONVERSATION_MEMORY_TTL_MINUTES", "30"))
    FREE_PLAN_ITEM_LIMIT: int = int(os.getenv("FREE_PLAN_ITEM_LIMIT", "3"))
    
    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    
    # CORS Settings
    CORS_ALLOWED_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    
    @classmethod
    def validate(cls) -> None:
        """
        Validate that all required settings are configured.
        
        Raises:
            ValueError: If any required setting is missing.
        """
        required_settings = {
            "SUPABASE_URL": cls.SUPABASE_URL,
            "SUPABASE_PUBLISHABLE_KEY": cls.SUPABASE_PUBLISHABLE_KEY,
            "GOOGLE_API_KEY": cls.GOOGLE_API_KEY,
        }
        
        missing = [key for key, value in required_settings.items() if not value]
        
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Please check your .env file."
            )
    
    @classmethod
    def model_for_tier(cls, tier: str) -> str:
        """Map a classifier model tier (budget/mid/premium) to a Gemini model name."""
        return {
            "budget": cls.CHAT_MODEL_BUDGET,
            "mid": cls.CHAT_MODEL_MID,
            "premium": cls.CHAT_MODEL_PREMIUM,
        }.get(tier, cls.CHAT_MODEL_MID)
    
    @classmethod
    def is_production(cls) -> bool:
        """Check if running in production environment."""
        return cls.ENVIRONMENT.lower() == "production"
    
    @classmethod
    def is_development(cls) -> bool:
        """Check if running in development environment."""
        return cls.ENVIRONMENT.lower() == "development"


# Create a singleton instance
settings = Settings()

# Validate settings on module import (will fail fast if misconfigured)
# Skip validation during tests or when importing for introspection
if os.getenv("VALIDATE_CONFIG", "true").lower() == "true":
    try:
        settings.validate()
    except ValueError as e:
        # In development, warn but don't crash
        if settings.is_development():
            print(f"Warning: {e}")
            print("   The app may not work correctly until you configure your .env file.")
        else:
            raise
