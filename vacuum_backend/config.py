"""
Configuration for the vacuum rental backend.

Loads and validates the environment variables the orchestration engine needs.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env.local
env_path = Path(__file__).parent.parent / '.env.local'
load_dotenv(dotenv_path=env_path)


class Config:
    """Centralized backend configuration."""

    # Environment
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')
    TIMEZONE: str = os.getenv('TIMEZONE', 'America/Sao_Paulo')

    # API Configuration
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))

    # CORS - allowed origins
    ALLOWED_ORIGINS: list[str] = [
        origin.strip()
        for origin in os.getenv('ALLOWED_ORIGINS', 'http://localhost:3000').split(',')
    ]

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    # Redis (locks, realtime channel, device commands)
    REDIS_URL: str = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
    REDIS_POOL_MAX_CONNECTIONS: int = int(os.getenv('REDIS_POOL_MAX_CONNECTIONS', '20'))
    REDIS_SOCKET_TIMEOUT: float = float(os.getenv('REDIS_SOCKET_TIMEOUT', '5'))
    REDIS_SOCKET_CONNECT_TIMEOUT: float = float(os.getenv('REDIS_SOCKET_CONNECT_TIMEOUT', '5'))
    REDIS_HEALTH_CHECK_INTERVAL: int = int(os.getenv('REDIS_HEALTH_CHECK_INTERVAL', '30'))

    # Concurrency guard: "memory" (single process) or "redis" (multi-process)
    LOCK_BACKEND: str = os.getenv('LOCK_BACKEND', 'memory')
    MACHINE_LOCK_TTL_SECONDS: int = int(os.getenv('MACHINE_LOCK_TTL_SECONDS', '30'))

    # Liveness
    LIVENESS_INTERVAL_SECONDS: int = int(os.getenv('LIVENESS_INTERVAL_SECONDS', '30'))
    OFFLINE_THRESHOLD_SECONDS: int = int(os.getenv('OFFLINE_THRESHOLD_SECONDS', '90'))  # 3x heartbeat period
    HEARTBEAT_RECOVERY_POLICY: str = os.getenv('HEARTBEAT_RECOVERY_POLICY', 'explicit')

    # Sessions
    MIN_SESSION_MINUTES: int = int(os.getenv('MIN_SESSION_MINUTES', '1'))
    MAX_SESSION_MINUTES: int = int(os.getenv('MAX_SESSION_MINUTES', '30'))
    SESSION_SWEEP_INTERVAL_SECONDS: int = int(os.getenv('SESSION_SWEEP_INTERVAL_SECONDS', '15'))
    PENDING_PAYMENT_TIMEOUT_SECONDS: int = int(os.getenv('PENDING_PAYMENT_TIMEOUT_SECONDS', '900'))

    # Notifications
    NOTIFICATION_MAX_PER_HOUR: int = int(os.getenv('NOTIFICATION_MAX_PER_HOUR', '10'))
    NOTIFICATION_RETRY_ATTEMPTS: int = int(os.getenv('NOTIFICATION_RETRY_ATTEMPTS', '3'))
    NOTIFICATION_RETRY_MAX_WAIT_SECONDS: float = float(os.getenv('NOTIFICATION_RETRY_MAX_WAIT_SECONDS', '8'))
    NOTIFICATION_MAX_TOTAL_ATTEMPTS: int = int(os.getenv('NOTIFICATION_MAX_TOTAL_ATTEMPTS', '9'))
    NOTIFICATION_RETRY_INTERVAL_SECONDS: int = int(os.getenv('NOTIFICATION_RETRY_INTERVAL_SECONDS', '900'))

    # WhatsApp Cloud API (notification channel)
    WHATSAPP_API_URL: str = os.getenv('WHATSAPP_API_URL', 'https://graph.facebook.com/v18.0')
    WHATSAPP_ACCESS_TOKEN: str = os.getenv('WHATSAPP_ACCESS_TOKEN', '')
    WHATSAPP_PHONE_NUMBER_ID: str = os.getenv('WHATSAPP_PHONE_NUMBER_ID', '')
    ADMIN_PHONE: str = os.getenv('ADMIN_PHONE', '')

    # Mercado Pago (PIX payments)
    MERCADOPAGO_API_URL: str = os.getenv('MERCADOPAGO_API_URL', 'https://api.mercadopago.com')
    MERCADOPAGO_ACCESS_TOKEN: str = os.getenv('MERCADOPAGO_ACCESS_TOKEN', '')

    @classmethod
    def validate(cls) -> None:
        """
        Validate settings that would otherwise fail late at runtime.

        Raises:
            ValueError: If a setting has an unsupported value.
        """
        errors = []

        if cls.LOCK_BACKEND not in ('memory', 'redis'):
            errors.append(f"LOCK_BACKEND must be 'memory' or 'redis', got '{cls.LOCK_BACKEND}'")

        if cls.HEARTBEAT_RECOVERY_POLICY not in ('explicit', 'auto'):
            errors.append(
                f"HEARTBEAT_RECOVERY_POLICY must be 'explicit' or 'auto', "
                f"got '{cls.HEARTBEAT_RECOVERY_POLICY}'"
            )

        if not 1 <= cls.MIN_SESSION_MINUTES <= cls.MAX_SESSION_MINUTES:
            errors.append(
                f"Invalid session bounds: MIN_SESSION_MINUTES={cls.MIN_SESSION_MINUTES}, "
                f"MAX_SESSION_MINUTES={cls.MAX_SESSION_MINUTES}"
            )

        if cls.OFFLINE_THRESHOLD_SECONDS <= cls.LIVENESS_INTERVAL_SECONDS:
            errors.append(
                "OFFLINE_THRESHOLD_SECONDS must be greater than LIVENESS_INTERVAL_SECONDS"
            )

        if errors:
            raise ValueError("Invalid configuration: " + "; ".join(errors))

    @classmethod
    def whatsapp_configured(cls) -> bool:
        """True when every WhatsApp credential is present."""
        return bool(cls.WHATSAPP_ACCESS_TOKEN and cls.WHATSAPP_PHONE_NUMBER_ID and cls.ADMIN_PHONE)


# Global configuration instance
config = Config()


if __name__ == '__main__':
    """Script to validate configuration."""
    try:
        config.validate()
        print("✅ Configuration valid")
        print(f"   - Environment: {config.ENVIRONMENT}")
        print(f"   - Lock backend: {config.LOCK_BACKEND}")
        print(f"   - Offline threshold: {config.OFFLINE_THRESHOLD_SECONDS}s")
        print(f"   - Heartbeat recovery: {config.HEARTBEAT_RECOVERY_POLICY}")
        print(f"   - WhatsApp configured: {config.whatsapp_configured()}")
    except ValueError as e:
        print(f"❌ Configuration error: {e}")
        exit(1)
