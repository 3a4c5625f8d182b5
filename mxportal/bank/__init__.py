from .routes import bank_bp, cron_bp

__all__ = ["bank_bp", "cron_bp"]
