from .routes import wallet_bp

__all__ = ["wallet_bp"]
