from .routes import food_orders_bp

__all__ = ["food_orders_bp"]
