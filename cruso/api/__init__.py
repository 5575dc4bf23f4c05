from cruso.api.app import app, run

__all__ = ["app", "run"]
