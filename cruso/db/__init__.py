from cruso.db.database import PostgresDatabase, create_database

__all__ = ["PostgresDatabase", "create_database"]
