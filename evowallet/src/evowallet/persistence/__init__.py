from evowallet.persistence.database import Database, DatabaseError

__all__ = ["Database", "DatabaseError"]
