from database import engine, Base, SessionLocal
from services.auth_service import AuthService
from services.realtime_store import RealtimeStore
import models  # noqa: F401

def init_database():
    Base.metadata.create_all(bind=engine)
    print("Database tables created successfully!")

    db = SessionLocal()
    try:
        admin = AuthService.ensure_admin(db, RealtimeStore(SessionLocal))
        if admin:
            print(f"Admin account created: {admin.email}")
        else:
            print("Admin account already exists")
    finally:
        db.close()

if __name__ == "__main__":
    init_database()
