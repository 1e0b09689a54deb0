import os
from pymongo import MongoClient
from pymongo.database import Database
from dotenv import load_dotenv

load_dotenv()

MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "MaternalCare")

# The client connects lazily, so importing this module never blocks on the server
client = MongoClient(MONGO_URI)
db = client[MONGO_DB_NAME]

# Collection names
USERS = "Users"
APPOINTMENTS = "Appointments"
PREGNANCY_RECORDS = "PregnancyRecords"


def get_db() -> Database:
    """Request-scoped database handle, overridable in tests."""
    return db
