"""
Database connections - MongoDB async (Motor).
"""

from motor.motor_asyncio import AsyncIOMotorClient

from docenti.config import MONGO_URL, DB_NAME

# Async client (used by the exam store and the job queue)
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]
