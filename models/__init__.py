from models.db import DB
