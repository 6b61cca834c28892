import sqlite3

from configurations import CONFIG

SCHEMA = [
    'CREATE TABLE IF NOT EXISTS User '
    '(id INTEGER PRIMARY KEY, name TEXT, airline_id INTEGER UNIQUE, admin_level INTEGER NOT NULL DEFAULT 0, '
    'mute TIMESTAMP, created TIMESTAMP);',
    'CREATE TABLE IF NOT EXISTS CommandUsage '
    '(user_id INTEGER, command TEXT, uses INTEGER NOT NULL DEFAULT 0, PRIMARY KEY (user_id, command));',
    'CREATE TABLE IF NOT EXISTS ServerChannel '
    '(guild_id INTEGER, channel_id INTEGER, list TEXT NOT NULL, PRIMARY KEY (guild_id, channel_id));',
    'CREATE TABLE IF NOT EXISTS Alliance '
    '(id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT UNIQUE, archived BOOLEAN NOT NULL DEFAULT 0, '
    'created TIMESTAMP);',
    'CREATE TABLE IF NOT EXISTS AllianceValue (alliance_id INTEGER, date TIMESTAMP, value REAL);',
    'CREATE TABLE IF NOT EXISTS AllianceMember '
    '(name TEXT PRIMARY KEY, alliance_id INTEGER, joined TIMESTAMP, flights INTEGER, contribution REAL, '
    'expires TIMESTAMP);',
    'CREATE TABLE IF NOT EXISTS MemberContribution (name TEXT, date TIMESTAMP, value REAL);',
    'CREATE TABLE IF NOT EXISTS MemberShareValue (name TEXT, date TIMESTAMP, value REAL);',
    'CREATE TABLE IF NOT EXISTS MemberOffline (name TEXT, date TIMESTAMP, value INTEGER);',
    'CREATE TABLE IF NOT EXISTS QuizGame '
    '(id TEXT PRIMARY KEY, name TEXT, tag TEXT, author TEXT, reward INTEGER, base_question TEXT, '
    'played INTEGER NOT NULL DEFAULT 0, created TIMESTAMP);',
    'CREATE TABLE IF NOT EXISTS QuizQuestion '
    '(id INTEGER PRIMARY KEY AUTOINCREMENT, tag TEXT, difficulty TEXT, type TEXT, question TEXT, image BLOB, '
    'answers TEXT);',
    'CREATE TABLE IF NOT EXISTS QuizScore '
    '(user_id INTEGER PRIMARY KEY, points REAL NOT NULL DEFAULT 0, score REAL);',
]


class DB:
    def __init__(self):
        self.filename = CONFIG.get('database')
        self.conn = None
        self.cursor = None
        self.connect()

    def connect(self):
        self.conn = sqlite3.connect(self.filename, detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES)
        self.conn.row_factory = sqlite3.Row
        self.cursor = self.conn.cursor()

    def commit(self):
        self.conn.commit()

    def close(self):
        self.conn.close()

    @classmethod
    def create_tables(cls):
        db = cls()
        for statement in SCHEMA:
            db.cursor.execute(statement)
        db.commit()
        db.close()
