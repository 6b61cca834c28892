import datetime

from base_bot import ClientError
from models import DB


class User:
    @staticmethod
    def get(user_id):
        db = DB()
        result = db.cursor.execute('SELECT * FROM User WHERE id = ?;', (user_id,))
        user = result.fetchone()
        db.close()
        return user

    @staticmethod
    def ensure(user_id, name):
        db = DB()
        db.cursor.execute('INSERT INTO User (id, name, created) VALUES (?, ?, ?) '
                          'ON CONFLICT (id) DO UPDATE SET name = ?;',
                          (user_id, name, datetime.datetime.utcnow(), name))
        db.commit()
        user = db.cursor.execute('SELECT * FROM User WHERE id = ?;', (user_id,)).fetchone()
        db.close()
        return user

    @staticmethod
    def by_airline(airline_id):
        db = DB()
        result = db.cursor.execute('SELECT * FROM User WHERE airline_id = ?;', (airline_id,))
        user = result.fetchone()
        db.close()
        return user

    @staticmethod
    def is_muted(user, now=None):
        now = now or datetime.datetime.utcnow()
        return bool(user['mute']) and user['mute'] > now

    @staticmethod
    def clear_mute(user_id):
        db = DB()
        db.cursor.execute('UPDATE User SET mute = NULL WHERE id = ?;', (user_id,))
        db.commit()
        db.close()

    @staticmethod
    def mute(user_id, until):
        db = DB()
        db.cursor.execute('UPDATE User SET mute = ? WHERE id = ?;', (until, user_id))
        db.commit()
        db.close()

    @staticmethod
    def login(user_id, airline_id):
        owner = User.by_airline(airline_id)
        if owner is not None and owner['id'] != user_id:
            raise ClientError('This airline has already been claimed by another user...')
        db = DB()
        db.cursor.execute('UPDATE User SET airline_id = ? WHERE id = ?;', (airline_id, user_id))
        db.commit()
        db.close()

    @staticmethod
    def logout(user_id):
        user = User.get(user_id)
        if user is None or user['airline_id'] is None:
            raise ClientError('You are not logged in...')
        db = DB()
        db.cursor.execute('UPDATE User SET airline_id = NULL WHERE id = ?;', (user_id,))
        db.commit()
        db.close()

    @staticmethod
    def record_usage(user_id, command):
        db = DB()
        db.cursor.execute('INSERT INTO CommandUsage (user_id, command, uses) VALUES (?, ?, 1) '
                          'ON CONFLICT (user_id, command) DO UPDATE SET uses = uses + 1;',
                          (user_id, command))
        db.commit()
        db.close()

    @staticmethod
    def usage(user_id):
        db = DB()
        result = db.cursor.execute('SELECT command, uses FROM CommandUsage WHERE user_id = ? ORDER BY uses DESC;',
                                   (user_id,))
        usage = {row['command']: row['uses'] for row in result.fetchall()}
        db.close()
        return usage
