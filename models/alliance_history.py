import datetime

from configurations import CONFIG
from models import DB

HISTORY_LENGTH = CONFIG.get('alliance_history_days', 7)
OFFLINE_MONTHS = 4


class AllianceHistory:
    """
    Daily snapshots of tracked alliances and their members.

    Each history table keeps only the most recent entries per alliance or member,
    the offline table counts days spent offline per calendar month.
    """
    @staticmethod
    def _trim(db, table, key_column, key, keep):
        db.cursor.execute(f'DELETE FROM {table} WHERE {key_column} = ? AND rowid NOT IN '
                          f'(SELECT rowid FROM {table} WHERE {key_column} = ? ORDER BY date DESC LIMIT ?);',
                          (key, key, keep))

    @staticmethod
    def get(name):
        db = DB()
        alliance = db.cursor.execute('SELECT * FROM Alliance WHERE name = ?;', (name,)).fetchone()
        db.close()
        return alliance

    @staticmethod
    def track(name):
        db = DB()
        db.cursor.execute('INSERT OR IGNORE INTO Alliance (name, created) VALUES (?, ?);',
                          (name, datetime.datetime.utcnow()))
        db.commit()
        alliance = db.cursor.execute('SELECT * FROM Alliance WHERE name = ?;', (name,)).fetchone()
        db.close()
        return alliance

    @staticmethod
    def tracked():
        db = DB()
        alliances = db.cursor.execute('SELECT * FROM Alliance WHERE archived = 0 ORDER BY id;').fetchall()
        db.close()
        return alliances

    @staticmethod
    def archive(alliance_id):
        db = DB()
        db.cursor.execute('UPDATE Alliance SET archived = 1 WHERE id = ?;', (alliance_id,))
        db.commit()
        db.close()

    @staticmethod
    def add_value(alliance_id, value, date):
        db = DB()
        db.cursor.execute('INSERT INTO AllianceValue (alliance_id, date, value) VALUES (?, ?, ?);',
                          (alliance_id, date, value))
        AllianceHistory._trim(db, 'AllianceValue', 'alliance_id', alliance_id, HISTORY_LENGTH)
        db.commit()
        db.close()

    @staticmethod
    def values(alliance_id):
        db = DB()
        result = db.cursor.execute('SELECT date, value FROM AllianceValue WHERE alliance_id = ? ORDER BY date;',
                                   (alliance_id,))
        values = [(row['date'], row['value']) for row in result.fetchall()]
        db.close()
        return values

    @staticmethod
    def record_member(alliance_id, name, joined, flights, contribution, share_value, offline, date):
        """
        Store today's snapshot of one member. ``offline`` tells whether the member has not been
        online for more than a day. Returns ``True`` when the member was seen for the first time.
        """
        expires = date + datetime.timedelta(days=CONFIG.get('alliance_member_expiry_days', 90))
        db = DB()
        member = db.cursor.execute('SELECT * FROM AllianceMember WHERE name = ?;', (name,)).fetchone()
        db.cursor.execute('INSERT INTO AllianceMember (name, alliance_id, joined, flights, contribution, expires) '
                          'VALUES (?, ?, ?, ?, ?, ?) '
                          'ON CONFLICT (name) DO UPDATE SET alliance_id = ?, flights = ?, contribution = ?, expires = ?;',
                          (name, alliance_id, joined, flights, contribution, expires,
                           alliance_id, flights, contribution, expires))
        if member is not None:
            db.cursor.execute('INSERT INTO MemberContribution (name, date, value) VALUES (?, ?, ?);',
                              (name, date, contribution - member['contribution']))
            AllianceHistory._trim(db, 'MemberContribution', 'name', name, HISTORY_LENGTH)

        db.cursor.execute('INSERT INTO MemberShareValue (name, date, value) VALUES (?, ?, ?);',
                          (name, date, share_value))
        AllianceHistory._trim(db, 'MemberShareValue', 'name', name, HISTORY_LENGTH)

        latest = db.cursor.execute('SELECT rowid, date FROM MemberOffline WHERE name = ? ORDER BY date DESC LIMIT 1;',
                                   (name,)).fetchone()
        if latest is None or (latest['date'].year, latest['date'].month) != (date.year, date.month):
            db.cursor.execute('INSERT INTO MemberOffline (name, date, value) VALUES (?, ?, ?);',
                              (name, date, int(offline)))
            AllianceHistory._trim(db, 'MemberOffline', 'name', name, OFFLINE_MONTHS)
        elif offline:
            db.cursor.execute('UPDATE MemberOffline SET value = value + 1 WHERE rowid = ?;', (latest['rowid'],))
        db.commit()
        db.close()
        return member is None

    @staticmethod
    def member_stats(alliance_id):
        """Contribution of the last tracked days and latest offline counter of every member, by name."""
        db = DB()
        result = db.cursor.execute('''
            SELECT m.name,
                   COALESCE((SELECT SUM(c.value) FROM MemberContribution c WHERE c.name = m.name), 0) AS this_week,
                   COALESCE((SELECT o.value FROM MemberOffline o WHERE o.name = m.name
                             ORDER BY o.date DESC LIMIT 1), 0) AS days_offline
              FROM AllianceMember m
             WHERE m.alliance_id = ?;
        ''', (alliance_id,))
        stats = {row['name']: {'this_week': row['this_week'], 'days_offline': row['days_offline']}
                 for row in result.fetchall()}
        db.close()
        return stats

    @staticmethod
    def member_history(name):
        db = DB()
        member = db.cursor.execute('SELECT * FROM AllianceMember WHERE name = ?;', (name,)).fetchone()
        history = {
            'contribution': [],
            'share_value': [],
            'offline': [],
        }
        for key, table in (('contribution', 'MemberContribution'),
                           ('share_value', 'MemberShareValue'),
                           ('offline', 'MemberOffline')):
            result = db.cursor.execute(f'SELECT date, value FROM {table} WHERE name = ? ORDER BY date;', (name,))
            history[key] = [(row['date'], row['value']) for row in result.fetchall()]
        db.close()
        return member, history

    @staticmethod
    def purge_expired(now=None):
        now = now or datetime.datetime.utcnow()
        db = DB()
        expired = [row['name'] for row in
                   db.cursor.execute('SELECT name FROM AllianceMember WHERE expires < ?;', (now,)).fetchall()]
        for table in ('MemberContribution', 'MemberShareValue', 'MemberOffline', 'AllianceMember'):
            db.cursor.executemany(f'DELETE FROM {table} WHERE name = ?;', [(name,) for name in expired])
        db.commit()
        db.close()
        return len(expired)
