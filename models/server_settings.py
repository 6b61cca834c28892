from models import DB

LISTS = ('whitelist', 'blacklist')


class ServerSettings:
    """
    Per guild channel lists. A channel on the blacklist, or any channel outside a non-empty
    whitelist, only gets ephemeral replies.
    """
    def __init__(self):
        self.__channels = {}
        self.load()

    def load(self):
        db = DB()
        result = db.cursor.execute('SELECT * FROM ServerChannel;')
        self.__channels = {}
        for row in result.fetchall():
            self.__channels.setdefault(row['guild_id'], {})[row['channel_id']] = row['list']
        db.close()

    def get_channels(self, guild_id, list_name):
        return [c for c, name in self.__channels.get(guild_id, {}).items() if name == list_name]

    def is_ephemeral(self, guild_id, channel_id):
        if guild_id is None:
            return False
        channels = self.__channels.get(guild_id, {})
        if channels.get(channel_id) == 'blacklist':
            return True
        whitelist = self.get_channels(guild_id, 'whitelist')
        return bool(whitelist) and channel_id not in whitelist

    def add(self, guild_id, channel_id, list_name):
        if list_name not in LISTS:
            raise ValueError(list_name)
        self.__channels.setdefault(guild_id, {})[channel_id] = list_name
        db = DB()
        db.cursor.execute('INSERT INTO ServerChannel (guild_id, channel_id, list) VALUES (?, ?, ?) '
                          'ON CONFLICT (guild_id, channel_id) DO UPDATE SET list = ?;',
                          (guild_id, channel_id, list_name, list_name))
        db.commit()
        db.close()

    def remove(self, guild_id, channel_id):
        self.__channels.get(guild_id, {}).pop(channel_id, None)
        db = DB()
        db.cursor.execute('DELETE FROM ServerChannel WHERE guild_id = ? AND channel_id = ?;', (guild_id, channel_id))
        db.commit()
        db.close()
